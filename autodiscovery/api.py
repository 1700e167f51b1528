"""
High-level API for AutoDiscovery
"""

import asyncio
import logging
import os
import time
from pathlib import Path

from autodiscovery.config import Config, load_config
from autodiscovery.discovery.dataset import Dataset
from autodiscovery.discovery.evidence import (
    BeliefEvidenceGatherer,
    CompositeEvidenceGatherer,
    DatasetEvidenceGatherer,
)
from autodiscovery.discovery.hypothesis_generator import LLMHypothesisGenerator
from autodiscovery.discovery.orchestrator import DiscoveryOrchestrator, DiscoveryResult
from autodiscovery.interfaces import EvidenceGatherer, HypothesisGenerator
from autodiscovery.llm.ensemble import LLMEnsemble

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: Config, log_level: str | None = None) -> str | None:
    """
    Configure the root logger: console output plus a timestamped log file
    under ``config.log_dir`` when set.

    Returns:
        Path of the log file, if one was created
    """
    level_name = (log_level or config.log_level or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = None
    if config.log_dir:
        os.makedirs(config.log_dir, exist_ok=True)
        log_file = os.path.join(
            config.log_dir, f"autodiscovery_{time.strftime('%Y%m%d_%H%M%S')}.log"
        )
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    if log_file:
        logger.info(f"Logging to {log_file}")
    return log_file


def build_orchestrator(
    config: Config,
    hypothesis_generator: HypothesisGenerator | None = None,
    evidence_gatherer: EvidenceGatherer | None = None,
    dataset: Dataset | None = None,
) -> DiscoveryOrchestrator:
    """
    Wire an orchestrator, filling in LLM-backed oracles for any not given.

    Evidence defaults to elicited beliefs, plus a statistical test when a
    dataset is given or ``config.dataset_path`` is set.
    """
    if dataset is None and config.dataset_path:
        dataset = Dataset.from_csv(config.dataset_path)

    if hypothesis_generator is None or evidence_gatherer is None:
        llm = LLMEnsemble(config.llm.models)
        if hypothesis_generator is None:
            hypothesis_generator = LLMHypothesisGenerator(llm)
        if evidence_gatherer is None:
            evidence = config.evidence
            belief = BeliefEvidenceGatherer(
                llm, samples=evidence.belief_samples, sample_weight=evidence.belief_sample_weight
            )
            if dataset is not None:
                evidence_gatherer = CompositeEvidenceGatherer(
                    belief,
                    DatasetEvidenceGatherer(llm, dataset, weight=evidence.dataset_evidence_weight),
                )
            else:
                evidence_gatherer = belief

    return DiscoveryOrchestrator(config, hypothesis_generator, evidence_gatherer, dataset=dataset)


def run_discovery(
    seed_hypothesis: str,
    config: Config | str | Path | None = None,
    hypothesis_generator: HypothesisGenerator | None = None,
    evidence_gatherer: EvidenceGatherer | None = None,
    dataset: Dataset | None = None,
) -> DiscoveryResult:
    """
    Run a discovery session to completion and return its result.

    Args:
        seed_hypothesis: Root hypothesis of the search
        config: Config object, path to a YAML file, or None for defaults
        hypothesis_generator: Custom generator (defaults to the LLM generator)
        evidence_gatherer: Custom evidence source (defaults to LLM evidence)
        dataset: Optional dataset for statistical evidence

    Example:
        >>> result = run_discovery(
        ...     "Students who sleep more score higher",
        ...     config="config.yaml",
        ... )
        >>> print(result.best_hypothesis, result.best_surprise_score)
    """
    if not isinstance(config, Config):
        config = load_config(config)

    orchestrator = build_orchestrator(config, hypothesis_generator, evidence_gatherer, dataset)
    return asyncio.run(orchestrator.run(seed_hypothesis))
