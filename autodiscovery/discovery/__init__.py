"""
Discovery run orchestration and the oracles that feed it

- DiscoveryOrchestrator: drives a Bayesian MCTS run over hypotheses
- LLMHypothesisGenerator: proposes refinements with an LLM
- BeliefEvidenceGatherer / DatasetEvidenceGatherer: evidence from elicited
  beliefs or from statistical tests on a dataset
"""

from autodiscovery.discovery.dataset import Dataset
from autodiscovery.discovery.evidence import (
    BeliefEvidenceGatherer,
    CompositeEvidenceGatherer,
    DatasetEvidenceGatherer,
)
from autodiscovery.discovery.hypothesis_generator import LLMHypothesisGenerator
from autodiscovery.discovery.orchestrator import (
    DiscoveryEvent,
    DiscoveryOrchestrator,
    DiscoveryResult,
    Run,
    RunStats,
    RunStatus,
    StopCause,
    TopKEntry,
)
from autodiscovery.discovery.statistical_tests import StatisticalOutcome, run_test

__all__ = [
    "BeliefEvidenceGatherer",
    "CompositeEvidenceGatherer",
    "Dataset",
    "DatasetEvidenceGatherer",
    "DiscoveryEvent",
    "DiscoveryOrchestrator",
    "DiscoveryResult",
    "LLMHypothesisGenerator",
    "Run",
    "RunStats",
    "RunStatus",
    "StatisticalOutcome",
    "StopCause",
    "TopKEntry",
    "run_test",
]
