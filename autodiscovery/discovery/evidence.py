"""
Evidence gatherers

Two sources of evidence for a hypothesis:

- BeliefEvidenceGatherer: elicits probabilities from an LLM; each sample p
  counts as ``w*p`` successes and ``w*(1-p)`` failures
- DatasetEvidenceGatherer: has the LLM plan one statistical test, runs it on
  the dataset and converts the p-value into pseudo-observations

CompositeEvidenceGatherer adds up the evidence of several gatherers.
Cost is counted in LLM calls.
"""

import asyncio
import logging
import math
from typing import Any

from autodiscovery.discovery.dataset import Dataset
from autodiscovery.discovery.statistical_tests import StatisticalOutcome, run_test
from autodiscovery.exceptions import OracleMalformedResponse
from autodiscovery.interfaces import Evidence, EvidenceGatherer, EvidenceRef, coerce_evidence
from autodiscovery.llm.base import LLMInterface, parse_json_response
from autodiscovery.prompt.templates import (
    BELIEF_SYSTEM_TEMPLATE,
    BELIEF_USER_TEMPLATE,
    TEST_PLAN_SYSTEM_TEMPLATE,
    TEST_PLAN_USER_TEMPLATE,
)
from autodiscovery.search.tree import Node

logger = logging.getLogger(__name__)


def _context_text(node: Node) -> str:
    if not node.context:
        return "No prior findings."
    return "\n".join(f"- {line}" for line in node.context)


def parse_probability(response: str) -> float:
    """Read ``{"probability": p}`` from an LLM response"""
    data = parse_json_response(response)
    value = data.get("probability")
    try:
        probability = float(value)
    except (TypeError, ValueError) as e:
        raise OracleMalformedResponse(f"Probability is not a number: {value!r}") from e
    if not math.isfinite(probability) or not 0.0 <= probability <= 1.0:
        raise OracleMalformedResponse(f"Probability must lie in [0, 1], got {probability}")
    return probability


def support_probability(outcome: StatisticalOutcome, expected_direction: str | None) -> float:
    """
    Probability-like support for the hypothesis from a test outcome.

    A significant effect in the expected direction gives ``1 - p``; an effect in
    the opposite direction gives ``p / 2``. Without an expected direction any
    effect counts as consistent.
    """
    consistent = expected_direction not in ("positive", "negative") or (
        outcome.direction == expected_direction
    )
    if consistent:
        return 1.0 - outcome.p_value
    return outcome.p_value / 2.0


class BeliefEvidenceGatherer:
    """Evidence from repeated LLM belief elicitation"""

    def __init__(self, llm: LLMInterface, samples: int = 3, sample_weight: float = 1.0):
        self.llm = llm
        self.samples = samples
        self.sample_weight = sample_weight

    async def gather(self, node: Node) -> Evidence:
        user_prompt = BELIEF_USER_TEMPLATE.format(
            hypothesis=node.hypothesis, fact_context=_context_text(node)
        )
        probabilities = await asyncio.gather(
            *(self._elicit(user_prompt) for _ in range(self.samples))
        )
        successes = sum(self.sample_weight * p for p in probabilities)
        failures = sum(self.sample_weight * (1.0 - p) for p in probabilities)
        logger.debug(f"Elicited beliefs for node {node.index}: {probabilities}")
        return Evidence(successes=successes, failures=failures, cost=float(self.samples))

    async def _elicit(self, user_prompt: str) -> float:
        response = await self.llm.generate_with_context(
            system_message=BELIEF_SYSTEM_TEMPLATE,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return parse_probability(response)


class DatasetEvidenceGatherer:
    """Evidence from an LLM-planned statistical test on a dataset"""

    def __init__(self, llm: LLMInterface, dataset: Dataset, weight: float = 4.0):
        self.llm = llm
        self.dataset = dataset
        self.weight = weight

    async def gather(self, node: Node) -> Evidence:
        user_prompt = TEST_PLAN_USER_TEMPLATE.format(
            hypothesis=node.hypothesis, dataset_description=self.dataset.describe()
        )
        plan = await self.llm.generate_json(TEST_PLAN_SYSTEM_TEMPLATE, user_prompt)
        outcome = run_test(plan, self.dataset)
        q = support_probability(outcome, plan.get("expected_direction"))

        logger.info(
            f"Node {node.index}: {outcome.test} effect={outcome.effect:.4g} "
            f"p={outcome.p_value:.4g} support={q:.3f}"
        )
        return Evidence(
            successes=self.weight * q,
            failures=self.weight * (1.0 - q),
            evidence_ref=EvidenceRef(plan=dict(plan), result=outcome.to_dict()),
            cost=1.0,
        )


class CompositeEvidenceGatherer:
    """Runs several gatherers concurrently and sums their evidence"""

    def __init__(self, *gatherers: EvidenceGatherer):
        if not gatherers:
            raise ValueError("CompositeEvidenceGatherer needs at least one gatherer")
        self.gatherers = gatherers

    async def gather(self, node: Node) -> Evidence:
        responses: list[Any] = await asyncio.gather(*(g.gather(node) for g in self.gatherers))
        parts = [coerce_evidence(response) for response in responses]
        ref = next((part.evidence_ref for part in parts if part.evidence_ref is not None), None)
        return Evidence(
            successes=sum(part.successes for part in parts),
            failures=sum(part.failures for part in parts),
            evidence_ref=ref,
            cost=sum(part.cost for part in parts),
        )
