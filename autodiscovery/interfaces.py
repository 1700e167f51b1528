"""
Ports between the search engine and the outside world.

The engine never talks to an LLM, a dataset or a subprocess directly. It
consumes two asynchronous ports:

- HypothesisGenerator: proposes child hypotheses for a node
- EvidenceGatherer: returns success/failure evidence for a node's hypothesis

Both may be slow or unreliable. The orchestrator wraps every call with a
timeout, bounded retries and cancellation, so implementations can be plain
coroutines. Implementations may return the dataclasses below or plain
mappings with the same keys; anything else is a malformed response.
"""

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from autodiscovery.exceptions import OracleMalformedResponse

if TYPE_CHECKING:
    from autodiscovery.search.tree import Node


@dataclass(frozen=True)
class HypothesisCandidate:
    """A proposed child hypothesis"""

    text: str
    category_tag: str | None = None


@dataclass
class EvidenceRef:
    """Provenance of statistical evidence: what was planned and what came back"""

    plan: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"plan": self.plan, "result": self.result}


@dataclass
class Evidence:
    """
    Evidence for a hypothesis as (possibly fractional) Bernoulli counts.

    Attributes:
        successes: Weight of observations supporting the hypothesis
        failures: Weight of observations contradicting it
        evidence_ref: Optional statistical provenance
        cost: Budget units consumed to obtain this evidence
    """

    successes: float = 0.0
    failures: float = 0.0
    evidence_ref: EvidenceRef | None = None
    cost: float = 0.0


@runtime_checkable
class HypothesisGenerator(Protocol):
    """Proposes new child hypotheses during expansion"""

    async def generate(
        self,
        parent_hypothesis: str,
        ancestor_chain: list[str],
        fact_context: list[str],
        count: int,
    ) -> Sequence[HypothesisCandidate | Mapping[str, Any]]:
        """
        Propose up to ``count`` hypotheses refining ``parent_hypothesis``.

        Args:
            parent_hypothesis: Hypothesis of the node being expanded
            ancestor_chain: Hypotheses from the root down to the parent (inclusive)
            fact_context: Short statements of what has been learned so far
            count: Number of proposals requested
        """
        ...


@runtime_checkable
class EvidenceGatherer(Protocol):
    """Supplies evidence for a node's hypothesis"""

    async def gather(self, node: "Node") -> Evidence | Mapping[str, Any]:
        """Return success/failure evidence for ``node.hypothesis``"""
        ...


def _count(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise OracleMalformedResponse(f"Evidence field '{name}' is not a number: {value!r}") from e
    if not math.isfinite(number) or number < 0:
        raise OracleMalformedResponse(f"Evidence field '{name}' must be finite and >= 0: {value!r}")
    return number


def coerce_evidence(response: Any) -> Evidence:
    """Validate an EvidenceGatherer response, raising OracleMalformedResponse if unusable"""
    if isinstance(response, Evidence):
        successes, failures, ref, cost = (
            response.successes,
            response.failures,
            response.evidence_ref,
            response.cost,
        )
    elif isinstance(response, Mapping):
        if "successes" not in response or "failures" not in response:
            raise OracleMalformedResponse(
                f"Evidence response is missing successes/failures: {dict(response)!r}"
            )
        successes = response["successes"]
        failures = response["failures"]
        ref = response.get("evidence_ref", response.get("evidenceRef"))
        cost = response.get("cost", 0.0)
    else:
        raise OracleMalformedResponse(f"Unexpected evidence response type: {type(response).__name__}")

    if isinstance(ref, Mapping):
        ref = EvidenceRef(plan=dict(ref.get("plan") or {}), result=dict(ref.get("result") or {}))
    elif ref is not None and not isinstance(ref, EvidenceRef):
        raise OracleMalformedResponse(f"Unexpected evidence_ref type: {type(ref).__name__}")

    return Evidence(
        successes=_count(successes, "successes"),
        failures=_count(failures, "failures"),
        evidence_ref=ref,
        cost=_count(cost or 0.0, "cost"),
    )


def coerce_candidates(response: Any) -> list[HypothesisCandidate]:
    """Validate a HypothesisGenerator response, raising OracleMalformedResponse if unusable"""
    if isinstance(response, (str, bytes)) or not isinstance(response, Sequence):
        raise OracleMalformedResponse(
            f"Hypothesis response must be a sequence, got {type(response).__name__}"
        )

    candidates = []
    for item in response:
        if isinstance(item, HypothesisCandidate):
            candidate = item
        elif isinstance(item, Mapping):
            text = item.get("text", item.get("hypothesis"))
            tag = item.get("category_tag", item.get("categoryTag", item.get("category")))
            candidate = HypothesisCandidate(
                text=text if isinstance(text, str) else "",
                category_tag=str(tag) if tag is not None else None,
            )
        elif isinstance(item, str):
            candidate = HypothesisCandidate(text=item)
        else:
            raise OracleMalformedResponse(f"Unexpected hypothesis item: {item!r}")

        if candidate.text.strip():
            candidates.append(HypothesisCandidate(candidate.text.strip(), candidate.category_tag))

    return candidates
