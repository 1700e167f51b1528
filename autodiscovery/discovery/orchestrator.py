"""
Discovery orchestrator

Drives one Bayesian MCTS run: select a batch of targets, expand the visited
ones through the hypothesis generator, gather evidence concurrently for each
new child and each unvisited target, then apply belief updates, surprise
scores and backpropagation in selection order. All tree writes happen in this
coroutine between awaits on complete batches; the oracles only ever run
inside tasks.
"""

import asyncio
import copy
import json
import logging
import os
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from autodiscovery.config import Config
from autodiscovery.discovery.dataset import Dataset
from autodiscovery.exceptions import OracleError, OracleMalformedResponse, OracleTimeout
from autodiscovery.interfaces import (
    Evidence,
    EvidenceGatherer,
    HypothesisCandidate,
    HypothesisGenerator,
    coerce_candidates,
    coerce_evidence,
)
from autodiscovery.search.belief import BeliefStore
from autodiscovery.search.surprise import SurpriseEvaluator
from autodiscovery.search.tree import Confidence, Node, NodeState, SearchTree

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    BUDGET_EXHAUSTED = "budget_exhausted"
    FAILED = "failed"


class StopCause(str, Enum):
    MAX_ITERATIONS = "max_iterations"
    FRONTIER_EXHAUSTED = "frontier_exhausted"
    TIME_BUDGET = "time_budget"
    COST_BUDGET = "cost_budget"
    CANCELLED = "cancelled"
    ERROR = "error"


_STATUS_FOR_CAUSE = {
    StopCause.MAX_ITERATIONS: RunStatus.COMPLETED,
    StopCause.FRONTIER_EXHAUSTED: RunStatus.COMPLETED,
    StopCause.TIME_BUDGET: RunStatus.BUDGET_EXHAUSTED,
    StopCause.COST_BUDGET: RunStatus.BUDGET_EXHAUSTED,
    StopCause.CANCELLED: RunStatus.BUDGET_EXHAUSTED,
    StopCause.ERROR: RunStatus.FAILED,
}


@dataclass
class DiscoveryEvent:
    """Record of a discovery event"""

    timestamp: float
    event_type: str  # "surprise", "run_finished"
    node_index: int | None = None
    hypothesis: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class TopKEntry:
    hypothesis: str
    score: float
    visits: int
    posterior_mean: float
    credible_interval: tuple[float, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "hypothesis": self.hypothesis,
            "score": self.score,
            "visits": self.visits,
            "posterior_mean": self.posterior_mean,
            "credible_interval": list(self.credible_interval),
        }


@dataclass
class RunStats:
    iterations_run: int
    avg_branching_factor: float
    wall_clock_ms: float
    termination_reason: str
    stop_cause: str
    degraded_nodes: int
    cost_spent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "iterations_run": self.iterations_run,
            "avg_branching_factor": self.avg_branching_factor,
            "wall_clock_ms": self.wall_clock_ms,
            "termination_reason": self.termination_reason,
            "stop_cause": self.stop_cause,
            "degraded_nodes": self.degraded_nodes,
            "cost_spent": self.cost_spent,
        }


@dataclass
class DiscoveryResult:
    """Summary of a finished run"""

    total_nodes: int
    best_hypothesis: str | None
    best_surprise_score: float
    best_path: list[str]
    top_k: list[TopKEntry]
    stats: RunStats
    status: RunStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_nodes": self.total_nodes,
            "best_hypothesis": self.best_hypothesis,
            "best_surprise_score": self.best_surprise_score,
            "best_path": list(self.best_path),
            "top_k": [entry.to_dict() for entry in self.top_k],
            "stats": self.stats.to_dict(),
            "status": self.status.value,
        }


@dataclass
class Run:
    """State of one discovery session"""

    config: Config
    tree: SearchTree
    status: RunStatus = RunStatus.RUNNING
    iterations_completed: int = 0
    best_index: int | None = None
    best_score: float = 0.0
    top_k: list[int] = field(default_factory=list)
    cost_spent: float = 0.0
    stop_cause: StopCause | None = None
    batches: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000.0


class DiscoveryOrchestrator:
    """
    Runs Bayesian MCTS over hypotheses.

    Usage:
        orchestrator = DiscoveryOrchestrator(config, generator, gatherer)
        result = await orchestrator.run("Sleep duration predicts exam scores")

    ``cancel()`` may be called from another task while ``run()`` is awaiting;
    in-flight oracle calls are abandoned and the partial result is returned.
    """

    def __init__(
        self,
        config: Config,
        hypothesis_generator: HypothesisGenerator,
        evidence_gatherer: EvidenceGatherer,
        dataset: Dataset | None = None,
    ):
        self.config = config
        self.hypothesis_generator = hypothesis_generator
        self.evidence_gatherer = evidence_gatherer
        self.dataset = dataset

        self.current_run: Run | None = None
        self.discovery_events: list[DiscoveryEvent] = []

        self._cancel_event = asyncio.Event()
        self._semaphore: asyncio.Semaphore | None = None
        self._beliefs: BeliefStore | None = None
        self._evaluator: SurpriseEvaluator | None = None

    def cancel(self) -> None:
        """Request the current run to stop as soon as possible"""
        logger.info("Cancellation requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    async def run(self, seed_hypothesis: str) -> DiscoveryResult:
        """
        Explore hypotheses starting from ``seed_hypothesis``.

        Raises:
            ConfigValidationError: the configuration is invalid (nothing is run)
        """
        self.config.validate()
        config = copy.deepcopy(self.config)
        search = config.search
        # A cancellation only applies to the run it interrupted
        self._cancel_event.clear()

        self._beliefs = BeliefStore(
            prior_alpha=search.prior_alpha,
            prior_beta=search.prior_beta,
            sample_weight=config.evidence.belief_sample_weight,
        )
        self._evaluator = SurpriseEvaluator(
            reward_mode=search.reward_mode,
            belief_kl_weight=search.belief_kl_weight,
            surprisal_threshold=search.surprisal_threshold,
        )
        self._semaphore = asyncio.Semaphore(search.parallel_expansion)

        tree = SearchTree(
            root_hypothesis=seed_hypothesis,
            root_belief=self._beliefs.initialize(),
            exploration_constant=search.exploration_constant,
            progressive_widening_k=search.progressive_widening_k,
            progressive_widening_alpha=search.progressive_widening_alpha,
            max_depth=search.max_depth,
            selection_policy=search.selection_policy,
            rng=random.Random(config.random_seed),
        )
        run = Run(config=config, tree=tree)
        self.current_run = run
        self.discovery_events = []

        logger.info(
            f"Starting discovery from {seed_hypothesis!r} "
            f"(max_iterations={search.max_iterations}, reward={search.reward_mode}, "
            f"parallel={search.parallel_expansion})"
        )

        try:
            await self._search_loop(run)
        except Exception as e:
            logger.exception(f"Discovery run failed: {e}")
            self._stop(run, StopCause.ERROR)

        self._finalize_pending(run)
        self._update_best(run)
        result = self._build_result(run)

        self._log_event(
            DiscoveryEvent(
                timestamp=time.time(),
                event_type="run_finished",
                node_index=run.best_index,
                hypothesis=result.best_hypothesis,
                details={
                    "status": run.status.value,
                    "stop_cause": run.stop_cause.value,
                    "iterations": run.iterations_completed,
                    "total_nodes": len(tree),
                    "best_score": run.best_score,
                },
            )
        )
        logger.info(
            f"Discovery {run.status.value} ({run.stop_cause.value}) after "
            f"{run.iterations_completed} iterations, {len(tree)} nodes; "
            f"best score {run.best_score:.4f}: {result.best_hypothesis!r}"
        )
        return result

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def _search_loop(self, run: Run) -> None:
        search = run.config.search
        while True:
            cause = self._budget_stop_cause(run)
            if cause is not None:
                self._stop(run, cause)
                return

            remaining = search.max_iterations - run.iterations_completed
            targets = run.tree.select_batch(min(search.parallel_expansion, remaining))
            if not targets:
                self._stop(run, StopCause.FRONTIER_EXHAUSTED)
                return

            run.batches += 1
            cause = await self._run_batch(run, targets)
            if cause is not None:
                self._stop(run, cause)
                return

            self._update_best(run)
            logger.info(
                f"Batch {run.batches}: {len(targets)} targets, "
                f"iteration {run.iterations_completed}/{search.max_iterations}, "
                f"{len(run.tree)} nodes, best score {run.best_score:.4f}"
            )

    def _budget_stop_cause(self, run: Run) -> StopCause | None:
        search = run.config.search
        if self.cancelled:
            return StopCause.CANCELLED
        if run.iterations_completed >= search.max_iterations:
            return StopCause.MAX_ITERATIONS
        if search.time_budget_ms is not None and run.elapsed_ms() >= search.time_budget_ms:
            return StopCause.TIME_BUDGET
        if search.cost_budget is not None and run.cost_spent >= search.cost_budget:
            return StopCause.COST_BUDGET
        return None

    def _stop(self, run: Run, cause: StopCause) -> None:
        run.stop_cause = cause
        run.status = _STATUS_FOR_CAUSE[cause]

    async def _run_batch(self, run: Run, targets: list[int]) -> StopCause | None:
        """
        Expand and evaluate one batch; returns a stop cause if it was abandoned.

        An unvisited target is evaluated itself. A visited target is expanded
        and its new child is evaluated; an expansion that yields no child
        evaluates nothing. Every node receives evidence exactly once.
        """
        tree = run.tree
        for index in targets:
            tree[index].context = self._fact_context(tree, index)

        expandable = [
            index for index in targets if tree[index].visits > 0 and tree.can_expand(index)
        ]
        new_children: dict[int, int] = {}
        if expandable:
            new_children, cause = await self._expand(run, expandable)
            if cause is not None:
                return cause

        to_evaluate = []
        for index in targets:
            if tree[index].visits == 0:
                to_evaluate.append(index)
            elif index in new_children:
                child = tree[new_children[index]]
                child.context = self._fact_context(tree, child.index)
                to_evaluate.append(child.index)
        if not to_evaluate:
            return None

        for index in to_evaluate:
            tree[index].state = NodeState.EVALUATING
        tasks = [asyncio.create_task(self._gather_evidence(tree[index])) for index in to_evaluate]
        cause = await self._wait_for_batch(run, tasks)
        if cause is not None:
            logger.warning(f"Abandoned {len(tasks)} evidence calls ({cause.value})")
            return cause

        for index, task in zip(to_evaluate, tasks):
            self._apply_evidence(run, index, task.result())
        return None

    async def _wait_for_batch(self, run: Run, tasks: list[asyncio.Task]) -> StopCause | None:
        """
        Wait until every task finishes, the time budget runs out or the run is
        cancelled. Unfinished tasks are cancelled and their results discarded.
        """
        search = run.config.search
        timeout = None
        if search.time_budget_ms is not None:
            timeout = max(search.time_budget_ms - run.elapsed_ms(), 0.0) / 1000.0

        batch = asyncio.gather(*tasks)
        cancel_waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {batch, cancel_waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_waiter.cancel()

        if batch in done:
            return None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        return StopCause.CANCELLED if self.cancelled else StopCause.TIME_BUDGET

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    async def _expand(
        self, run: Run, targets: list[int]
    ) -> tuple[dict[int, int], StopCause | None]:
        """
        Give each target one new child. Returns the children by target, and a
        stop cause if generation was abandoned.

        A target that cannot get a novel child (nothing novel was proposed, or
        generation failed after retries) is marked exhausted so selection
        moves on.
        """
        tree = run.tree
        needs_generation = []
        for index in targets:
            tree[index].state = NodeState.EXPANDING
            if not self._has_novel_candidate(tree, index):
                needs_generation.append(index)

        generated: dict[int, list[HypothesisCandidate] | None] = {}
        if needs_generation:
            tasks = [asyncio.create_task(self._generate(tree, index)) for index in needs_generation]
            cause = await self._wait_for_batch(run, tasks)
            if cause is not None:
                logger.warning(f"Abandoned {len(tasks)} generation calls ({cause.value})")
                return {}, cause
            generated = {index: task.result() for index, task in zip(needs_generation, tasks)}

        # Children are inserted in selection order
        children: dict[int, int] = {}
        for index in targets:
            node = tree[index]
            node.state = NodeState.EVALUATED
            if index in generated:
                if generated[index] is None:
                    node.exhausted = True
                    logger.info(f"Node {index} closed after failed generation")
                    continue
                node.candidates.extend(generated[index])

            child = self._add_novel_child(run, index)
            if child is None:
                node.exhausted = True
                logger.info(f"Node {index} exhausted: no novel hypotheses left")
            else:
                children[index] = child.index
        return children, None

    def _has_novel_candidate(self, tree: SearchTree, index: int) -> bool:
        node = tree[index]
        node.candidates = [c for c in node.candidates if tree.is_novel_child(index, c.text)]
        return bool(node.candidates)

    def _add_novel_child(self, run: Run, index: int) -> Node | None:
        tree = run.tree
        node = tree[index]
        while node.candidates:
            candidate = node.candidates.pop(0)
            if tree.is_novel_child(index, candidate.text):
                # Refinements start from what is known about the hypothesis they
                # refine; the seed is the open question, so its children start
                # from the prior
                if node.is_root:
                    belief = self._beliefs.initialize()
                else:
                    belief = self._beliefs.inherit(node.belief)
                return tree.add_child(index, candidate.text, belief, candidate.category_tag)
        return None

    async def _generate(self, tree: SearchTree, index: int) -> list[HypothesisCandidate] | None:
        node = tree[index]
        count = self.current_run.config.evidence.hypotheses_per_expansion
        async with self._semaphore:
            try:
                return await self._call_with_retry(
                    lambda: self.hypothesis_generator.generate(
                        node.hypothesis, tree.hypothesis_chain(index), list(node.context), count
                    ),
                    coerce_candidates,
                    f"generation for node {index}",
                )
            except OracleError as e:
                logger.warning(f"Skipping expansion of node {index}: {e}")
                return None

    # ------------------------------------------------------------------
    # Evidence
    # ------------------------------------------------------------------

    async def _gather_evidence(self, node: Node) -> Evidence | None:
        async with self._semaphore:
            try:
                return await self._call_with_retry(
                    lambda: self.evidence_gatherer.gather(node),
                    coerce_evidence,
                    f"evidence for node {node.index}",
                )
            except OracleError as e:
                logger.warning(f"Evidence for node {node.index} failed, applying neutral update: {e}")
                return None

    async def _call_with_retry(
        self,
        call: Callable[[], Awaitable[Any]],
        coerce: Callable[[Any], T],
        label: str,
    ) -> T:
        """
        Await an oracle call with a per-call timeout.

        Timeouts are retried ``max_retries`` times and malformed responses
        ``malformed_retries`` times; after that the last error is raised as an
        OracleError.
        """
        evidence_cfg = self.current_run.config.evidence
        timeouts = 0
        malformed = 0

        while True:
            try:
                response = await asyncio.wait_for(call(), timeout=evidence_cfg.timeout)
                return coerce(response)
            except (asyncio.TimeoutError, TimeoutError, OracleTimeout) as e:
                if timeouts >= evidence_cfg.max_retries:
                    raise OracleTimeout(f"{label} timed out after {timeouts + 1} attempts") from e
                timeouts += 1
                logger.warning(
                    f"Timeout on {label}, attempt {timeouts}/{evidence_cfg.max_retries + 1}. Retrying..."
                )
            except OracleMalformedResponse as e:
                if malformed >= evidence_cfg.malformed_retries:
                    raise
                malformed += 1
                logger.warning(f"Malformed response on {label}: {e}. Re-requesting...")
            except Exception as e:
                if malformed >= evidence_cfg.malformed_retries:
                    raise OracleMalformedResponse(f"{label} failed: {e!s}") from e
                malformed += 1
                logger.warning(f"Error on {label}: {e!s}. Re-requesting...")

            if evidence_cfg.retry_delay:
                await asyncio.sleep(evidence_cfg.retry_delay)

    def _apply_evidence(self, run: Run, index: int, evidence: Evidence | None) -> None:
        """Commit one evaluation and backpropagate its reward"""
        tree = run.tree
        node = tree[index]
        was_surprising = node.surprising

        if evidence is None:
            node.confidence = Confidence.DEGRADED
            reward = 0.0
        else:
            node.belief = self._beliefs.update(node.belief, evidence.successes, evidence.failures)
            if evidence.evidence_ref is not None:
                node.evidence_ref = evidence.evidence_ref
            run.cost_spent += evidence.cost

            score = self._evaluator.evaluate(node.belief)
            node.surprise = score.score
            node.kl_divergence = score.kl_divergence
            node.belief_shift = score.belief_shift
            node.surprising = score.surprising
            node.confidence = Confidence.NORMAL
            reward = score.score

        node.evaluations += 1
        node.state = NodeState.EVALUATED
        tree.backpropagate(index, reward)
        run.iterations_completed += 1

        logger.debug(
            f"Node {index} evaluated: mean={node.posterior_mean:.3f} "
            f"surprise={node.surprise:.4f} confidence={node.confidence.value}"
        )

        if node.surprising and not was_surprising:
            logger.info(f"Surprising finding (score {node.surprise:.4f}): {node.hypothesis}")
            self._log_event(
                DiscoveryEvent(
                    timestamp=time.time(),
                    event_type="surprise",
                    node_index=index,
                    hypothesis=node.hypothesis,
                    details={
                        "score": node.surprise,
                        "kl_divergence": node.kl_divergence,
                        "belief_shift": node.belief_shift,
                        "belief": node.belief.to_dict(),
                        "path": tree.hypothesis_chain(index),
                        "evidence_ref": node.evidence_ref.to_dict() if node.evidence_ref else None,
                    },
                )
            )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _fact_context(self, tree: SearchTree, index: int) -> list[str]:
        """What has been learned along the path to ``index``"""
        facts = []
        if self.dataset is not None:
            facts.append(self.dataset.describe())
        for ancestor in tree.path(index):
            node = tree[ancestor]
            if node.evaluations == 0:
                continue
            fact = (
                f"{node.hypothesis!r}: belief {node.posterior_mean:.2f} "
                f"after {node.belief.observations:.1f} observations"
            )
            if node.evidence_ref is not None and node.evidence_ref.result:
                result = node.evidence_ref.result
                fact += (
                    f"; {result.get('test')} effect={result.get('effect', 0.0):.3g}, "
                    f"p={result.get('p_value', 1.0):.3g}"
                )
            facts.append(fact)
        return facts

    def _finalize_pending(self, run: Run) -> None:
        """Close nodes left mid-flight; those whose evidence never arrived are degraded"""
        for node in run.tree.nodes:
            if node.state is NodeState.EVALUATED:
                continue
            node.state = NodeState.EVALUATED
            if node.evaluations == 0:
                node.confidence = Confidence.DEGRADED

    def _update_best(self, run: Run) -> None:
        tree = run.tree
        findings = [node for node in tree.nodes[1:] if node.evaluations > 0]
        if not findings and tree.root.evaluations > 0:
            findings = [tree.root]

        # Highest score first, earliest node on ties
        ranked = sorted(findings, key=lambda node: (-node.surprise, node.index))
        run.top_k = [node.index for node in ranked[: run.config.search.top_k]]
        if ranked:
            run.best_index = ranked[0].index
            run.best_score = ranked[0].surprise
        else:
            run.best_index = None
            run.best_score = 0.0

    def _build_result(self, run: Run) -> DiscoveryResult:
        tree = run.tree
        best = tree[run.best_index] if run.best_index is not None else None

        top_k = [
            TopKEntry(
                hypothesis=tree[index].hypothesis,
                score=tree[index].surprise,
                visits=tree[index].visits,
                posterior_mean=tree[index].posterior_mean,
                credible_interval=BeliefStore.credible_interval(tree[index].belief),
            )
            for index in run.top_k
        ]
        stats = RunStats(
            iterations_run=run.iterations_completed,
            avg_branching_factor=tree.average_branching_factor(),
            wall_clock_ms=run.elapsed_ms(),
            termination_reason=run.status.value,
            stop_cause=run.stop_cause.value,
            degraded_nodes=sum(1 for node in tree.nodes if node.confidence is Confidence.DEGRADED),
            cost_spent=run.cost_spent,
        )
        return DiscoveryResult(
            total_nodes=len(tree),
            best_hypothesis=best.hypothesis if best else None,
            best_surprise_score=run.best_score,
            best_path=tree.hypothesis_chain(best.index) if best else [],
            top_k=top_k,
            stats=stats,
            status=run.status,
        )

    def _log_event(self, event: DiscoveryEvent) -> None:
        """Record an event and append it to the JSONL discovery log if configured"""
        self.discovery_events.append(event)

        log_path = self.current_run.config.discovery_log_path if self.current_run else None
        if not log_path:
            return
        try:
            directory = os.path.dirname(log_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(log_path, "a") as f:
                f.write(
                    json.dumps(
                        {
                            "timestamp": event.timestamp,
                            "type": event.event_type,
                            "node_index": event.node_index,
                            "hypothesis": event.hypothesis,
                            "details": event.details,
                        }
                    )
                    + "\n"
                )
        except OSError as e:
            logger.warning(f"Failed to log discovery event: {e}")
