"""
End-to-end tests for the discovery orchestrator with in-process oracles
"""

import asyncio
import json
import os
import tempfile
import unittest

from autodiscovery.config import Config
from autodiscovery.discovery.orchestrator import DiscoveryOrchestrator, RunStatus, StopCause
from autodiscovery.exceptions import ConfigValidationError, OracleTimeout
from autodiscovery.interfaces import Evidence
from autodiscovery.search.tree import Confidence, NodeState


class StubGenerator:
    """Always proposes the same two refinements"""

    def __init__(self, proposals=None):
        self.proposals = ["baseline surprising", "baseline normal"] if proposals is None else proposals
        self.contexts = []

    async def generate(self, parent_hypothesis, ancestor_chain, fact_context, count):
        self.contexts.append(list(fact_context))
        return [{"text": text, "category": "stub"} for text in self.proposals]


class StubGatherer:
    """Supports hypotheses mentioning 'surprising' and contradicts the rest"""

    def __init__(self, delay=0.0, cost=0.0):
        self.delay = delay
        self.cost = cost
        self.calls = 0

    async def gather(self, node):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if "surprising" in node.hypothesis:
            return Evidence(successes=1.0, failures=0.0, cost=self.cost)
        return Evidence(successes=0.0, failures=1.0, cost=self.cost)


class RecordingGatherer(StubGatherer):
    """Remembers which node each call was for and how often it had been evaluated"""

    def __init__(self):
        super().__init__()
        self.requests = []

    async def gather(self, node):
        self.requests.append((node.index, node.evaluations, node.visits))
        return await super().gather(node)


class BrokenGenerator:
    def __init__(self):
        self.calls = 0

    async def generate(self, parent_hypothesis, ancestor_chain, fact_context, count):
        self.calls += 1
        raise OracleTimeout("generator did not answer")


class TimeoutGatherer:
    def __init__(self):
        self.calls = 0

    async def gather(self, node):
        self.calls += 1
        raise OracleTimeout("oracle did not answer")


class FlakyGatherer:
    """Returns garbage on the first call and valid evidence afterwards"""

    def __init__(self):
        self.calls = 0

    async def gather(self, node):
        self.calls += 1
        if self.calls == 1:
            return "not evidence"
        return {"successes": 1, "failures": 0}


class CancellingGatherer:
    def __init__(self):
        self.orchestrator = None

    async def gather(self, node):
        self.orchestrator.cancel()
        await asyncio.sleep(10)
        return Evidence(successes=1.0)


def make_config(**search) -> Config:
    config = Config()
    config.search.max_iterations = 10
    config.search.max_depth = 3
    config.search.parallel_expansion = 10
    config.evidence.retry_delay = 0.0
    for key, value in search.items():
        setattr(config.search, key, value)
    return config


class TestDiscoveryRun(unittest.IsolatedAsyncioTestCase):
    async def test_finds_surprising_hypothesis(self):
        config = make_config(exploration_constant=1.414)
        orchestrator = DiscoveryOrchestrator(config, StubGenerator(), StubGatherer())
        result = await orchestrator.run("baseline")

        self.assertEqual(result.status, RunStatus.COMPLETED)
        self.assertEqual(result.stats.stop_cause, StopCause.MAX_ITERATIONS.value)
        self.assertEqual(result.stats.iterations_run, 10)
        self.assertIn("surprising", result.best_hypothesis)
        self.assertGreater(result.best_surprise_score, 0.5)
        self.assertEqual(
            result.best_path, ["baseline"] + ["baseline surprising"] * 3
        )
        # One evaluated node per iteration
        self.assertEqual(result.total_nodes, 10)

        run = orchestrator.current_run
        self.assertEqual(run.tree.root.visits, run.iterations_completed)
        self.assertTrue(all(node.state is NodeState.EVALUATED for node in run.tree.nodes))

        # Top findings are ordered by score and carry credible intervals
        scores = [entry.score for entry in result.top_k]
        self.assertEqual(scores, sorted(scores, reverse=True))
        low, high = result.top_k[0].credible_interval
        self.assertLessEqual(low, result.top_k[0].posterior_mean)
        self.assertLessEqual(result.top_k[0].posterior_mean, high)

    async def test_each_node_is_evaluated_once(self):
        gatherer = RecordingGatherer()
        orchestrator = DiscoveryOrchestrator(make_config(), StubGenerator(), gatherer)
        result = await orchestrator.run("baseline")

        indices = [index for index, _, _ in gatherer.requests]
        self.assertEqual(len(indices), result.stats.iterations_run)
        self.assertEqual(len(set(indices)), len(indices))
        # Evidence is only ever requested for fresh leaves
        self.assertTrue(all(evaluations == 0 for _, evaluations, _ in gatherer.requests))
        self.assertTrue(all(visits == 0 for _, _, visits in gatherer.requests))

        tree = orchestrator.current_run.tree
        self.assertTrue(all(node.evaluations == 1 for node in tree.nodes))
        self.assertEqual(tree.root.visits, result.stats.iterations_run)
        for node in tree.nodes:
            self.assertEqual(node.visits, 1 + sum(tree[c].visits for c in node.children))

    async def test_refinement_starts_from_parent_posterior(self):
        orchestrator = DiscoveryOrchestrator(make_config(), StubGenerator(), StubGatherer())
        await orchestrator.run("baseline")

        tree = orchestrator.current_run.tree
        for node in tree.nodes[1:]:
            parent = tree[node.parent]
            self.assertEqual((node.belief.prior_alpha, node.belief.prior_beta), (0.5, 0.5))
            inherited = 0.0 if parent.is_root else parent.belief.observations
            self.assertEqual(node.belief.observations, inherited + 1.0)

    async def test_children_respect_widening_and_depth(self):
        config = make_config(max_iterations=30)
        orchestrator = DiscoveryOrchestrator(config, StubGenerator(), StubGatherer())
        await orchestrator.run("baseline")

        tree = orchestrator.current_run.tree
        for node in tree.nodes:
            self.assertLessEqual(node.depth, config.search.max_depth)
            self.assertLessEqual(len(node.children), tree.widening_cap(node.index))
            for child in node.children:
                self.assertEqual(tree[child].parent, node.index)

    async def test_same_seed_gives_same_result(self):
        results = []
        for _ in range(2):
            orchestrator = DiscoveryOrchestrator(make_config(), StubGenerator(), StubGatherer())
            result = (await orchestrator.run("baseline")).to_dict()
            result["stats"].pop("wall_clock_ms")
            results.append(result)

        self.assertEqual(results[0], results[1])

    async def test_generator_receives_fact_context(self):
        generator = StubGenerator()
        orchestrator = DiscoveryOrchestrator(make_config(), generator, StubGatherer())
        await orchestrator.run("baseline")

        self.assertTrue(generator.contexts)
        self.assertTrue(any("baseline" in fact for context in generator.contexts for fact in context))

    async def test_time_budget_abandons_slow_batch(self):
        config = make_config(max_iterations=5, time_budget_ms=2500)
        orchestrator = DiscoveryOrchestrator(config, StubGenerator(), StubGatherer(delay=1.0))
        result = await orchestrator.run("baseline")

        self.assertEqual(result.status, RunStatus.BUDGET_EXHAUSTED)
        self.assertEqual(result.stats.termination_reason, "budget_exhausted")
        self.assertEqual(result.stats.stop_cause, StopCause.TIME_BUDGET.value)
        self.assertLess(result.stats.iterations_run, 5)
        self.assertLess(result.stats.wall_clock_ms, 4000)
        self.assert_abandoned_calls_left_no_trace(orchestrator)

    def assert_abandoned_calls_left_no_trace(self, orchestrator):
        run = orchestrator.current_run
        tree = run.tree
        self.assertTrue(all(node.state is NodeState.EVALUATED for node in tree.nodes))

        abandoned = [node for node in tree.nodes if node.evaluations == 0]
        self.assertTrue(abandoned)
        for node in abandoned:
            self.assertIs(node.confidence, Confidence.DEGRADED)
            self.assertEqual(node.visits, 0)
            self.assertEqual(node.cumulative_value, 0.0)
            self.assertEqual(node.surprise, 0.0)

        # Only completed evaluations were backpropagated
        self.assertEqual(tree.root.visits, run.iterations_completed)
        for node in tree.nodes:
            children = [tree[c] for c in node.children]
            self.assertEqual(node.visits, node.evaluations + sum(c.visits for c in children))
            self.assertAlmostEqual(
                node.cumulative_value,
                node.surprise + sum(c.cumulative_value for c in children),
            )

    async def test_failing_oracle_degrades_every_node(self):
        gatherer = TimeoutGatherer()
        orchestrator = DiscoveryOrchestrator(make_config(), StubGenerator(), gatherer)
        result = await orchestrator.run("baseline")

        self.assertIn(result.status, (RunStatus.COMPLETED, RunStatus.BUDGET_EXHAUSTED))
        tree = orchestrator.current_run.tree
        self.assertTrue(all(node.confidence is Confidence.DEGRADED for node in tree.nodes))
        self.assertEqual(result.stats.degraded_nodes, len(tree))
        # Neutral updates leave every belief at the prior
        self.assertTrue(all(node.belief.observations == 0 for node in tree.nodes))
        # Each evaluation is tried once plus max_retries times
        self.assertEqual(gatherer.calls, 3 * result.stats.iterations_run)

    async def test_per_call_timeout_is_retried_then_degraded(self):
        config = make_config(max_iterations=1)
        config.evidence.timeout = 0.05
        gatherer = StubGatherer(delay=1.0)
        orchestrator = DiscoveryOrchestrator(config, StubGenerator(), gatherer)
        result = await orchestrator.run("baseline")

        self.assertEqual(gatherer.calls, 3)
        self.assertEqual(result.stats.iterations_run, 1)
        self.assertIs(orchestrator.current_run.tree.root.confidence, Confidence.DEGRADED)

    async def test_malformed_response_is_requested_again(self):
        gatherer = FlakyGatherer()
        orchestrator = DiscoveryOrchestrator(make_config(max_iterations=1), StubGenerator(), gatherer)
        await orchestrator.run("baseline")

        root = orchestrator.current_run.tree.root
        self.assertEqual(gatherer.calls, 2)
        self.assertIs(root.confidence, Confidence.NORMAL)
        self.assertEqual(root.belief.posterior_alpha, 1.5)

    async def test_frontier_exhausted_reports_root(self):
        orchestrator = DiscoveryOrchestrator(
            make_config(max_depth=1), StubGenerator(proposals=[]), StubGatherer()
        )
        result = await orchestrator.run("baseline")

        self.assertEqual(result.status, RunStatus.COMPLETED)
        self.assertEqual(result.stats.stop_cause, StopCause.FRONTIER_EXHAUSTED.value)
        # The expansion that found nothing new evaluates nothing
        self.assertEqual(result.stats.iterations_run, 1)
        self.assertEqual(result.total_nodes, 1)
        self.assertEqual(result.best_hypothesis, "baseline")
        root = orchestrator.current_run.tree.root
        self.assertTrue(root.exhausted)
        self.assertEqual(root.evaluations, 1)
        self.assertEqual(root.visits, 1)
        self.assertIs(root.state, NodeState.EVALUATED)

    async def test_failed_generation_closes_node(self):
        generator = BrokenGenerator()
        gatherer = StubGatherer()
        orchestrator = DiscoveryOrchestrator(make_config(), generator, gatherer)
        result = await orchestrator.run("baseline")

        self.assertEqual(result.status, RunStatus.COMPLETED)
        self.assertEqual(result.stats.stop_cause, StopCause.FRONTIER_EXHAUSTED.value)
        self.assertEqual(result.stats.iterations_run, 1)
        self.assertEqual(gatherer.calls, 1)
        # One call plus max_retries
        self.assertEqual(generator.calls, 3)
        root = orchestrator.current_run.tree.root
        self.assertTrue(root.exhausted)
        self.assertIs(root.confidence, Confidence.NORMAL)
        self.assertIs(root.state, NodeState.EVALUATED)

    async def test_invalid_config_raises_before_running(self):
        gatherer = StubGatherer()
        orchestrator = DiscoveryOrchestrator(make_config(max_iterations=-1), StubGenerator(), gatherer)
        with self.assertRaises(ConfigValidationError) as ctx:
            await orchestrator.run("baseline")

        self.assertIn("max_iterations", str(ctx.exception))
        self.assertEqual(gatherer.calls, 0)
        self.assertIsNone(orchestrator.current_run)

    async def test_cancel_returns_partial_result(self):
        gatherer = CancellingGatherer()
        orchestrator = DiscoveryOrchestrator(make_config(), StubGenerator(), gatherer)
        gatherer.orchestrator = orchestrator

        result = await asyncio.wait_for(orchestrator.run("baseline"), timeout=5)

        self.assertEqual(result.status, RunStatus.BUDGET_EXHAUSTED)
        self.assertEqual(result.stats.stop_cause, StopCause.CANCELLED.value)
        self.assertEqual(result.stats.iterations_run, 0)
        self.assertIsNone(result.best_hypothesis)
        self.assert_abandoned_calls_left_no_trace(orchestrator)
        self.assertEqual(orchestrator.current_run.tree.root.cumulative_value, 0.0)

    async def test_run_after_cancel_starts_fresh(self):
        gatherer = CancellingGatherer()
        orchestrator = DiscoveryOrchestrator(make_config(), StubGenerator(), gatherer)
        gatherer.orchestrator = orchestrator
        first = await asyncio.wait_for(orchestrator.run("baseline"), timeout=5)
        self.assertEqual(first.stats.stop_cause, StopCause.CANCELLED.value)

        orchestrator.evidence_gatherer = StubGatherer()
        second = await orchestrator.run("baseline")

        self.assertEqual(second.status, RunStatus.COMPLETED)
        self.assertEqual(second.stats.stop_cause, StopCause.MAX_ITERATIONS.value)
        self.assertEqual(second.stats.iterations_run, 10)
        self.assertFalse(orchestrator.cancelled)

    async def test_cost_budget_stops_run(self):
        config = make_config(cost_budget=2.0)
        orchestrator = DiscoveryOrchestrator(config, StubGenerator(), StubGatherer(cost=1.0))
        result = await orchestrator.run("baseline")

        self.assertEqual(result.status, RunStatus.BUDGET_EXHAUSTED)
        self.assertEqual(result.stats.stop_cause, StopCause.COST_BUDGET.value)
        self.assertEqual(result.stats.iterations_run, 2)
        self.assertEqual(result.stats.cost_spent, 2.0)

    async def test_config_is_snapshotted(self):
        config = make_config()
        orchestrator = DiscoveryOrchestrator(config, StubGenerator(), StubGatherer())
        await orchestrator.run("baseline")

        self.assertIsNot(orchestrator.current_run.config, config)
        self.assertEqual(orchestrator.current_run.config.search.max_iterations, 10)

    async def test_discovery_log_records_events(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = os.path.join(tmpdir, "logs", "discoveries.jsonl")
            config = make_config()
            config.discovery_log_path = log_path
            orchestrator = DiscoveryOrchestrator(config, StubGenerator(), StubGatherer())
            await orchestrator.run("baseline")

            with open(log_path) as f:
                events = [json.loads(line) for line in f]

        types = [event["type"] for event in events]
        self.assertIn("surprise", types)
        self.assertEqual(types[-1], "run_finished")
        self.assertEqual(events[-1]["details"]["status"], "completed")
        self.assertEqual(
            [e.event_type for e in orchestrator.discovery_events], types
        )


if __name__ == "__main__":
    unittest.main()
