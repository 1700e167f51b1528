"""
Search tree for hypothesis exploration

Nodes live in an append-only arena and refer to each other by integer index.
The tree owns the MCTS policy pieces that only need the tree itself:
UCB1 (or Thompson) selection, progressive widening and backpropagation.
It never awaits anything; the orchestrator is the only writer.
"""

import logging
import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from autodiscovery.interfaces import EvidenceRef, HypothesisCandidate
from autodiscovery.search.belief import BeliefStore, BetaBelief

logger = logging.getLogger(__name__)


class NodeState(str, Enum):
    PENDING = "pending"
    EXPANDING = "expanding"
    EVALUATING = "evaluating"
    EVALUATED = "evaluated"


class Confidence(str, Enum):
    NORMAL = "normal"
    DEGRADED = "degraded"  # evidence failed and a neutral update was substituted


class SelectionPolicy(str, Enum):
    UCB1 = "ucb1"
    THOMPSON = "thompson"


@dataclass
class Node:
    """
    A hypothesis in the search tree.

    Attributes:
        index: Position in the arena
        hypothesis: Natural-language hypothesis
        belief: Beta belief; fixed once the node is evaluated
        parent: Index of the parent (None for the root)
        depth: Distance from the root
        children: Child indices in insertion order
        visits: Number of evaluations in this node's subtree
        cumulative_value: Sum of rewards backpropagated through this node
        surprise: Reward score for this node's own belief
        evaluations: 1 once evidence was applied to this node, 0 before
        exhausted: The generator has nothing novel left to propose here
        candidates: Generated proposals not yet turned into children
        context: Fact summary handed to oracles, refreshed whenever the node is targeted
    """

    index: int
    hypothesis: str
    belief: BetaBelief
    parent: int | None = None
    depth: int = 0
    category_tag: str | None = None
    children: list[int] = field(default_factory=list)
    visits: int = 0
    cumulative_value: float = 0.0
    state: NodeState = NodeState.PENDING
    surprise: float = 0.0
    kl_divergence: float = 0.0
    belief_shift: float = 0.0
    surprising: bool = False
    evidence_ref: EvidenceRef | None = None
    confidence: Confidence = Confidence.NORMAL
    evaluations: int = 0
    exhausted: bool = False
    candidates: list[HypothesisCandidate] = field(default_factory=list)
    context: list[str] = field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def posterior_mean(self) -> float:
        return BeliefStore.mean(self.belief)

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "hypothesis": self.hypothesis,
            "category_tag": self.category_tag,
            "parent": self.parent,
            "children": list(self.children),
            "depth": self.depth,
            "visits": self.visits,
            "cumulative_value": self.cumulative_value,
            "belief": self.belief.to_dict(),
            "state": self.state.value,
            "surprise": self.surprise,
            "kl_divergence": self.kl_divergence,
            "belief_shift": self.belief_shift,
            "surprising": self.surprising,
            "evidence_ref": self.evidence_ref.to_dict() if self.evidence_ref else None,
            "confidence": self.confidence.value,
            "evaluations": self.evaluations,
        }


def normalize_hypothesis(text: str) -> str:
    """Canonical form used to detect duplicate proposals"""
    return " ".join(text.casefold().split())


class SearchTree:
    """
    Arena of hypothesis nodes with MCTS selection and progressive widening.

    Widening: a node with ``v`` visits may hold at most ``ceil(k * v**alpha)``
    children, and gets a new one only when every existing child has been
    visited. Until then selection recurses into the existing children.
    """

    def __init__(
        self,
        root_hypothesis: str,
        root_belief: BetaBelief,
        exploration_constant: float = math.sqrt(2),
        progressive_widening_k: float = 1.0,
        progressive_widening_alpha: float = 0.5,
        max_depth: int = 10,
        selection_policy: SelectionPolicy | str = SelectionPolicy.UCB1,
        rng: random.Random | None = None,
    ):
        self.exploration_constant = exploration_constant
        self.progressive_widening_k = progressive_widening_k
        self.progressive_widening_alpha = progressive_widening_alpha
        self.max_depth = max_depth
        self.selection_policy = SelectionPolicy(selection_policy)
        self.rng = rng or random.Random()

        self.nodes: list[Node] = []
        self.nodes.append(Node(index=0, hypothesis=root_hypothesis, belief=root_belief))

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, index: int) -> Node:
        return self.nodes[index]

    @property
    def root(self) -> Node:
        return self.nodes[0]

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def add_child(
        self,
        parent_index: int,
        hypothesis: str,
        belief: BetaBelief,
        category_tag: str | None = None,
    ) -> Node:
        """Append a pending child, enforcing the depth bound and widening cap"""
        parent = self.nodes[parent_index]
        if parent.depth >= self.max_depth:
            raise ValueError(f"Node {parent_index} is at max depth {self.max_depth}")
        cap = self.widening_cap(parent_index)
        if len(parent.children) >= cap:
            raise ValueError(
                f"Node {parent_index} already has {len(parent.children)} children "
                f"(widening cap {cap} at {parent.visits} visits)"
            )

        child = Node(
            index=len(self.nodes),
            hypothesis=hypothesis,
            belief=belief,
            parent=parent_index,
            depth=parent.depth + 1,
            category_tag=category_tag,
        )
        self.nodes.append(child)
        parent.children.append(child.index)
        logger.debug(f"Added node {child.index} under {parent_index}: {hypothesis!r}")
        return child

    def path(self, index: int) -> list[int]:
        """Indices from the root down to ``index``"""
        path = []
        current: int | None = index
        while current is not None:
            path.append(current)
            current = self.nodes[current].parent
        return list(reversed(path))

    def hypothesis_chain(self, index: int) -> list[str]:
        return [self.nodes[i].hypothesis for i in self.path(index)]

    def leaves(self) -> list[Node]:
        return [node for node in self.nodes if not node.children]

    def average_branching_factor(self) -> float:
        internal = [len(node.children) for node in self.nodes if node.children]
        if not internal:
            return 0.0
        return sum(internal) / len(internal)

    def is_novel_child(self, parent_index: int, hypothesis: str) -> bool:
        """True if no existing child of the parent states the same hypothesis"""
        key = normalize_hypothesis(hypothesis)
        return all(
            normalize_hypothesis(self.nodes[c].hypothesis) != key
            for c in self.nodes[parent_index].children
        )

    # ------------------------------------------------------------------
    # Progressive widening
    # ------------------------------------------------------------------

    def widening_cap(self, index: int) -> int:
        """Maximum number of children the node may currently hold"""
        visits = self.nodes[index].visits
        return math.ceil(self.progressive_widening_k * visits**self.progressive_widening_alpha)

    def can_expand(self, index: int, pending_children: int = 0) -> bool:
        """Whether a new child may be generated for this node now"""
        node = self.nodes[index]
        if node.depth >= self.max_depth or node.exhausted:
            return False
        if any(self.nodes[c].visits == 0 for c in node.children):
            return False
        return len(node.children) + pending_children < self.widening_cap(index)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(
        self,
        virtual_visits: dict[int, int] | None = None,
        pending_children: dict[int, int] | None = None,
    ) -> int | None:
        """
        Walk from the root to the next node to work on.

        Returns a node that is either unvisited (needs its first evaluation) or
        eligible for expansion, or None when no such node is reachable.
        ``virtual_visits`` and ``pending_children`` overlay in-flight work of
        the current batch without touching the tree.
        """
        virtual = virtual_visits or {}
        pending = pending_children or {}
        open_cache: dict[int, bool] = {}

        if not self._is_open(0, virtual, pending, open_cache):
            return None

        index = 0
        while True:
            if self._effective_visits(index, virtual) == 0:
                return index
            if self.can_expand(index, pending.get(index, 0)):
                return index

            open_children = [
                c
                for c in self.nodes[index].children
                if self._is_open(c, virtual, pending, open_cache)
            ]
            if not open_children:
                return index
            index = self._best_child(index, open_children, virtual)

    def select_batch(self, size: int) -> list[int]:
        """
        Select up to ``size`` distinct targets for one parallel batch.

        Each selection adds a virtual visit along its path (and reserves a child
        slot when the target will be expanded) so later selections in the same
        batch spread out. Stops early when a target repeats or nothing is left.
        """
        virtual: dict[int, int] = {}
        pending: dict[int, int] = {}
        targets: list[int] = []

        while len(targets) < size:
            index = self.select(virtual, pending)
            if index is None or index in targets:
                break
            targets.append(index)

            if self.can_expand(index, pending.get(index, 0)):
                pending[index] = pending.get(index, 0) + 1
            for ancestor in self.path(index):
                virtual[ancestor] = virtual.get(ancestor, 0) + 1

        return targets

    def _effective_visits(self, index: int, virtual: dict[int, int]) -> int:
        return self.nodes[index].visits + virtual.get(index, 0)

    def _is_open(
        self,
        index: int,
        virtual: dict[int, int],
        pending: dict[int, int],
        cache: dict[int, bool],
    ) -> bool:
        """Whether the subtree still contains a selectable node"""
        if index in cache:
            return cache[index]

        if self._effective_visits(index, virtual) == 0 or self.can_expand(
            index, pending.get(index, 0)
        ):
            result = True
        else:
            result = any(
                self._is_open(c, virtual, pending, cache) for c in self.nodes[index].children
            )

        cache[index] = result
        return result

    def _best_child(self, parent_index: int, candidates: list[int], virtual: dict[int, int]) -> int:
        parent_visits = self._effective_visits(parent_index, virtual)
        best_index = candidates[0]
        best_score = -math.inf

        for child_index in candidates:
            child_visits = self._effective_visits(child_index, virtual)
            if child_visits == 0:
                return child_index
            score = self._child_score(self.nodes[child_index], parent_visits, child_visits)
            # Strict comparison keeps the earliest-inserted child on ties
            if score > best_score:
                best_index, best_score = child_index, score

        return best_index

    def _child_score(self, child: Node, parent_visits: int, child_visits: int) -> float:
        if self.selection_policy is SelectionPolicy.THOMPSON:
            return BeliefStore.sample(child.belief, self.rng)

        exploitation = BeliefStore.mean(child.belief)
        exploration = self.exploration_constant * math.sqrt(
            math.log(max(parent_visits, 1)) / child_visits
        )
        return exploitation + exploration

    # ------------------------------------------------------------------
    # Backpropagation
    # ------------------------------------------------------------------

    def backpropagate(self, index: int, reward: float) -> None:
        """Add one visit and ``reward`` to the node and each of its ancestors"""
        current: int | None = index
        while current is not None:
            node = self.nodes[current]
            node.visits += 1
            node.cumulative_value += reward
            current = node.parent
