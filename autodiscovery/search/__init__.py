"""
Bayesian MCTS search core

- special_functions: log-gamma, digamma, incomplete beta and Beta sampling
- belief: Beta-Bernoulli belief updates
- surprise: Bayesian surprise scoring
- tree: arena-based search tree with UCB1 selection and progressive widening
"""

from autodiscovery.search.belief import BeliefStore, BetaBelief
from autodiscovery.search.surprise import RewardMode, SurpriseEvaluator, SurpriseScore
from autodiscovery.search.tree import Confidence, Node, NodeState, SearchTree, SelectionPolicy

__all__ = [
    "BeliefStore",
    "BetaBelief",
    "Confidence",
    "Node",
    "NodeState",
    "RewardMode",
    "SearchTree",
    "SelectionPolicy",
    "SurpriseEvaluator",
    "SurpriseScore",
]
