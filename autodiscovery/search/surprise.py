"""
Bayesian surprise scoring

A hypothesis is interesting when the evidence moved our belief about it. The
evaluator turns a node's prior/posterior pair into a scalar reward using one of
three measures:

- ``belief``: absolute shift of the mean, |E[posterior] - E[prior]|
- ``kl``: KL(posterior || prior) between the two Beta distributions
- ``belief_and_kl``: w * belief + (1 - w) * kl with an explicit weight w
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum

from autodiscovery.search.belief import BeliefStore, BetaBelief
from autodiscovery.search.special_functions import digamma, log_beta

logger = logging.getLogger(__name__)


class RewardMode(str, Enum):
    BELIEF = "belief"
    KL = "kl"
    BELIEF_AND_KL = "belief_and_kl"


@dataclass(frozen=True)
class SurpriseScore:
    """Breakdown of a surprise evaluation"""

    belief_shift: float
    kl_divergence: float
    score: float
    surprising: bool


def kl_divergence_beta(
    post_alpha: float, post_beta: float, prior_alpha: float, prior_beta: float
) -> float:
    """
    KL(Beta(post_alpha, post_beta) || Beta(prior_alpha, prior_beta)) in nats.

    Closed form:
        ln B(a2, b2) - ln B(a1, b1)
        + (a1 - a2) psi(a1) + (b1 - b2) psi(b1) + (a2 - a1 + b2 - b1) psi(a1 + b1)
    """
    if post_alpha == prior_alpha and post_beta == prior_beta:
        return 0.0

    kl = (
        log_beta(prior_alpha, prior_beta)
        - log_beta(post_alpha, post_beta)
        + (post_alpha - prior_alpha) * digamma(post_alpha)
        + (post_beta - prior_beta) * digamma(post_beta)
        + (prior_alpha - post_alpha + prior_beta - post_beta) * digamma(post_alpha + post_beta)
    )
    if math.isnan(kl):
        return kl
    # Rounding can push tiny divergences slightly below zero
    return max(kl, 0.0)


def belief_kl_divergence(belief: BetaBelief) -> float:
    """KL divergence of a belief's posterior from its own prior"""
    return kl_divergence_beta(
        belief.posterior_alpha, belief.posterior_beta, belief.prior_alpha, belief.prior_beta
    )


def belief_shift(belief: BetaBelief) -> float:
    """Absolute change of the mean belief caused by the evidence"""
    return abs(BeliefStore.mean(belief) - BeliefStore.prior_mean(belief))


class SurpriseEvaluator:
    """Scores beliefs according to the configured reward mode"""

    def __init__(
        self,
        reward_mode: RewardMode | str = RewardMode.KL,
        belief_kl_weight: float = 0.5,
        surprisal_threshold: float = 0.5,
    ):
        self.reward_mode = RewardMode(reward_mode)
        if not 0.0 <= belief_kl_weight <= 1.0:
            raise ValueError(f"belief_kl_weight must be in [0, 1], got {belief_kl_weight}")
        self.belief_kl_weight = belief_kl_weight
        self.surprisal_threshold = surprisal_threshold

    def score(self, belief: BetaBelief) -> float:
        """Scalar reward for a belief"""
        return self.evaluate(belief).score

    def evaluate(self, belief: BetaBelief) -> SurpriseScore:
        shift = belief_shift(belief)
        kl = belief_kl_divergence(belief)

        if self.reward_mode is RewardMode.BELIEF:
            score = shift
        elif self.reward_mode is RewardMode.KL:
            score = kl
        else:
            w = self.belief_kl_weight
            score = w * shift + (1.0 - w) * kl

        if math.isnan(score):
            logger.warning(f"Surprise score is NaN for belief {belief}; treating as 0")
            score = 0.0

        return SurpriseScore(
            belief_shift=shift,
            kl_divergence=kl if not math.isnan(kl) else 0.0,
            score=score,
            surprising=self.is_surprising(score),
        )

    def is_surprising(self, score: float) -> bool:
        return score >= self.surprisal_threshold
