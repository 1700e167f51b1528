"""
Beta belief model for hypotheses

Each node carries a Beta(alpha, beta) belief that its hypothesis is true.
The prior is fixed when the node is created; evidence only ever adds to the
posterior parameters (conjugate Beta-Bernoulli update with fractional counts).
"""

import logging
import math
import random
from dataclasses import dataclass
from typing import Any

from autodiscovery.search.special_functions import beta_ppf, sample_beta

logger = logging.getLogger(__name__)

DEFAULT_PRIOR_ALPHA = 0.5
DEFAULT_PRIOR_BETA = 0.5


@dataclass(frozen=True)
class BetaBelief:
    """Prior and posterior Beta parameters of a single hypothesis"""

    prior_alpha: float
    prior_beta: float
    posterior_alpha: float
    posterior_beta: float

    @property
    def observations(self) -> float:
        """Total (possibly fractional) evidence applied on top of the prior"""
        return (self.posterior_alpha - self.prior_alpha) + (self.posterior_beta - self.prior_beta)

    def to_dict(self) -> dict[str, float]:
        return {
            "prior_alpha": self.prior_alpha,
            "prior_beta": self.prior_beta,
            "posterior_alpha": self.posterior_alpha,
            "posterior_beta": self.posterior_beta,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BetaBelief":
        return cls(
            prior_alpha=float(data["prior_alpha"]),
            prior_beta=float(data["prior_beta"]),
            posterior_alpha=float(data.get("posterior_alpha", data["prior_alpha"])),
            posterior_beta=float(data.get("posterior_beta", data["prior_beta"])),
        )


def _beta_mean(alpha: float, beta: float) -> float:
    return alpha / (alpha + beta)


def _clean_count(value: float, name: str) -> float:
    value = float(value)
    if math.isfinite(value) and value >= 0.0:
        return value
    logger.warning(f"Ignoring invalid evidence count {name}={value}; using 0")
    return 0.0


class BeliefStore:
    """
    Update rules and summary statistics for Beta beliefs.

    The store holds no per-node state itself: beliefs live on the tree nodes and
    every operation here is a pure function of its arguments.
    """

    def __init__(
        self,
        prior_alpha: float = DEFAULT_PRIOR_ALPHA,
        prior_beta: float = DEFAULT_PRIOR_BETA,
        sample_weight: float = 1.0,
    ):
        if prior_alpha <= 0 or prior_beta <= 0:
            raise ValueError(f"Prior parameters must be > 0, got ({prior_alpha}, {prior_beta})")
        self.prior_alpha = prior_alpha
        self.prior_beta = prior_beta
        self.sample_weight = sample_weight

    def initialize(
        self, prior_alpha: float | None = None, prior_beta: float | None = None
    ) -> BetaBelief:
        """Create a belief whose posterior equals its prior"""
        alpha = self.prior_alpha if prior_alpha is None else prior_alpha
        beta = self.prior_beta if prior_beta is None else prior_beta
        if alpha <= 0 or beta <= 0:
            raise ValueError(f"Prior parameters must be > 0, got ({alpha}, {beta})")
        return BetaBelief(alpha, beta, alpha, beta)

    def inherit(self, parent: BetaBelief) -> BetaBelief:
        """
        Starting belief for a refinement of ``parent``: the store prior, with the
        parent's posterior carried over as the starting posterior.
        """
        return BetaBelief(
            prior_alpha=self.prior_alpha,
            prior_beta=self.prior_beta,
            posterior_alpha=max(parent.posterior_alpha, self.prior_alpha),
            posterior_beta=max(parent.posterior_beta, self.prior_beta),
        )

    def update(self, belief: BetaBelief, successes: float, failures: float) -> BetaBelief:
        """Apply one batch of evidence on top of the current posterior"""
        successes = _clean_count(successes, "successes")
        failures = _clean_count(failures, "failures")
        return BetaBelief(
            prior_alpha=belief.prior_alpha,
            prior_beta=belief.prior_beta,
            posterior_alpha=belief.posterior_alpha + successes,
            posterior_beta=belief.posterior_beta + failures,
        )

    def update_from_probability(
        self, belief: BetaBelief, probability: float, weight: float | None = None
    ) -> BetaBelief:
        """Apply an elicited probability as ``w*p`` successes and ``w*(1-p)`` failures"""
        weight = self.sample_weight if weight is None else weight
        probability = min(max(float(probability), 0.0), 1.0)
        return self.update(belief, weight * probability, weight * (1.0 - probability))

    @staticmethod
    def mean(belief: BetaBelief) -> float:
        """Posterior mean"""
        return _beta_mean(belief.posterior_alpha, belief.posterior_beta)

    @staticmethod
    def prior_mean(belief: BetaBelief) -> float:
        return _beta_mean(belief.prior_alpha, belief.prior_beta)

    @staticmethod
    def variance(belief: BetaBelief) -> float:
        """Posterior variance"""
        a, b = belief.posterior_alpha, belief.posterior_beta
        total = a + b
        return a * b / (total * total * (total + 1.0))

    @staticmethod
    def sample(belief: BetaBelief, rng: random.Random | None = None) -> float:
        """Draw a plausible truth probability from the posterior"""
        return sample_beta(belief.posterior_alpha, belief.posterior_beta, rng)

    @staticmethod
    def credible_interval(belief: BetaBelief, mass: float = 0.95) -> tuple[float, float]:
        """Equal-tailed posterior credible interval"""
        tail = (1.0 - mass) / 2.0
        a, b = belief.posterior_alpha, belief.posterior_beta
        return beta_ppf(tail, a, b), beta_ppf(1.0 - tail, a, b)
