"""
Special functions for Beta-Bernoulli belief models

Everything here is implemented from scratch on top of ``math`` so the search
core has no dependency on a statistics library. The functions are called on
the hot path of every iteration, so out-of-domain arguments do not raise by
default: NaN propagates as NaN, and any other invalid argument is clamped to
the nearest valid boundary with a logged warning. Pass ``strict=True`` to get
a NumericDomainError instead.
"""

import logging
import math
import random
from dataclasses import dataclass

from autodiscovery.exceptions import NumericDomainError

logger = logging.getLogger(__name__)

# Lanczos approximation, g = 7, n = 9
LANCZOS_G = 7.0
LANCZOS_COEFFICIENTS = (
    0.99999999999980993,
    676.5203681218851,
    -1259.1392167224028,
    771.32342877765313,
    -176.61502916214059,
    12.507343278686905,
    -0.13857109526572012,
    9.9843695780195716e-6,
    1.5056327351493116e-7,
)
_HALF_LOG_TWO_PI = 0.5 * math.log(2.0 * math.pi)

# Digamma: shift arguments up to this value before using the asymptotic series
DIGAMMA_ASYMPTOTIC_THRESHOLD = 6.0

# Regularized incomplete beta (modified Lentz continued fraction)
INCOMPLETE_BETA_MAX_ITERATIONS = 200
INCOMPLETE_BETA_TOLERANCE = 1e-12
_FPMIN = 1e-300

# Smallest shape parameter accepted after clamping
MIN_SHAPE = 1e-12


@dataclass(frozen=True)
class IncompleteBetaResult:
    """Value of the regularized incomplete beta plus convergence information"""

    value: float
    converged: bool
    iterations: int


def _domain_error(message: str, strict: bool) -> None:
    if strict:
        raise NumericDomainError(message)
    logger.warning(f"{message}; clamping to the nearest valid value")


def _positive(value: float, name: str, strict: bool) -> float:
    if value > 0:
        return value
    _domain_error(f"{name}={value} must be > 0", strict)
    return MIN_SHAPE


def _unit_interval(value: float, name: str, strict: bool) -> float:
    if 0.0 <= value <= 1.0:
        return value
    _domain_error(f"{name}={value} must lie in [0, 1]", strict)
    return min(max(value, 0.0), 1.0)


def log_gamma(x: float, strict: bool = False) -> float:
    """Natural log of the Gamma function for x > 0 (Lanczos approximation)"""
    if math.isnan(x):
        return math.nan
    x = _positive(x, "x", strict)
    if math.isinf(x):
        return math.inf

    if x < 0.5:
        # Reflection: Gamma(x) * Gamma(1 - x) = pi / sin(pi * x)
        return math.log(math.pi / math.sin(math.pi * x)) - log_gamma(1.0 - x)

    x -= 1.0
    series = LANCZOS_COEFFICIENTS[0]
    for i in range(1, len(LANCZOS_COEFFICIENTS)):
        series += LANCZOS_COEFFICIENTS[i] / (x + i)
    t = x + LANCZOS_G + 0.5
    return _HALF_LOG_TWO_PI + (x + 0.5) * math.log(t) - t + math.log(series)


def digamma(x: float, strict: bool = False) -> float:
    """Digamma function psi(x) for x > 0"""
    if math.isnan(x):
        return math.nan
    x = _positive(x, "x", strict)
    if math.isinf(x):
        return math.inf

    result = 0.0
    # psi(x) = psi(x + 1) - 1/x
    while x < DIGAMMA_ASYMPTOTIC_THRESHOLD:
        result -= 1.0 / x
        x += 1.0

    inv = 1.0 / x
    inv2 = inv * inv
    series = inv2 * (
        1.0 / 12.0
        - inv2 * (1.0 / 120.0 - inv2 * (1.0 / 252.0 - inv2 * (1.0 / 240.0 - inv2 / 132.0)))
    )
    return result + math.log(x) - 0.5 * inv - series


def log_beta(a: float, b: float, strict: bool = False) -> float:
    """Natural log of the Beta function"""
    if math.isnan(a) or math.isnan(b):
        return math.nan
    a = _positive(a, "a", strict)
    b = _positive(b, "b", strict)
    return log_gamma(a) + log_gamma(b) - log_gamma(a + b)


def beta_function(a: float, b: float, strict: bool = False) -> float:
    """Beta function B(a, b)"""
    return math.exp(log_beta(a, b, strict=strict))


def _beta_continued_fraction(x: float, a: float, b: float) -> tuple[float, bool, int]:
    """Continued fraction for the incomplete beta, evaluated with modified Lentz"""
    qab = a + b
    qap = a + 1.0
    qam = a - 1.0

    c = 1.0
    d = 1.0 - qab * x / qap
    if abs(d) < _FPMIN:
        d = _FPMIN
    d = 1.0 / d
    h = d

    for m in range(1, INCOMPLETE_BETA_MAX_ITERATIONS + 1):
        m2 = 2 * m

        # Even step
        aa = m * (b - m) * x / ((qam + m2) * (a + m2))
        d = 1.0 + aa * d
        if abs(d) < _FPMIN:
            d = _FPMIN
        c = 1.0 + aa / c
        if abs(c) < _FPMIN:
            c = _FPMIN
        d = 1.0 / d
        h *= d * c

        # Odd step
        aa = -(a + m) * (qab + m) * x / ((a + m2) * (qap + m2))
        d = 1.0 + aa * d
        if abs(d) < _FPMIN:
            d = _FPMIN
        c = 1.0 + aa / c
        if abs(c) < _FPMIN:
            c = _FPMIN
        d = 1.0 / d
        delta = d * c
        h *= delta

        if abs(delta - 1.0) < INCOMPLETE_BETA_TOLERANCE:
            return h, True, m

    return h, False, INCOMPLETE_BETA_MAX_ITERATIONS


def incomplete_beta_with_status(
    x: float, a: float, b: float, strict: bool = False
) -> IncompleteBetaResult:
    """
    Regularized incomplete beta I_x(a, b) with convergence information.

    The continued fraction is capped at INCOMPLETE_BETA_MAX_ITERATIONS; when it
    does not reach INCOMPLETE_BETA_TOLERANCE the last iterate is returned with
    ``converged=False``.
    """
    if math.isnan(x) or math.isnan(a) or math.isnan(b):
        return IncompleteBetaResult(math.nan, False, 0)
    a = _positive(a, "a", strict)
    b = _positive(b, "b", strict)
    x = _unit_interval(x, "x", strict)

    if x == 0.0:
        return IncompleteBetaResult(0.0, True, 0)
    if x == 1.0:
        return IncompleteBetaResult(1.0, True, 0)

    log_front = a * math.log(x) + b * math.log1p(-x) - log_beta(a, b)

    # The fraction converges fastest below the mean; use symmetry above it
    if x < (a + 1.0) / (a + b + 2.0):
        fraction, converged, iterations = _beta_continued_fraction(x, a, b)
        value = math.exp(log_front) * fraction / a
    else:
        fraction, converged, iterations = _beta_continued_fraction(1.0 - x, b, a)
        value = 1.0 - math.exp(log_front) * fraction / b

    return IncompleteBetaResult(min(max(value, 0.0), 1.0), converged, iterations)


def incomplete_beta(x: float, a: float, b: float, strict: bool = False) -> float:
    """Regularized incomplete beta I_x(a, b)"""
    result = incomplete_beta_with_status(x, a, b, strict=strict)
    if not result.converged and not math.isnan(result.value):
        logger.warning(
            f"Incomplete beta did not converge in {result.iterations} iterations "
            f"(x={x}, a={a}, b={b}); returning low-precision value {result.value:.6g}"
        )
    return result.value


def beta_cdf(x: float, a: float, b: float, strict: bool = False) -> float:
    """Cumulative distribution function of Beta(a, b)"""
    return incomplete_beta(x, a, b, strict=strict)


def beta_pdf(x: float, a: float, b: float, strict: bool = False) -> float:
    """Density of Beta(a, b); zero outside the support"""
    if math.isnan(x) or math.isnan(a) or math.isnan(b):
        return math.nan
    a = _positive(a, "a", strict)
    b = _positive(b, "b", strict)
    if x < 0.0 or x > 1.0:
        return 0.0

    if x == 0.0:
        if a < 1.0:
            return math.inf
        return math.exp(-log_beta(a, b)) if a == 1.0 else 0.0
    if x == 1.0:
        if b < 1.0:
            return math.inf
        return math.exp(-log_beta(a, b)) if b == 1.0 else 0.0

    return math.exp((a - 1.0) * math.log(x) + (b - 1.0) * math.log1p(-x) - log_beta(a, b))


def beta_ppf(q: float, a: float, b: float, strict: bool = False) -> float:
    """Quantile function of Beta(a, b), by bisection on the CDF"""
    if math.isnan(q) or math.isnan(a) or math.isnan(b):
        return math.nan
    a = _positive(a, "a", strict)
    b = _positive(b, "b", strict)
    q = _unit_interval(q, "q", strict)
    if q == 0.0:
        return 0.0
    if q == 1.0:
        return 1.0

    lo, hi = 0.0, 1.0
    for _ in range(INCOMPLETE_BETA_MAX_ITERATIONS):
        mid = 0.5 * (lo + hi)
        if incomplete_beta_with_status(mid, a, b).value < q:
            lo = mid
        else:
            hi = mid
        if hi - lo < INCOMPLETE_BETA_TOLERANCE:
            break
    return 0.5 * (lo + hi)


def _sample_gamma(shape: float, rng: random.Random) -> float:
    """Gamma(shape, 1) variate (Marsaglia and Tsang)"""
    if shape < 1.0:
        # Boost: Gamma(a) = Gamma(a + 1) * U^(1/a)
        u = rng.random()
        return _sample_gamma(shape + 1.0, rng) * u ** (1.0 / shape)

    d = shape - 1.0 / 3.0
    c = 1.0 / math.sqrt(9.0 * d)
    while True:
        x = rng.gauss(0.0, 1.0)
        v = 1.0 + c * x
        if v <= 0.0:
            continue
        v = v * v * v
        u = rng.random()
        if u < 1.0 - 0.0331 * x**4:
            return d * v
        if u > 0.0 and math.log(u) < 0.5 * x * x + d * (1.0 - v + math.log(v)):
            return d * v


def sample_beta(
    a: float, b: float, rng: random.Random | None = None, strict: bool = False
) -> float:
    """
    Draw from Beta(a, b) as X / (X + Y) with X ~ Gamma(a), Y ~ Gamma(b).

    Args:
        a, b: Shape parameters (> 0)
        rng: Random source; pass a seeded ``random.Random`` for reproducible draws
    """
    if math.isnan(a) or math.isnan(b):
        return math.nan
    a = _positive(a, "a", strict)
    b = _positive(b, "b", strict)
    rng = rng or random.Random()

    x = _sample_gamma(a, rng)
    y = _sample_gamma(b, rng)
    total = x + y
    if total <= 0.0:
        # Both variates underflowed (tiny shapes): the mass sits at the endpoints
        return 1.0 if rng.random() < a / (a + b) else 0.0
    return x / total
