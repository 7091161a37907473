"""QD+ approximation of the early-exercise boundaries.

For a put with ``omega = 2(r-q)/sigma^2`` and ``h(tau) = 1 - exp(-r tau)``
the boundary level ``S*`` at each time-to-maturity solves

.. math::

    f(S) = S\\,(1 - e^{-q\\tau}\\Phi(-d_1)) + (\\lambda + c_0)(K - S - p_E(S)) = 0

where ``lambda`` is a root of ``lambda^2 + (omega-1) lambda - 2r/(sigma^2 h) = 0``
and ``c_0`` is the QD+ correction.  The negative root gives the upper
boundary and the positive root the lower one, which exists for a put with
``q < r < 0``.  Calls are handled through put-call duality,
``B_call = K^2 / B_put`` with rate and dividend swapped; the reflected
put's own rates decide whether one or two curves are solved for.

References
----------
- Li, M. "Analytical approximations for the critical stock prices of
  American options: a performance comparison", *Review of Derivatives
  Research* 13 (2010).
- Healy, J. "Pricing American options under negative rates",
  *Journal of Computational Finance* 25 (2021).
"""

from __future__ import annotations

import logging
import math
from statistics import NormalDist

import numpy as np

from .core import (
    BoundaryCurve, ContractParameters, DoubleBoundaryResult, PUT,
)
from .boundary import collapse_after_crossing, isotonic, locate_crossing
from .regime import classify_regime, early_exercise_never_optimal
from .settings import (
    BOUNDARY_EDGE, BOUNDARY_FLOOR, DEFAULT_SETTINGS, SolverSettings,
)

__all__ = [
    "characteristic_roots",
    "super_halley",
    "qdplus_boundaries",
]

logger = logging.getLogger(__name__)

_nd = NormalDist()

_UPPER, _LOWER = "upper", "lower"

# ---------------------------------------------------------------------------
# Characteristic equation
# ---------------------------------------------------------------------------

def _h(rate: float, tau: float) -> float:
    return -math.expm1(-rate * tau)


def _rate_over_h(rate: float, tau: float) -> float:
    """``r / h(tau)``, continuous through ``r = 0`` where it tends to 1/tau."""
    if abs(rate * tau) < 1e-12:
        return 1.0 / tau
    return rate / _h(rate, tau)


def characteristic_roots(rate: float, dividend: float, volatility: float,
                         tau: float) -> tuple[float, float, float]:
    """Roots of the QD+ quadratic at time-to-maturity *tau*.

    Returns
    -------
    (lam_neg, lam_pos, sqrt_disc)
        The negative (upper-boundary) root, the positive (lower-boundary)
        root and the square root of the discriminant.  A negative
        discriminant falls back to the real part ``-(omega-1)/2`` of the
        complex pair, split by +/- 1/2 so the branches stay distinct; the
        returned ``sqrt_disc`` is then 0.
    """
    s2 = volatility * volatility
    omega = 2.0 * (rate - dividend) / s2
    disc = (omega - 1.0) ** 2 + 8.0 * _rate_over_h(rate, tau) / s2
    if not math.isfinite(disc) or disc < 0.0:
        real = -0.5 * (omega - 1.0)
        logger.debug("negative discriminant %.3e at tau=%.4f, using real part", disc, tau)
        return real - 0.5, real + 0.5, 0.0
    root = math.sqrt(disc)
    return 0.5 * (-(omega - 1.0) - root), 0.5 * (-(omega - 1.0) + root), root


# ---------------------------------------------------------------------------
# Root iteration
# ---------------------------------------------------------------------------

def super_halley(func, x0: float, lo: float, hi: float, *,
                 tol: float = 1e-8, max_iter: int = 10) -> tuple[float, bool]:
    """Cubically convergent root iteration on a bracket.

    *func* returns ``(f, f', f'')`` at a point.  Each step is
    ``x - (f/f') / (1 - f f'' / (2 f'^2))``, falling back to a Newton step
    when the correction factor degenerates.  Iterates are clamped into
    ``[lo, hi]``.  Never raises; returns ``(last_iterate, converged)``.
    """
    x = min(max(x0, lo), hi)
    for _ in range(max_iter):
        f, df, d2f = func(x)
        if not (math.isfinite(f) and math.isfinite(df)) or df == 0.0:
            return x, False
        newton = f / df
        denom = 1.0 - f * d2f / (2.0 * df * df)
        step = newton / denom if math.isfinite(denom) and abs(denom) > 1e-12 else newton
        x_new = min(max(x - step, lo), hi)
        if abs(x_new - x) <= tol * max(1.0, abs(x)):
            # stalled on the bracket edge is not a root
            pinned = x_new <= lo or x_new >= hi
            return x_new, not pinned or abs(f) <= tol
        x = x_new
    return x, False


def _boundary_function(S, K, tau, r, q, sigma, lam, lam_prime, sqrt_disc):
    """f, f', f'' of the QD+ put equation with the correction c0 frozen at S."""
    sq = sigma * math.sqrt(tau)
    d1 = (math.log(S / K) + (r - q + 0.5 * sigma * sigma) * tau) / sq
    d2 = d1 - sq
    dq = math.exp(-q * tau)
    dr = math.exp(-r * tau)
    N_md1 = _nd.cdf(-d1)
    n_d1 = _nd.pdf(d1)

    p = K * dr * _nd.cdf(-d2) - S * dq * N_md1
    e = K - S - p                                  # early-exercise gap

    c0 = 0.0
    if r != 0.0 and sqrt_disc > 0.0 and abs(e) > 1e-12:
        h = _h(r, tau)
        alpha = 2.0 * r / (sigma * sigma)
        theta = (-S * dq * n_d1 * sigma / (2.0 * math.sqrt(tau))
                 + r * K * dr * _nd.cdf(-d2)
                 - q * S * dq * N_md1)
        denom = 2.0 * lam + 2.0 * (r - q) / (sigma * sigma) - 1.0
        c0 = -((1.0 - h) * alpha / denom) * (
            1.0 / h - math.exp(r * tau) * theta / (r * e) + lam_prime / denom
        )
        if not math.isfinite(c0):
            c0 = 0.0
        c0 = min(max(c0, -abs(lam)), abs(lam))
    lam_eff = lam + c0

    a = S * (1.0 - dq * N_md1)
    da = 1.0 - dq * N_md1 + dq * n_d1 / sq
    d2a = dq * n_d1 / (S * sq) * (1.0 - d1 / sq)
    de = -1.0 + dq * N_md1
    d2e = -dq * n_d1 / (S * sq)

    return a + lam_eff * e, da + lam_eff * de, d2a + lam_eff * d2e


def _solve_level(branch: str, seed: float, tau: float, params: ContractParameters,
                 settings: SolverSettings) -> tuple[float, bool]:
    K, r, q, sigma = params.strike, params.rate, params.dividend, params.volatility
    lam_neg, lam_pos, sqrt_disc = characteristic_roots(r, q, sigma, tau)
    if branch == _UPPER:
        lam = lam_neg
        sign = -1.0
    else:
        lam = lam_pos
        sign = 1.0
    lam_prime = 0.0
    if r != 0.0 and sqrt_disc > 0.0:
        h = _h(r, tau)
        alpha = 2.0 * r / (sigma * sigma)
        lam_prime = -sign * alpha / (h * h * sqrt_disc)

    lo, hi = BOUNDARY_FLOOR * K, K * (1.0 - BOUNDARY_EDGE)
    return super_halley(
        lambda s: _boundary_function(s, K, tau, r, q, sigma, lam, lam_prime, sqrt_disc),
        seed, lo, hi, tol=settings.qd_tolerance, max_iter=settings.qd_max_iterations,
    )


# ---------------------------------------------------------------------------
# Curves
# ---------------------------------------------------------------------------

def _put_double(put: ContractParameters, settings: SolverSettings):
    K, T = put.strike, put.maturity
    n = settings.collocation_points
    taus = np.linspace(0.0, T, n)
    upper = np.empty(n)
    lower = np.empty(n)
    upper[0] = K * (1.0 - BOUNDARY_EDGE)
    lower[0] = K * put.rate / put.dividend
    misses = 0
    for i in range(1, n):
        upper[i], ok_u = _solve_level(_UPPER, upper[i - 1], taus[i], put, settings)
        lower[i], ok_l = _solve_level(_LOWER, lower[i - 1], taus[i], put, settings)
        misses += (not ok_u) + (not ok_l)
    if misses:
        logger.debug("QD+ iteration cap hit at %d of %d points", misses, 2 * (n - 1))

    hi = K * (1.0 - BOUNDARY_EDGE)
    upper = np.clip(isotonic(upper, increasing=False), BOUNDARY_FLOOR * K, hi)
    lower = np.clip(isotonic(lower, increasing=True), BOUNDARY_FLOOR * K, hi)

    crossing = locate_crossing(taus, upper, lower, tolerance=settings.crossing_tolerance)
    upper, lower = collapse_after_crossing(taus, upper, lower, crossing)
    return taus, upper, lower, crossing


def _put_single(put: ContractParameters, settings: SolverSettings):
    K, T = put.strike, put.maturity
    n = settings.collocation_points
    taus = np.linspace(0.0, T, n)
    upper = np.empty(n)
    if put.dividend > 0.0 and put.rate < put.dividend:
        upper[0] = K * max(put.rate / put.dividend, BOUNDARY_FLOOR)
    else:
        upper[0] = K * (1.0 - BOUNDARY_EDGE)
    for i in range(1, n):
        upper[i], _ = _solve_level(_UPPER, upper[i - 1], taus[i], put, settings)
    upper = np.clip(isotonic(upper, increasing=False),
                    BOUNDARY_FLOOR * K, K * (1.0 - BOUNDARY_EDGE))
    return taus, upper


def _valid(levels: np.ndarray, strike: float) -> bool:
    return bool(np.all(np.isfinite(levels)) and np.all(levels > 0.0)
                and np.all(levels < strike))


def qdplus_boundaries(
    params: ContractParameters,
    settings: SolverSettings = DEFAULT_SETTINGS,
) -> DoubleBoundaryResult:
    """QD+ boundary curves for *params* (calls via duality).

    Never raises for a valid contract.  Returns a result with
    ``method == "qdplus"``; ``lower`` is ``None`` when the contract has a
    single finite boundary (so for every call labelled double-boundary) and
    both curves are ``None`` when exercise is never optimal.
    """
    regime = classify_regime(params.rate, params.dividend, params.is_call)
    if early_exercise_never_optimal(params.rate, params.dividend, params.is_call):
        return DoubleBoundaryResult(None, None, regime=regime, method="none")

    # put with the same boundaries (up to reflection through K)
    put = params.replace(kind=PUT, rate=params.dividend, dividend=params.rate) \
        if params.is_call else params
    K = put.strike

    if put.dividend < put.rate < 0.0:
        taus, upper, lower, crossing = _put_double(put, settings)
        valid = _valid(upper, K) and _valid(lower, K) and bool(np.all(upper >= lower))
        up = BoundaryCurve.from_ascending(taus, upper)
        lo = BoundaryCurve.from_ascending(taus, lower)
        if params.is_call:
            up, lo = lo.mirrored(K), up.mirrored(K)
        return DoubleBoundaryResult(
            upper=up, lower=lo, crossing_time=crossing, is_valid=valid,
            regime=regime, qd_upper=up, qd_lower=lo, method="qdplus",
        )

    taus, upper = _put_single(put, settings)
    curve = BoundaryCurve.from_ascending(taus, upper)
    if params.is_call:
        curve = curve.mirrored(K)
    return DoubleBoundaryResult(
        upper=curve, lower=None, is_valid=_valid(upper, K), regime=regime,
        qd_upper=curve, method="qdplus",
    )
