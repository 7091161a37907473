"""Kim integral equation: boundary refinement and early-exercise premium.

For a put the value at a boundary level ``B`` must equal ``K - B``.
Written out with the Kim representation this gives, at each
time-to-maturity ``tau``,

.. math::

    K N(B) = B D(B), \\qquad
    N = 1 - e^{-r\\tau}\\Phi(-d_2(B,K,\\tau)) - \\int_0^\\tau r e^{-ru} P_2(B,u)\\,du,
    \\qquad
    D = 1 - e^{-q\\tau}\\Phi(-d_1(B,K,\\tau)) - \\int_0^\\tau q e^{-qu} P_1(B,u)\\,du

where ``P_{1,2}(B, u) = Phi(-d(B, U(tau-u), u)) - Phi(-d(B, L(tau-u), u))``
is the (share / money measure) probability of sitting between the two
boundaries ``u`` years later.  With a single boundary the ``L`` term is
dropped.

The equations are solved by Newton passes in FP-B' order.  The upper
sweep of a pass takes the upper part of the joint Newton step; the lower
sweep then re-linearises the lower equations around the upper curve that
sweep has just written.  Each sweep writes into a fresh array and every
level moves by at most ``kim_step_limit`` of itself per pass.

References
----------
- Kim, I.J. "The analytic valuation of American options", *Review of
  Financial Studies* 3 (1990).
- Andersen, L., Lake, M., Offengelder, D. "High-performance American
  option pricing", *Journal of Computational Finance* 20 (2016).
- Healy, J. "Pricing American options under negative rates",
  *Journal of Computational Finance* 25 (2021).
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from scipy.stats import norm

from .core import BoundaryCurve, ContractParameters, DoubleBoundaryResult, PUT
from .boundary import collapse_after_crossing, isotonic, locate_crossing
from .errors import InvalidInputError
from .qdplus import qdplus_boundaries
from .settings import (
    BOUNDARY_EDGE, BOUNDARY_FLOOR, DEFAULT_SETTINGS, EPSILON_DENOMINATOR,
    SolverSettings,
)

__all__ = [
    "premium_integrals",
    "boundary_residuals",
    "refine_boundaries",
    "early_exercise_premium",
]

logger = logging.getLogger(__name__)

_N = norm.cdf
_n = norm.pdf


# ---------------------------------------------------------------------------
# Kernels
# ---------------------------------------------------------------------------

def _quadrature(order: int) -> tuple[np.ndarray, np.ndarray]:
    """Gauss-Legendre nodes and weights mapped onto (0, 1)."""
    x, w = np.polynomial.legendre.leggauss(order)
    return 0.5 * (x + 1.0), 0.5 * w


def _integrals(levels, taus, grid, upper, lower, rate, dividend, volatility,
               order, slopes=False):
    s, w = _quadrature(order)
    tau = np.asarray(taus, dtype=float)[:, None]
    b = np.asarray(levels, dtype=float)[:, None]
    u = tau * s ** 2                       # clusters nodes near u = 0
    du = 2.0 * tau * s * w
    remaining = tau - u

    vol = volatility * np.sqrt(u)
    drift = (rate - dividend + 0.5 * volatility * volatility) * u
    wn = rate * np.exp(-rate * u) * du
    wd = dividend * np.exp(-dividend * u) * du

    m = b.shape[0]
    out = {"i_n": np.zeros(m), "i_d": np.zeros(m)}
    if slopes:
        out.update(di_n=np.zeros(m), di_d=np.zeros(m), remaining=remaining, edges=[])

    edges = [(upper, 1.0)] if lower is None else [(upper, 1.0), (lower, -1.0)]
    for curve, sign in edges:
        edge = np.interp(remaining, grid, curve)
        d1 = (np.log(b / edge) + drift) / vol
        d2 = d1 - vol
        out["i_n"] += sign * np.sum(wn * _N(-d2), axis=1)
        out["i_d"] += sign * np.sum(wd * _N(-d1), axis=1)
        if slopes:
            f1 = _n(d1) / vol
            f2 = _n(d2) / vol
            out["di_n"] -= sign * np.sum(wn * f2, axis=1) / b[:, 0]
            out["di_d"] -= sign * np.sum(wd * f1, axis=1) / b[:, 0]
            out["edges"].append((sign * wn * f2 / edge, sign * wd * f1 / edge))
    return out


def premium_integrals(
    levels: np.ndarray,
    taus: np.ndarray,
    grid: np.ndarray,
    upper: np.ndarray,
    lower: Optional[np.ndarray],
    rate: float,
    dividend: float,
    volatility: float,
    *,
    order: int = 32,
) -> tuple[np.ndarray, np.ndarray]:
    """Integral terms of N and D for each ``(levels[i], taus[i])`` pair.

    Parameters
    ----------
    levels, taus : ndarray, shape (m,)
        Evaluation points; every tau must be positive.
    grid, upper : ndarray, shape (n,)
        Boundary curve ordered by increasing time-to-maturity.
    lower : ndarray, shape (n,) or None
        Second boundary; ``None`` for a single-boundary put.

    Returns
    -------
    (i_n, i_d) : ndarray, shape (m,)
        ``int r e^{-ru} P_2 du`` and ``int q e^{-qu} P_1 du``.
    """
    out = _integrals(levels, taus, grid, upper, lower, rate, dividend, volatility, order)
    return out["i_n"], out["i_d"]


def _european_terms(levels, taus, strike, rate, dividend, volatility):
    """Non-integral parts of N and D, and their slopes in the level."""
    sq = volatility * np.sqrt(taus)
    d1 = (np.log(levels / strike) + (rate - dividend + 0.5 * volatility ** 2) * taus) / sq
    d2 = d1 - sq
    dr = np.exp(-rate * taus)
    dq = np.exp(-dividend * taus)
    return (1.0 - dr * _N(-d2), 1.0 - dq * _N(-d1),
            dr * _n(d2) / (levels * sq), dq * _n(d1) / (levels * sq))


def _spread(weights, remaining, grid):
    """Move per-node edge sensitivities onto the collocation levels.

    Edges are read with ``np.interp``, so a weight at ``remaining`` splits
    linearly between the two neighbouring grid points.
    """
    n = grid.size
    idx = np.clip(np.searchsorted(grid, remaining, side="right") - 1, 0, n - 2)
    frac = (remaining - grid[idx]) / (grid[idx + 1] - grid[idx])
    rows = np.broadcast_to(np.arange(weights.shape[0])[:, None], idx.shape)
    out = np.zeros((weights.shape[0], n))
    np.add.at(out, (rows, idx), weights * (1.0 - frac))
    np.add.at(out, (rows, idx + 1), weights * frac)
    return out


def _equations(put, grid, rows, levels, upper, lower, order):
    """Residual ``K N - B D`` at ``grid[rows]`` and its derivatives.

    Returns ``(residual, slope, jac_upper, jac_lower)``: *slope* is the
    derivative in the evaluation level alone, the Jacobians are taken with
    respect to ``upper[rows]`` and ``lower[rows]`` as they enter the
    integrals (``jac_lower`` is ``None`` without a lower curve).
    """
    K = put.strike
    taus = grid[rows]
    n0, d0, dn0, dd0 = _european_terms(levels, taus, K, put.rate, put.dividend,
                                       put.volatility)
    t = _integrals(levels, taus, grid, upper, lower, put.rate, put.dividend,
                   put.volatility, order, slopes=True)
    num = n0 - t["i_n"]
    den = d0 - t["i_d"]
    residual = K * num - levels * den
    slope = K * (dn0 - t["di_n"]) - den - levels * (dd0 - t["di_d"])
    blocks = [_spread(-K * gn + levels[:, None] * gd, t["remaining"], grid)[:, rows]
              for gn, gd in t["edges"]]
    return residual, slope, blocks[0], (blocks[1] if len(blocks) > 1 else None)


# ---------------------------------------------------------------------------
# Newton sweeps
# ---------------------------------------------------------------------------

def _sanitize(jac, residual):
    """Freeze degenerate equations so their level keeps its previous value."""
    jac = np.where(np.isfinite(jac), jac, 0.0)
    frozen = ~np.isfinite(residual) | (np.abs(np.diag(jac)) < EPSILON_DENOMINATOR)
    residual = np.where(frozen, 0.0, residual)
    if frozen.any():
        k = np.flatnonzero(frozen)
        jac[k, :] = 0.0
        jac[k, k] = 1.0
    return jac, residual, frozen


def _solve(matrix, rhs):
    try:
        x = np.linalg.solve(matrix, rhs)
    except np.linalg.LinAlgError:
        return None
    return x if np.all(np.isfinite(x)) else None


def _advance(levels, step, limit, strike):
    cap = limit * np.abs(levels)
    new = levels + np.clip(step, -cap, cap)
    return np.clip(new, BOUNDARY_FLOOR * strike, strike * (1.0 - BOUNDARY_EDGE))


def _upper_sweep(put, grid, rows, upper, lower, settings):
    """Upper part of the joint Newton step at ``(upper, lower)``."""
    order = settings.quadrature_order
    res_u, slope_u, a, b = _equations(put, grid, rows, upper[rows], upper, lower, order)
    a, res_u, frozen = _sanitize(a + np.diag(slope_u), res_u)

    step = None
    if lower is not None:
        res_l, slope_l, c, d = _equations(put, grid, rows, lower[rows], upper, lower, order)
        d, res_l, frozen_l = _sanitize(d + np.diag(slope_l), res_l)
        b = np.where(np.isfinite(b), b, 0.0)
        c = np.where(np.isfinite(c), c, 0.0)
        b[frozen, :] = 0.0
        c[frozen_l, :] = 0.0
        # Schur complement of the lower block
        x = _solve(d, np.column_stack([c, res_l]))
        if x is not None:
            step = _solve(a - b @ x[:, :-1], -(res_u - b @ x[:, -1]))
    if step is None:
        step = _solve(a, -res_u)

    new = upper.copy()
    if step is None:
        return new, rows.size
    new[rows] = _advance(upper[rows], step, settings.kim_step_limit, put.strike)
    return new, int(frozen.sum())


def _lower_sweep(put, grid, rows, upper_now, lower, settings):
    """Newton update of the lower curve against this pass's upper curve."""
    res_l, slope_l, _, d = _equations(put, grid, rows, lower[rows], upper_now, lower,
                                      settings.quadrature_order)
    d, res_l, frozen = _sanitize(d + np.diag(slope_l), res_l)
    step = _solve(d, -res_l)

    new = lower.copy()
    if step is None:
        return new, rows.size
    moved = _advance(lower[rows], step, settings.kim_step_limit, put.strike)
    new[rows] = np.minimum(moved, upper_now[rows])
    return new, int(frozen.sum())


def _active_rows(grid: np.ndarray, crossing: float) -> np.ndarray:
    """Interior collocation points short of the crossing time."""
    rows = np.arange(1, grid.size)
    if crossing > 0.0:
        rows = rows[grid[rows] < crossing]
    return rows


def _refine_put(put, grid, upper, lower, crossing, settings):
    K = put.strike
    rows = _active_rows(grid, crossing)
    converged = rows.size == 0
    passes = 0
    if not converged:
        for passes in range(1, settings.kim_max_passes + 1):
            upper_new, frozen_u = _upper_sweep(put, grid, rows, upper, lower, settings)
            change = np.max(np.abs(upper_new - upper))
            frozen_l = 0
            if lower is not None:
                lower_new, frozen_l = _lower_sweep(put, grid, rows, upper_new, lower, settings)
                change = max(change, np.max(np.abs(lower_new - lower)))
                lower = lower_new
            upper = upper_new
            if frozen_u or frozen_l:
                logger.debug("pass %d: %d upper / %d lower points kept their level",
                             passes, frozen_u, frozen_l)
            if change < settings.kim_tolerance * K:
                converged = True
                break
    if not converged:
        logger.debug("FP-B' stopped after %d passes without reaching %.1e",
                     passes, settings.kim_tolerance)

    upper = isotonic(upper, increasing=False)
    if lower is not None:
        lower = isotonic(lower, increasing=True)
        found = locate_crossing(grid, upper, lower, tolerance=settings.crossing_tolerance)
        if found > 0.0:
            crossing = found
        upper, lower = collapse_after_crossing(grid, upper, lower, crossing)
    return upper, lower, crossing, passes, converged


# ---------------------------------------------------------------------------
# Put side of a contract
# ---------------------------------------------------------------------------

def _reflected_put(params: ContractParameters) -> ContractParameters:
    """Put whose boundaries reflect through K onto those of *params*."""
    if not params.is_call:
        return params
    return params.replace(kind=PUT, rate=params.dividend, dividend=params.rate)


def _reflect(params, upper, lower):
    """Swap between call curves and reflected-put curves (an involution)."""
    if not params.is_call:
        return upper, lower
    K = params.strike
    if lower is None:
        return upper.mirrored(K), None
    return lower.mirrored(K), upper.mirrored(K)


def _put_arrays(params, result):
    up, lo = _reflect(params, result.upper, result.lower)
    grid, upper = up.ascending()
    lower = None if lo is None else lo.ascending()[1]
    return grid, upper, lower


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def refine_boundaries(
    params: ContractParameters,
    initial: DoubleBoundaryResult | None = None,
    settings: SolverSettings = DEFAULT_SETTINGS,
) -> DoubleBoundaryResult:
    """Solve the Kim integral equation starting from the QD+ curves.

    Parameters
    ----------
    params : ContractParameters
    initial : DoubleBoundaryResult, optional
        QD+ output for *params*; computed when omitted.
    settings : SolverSettings

    Returns
    -------
    DoubleBoundaryResult
        ``method == "qdplus+kim"`` whenever *initial* carries a curve; a
        single-boundary result keeps ``lower = None``.  Contracts that are
        never exercised early are returned as given.  Never raises for a
        valid contract; a pass cap hit is reported through ``converged``.
    """
    if initial is None:
        initial = qdplus_boundaries(params, settings)
    if initial.upper is None:
        return initial

    K = params.strike
    put = _reflected_put(params)
    grid, upper, lower = _put_arrays(params, initial)
    upper, lower, crossing, passes, converged = _refine_put(
        put, grid, upper, lower, initial.crossing_time, settings)

    valid = bool(np.all(np.isfinite(upper)) and np.all(upper > 0.0) and np.all(upper < K))
    if lower is not None:
        valid = valid and bool(np.all(np.isfinite(lower)) and np.all(lower > 0.0)
                               and np.all(upper >= lower))
    up = BoundaryCurve.from_ascending(grid, upper)
    lo = None if lower is None else BoundaryCurve.from_ascending(grid, lower)
    up, lo = _reflect(params, up, lo)

    return DoubleBoundaryResult(
        upper=up, lower=lo, crossing_time=crossing, is_valid=valid and initial.is_valid,
        regime=initial.regime, qd_upper=initial.upper, qd_lower=initial.lower,
        method="qdplus+kim", iterations=passes, converged=converged,
    )


def boundary_residuals(
    params: ContractParameters,
    result: DoubleBoundaryResult,
    settings: SolverSettings = DEFAULT_SETTINGS,
) -> tuple[np.ndarray, Optional[np.ndarray]]:
    """Mismatch ``K N/D - B`` of the Kim equation along *result*'s curves.

    Evaluated on the put side (calls through their reflected put) at every
    collocation point with ``tau > 0`` short of the crossing time.  Returns
    the upper residuals and the lower ones (``None`` for one boundary).
    """
    if result.upper is None:
        raise InvalidInputError("result carries no boundary curves")
    put = _reflected_put(params)
    grid, upper, lower = _put_arrays(params, result)
    rows = _active_rows(grid, result.crossing_time)

    out = []
    for curve in (upper, lower):
        if curve is None:
            out.append(None)
            continue
        levels, taus = curve[rows], grid[rows]
        n0, d0, _, _ = _european_terms(levels, taus, put.strike, put.rate,
                                       put.dividend, put.volatility)
        i_n, i_d = premium_integrals(levels, taus, grid, upper, lower, put.rate,
                                     put.dividend, put.volatility,
                                     order=settings.quadrature_order)
        out.append(put.strike * (n0 - i_n) / (d0 - i_d) - levels)
    return out[0], out[1]


def early_exercise_premium(
    put: ContractParameters,
    upper: BoundaryCurve,
    lower: Optional[BoundaryCurve],
    settings: SolverSettings = DEFAULT_SETTINGS,
) -> float:
    """Premium of an American put over its European value.

    ``K int r e^{-ru} P_2 du - S int q e^{-qu} P_1 du`` over ``u in (0, T)``,
    with the boundaries read at time-to-maturity ``T - u``.  Pass
    ``lower=None`` for a single-boundary put.
    """
    grid, up = upper.ascending()
    lo = None if lower is None else lower.ascending()[1]
    i_n, i_d = premium_integrals(
        np.array([put.spot]), np.array([put.maturity]), grid, up, lo,
        put.rate, put.dividend, put.volatility, order=settings.quadrature_order,
    )
    return float(put.strike * i_n[0] - put.spot * i_d[0])
