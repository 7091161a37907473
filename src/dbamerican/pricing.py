"""Pricing orchestrator.

``price`` classifies the regime, picks the boundary source, takes Greeks
by bump-and-reprice on the same path and finishes with the near-expiry
pass.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
from typing import Callable, Iterable, Optional

from . import black_scholes as bs
from .binomial import crr
from .core import ContractParameters, DoubleBoundaryResult, PricingResult
from .errors import EngineError, InvalidInputError
from .kim import early_exercise_premium, refine_boundaries
from .near_expiry import NearExpiryStabilizer, Recommendation
from .qdplus import qdplus_boundaries
from .regime import Regime, classify_regime, early_exercise_never_optimal
from .risk import numerical_greeks
from .settings import DEFAULT_SETTINGS, SolverSettings

__all__ = [
    "compute_boundaries",
    "price",
    "price_sweep",
    "evaluate_near_expiry",
    "model_price",
]

logger = logging.getLogger(__name__)

Engine = Callable[[ContractParameters], float]

_GREEK_KEYS = ("delta", "gamma", "vega", "theta", "rho")


def _resolve(settings: Optional[SolverSettings],
             collocation_points: Optional[int]) -> SolverSettings:
    settings = DEFAULT_SETTINGS if settings is None else settings
    if collocation_points is not None and collocation_points != settings.collocation_points:
        settings = dataclasses.replace(settings, collocation_points=int(collocation_points))
    return settings


def _crr_engine(settings: SolverSettings) -> Engine:
    return functools.partial(crr, N=settings.tree_steps, american=True)


# ---------------------------------------------------------------------------
# Boundaries
# ---------------------------------------------------------------------------

def compute_boundaries(
    params: ContractParameters,
    collocation_points: Optional[int] = None,
    *,
    settings: Optional[SolverSettings] = None,
) -> DoubleBoundaryResult:
    """Exercise boundaries of *params*.

    QD+ seeds every curve and the Kim refiner solves for it; a contract
    with one finite boundary comes back with ``lower = None`` and one that
    is never exercised early gets no curves at all.
    """
    settings = _resolve(settings, collocation_points)
    return refine_boundaries(params, qdplus_boundaries(params, settings), settings)


# ---------------------------------------------------------------------------
# Model price (no near-expiry treatment)
# ---------------------------------------------------------------------------

def _double_boundary_price(params: ContractParameters, settings: SolverSettings):
    # a call with 0 < r < q maps to a positive-rate put with one boundary
    put = params.dual_put() if params.is_call else params
    result = compute_boundaries(put, settings=settings)
    european = bs.price(put)
    intrinsic = put.intrinsic()

    upper = result.upper.at_valuation
    if result.lower is None:
        inside = put.spot <= upper
    else:
        lower = result.lower.at_valuation
        inside = lower < upper and lower <= put.spot <= upper
    if inside:
        value = intrinsic
    else:
        value = european + early_exercise_premium(put, result.upper, result.lower, settings)
    return max(value, european, intrinsic), result


def model_price(
    params: ContractParameters,
    *,
    settings: Optional[SolverSettings] = None,
    engine: Optional[Engine] = None,
) -> tuple[float, str, Optional[DoubleBoundaryResult]]:
    """Regime-dispatched price without near-expiry blending.

    Returns
    -------
    (value, method, boundaries)
        *method* is ``"european"``, ``"engine"`` or ``"qdplus+kim"``;
        *boundaries* is set for the double-boundary path only (for calls
        it holds the curves of the dual put actually priced).
    """
    settings = DEFAULT_SETTINGS if settings is None else settings
    if early_exercise_never_optimal(params.rate, params.dividend, params.is_call):
        return bs.price(params), "european", None

    regime = classify_regime(params.rate, params.dividend, params.is_call)
    if regime is Regime.DOUBLE_BOUNDARY:
        value, result = _double_boundary_price(params, settings)
        return value, "qdplus+kim", result
    if regime is Regime.POSITIVE_RATES or regime is Regime.NEGATIVE_RATES_SINGLE_BOUNDARY:
        engine = _crr_engine(settings) if engine is None else engine
        try:
            value = float(engine(params))
        except InvalidInputError as exc:
            raise EngineError(f"single-boundary engine rejected {params}: {exc}") from exc
        return value, "engine", None
    raise AssertionError(f"unhandled regime {regime!r}")


# ---------------------------------------------------------------------------
# Public pricing
# ---------------------------------------------------------------------------

def price(
    params: ContractParameters,
    collocation_points: Optional[int] = None,
    *,
    settings: Optional[SolverSettings] = None,
    engine: Optional[Engine] = None,
) -> PricingResult:
    """Price and Greeks of an American option under any sign of r and q.

    Parameters
    ----------
    params : ContractParameters
    collocation_points : int, optional
        Overrides ``settings.collocation_points``.
    settings : SolverSettings, optional
    engine : callable, optional
        Single-boundary American engine ``engine(params) -> float`` for the
        non-double regimes.  Defaults to a CRR tree.

    Returns
    -------
    PricingResult
    """
    settings = _resolve(settings, collocation_points)
    stabilizer = NearExpiryStabilizer(settings.min_time, settings.blend_time)
    regime = classify_regime(params.rate, params.dividend, params.is_call)
    intrinsic = params.intrinsic()

    advice, weight = stabilizer.evaluate(params.spot, params.strike, params.is_call,
                                         params.maturity)
    limits = stabilizer.expiry_greeks(params.spot, params.strike, params.is_call,
                                      params.maturity)
    if advice is Recommendation.USE_INTRINSIC:
        logger.debug("T=%.6f below min_time, returning intrinsic", params.maturity)
        return PricingResult(price=intrinsic, regime=regime, method="intrinsic",
                             blend_weight=0.0, **limits.as_dict())

    value, method, boundaries = model_price(params, settings=settings, engine=engine)
    value = max(value, 0.0)

    if method == "european":
        greeks = bs.greeks(params)
    else:
        def pricer(p: ContractParameters) -> float:
            return model_price(p, settings=settings, engine=engine)[0]

        greeks = numerical_greeks(
            pricer, params,
            spot_bump=settings.spot_bump, vol_bump=settings.vol_bump,
            time_bump=settings.time_bump, rate_bump=settings.rate_bump,
            base_price=value,
        )

    if advice is Recommendation.USE_BLENDED:
        value = stabilizer.blend(value, params.spot, params.strike, params.is_call,
                                 params.maturity)
        expiry = limits.as_dict()
        greeks = {k: weight * greeks[k] + (1.0 - weight) * expiry[k] for k in _GREEK_KEYS}

    logger.debug("priced %s via %s (regime=%s, weight=%.3f): %.6f",
                 params.kind, method, regime.value, weight, value)
    return PricingResult(
        price=max(value, intrinsic),
        regime=regime, method=method, blend_weight=weight,
        boundaries=boundaries, **{k: float(greeks[k]) for k in _GREEK_KEYS},
    )


def evaluate_near_expiry(
    spot: float,
    strike: float,
    is_call: bool,
    time_to_expiry: float,
    *,
    settings: Optional[SolverSettings] = None,
) -> tuple[Recommendation, float]:
    """``(recommendation, blend_weight)`` for a contract close to expiry."""
    settings = DEFAULT_SETTINGS if settings is None else settings
    stabilizer = NearExpiryStabilizer(settings.min_time, settings.blend_time)
    return stabilizer.evaluate(spot, strike, is_call, time_to_expiry)


def price_sweep(
    params: ContractParameters,
    spots: Iterable[float],
    *,
    collocation_points: Optional[int] = None,
    settings: Optional[SolverSettings] = None,
    executor=None,
) -> list[PricingResult]:
    """Price *params* at every spot in *spots*.

    Requests share no state, so any ``concurrent.futures`` executor may be
    passed to run them in parallel; results keep the order of *spots*.
    """
    requests = [params.replace(spot=float(s)) for s in spots]
    fn = functools.partial(price, collocation_points=collocation_points, settings=settings)
    if executor is None:
        return [fn(p) for p in requests]
    return list(executor.map(fn, requests))
