"""Exercise-regime classification under signed rates.

A put has two early-exercise boundaries when ``q < r < 0``: exercising
collects ``K`` but forgoes the negative carry, so holding is optimal both
deep in and near the money.

A call is classified double-boundary when ``0 < r < q``.  Its dual put
``P(K, S, q, r)`` then has positive rates and a single boundary; the
second call boundary sits at infinity, so the call is priced from that
one finite curve.  A call with ``r < q < 0`` is labelled single-boundary
and priced by the tree engine, which needs no boundary at all.
"""

from __future__ import annotations

import math
from enum import Enum

__all__ = [
    "Regime",
    "classify_regime",
    "early_exercise_never_optimal",
    "critical_volatility",
]


class Regime(Enum):
    POSITIVE_RATES = "positive_rates"
    NEGATIVE_RATES_SINGLE_BOUNDARY = "negative_rates_single_boundary"
    DOUBLE_BOUNDARY = "double_boundary"


def classify_regime(rate: float, dividend: float, is_call: bool) -> Regime:
    """Map (r, q, kind) to one of the three regimes. Never raises."""
    if is_call:
        double = 0.0 < rate < dividend
    else:
        double = dividend < rate < 0.0
    if double:
        return Regime.DOUBLE_BOUNDARY
    if rate >= 0.0:
        return Regime.POSITIVE_RATES
    return Regime.NEGATIVE_RATES_SINGLE_BOUNDARY


def early_exercise_never_optimal(rate: float, dividend: float, is_call: bool) -> bool:
    """True when the American contract is worth exactly its European twin.

    Puts: ``r <= 0`` and ``r <= q``.  Calls: the dual condition
    ``q <= 0`` and ``q <= r`` (which covers the no-dividend call).
    """
    if is_call:
        rate, dividend = dividend, rate
    return rate <= 0.0 and rate <= dividend


def critical_volatility(rate: float, dividend: float) -> float:
    """Volatility above which the two put boundaries meet at a finite tau.

    ``sigma* = |sqrt(-2r) - sqrt(-2q)|``; only meaningful for ``q < r < 0``,
    returns ``nan`` otherwise.
    """
    if not (dividend < rate < 0.0):
        return float("nan")
    return abs(math.sqrt(-2.0 * rate) - math.sqrt(-2.0 * dividend))
