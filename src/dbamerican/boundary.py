"""Curve utilities shared by the QD+ and Kim stages.

Both work on arrays ordered by increasing time-to-maturity.
"""

from __future__ import annotations

import logging

import numpy as np

__all__ = [
    "isotonic",
    "locate_crossing",
    "collapse_after_crossing",
]

logger = logging.getLogger(__name__)


def isotonic(values: np.ndarray, *, increasing: bool = True) -> np.ndarray:
    """Pool-adjacent-violators projection onto monotone sequences.

    Returns a new array; *values* is left untouched.
    """
    y = np.asarray(values, dtype=float)
    if not increasing:
        return -isotonic(-y, increasing=True)

    means: list[float] = []
    counts: list[int] = []
    for v in y:
        means.append(float(v))
        counts.append(1)
        while len(means) > 1 and means[-2] > means[-1]:
            n = counts[-2] + counts[-1]
            m = (means[-2] * counts[-2] + means[-1] * counts[-1]) / n
            means[-2:] = [m]
            counts[-2:] = [n]
    return np.repeat(means, counts)


def locate_crossing(
    taus: np.ndarray,
    upper: np.ndarray,
    lower: np.ndarray,
    *,
    tolerance: float = 0.01,
) -> float:
    """Time-to-maturity at which the upper curve first drops below the lower.

    Bisects ``U(tau) - L(tau)`` (linear interpolation between samples)
    inside the first bracketing collocation interval until it is narrower
    than *tolerance*.  Returns 0.0 when the curves never cross.
    """
    gap = upper - lower
    bad = np.flatnonzero(gap < 0.0)
    if bad.size == 0:
        return 0.0
    i = int(bad[0])
    if i == 0:
        return float(taus[0])

    a, b = float(taus[i - 1]), float(taus[i])

    def g(t: float) -> float:
        return float(np.interp(t, taus, upper) - np.interp(t, taus, lower))

    steps = 0
    while b - a > tolerance:
        mid = 0.5 * (a + b)
        if g(mid) >= 0.0:
            a = mid
        else:
            b = mid
        steps += 1
    crossing = 0.5 * (a + b)
    logger.debug("boundaries cross at tau=%.4f after %d bisection steps", crossing, steps)
    return crossing


def collapse_after_crossing(
    taus: np.ndarray,
    upper: np.ndarray,
    lower: np.ndarray,
    crossing: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Merge both curves into their meeting level beyond *crossing*.

    With ``U == L`` the exercise band is empty, so those maturities add no
    premium.  Fresh arrays are returned.
    """
    upper = np.array(upper, dtype=float)
    lower = np.array(lower, dtype=float)
    if crossing <= 0.0:
        return upper, lower
    meet = 0.5 * (np.interp(crossing, taus, upper) + np.interp(crossing, taus, lower))
    beyond = taus >= crossing
    upper[beyond] = meet
    lower[beyond] = meet
    # keep the curves monotone up to the meeting point
    upper = np.maximum(upper, meet)
    lower = np.minimum(lower, meet)
    return upper, lower
