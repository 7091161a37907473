"""Cox-Ross-Rubinstein tree: the default single-boundary American engine."""

from __future__ import annotations

import logging
import math

import numpy as np

from .core import ContractParameters
from .errors import InvalidInputError

__all__ = ["crr", "min_steps"]

logger = logging.getLogger(__name__)

# Steps are sized so that |r - q| sqrt(dt) <= _CARRY_SHARE * sigma
_CARRY_SHARE = 0.9


def min_steps(params: ContractParameters) -> int:
    """Fewest tree steps that keep the up-probability inside (0, 1).

    With ``u = exp(sigma sqrt(dt))`` the probability
    ``(exp((r-q) dt) - 1/u) / (u - 1/u)`` lies in (0, 1) exactly when
    ``|r - q| sqrt(dt) < sigma``, i.e. ``N > T ((r - q) / sigma)^2``.
    """
    carry = (params.rate - params.dividend) / (_CARRY_SHARE * params.volatility)
    return int(math.ceil(params.maturity * carry * carry)) + 1


def _node_prices(spot: float, up: float, level: int) -> np.ndarray:
    return spot * up ** (2.0 * np.arange(level + 1) - level)


def crr(params: ContractParameters, N: int = 500, *, american: bool = True) -> float:
    """Price *params* on an N-step CRR tree.

    *N* is a floor: strong carry relative to volatility raises it to
    :func:`min_steps`.  Discounting is ``exp(-r dt)`` per step, which stays
    valid for r < 0; the carry ``r - q`` enters only through the
    risk-neutral probability.

    Raises
    ------
    InvalidInputError
        If *N* is not positive.
    """
    if N <= 0:
        raise InvalidInputError(f"N must be positive, got {N}")
    steps = max(N, min_steps(params))
    if steps > N:
        logger.debug("CRR steps raised from %d to %d for carry %.4f at vol %.4f",
                     N, steps, params.rate - params.dividend, params.volatility)

    dt = params.maturity / steps
    up = math.exp(params.volatility * math.sqrt(dt))
    down = 1.0 / up
    p = (math.exp((params.rate - params.dividend) * dt) - down) / (up - down)
    if not 0.0 < p < 1.0:
        raise InvalidInputError(f"risk-neutral probability {p:.6f} outside (0,1)")
    disc = math.exp(-params.rate * dt)
    sign = 1.0 if params.is_call else -1.0

    values = np.maximum(sign * (_node_prices(params.spot, up, steps) - params.strike), 0.0)
    for level in range(steps - 1, -1, -1):
        values = disc * (p * values[1:] + (1.0 - p) * values[:-1])
        if american:
            exercise = sign * (_node_prices(params.spot, up, level) - params.strike)
            values = np.maximum(values, exercise)
    return float(values[0])
