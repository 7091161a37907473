"""Near-expiry stabilisation.

Boundary solvers lose accuracy as time to expiry goes to zero, so values
are blended towards intrinsic over a short window and the Greeks collapse
to their expiry limits below it.
"""

from __future__ import annotations

import math
from enum import Enum

from .core import NearExpiryGreeks
from .errors import InvalidInputError
from .settings import (
    ATM_BAND, GAMMA_CAP_NUMERATOR, NEAR_EXPIRY_VOL, TRADING_DAYS_PER_YEAR,
)

__all__ = [
    "Recommendation",
    "NearExpiryStabilizer",
]


class Recommendation(Enum):
    USE_MODEL = "use_model"
    USE_BLENDED = "use_blended"
    USE_INTRINSIC = "use_intrinsic"


def _intrinsic(spot: float, strike: float, is_call: bool) -> float:
    return max(spot - strike, 0.0) if is_call else max(strike - spot, 0.0)


class NearExpiryStabilizer:
    """Blend model output with the intrinsic payoff close to expiry.

    Parameters
    ----------
    min_time : float
        Below this time to expiry (years) only intrinsic value is used.
        Default one trading day.
    blend_time : float
        At or above this time to expiry the model is used untouched.
        Default three trading days.
    """

    def __init__(
        self,
        min_time: float = 1.0 / TRADING_DAYS_PER_YEAR,
        blend_time: float = 3.0 / TRADING_DAYS_PER_YEAR,
    ):
        if not (math.isfinite(min_time) and min_time > 0):
            raise InvalidInputError(f"min_time must be positive, got {min_time}")
        if not (math.isfinite(blend_time) and blend_time > 0):
            raise InvalidInputError(f"blend_time must be positive, got {blend_time}")
        if blend_time <= min_time:
            raise InvalidInputError(
                f"blend_time must exceed min_time, got {blend_time} <= {min_time}"
            )
        self.min_time = float(min_time)
        self.blend_time = float(blend_time)

    def __repr__(self) -> str:
        return f"NearExpiryStabilizer(min_time={self.min_time!r}, blend_time={self.blend_time!r})"

    def blend_weight(self, time_to_expiry: float) -> float:
        """Model weight: 0 below ``min_time``, 1 from ``blend_time`` on, linear between."""
        w = (time_to_expiry - self.min_time) / (self.blend_time - self.min_time)
        return min(max(w, 0.0), 1.0)

    def recommendation(self, time_to_expiry: float) -> Recommendation:
        if time_to_expiry < self.min_time:
            return Recommendation.USE_INTRINSIC
        if time_to_expiry >= self.blend_time:
            return Recommendation.USE_MODEL
        return Recommendation.USE_BLENDED

    def evaluate(self, spot: float, strike: float, is_call: bool,
                 time_to_expiry: float) -> tuple[Recommendation, float]:
        """Recommendation and model weight for one contract.

        Only the time to expiry drives the outcome; spot and strike are
        validated.
        """
        if spot <= 0:
            raise InvalidInputError(f"spot must be positive, got {spot}")
        if strike <= 0:
            raise InvalidInputError(f"strike must be positive, got {strike}")
        return self.recommendation(time_to_expiry), self.blend_weight(time_to_expiry)

    def blend(self, model_value: float, spot: float, strike: float,
              is_call: bool, time_to_expiry: float) -> float:
        """``w * model + (1 - w) * intrinsic``, never below intrinsic."""
        if model_value < 0:
            raise InvalidInputError(f"model_value must be non-negative, got {model_value}")
        intrinsic = _intrinsic(spot, strike, is_call)
        w = self.blend_weight(time_to_expiry)
        return max(w * model_value + (1.0 - w) * intrinsic, intrinsic)

    def expiry_greeks(self, spot: float, strike: float, is_call: bool,
                      time_to_expiry: float,
                      volatility: float = NEAR_EXPIRY_VOL) -> NearExpiryGreeks:
        """Greeks of a contract with no time value left.

        Delta is +/-1 in the money, +/-1/2 at the money and 0 otherwise.
        Gamma is 0 away from the strike and a capped spike at it.
        """
        sign = 1.0 if is_call else -1.0
        moneyness = spot / strike - 1.0
        if abs(moneyness) < ATM_BAND:
            delta = 0.5 * sign
            tau = max(time_to_expiry, 1e-12)
            gamma = min(1.0 / (spot * volatility * math.sqrt(tau)),
                        GAMMA_CAP_NUMERATOR / spot)
        else:
            itm = moneyness > 0 if is_call else moneyness < 0
            delta = sign if itm else 0.0
            gamma = 0.0
        return NearExpiryGreeks(delta=delta, gamma=gamma)
