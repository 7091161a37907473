from __future__ import annotations

import math
from dataclasses import dataclass, field, replace as _replace
from typing import Optional

import numpy as np

from .errors import InvalidInputError
from .regime import Regime

CALL = "call"
PUT  = "put"


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ContractParameters:
    """Everything one pricing request needs.

    ``rate`` and ``dividend`` are continuously compounded and may take
    either sign.
    """
    spot: float
    strike: float
    maturity: float   # years
    rate: float
    dividend: float
    volatility: float
    kind: str = PUT

    def __post_init__(self):
        for name in ("spot", "strike", "maturity", "rate", "dividend", "volatility"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise InvalidInputError(f"{name} must be finite, got {value}")
        if self.spot <= 0:
            raise InvalidInputError(f"spot must be positive, got {self.spot}")
        if self.strike <= 0:
            raise InvalidInputError(f"strike must be positive, got {self.strike}")
        if self.maturity <= 0:
            raise InvalidInputError(f"maturity must be positive, got {self.maturity}")
        if self.volatility <= 0:
            raise InvalidInputError(f"volatility must be positive, got {self.volatility}")
        if self.kind not in (CALL, PUT):
            raise InvalidInputError(f"kind must be 'call' or 'put', got {self.kind!r}")

    @property
    def is_call(self) -> bool:
        return self.kind == CALL

    def intrinsic(self, spot: float | None = None) -> float:
        s = self.spot if spot is None else spot
        if self.is_call:
            return max(s - self.strike, 0.0)
        return max(self.strike - s, 0.0)

    def replace(self, **changes) -> "ContractParameters":
        """Copy with *changes* applied; the copy is validated again."""
        return _replace(self, **changes)

    def dual_put(self) -> "ContractParameters":
        """Put with the same value as this call: C(S, K, r, q) = P(K, S, q, r)."""
        return ContractParameters(
            spot=self.strike, strike=self.spot, maturity=self.maturity,
            rate=self.dividend, dividend=self.rate,
            volatility=self.volatility, kind=PUT,
        )


# ---------------------------------------------------------------------------
# Boundary curves
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class BoundaryCurve:
    """Exercise boundary sampled on the collocation grid.

    Samples run from the valuation date (index 0, ``tau == T``) to expiry
    (last index, ``tau == 0``).
    """
    taus: np.ndarray
    levels: np.ndarray

    def __post_init__(self):
        taus = np.array(self.taus, dtype=float)
        levels = np.array(self.levels, dtype=float)
        if taus.shape != levels.shape or taus.ndim != 1:
            raise InvalidInputError(
                f"taus and levels must be 1-D and aligned, got {taus.shape} and {levels.shape}"
            )
        taus.setflags(write=False)
        levels.setflags(write=False)
        object.__setattr__(self, "taus", taus)
        object.__setattr__(self, "levels", levels)

    @classmethod
    def from_ascending(cls, taus, levels) -> "BoundaryCurve":
        """Build from arrays ordered by increasing time-to-maturity."""
        return cls(np.asarray(taus, dtype=float)[::-1], np.asarray(levels, dtype=float)[::-1])

    def ascending(self) -> tuple[np.ndarray, np.ndarray]:
        return self.taus[::-1].copy(), self.levels[::-1].copy()

    def level_at(self, tau: float) -> float:
        taus, levels = self.taus[::-1], self.levels[::-1]
        return float(np.interp(tau, taus, levels))

    def mirrored(self, strike: float) -> "BoundaryCurve":
        """Reflect through the strike: ``B -> K**2 / B`` (put <-> call)."""
        return BoundaryCurve(self.taus, strike * strike / self.levels)

    @property
    def at_valuation(self) -> float:
        return float(self.levels[0])

    @property
    def at_expiry(self) -> float:
        return float(self.levels[-1])

    def __len__(self) -> int:
        return len(self.levels)


@dataclass(frozen=True)
class DoubleBoundaryResult:
    """Outcome of a boundary computation.

    ``lower`` is ``None`` for single-boundary contracts; both curves are
    ``None`` when early exercise is never optimal.
    """
    upper: Optional[BoundaryCurve]
    lower: Optional[BoundaryCurve]
    crossing_time: float = 0.0
    is_valid: bool = True
    regime: Regime = Regime.DOUBLE_BOUNDARY
    qd_upper: Optional[BoundaryCurve] = None
    qd_lower: Optional[BoundaryCurve] = None
    method: str = "qdplus+kim"
    iterations: int = 0
    converged: bool = True

    @property
    def is_double(self) -> bool:
        return self.upper is not None and self.lower is not None


# ---------------------------------------------------------------------------
# Pricing output
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class NearExpiryGreeks:
    """Degenerate sensitivities once no time value remains."""
    delta: float
    gamma: float
    vega: float = 0.0
    theta: float = 0.0
    rho: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {"delta": self.delta, "gamma": self.gamma, "vega": self.vega,
                "theta": self.theta, "rho": self.rho}


@dataclass(frozen=True)
class PricingResult:
    price: float
    delta: float
    gamma: float
    vega: float
    theta: float
    rho: float
    regime: Regime
    method: str
    blend_weight: float = 1.0
    boundaries: Optional[DoubleBoundaryResult] = field(default=None, repr=False)

    def greeks(self) -> dict[str, float]:
        return {"delta": self.delta, "gamma": self.gamma, "vega": self.vega,
                "theta": self.theta, "rho": self.rho}
