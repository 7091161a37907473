"""Solver settings and numerical constants.

Tunables live on :class:`SolverSettings`; everything a caller should never
need to touch is a module-level constant.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from .errors import InvalidInputError

__all__ = [
    "SolverSettings",
    "DEFAULT_SETTINGS",
    "TRADING_DAYS_PER_YEAR",
]

TRADING_DAYS_PER_YEAR = 252

# Denominator floor for the Kim numerator/denominator ratio
EPSILON_DENOMINATOR = 1e-10
# Relative gap kept between a put boundary and the strike
BOUNDARY_EDGE = 1e-6
# Lowest admissible put boundary, as a fraction of strike
BOUNDARY_FLOOR = 1e-2

# Near-expiry limits
ATM_BAND = 0.01             # |S/K - 1| below this counts as at-the-money
GAMMA_CAP_NUMERATOR = 100.0  # ATM gamma never exceeds this / S
NEAR_EXPIRY_VOL = 0.30      # vol used to size the ATM gamma spike


@dataclass(frozen=True)
class SolverSettings:
    """Numerical knobs for the boundary pipeline and the orchestrator.

    Parameters
    ----------
    collocation_points : int
        Samples per boundary curve, including both tau=0 and tau=T.
    quadrature_order : int
        Gauss-Legendre nodes used for every Kim integral.
    qd_tolerance, qd_max_iterations
        Stopping rule of the QD+ root iteration.
    kim_tolerance, kim_max_passes
        Stopping rule of the FP-B' passes: stop once no level moved by more
        than kim_tolerance * K in a pass.
    kim_step_limit : float
        Largest move of a boundary level in one pass, as a fraction of that
        level.  Newton steps beyond it are clipped, not rejected.
    crossing_tolerance : float
        Width in years below which the crossing bracket stops shrinking.
    spot_bump, vol_bump, time_bump : float
        Relative bumps for the finite-difference Greeks.
    rate_bump : float
        Absolute rate bump for rho.
    tree_steps : int
        Steps of the default single-boundary CRR engine.
    min_time, blend_time : float
        Near-expiry thresholds in years.
    """
    collocation_points: int = 50
    quadrature_order: int = 32
    qd_tolerance: float = 1e-8
    qd_max_iterations: int = 10
    kim_tolerance: float = 1e-6
    kim_max_passes: int = 12
    kim_step_limit: float = 0.05
    crossing_tolerance: float = 0.01
    spot_bump: float = 0.005
    vol_bump: float = 0.005
    time_bump: float = 0.005
    rate_bump: float = 1e-4
    tree_steps: int = 500
    min_time: float = 1.0 / TRADING_DAYS_PER_YEAR
    blend_time: float = 3.0 / TRADING_DAYS_PER_YEAR

    def __post_init__(self):
        if self.collocation_points < 3:
            raise InvalidInputError(
                f"collocation_points must be at least 3, got {self.collocation_points}"
            )
        for name in ("quadrature_order", "qd_max_iterations",
                     "kim_max_passes", "tree_steps"):
            if getattr(self, name) <= 0:
                raise InvalidInputError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("qd_tolerance", "kim_tolerance", "crossing_tolerance",
                     "kim_step_limit", "spot_bump",
                     "vol_bump", "time_bump", "rate_bump",
                     "min_time", "blend_time"):
            value = getattr(self, name)
            if not (math.isfinite(value) and value > 0):
                raise InvalidInputError(f"{name} must be positive, got {value}")
        if self.blend_time <= self.min_time:
            raise InvalidInputError(
                f"blend_time must exceed min_time, got {self.blend_time} <= {self.min_time}"
            )


DEFAULT_SETTINGS = SolverSettings()
