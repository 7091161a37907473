# dbamerican: American options with one or two exercise boundaries
# Public API

# Data model
from .core import (
    ContractParameters, BoundaryCurve, DoubleBoundaryResult,
    NearExpiryGreeks, PricingResult, CALL, PUT,
)
from .errors import DoubleBoundaryError, InvalidInputError, EngineError
from .settings import SolverSettings, DEFAULT_SETTINGS

# Regimes
from .regime import (
    Regime, classify_regime, early_exercise_never_optimal, critical_volatility,
)

# European and single-boundary engines
from .black_scholes import (
    price as bs_price, greeks as bs_greeks, bs_price_vec, bs_greeks_vec,
)
from .binomial import crr, min_steps

# Boundary pipeline
from .qdplus import qdplus_boundaries, characteristic_roots, super_halley
from .kim import refine_boundaries, early_exercise_premium, boundary_residuals
from .near_expiry import NearExpiryStabilizer, Recommendation

# Orchestrator
from .pricing import (
    price, compute_boundaries, evaluate_near_expiry, price_sweep, model_price,
)

# PDE benchmark
from .pde import fd_price, fd_exercise_region

# Risk engine
from .risk import numerical_greeks, scenario_grid

# Model validation
from .validation import cross_validate, convergence_analysis

__all__ = [
    # Data model
    "ContractParameters", "BoundaryCurve", "DoubleBoundaryResult",
    "NearExpiryGreeks", "PricingResult", "CALL", "PUT",
    "DoubleBoundaryError", "InvalidInputError", "EngineError",
    "SolverSettings", "DEFAULT_SETTINGS",
    # Regimes
    "Regime", "classify_regime", "early_exercise_never_optimal",
    "critical_volatility",
    # Engines
    "bs_price", "bs_greeks", "bs_price_vec", "bs_greeks_vec", "crr", "min_steps",
    # Boundaries
    "qdplus_boundaries", "characteristic_roots", "super_halley",
    "refine_boundaries", "early_exercise_premium", "boundary_residuals",
    "NearExpiryStabilizer", "Recommendation",
    # Orchestrator
    "price", "compute_boundaries", "evaluate_near_expiry", "price_sweep",
    "model_price",
    # PDE
    "fd_price", "fd_exercise_region",
    # Risk
    "numerical_greeks", "scenario_grid",
    # Validation
    "cross_validate", "convergence_analysis",
]

__version__ = "0.1.0"
