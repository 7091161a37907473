"""Bump-and-reprice risk engine.

Numerical Greeks via central finite differences that work with **any**
pricer taking a :class:`ContractParameters`, plus scenario-grid
evaluation.
"""

from __future__ import annotations

import numpy as np
from typing import Callable

from .core import ContractParameters

__all__ = [
    "numerical_greeks",
    "scenario_grid",
]

Pricer = Callable[[ContractParameters], float]


# ---------------------------------------------------------------------------
# Numerical Greeks
# ---------------------------------------------------------------------------

def numerical_greeks(
    pricer_func: Pricer,
    params: ContractParameters,
    *,
    spot_bump: float = 0.005,
    vol_bump: float = 0.005,
    time_bump: float = 0.005,
    rate_bump: float = 1e-4,
    base_price: float | None = None,
) -> dict[str, float]:
    """Compute Greeks via central finite differences on an arbitrary pricer.

    Parameters
    ----------
    pricer_func : callable
        ``pricer_func(params) -> float``.
    params : ContractParameters
        Point at which the Greeks are taken.
    spot_bump, vol_bump, time_bump : float
        Relative bump sizes for spot, volatility and maturity.
    rate_bump : float
        Absolute bump for the rate (relative bumps vanish as r -> 0).
    base_price : float, optional
        Unbumped price, if the caller already has it.

    Returns
    -------
    dict[str, float]
        Keys: ``delta``, ``gamma``, ``vega``, ``theta``, ``rho``.
        Theta is calendar decay, ``-dV/dT``, per year.
    """
    P0 = pricer_func(params) if base_price is None else base_price

    # --- Delta & Gamma (spot bump) ---
    eps_S = spot_bump * params.spot
    P_up = pricer_func(params.replace(spot=params.spot + eps_S))
    P_dn = pricer_func(params.replace(spot=params.spot - eps_S))
    delta = (P_up - P_dn) / (2.0 * eps_S)
    gamma = (P_up - 2.0 * P0 + P_dn) / (eps_S ** 2)

    # --- Vega (vol bump) ---
    eps_v = vol_bump * params.volatility
    P_vup = pricer_func(params.replace(volatility=params.volatility + eps_v))
    P_vdn = pricer_func(params.replace(volatility=params.volatility - eps_v))
    vega = (P_vup - P_vdn) / (2.0 * eps_v)

    # --- Theta (maturity bump) ---
    eps_T = time_bump * params.maturity
    P_tup = pricer_func(params.replace(maturity=params.maturity + eps_T))
    P_tdn = pricer_func(params.replace(maturity=params.maturity - eps_T))
    theta_val = -(P_tup - P_tdn) / (2.0 * eps_T)

    # --- Rho (rate bump) ---
    P_rup = pricer_func(params.replace(rate=params.rate + rate_bump))
    P_rdn = pricer_func(params.replace(rate=params.rate - rate_bump))
    rho = (P_rup - P_rdn) / (2.0 * rate_bump)

    return {
        "delta": float(delta),
        "gamma": float(gamma),
        "vega": float(vega),
        "theta": float(theta_val),
        "rho": float(rho),
    }


# ---------------------------------------------------------------------------
# Scenario grid
# ---------------------------------------------------------------------------

def scenario_grid(
    pricer_func: Pricer,
    params: ContractParameters,
    spot_range: np.ndarray,
    vol_range: np.ndarray,
) -> dict:
    """Evaluate a pricer across a 2-D (spot × vol) scenario grid.

    Parameters
    ----------
    pricer_func : callable
        ``pricer_func(params) -> float``.
    spot_range : array, shape (n_spot,)
        Spot values to evaluate.
    vol_range : array, shape (n_vol,)
        Volatility values to evaluate.

    Returns
    -------
    dict
        ``"spot_values"``, ``"vol_values"``, ``"prices"`` (shape n_spot×n_vol).
    """
    spot_range = np.asarray(spot_range, dtype=float)
    vol_range = np.asarray(vol_range, dtype=float)
    prices = np.empty((len(spot_range), len(vol_range)))

    for i, s in enumerate(spot_range):
        for j, v in enumerate(vol_range):
            prices[i, j] = pricer_func(params.replace(spot=float(s), volatility=float(v)))

    return {
        "spot_values": spot_range.copy(),
        "vol_values": vol_range.copy(),
        "prices": prices,
    }
