# black_scholes.py
# European closed form for any sign of r and q.
# Scalar entry points take a ContractParameters; the *_vec variants accept
# scalars or NumPy arrays and broadcast.

from __future__ import annotations

import math
from typing import Dict

import numpy as np
from scipy.stats import norm

from .core import ContractParameters, CALL, PUT

__all__ = [
    "price",
    "greeks",
    "bs_price_vec",
    "bs_greeks_vec",
    "put_call_parity_gap",
]

_N = norm.cdf   # vectorised standard-normal CDF
_n = norm.pdf   # vectorised standard-normal PDF


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------
def _d1_d2(S, K, T, r, q, sigma):
    """Compute d1, d2 arrays.  All inputs broadcast."""
    S, K, T, r, q, sigma = (np.asarray(x, dtype=float) for x in (S, K, T, r, q, sigma))
    sig_sqrt_T = sigma * np.sqrt(T)
    d1 = (np.log(S / K) + (r - q + 0.5 * sigma * sigma) * T) / sig_sqrt_T
    d2 = d1 - sig_sqrt_T
    return d1, d2


def _is_call(kind) -> np.ndarray:
    """Return boolean mask: True where kind == 'call'."""
    kind = np.asarray(kind)
    if kind.ndim == 0:
        return np.bool_(str(kind) == CALL)
    return np.array([str(k) == CALL for k in kind.flat], dtype=bool).reshape(kind.shape)


# ---------------------------------------------------------------------------
# Vectorised price and Greeks
# ---------------------------------------------------------------------------
def bs_price_vec(S, K, T, r, q, sigma, kind) -> np.ndarray:
    """Vectorised Black-Scholes price.

    Discount factors are plain exponentials, so negative ``r`` and ``q``
    simply produce factors above one.

    Returns
    -------
    np.ndarray
        Option prices (same shape as broadcasted inputs).
    """
    S, K, T, r, q, sigma = (np.asarray(x, dtype=float) for x in (S, K, T, r, q, sigma))
    d1, d2 = _d1_d2(S, K, T, r, q, sigma)
    disc_r = np.exp(-r * T)
    disc_q = np.exp(-q * T)

    call_px = disc_q * S * _N(d1) - disc_r * K * _N(d2)
    put_px  = disc_r * K * _N(-d2) - disc_q * S * _N(-d1)

    return np.where(_is_call(kind), call_px, put_px)


def bs_greeks_vec(S, K, T, r, q, sigma, kind) -> dict[str, np.ndarray]:
    """Vectorised Black-Scholes Greeks.

    Returns dict with keys: delta, gamma, vega, theta, rho.
    Vega is dPrice/dSigma (absolute), theta is dPrice/dt (per year, calendar).
    """
    S, K, T, r, q, sigma = (np.asarray(x, dtype=float) for x in (S, K, T, r, q, sigma))
    d1, d2 = _d1_d2(S, K, T, r, q, sigma)
    disc_r = np.exp(-r * T)
    disc_q = np.exp(-q * T)
    sqrt_T = np.sqrt(T)
    n_d1 = _n(d1)
    is_call = _is_call(kind)

    # Common
    gamma = disc_q * n_d1 / (S * sigma * sqrt_T)
    vega  = S * disc_q * n_d1 * sqrt_T

    # Call-specific
    delta_c = disc_q * _N(d1)
    theta_c = (-S * disc_q * n_d1 * sigma / (2 * sqrt_T)
               - r * K * disc_r * _N(d2)
               + q * S * disc_q * _N(d1))
    rho_c   = K * T * disc_r * _N(d2)

    # Put-specific
    delta_p = disc_q * (_N(d1) - 1.0)
    theta_p = (-S * disc_q * n_d1 * sigma / (2 * sqrt_T)
               + r * K * disc_r * _N(-d2)
               - q * S * disc_q * _N(-d1))
    rho_p   = -K * T * disc_r * _N(-d2)

    delta = np.where(is_call, delta_c, delta_p)
    theta = np.where(is_call, theta_c, theta_p)
    rho   = np.where(is_call, rho_c, rho_p)

    return {"delta": delta, "gamma": gamma, "vega": vega, "theta": theta, "rho": rho}


# ---------------------------------------------------------------------------
# Scalar interface
# ---------------------------------------------------------------------------
def price(params: ContractParameters) -> float:
    p = params
    return float(bs_price_vec(p.spot, p.strike, p.maturity, p.rate,
                              p.dividend, p.volatility, p.kind))


def greeks(params: ContractParameters) -> Dict[str, float]:
    """Analytic Greeks as plain floats (vega per unit sigma, not per 1%)."""
    p = params
    g = bs_greeks_vec(p.spot, p.strike, p.maturity, p.rate,
                      p.dividend, p.volatility, p.kind)
    return {k: float(v) for k, v in g.items()}


def put_call_parity_gap(params: ContractParameters) -> float:
    """C - P - (S e^{-qT} - K e^{-rT}); zero up to rounding."""
    p = params
    c = float(bs_price_vec(p.spot, p.strike, p.maturity, p.rate, p.dividend, p.volatility, CALL))
    v = float(bs_price_vec(p.spot, p.strike, p.maturity, p.rate, p.dividend, p.volatility, PUT))
    forward = p.spot * math.exp(-p.dividend * p.maturity) - p.strike * math.exp(-p.rate * p.maturity)
    return c - v - forward
