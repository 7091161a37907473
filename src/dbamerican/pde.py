"""Finite-difference PDE solver for American and European vanillas.

Implements the θ-scheme (explicit / Crank-Nicolson / fully-implicit) on a
uniform log-spot grid ``x = ln(S)``.  Under this change of variable the
constant-volatility BS PDE becomes

.. math::

    \\frac{\\partial V}{\\partial t}
    + \\frac{\\sigma^2}{2}\\frac{\\partial^2 V}{\\partial x^2}
    + \\left(r - q - \\tfrac{\\sigma^2}{2}\\right)\\frac{\\partial V}{\\partial x}
    - r\\,V = 0

which has **constant coefficients**, yielding a tridiagonal system at each
time step that is solved in O(N) via the Thomas algorithm.  Early exercise
is imposed by projecting onto the payoff after every step, so the solver
knows nothing about how many exercise boundaries there are; that makes it
an independent check on the boundary-based pricer.

References
----------
- Duffy, D.J. *Finite Difference Methods in Financial Engineering* (Wiley,
  2006), chapters 7-10.
"""

from __future__ import annotations

import numpy as np

from .core import ContractParameters, CALL
from .errors import InvalidInputError

__all__ = [
    "fd_price",
    "fd_exercise_region",
]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _build_grid(
    S0: float,
    T: float,
    sigma: float,
    N_S: int,
    N_t: int,
    S_max_mult: float,
) -> tuple[np.ndarray, float, float]:
    """Build a uniform log-spot grid and return ``(x_grid, dx, dt)``."""
    x_range = S_max_mult * sigma * np.sqrt(T)
    x_grid = np.linspace(np.log(S0) - x_range, np.log(S0) + x_range, N_S + 1)
    return x_grid, x_grid[1] - x_grid[0], T / N_t


def _thomas_solve(
    a: np.ndarray,
    b: np.ndarray,
    c: np.ndarray,
    d: np.ndarray,
) -> np.ndarray:
    """Solve tridiagonal ``A x = d`` via the Thomas algorithm, O(N).

    Parameters
    ----------
    a : sub-diagonal, shape (N,), ``a[0]`` unused.
    b : main diagonal, shape (N,).
    c : super-diagonal, shape (N,), ``c[-1]`` unused.
    d : right-hand side, shape (N,).
    """
    N = len(b)
    b_ = b.copy()
    d_ = d.copy()
    for i in range(1, N):
        w = a[i] / b_[i - 1]
        b_[i] -= w * c[i - 1]
        d_[i] -= w * d_[i - 1]
    x = np.empty(N)
    x[-1] = d_[-1] / b_[-1]
    for i in range(N - 2, -1, -1):
        x[i] = (d_[i] - c[i] * x[i + 1]) / b_[i]
    return x


def _payoff(S: np.ndarray, K: float, kind: str) -> np.ndarray:
    if kind == CALL:
        return np.maximum(S - K, 0.0)
    return np.maximum(K - S, 0.0)


def _edges(S_min, S_max, K, r, q, tau, kind, american):
    """Dirichlet values at the grid ends."""
    if kind == CALL:
        right = S_max * np.exp(-q * tau) - K * np.exp(-r * tau)
        if american:
            right = max(right, S_max - K)
        return 0.0, max(right, 0.0)
    left = K * np.exp(-r * tau) - S_min * np.exp(-q * tau)
    if american:
        left = max(left, K - S_min)
    return max(left, 0.0), 0.0


# ---------------------------------------------------------------------------
# Core θ-scheme engine
# ---------------------------------------------------------------------------

def _fd_solve(
    params: ContractParameters,
    x_grid: np.ndarray,
    dx: float,
    dt: float,
    N_t: int,
    theta: float,
    american: bool,
) -> np.ndarray:
    """Backward θ-scheme; returns option values on *x_grid* at t = 0."""
    K, r, q, sigma, kind = (params.strike, params.rate, params.dividend,
                            params.volatility, params.kind)
    N_S = len(x_grid) - 1
    S = np.exp(x_grid)
    payoff = _payoff(S, K, kind)
    V = payoff.copy()

    # constant coefficients of L V_j = alpha (V_{j-1} - 2V_j + V_{j+1})
    #                                  + beta (V_{j+1} - V_{j-1}) - r V_j
    alpha = 0.5 * sigma ** 2 / dx ** 2
    beta = (r - q - 0.5 * sigma ** 2) / (2.0 * dx)
    a_L, b_L, c_L = alpha - beta, -2.0 * alpha - r, alpha + beta

    M = N_S - 1
    a_lhs = np.full(M, -theta * dt * a_L)
    b_lhs = np.full(M, 1.0 - theta * dt * b_L)
    c_lhs = np.full(M, -theta * dt * c_L)
    e = (1.0 - theta) * dt

    for n in range(N_t - 1, -1, -1):
        tau = (N_t - n) * dt
        bc_left, bc_right = _edges(S[0], S[-1], K, r, q, tau, kind, american)

        rhs = (1.0 + e * b_L) * V[1:N_S]
        rhs += e * a_L * V[0:N_S - 1]
        rhs += e * c_L * V[2:N_S + 1]
        rhs[0] += theta * dt * a_L * bc_left
        rhs[-1] += theta * dt * c_L * bc_right

        V_new = np.empty(N_S + 1)
        V_new[0] = bc_left
        V_new[1:N_S] = _thomas_solve(a_lhs, b_lhs, c_lhs, rhs)
        V_new[N_S] = bc_right

        if american:
            V_new = np.maximum(V_new, payoff)
        V = V_new

    return V


def _check_grid(N_S: int, N_t: int, theta: float) -> None:
    if N_S < 4 or N_t < 1:
        raise InvalidInputError(f"grid too small: N_S={N_S}, N_t={N_t}")
    if not 0.0 <= theta <= 1.0:
        raise InvalidInputError(f"theta must lie in [0, 1], got {theta}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def fd_price(
    params: ContractParameters,
    *,
    N_S: int = 400,
    N_t: int = 400,
    theta: float = 0.5,
    S_max_mult: float = 5.0,
    american: bool = True,
) -> float:
    """Price an American (default) or European vanilla via finite differences.

    Parameters
    ----------
    params : ContractParameters
    N_S : int
        Number of spatial intervals.
    N_t : int
        Number of time steps.
    theta : float
        Scheme parameter: 0 = explicit, 0.5 = Crank-Nicolson, 1 = implicit.
    S_max_mult : float
        Grid half-width as a multiple of σ√T.
    american : bool
        Project onto the payoff after every step.

    Returns
    -------
    float
    """
    _check_grid(N_S, N_t, theta)
    x_grid, dx, dt = _build_grid(params.spot, params.maturity, params.volatility,
                                 N_S, N_t, S_max_mult)
    V = _fd_solve(params, x_grid, dx, dt, N_t, theta, american)
    return float(np.interp(np.log(params.spot), x_grid, V))


def fd_exercise_region(
    params: ContractParameters,
    *,
    N_S: int = 400,
    N_t: int = 400,
    theta: float = 0.5,
    S_max_mult: float = 5.0,
    tol: float = 1e-8,
) -> tuple[float, float] | None:
    """Spot interval where immediate exercise is optimal at valuation.

    Returns ``(low, high)`` spanning the grid nodes at which the American
    value equals a positive payoff, or ``None`` when there are none.
    """
    _check_grid(N_S, N_t, theta)
    x_grid, dx, dt = _build_grid(params.spot, params.maturity, params.volatility,
                                 N_S, N_t, S_max_mult)
    V = _fd_solve(params, x_grid, dx, dt, N_t, theta, True)
    S = np.exp(x_grid)
    payoff = _payoff(S, params.strike, params.kind)
    # grid ends are pinned by the boundary conditions
    inner = slice(1, len(S) - 1)
    hit = (payoff[inner] > 0.0) & (V[inner] - payoff[inner] <= tol * params.strike)
    if not np.any(hit):
        return None
    nodes = S[inner][hit]
    return float(nodes.min()), float(nodes.max())
