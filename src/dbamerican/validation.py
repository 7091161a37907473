"""Model validation framework.

Benchmarks the boundary-based pricer against engines that know nothing
about exercise boundaries (CRR tree, projected finite differences) and
measures how each numerical method converges as its grid is refined.
"""

from __future__ import annotations

import numpy as np
from typing import Optional

from .core import ContractParameters
from .settings import DEFAULT_SETTINGS, SolverSettings

__all__ = [
    "cross_validate",
    "convergence_analysis",
]


# ---------------------------------------------------------------------------
# Cross-model benchmarking
# ---------------------------------------------------------------------------

def cross_validate(
    params: ContractParameters,
    *,
    methods: Optional[list[str]] = None,
    settings: Optional[SolverSettings] = None,
    tree_N: int = 1000,
    fd_N_S: int = 400,
    fd_N_t: int = 400,
) -> dict:
    """Cross-validate an American price across all available methods.

    Parameters
    ----------
    params : ContractParameters
    methods : list of str, optional
        Subset of ``{"model", "european", "tree", "fdm"}``.  Default: all.
        ``"model"`` is the regime-dispatched pricer without near-expiry
        blending.

    Returns
    -------
    dict
        One price per method plus ``"max_discrepancy"`` of the American
        engines (tree, fdm) versus ``"model"``.
    """
    if methods is None:
        methods = ["model", "european", "tree", "fdm"]
    settings = DEFAULT_SETTINGS if settings is None else settings

    results: dict = {}

    if "model" in methods:
        from .pricing import model_price
        results["model"] = model_price(params, settings=settings)[0]

    if "european" in methods:
        from .black_scholes import price as bs_price
        results["european"] = bs_price(params)

    if "tree" in methods:
        from .binomial import crr
        results["tree"] = crr(params, N=tree_N, american=True)

    if "fdm" in methods:
        from .pde import fd_price
        results["fdm"] = fd_price(params, N_S=fd_N_S, N_t=fd_N_t, american=True)

    ref = results.get("model")
    if ref is not None:
        discs = [abs(results[k] - ref) for k in ("tree", "fdm") if k in results]
        results["max_discrepancy"] = max(discs) if discs else 0.0
    else:
        results["max_discrepancy"] = float("nan")

    return results


# ---------------------------------------------------------------------------
# Convergence analysis
# ---------------------------------------------------------------------------

def convergence_analysis(
    params: ContractParameters,
    method: str,
    param_values: list | np.ndarray,
    *,
    reference: Optional[float] = None,
    settings: Optional[SolverSettings] = None,
) -> dict:
    """Analyse convergence of a numerical method as its resolution grows.

    Parameters
    ----------
    method : str
        ``"tree"`` (steps), ``"fdm"`` (spatial and time intervals) or
        ``"kim"`` (collocation points of the boundary pipeline).
    param_values : array-like
        Resolutions to test.
    reference : float, optional
        True price for error computation.  Default: a 4000-step tree.

    Returns
    -------
    dict
        ``"params"``, ``"prices"``, ``"errors"``, ``"order"`` (estimated).
    """
    param_values = [int(v) for v in param_values]
    settings = DEFAULT_SETTINGS if settings is None else settings

    if reference is None:
        from .binomial import crr
        reference = crr(params, N=4000, american=True)

    prices = []
    for val in param_values:
        if method == "tree":
            from .binomial import crr
            p = crr(params, N=val, american=True)
        elif method == "fdm":
            from .pde import fd_price
            p = fd_price(params, N_S=val, N_t=val, american=True)
        elif method == "kim":
            from dataclasses import replace
            from .pricing import model_price
            p = model_price(params, settings=replace(settings, collocation_points=val))[0]
        else:
            raise ValueError(f"Unknown method: {method}")
        prices.append(float(p))

    errors = [abs(p - reference) for p in prices]

    # error ~ C / v^order  => log(e) = -order * log(v) + const
    order = float("nan")
    valid = [(v, e) for v, e in zip(param_values, errors) if e > 0]
    if len(valid) >= 2:
        log_v = np.log([v for v, _ in valid])
        log_e = np.log([e for _, e in valid])
        coeffs = np.polyfit(log_v, log_e, 1)
        order = -float(coeffs[0])

    return {
        "params": param_values,
        "prices": prices,
        "errors": errors,
        "order": order,
    }
