"""Tests for the QD+ boundary approximation."""

import math

import numpy as np
import pytest
from dbamerican.core import ContractParameters, CALL, PUT
from dbamerican.qdplus import (
    characteristic_roots, super_halley, qdplus_boundaries,
)
from dbamerican.regime import Regime
from dbamerican.settings import SolverSettings

SCENARIO = ContractParameters(spot=100, strike=100, maturity=10.0, rate=-0.005,
                              dividend=-0.01, volatility=0.08, kind=PUT)


# ---------------------------------------------------------------------------
# Characteristic roots
# ---------------------------------------------------------------------------
class TestCharacteristicRoots:
    @pytest.mark.parametrize("tau", [0.1, 1.0, 5.0, 15.0])
    def test_roots_solve_quadratic(self, tau):
        r, q, sigma = -0.005, -0.01, 0.08
        lam_neg, lam_pos, sqrt_disc = characteristic_roots(r, q, sigma, tau)
        assert lam_neg < 0.0 < lam_pos
        assert sqrt_disc > 0.0
        omega = 2.0 * (r - q) / sigma ** 2
        h = 1.0 - math.exp(-r * tau)
        for lam in (lam_neg, lam_pos):
            resid = lam * lam + (omega - 1.0) * lam - 2.0 * r / (sigma ** 2 * h)
            assert abs(resid) < 1e-8 * max(1.0, lam * lam), f"tau={tau} lam={lam}"

    def test_zero_rate_limit(self):
        lam_neg, lam_pos, _ = characteristic_roots(0.0, 0.02, 0.2, 1.0)
        assert math.isfinite(lam_neg) and math.isfinite(lam_pos)
        assert lam_neg < lam_pos

    def test_positive_rates(self):
        lam_neg, lam_pos, _ = characteristic_roots(0.05, 0.0, 0.2, 1.0)
        assert lam_neg < 0.0 < lam_pos


# ---------------------------------------------------------------------------
# Root iteration
# ---------------------------------------------------------------------------
class TestSuperHalley:
    def test_sqrt_two(self):
        x, ok = super_halley(lambda x: (x * x - 2.0, 2.0 * x, 2.0), 1.0, 0.0, 3.0,
                             tol=1e-12)
        assert ok
        assert abs(x - math.sqrt(2.0)) < 1e-10

    def test_clamped_to_bracket(self):
        x, ok = super_halley(lambda x: (x - 5.0, 1.0, 0.0), 1.0, 0.0, 3.0)
        assert x == 3.0
        assert not ok

    def test_zero_derivative_stops(self):
        x, ok = super_halley(lambda x: (1.0, 0.0, 0.0), 1.0, 0.0, 3.0)
        assert x == 1.0
        assert not ok

    def test_iteration_cap(self):
        _, ok = super_halley(lambda x: (math.cos(x) - x, -math.sin(x) - 1.0, -math.cos(x)),
                             3.0, -10.0, 10.0, tol=0.0, max_iter=2)
        assert not ok


# ---------------------------------------------------------------------------
# Boundary curves
# ---------------------------------------------------------------------------
class TestQDPlusDouble:
    def test_shape_and_method(self):
        res = qdplus_boundaries(SCENARIO)
        assert res.method == "qdplus"
        assert res.regime is Regime.DOUBLE_BOUNDARY
        assert res.is_double
        assert len(res.upper) == 50 and len(res.lower) == 50
        assert res.upper.taus[0] == SCENARIO.maturity
        assert res.upper.taus[-1] == 0.0

    def test_collocation_points_setting(self):
        res = qdplus_boundaries(SCENARIO, SolverSettings(collocation_points=20))
        assert len(res.upper) == 20

    def test_expiry_levels(self):
        res = qdplus_boundaries(SCENARIO)
        assert abs(res.upper.at_expiry - 100.0) < 1e-3
        # lower boundary opens at K r / q
        assert abs(res.lower.at_expiry - 100.0 * 0.005 / 0.01) < 2.0
        assert res.lower.at_expiry <= res.lower.at_valuation

    def test_put_bound_and_ordering(self):
        res = qdplus_boundaries(SCENARIO)
        up, lo = res.upper.levels, res.lower.levels
        assert res.is_valid
        assert res.crossing_time == 0.0
        assert np.all(lo > 0.0)
        assert np.all(lo < up)
        assert np.all(up < 100.0)

    def test_monotone_in_tau(self):
        res = qdplus_boundaries(SCENARIO)
        _, up = res.upper.ascending()
        _, lo = res.lower.ascending()
        assert np.all(np.diff(up) <= 1e-12)
        assert np.all(np.diff(lo) >= -1e-12)

    @pytest.mark.parametrize("T", [10.0, 15.0])
    def test_valuation_band(self, T):
        res = qdplus_boundaries(SCENARIO.replace(maturity=T))
        up, lo = res.upper.at_valuation, res.lower.at_valuation
        assert 50.0 < lo < up < 100.0, f"T={T}: U={up:.3f} L={lo:.3f}"

    def test_call_mirrors_dual_put(self):
        call = SCENARIO.replace(kind=CALL, rate=-0.01, dividend=-0.005)
        res_c = qdplus_boundaries(call)
        res_p = qdplus_boundaries(SCENARIO)
        # labelled single-boundary, but both reflected curves are reported
        assert res_c.regime is Regime.NEGATIVE_RATES_SINGLE_BOUNDARY
        assert res_c.is_double
        assert np.all(res_c.lower.levels > 100.0)
        assert np.all(res_c.upper.levels >= res_c.lower.levels)
        np.testing.assert_allclose(res_c.upper.levels, 1e4 / res_p.lower.levels)
        np.testing.assert_allclose(res_c.lower.levels, 1e4 / res_p.upper.levels)


class TestQDPlusOtherRegimes:
    def test_single_boundary_put(self):
        opt = ContractParameters(100, 100, 1.0, 0.05, 0.02, 0.2, PUT)
        res = qdplus_boundaries(opt)
        assert res.regime is Regime.POSITIVE_RATES
        assert res.lower is None
        assert res.is_valid
        assert np.all(res.upper.levels < 100.0)
        assert 60.0 < res.upper.at_valuation < 100.0

    def test_single_boundary_call_above_strike(self):
        opt = ContractParameters(100, 100, 1.0, -0.01, 0.02, 0.2, CALL)
        res = qdplus_boundaries(opt)
        assert res.regime is Regime.NEGATIVE_RATES_SINGLE_BOUNDARY
        assert res.lower is None
        assert np.all(res.upper.levels > 100.0)

    def test_double_boundary_call_has_one_finite_curve(self):
        call = ContractParameters(100, 100, 1.0, 0.03, 0.05, 0.2, CALL)
        res = qdplus_boundaries(call)
        assert res.regime is Regime.DOUBLE_BOUNDARY
        assert res.lower is None
        assert res.is_valid
        assert np.all(res.upper.levels > 100.0)
        _, up = res.upper.ascending()
        assert np.all(np.diff(up) >= -1e-9)

    def test_never_exercised(self):
        opt = ContractParameters(100, 100, 1.0, -0.01, 0.0, 0.2, PUT)
        res = qdplus_boundaries(opt)
        assert res.method == "none"
        assert res.upper is None and res.lower is None
