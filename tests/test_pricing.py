"""Tests for the pricing orchestrator."""

import functools
import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
from dbamerican import (
    ContractParameters, CALL, PUT, Regime, Recommendation, SolverSettings,
    InvalidInputError, EngineError, DoubleBoundaryError,
    price, compute_boundaries, evaluate_near_expiry, price_sweep, bs_price, crr,
)

SCENARIO = ContractParameters(spot=100, strike=100, maturity=10.0, rate=-0.005,
                              dividend=-0.01, volatility=0.08, kind=PUT)
DAY = 1.0 / 252.0


# ---------------------------------------------------------------------------
# Boundaries through the orchestrator
# ---------------------------------------------------------------------------
class TestComputeBoundaries:
    @pytest.mark.parametrize("T, up_ref, lo_ref", [(10.0, 69.6, 58.7), (15.0, 68.0, 57.0)])
    def test_published_levels(self, T, up_ref, lo_ref):
        res = compute_boundaries(SCENARIO.replace(maturity=T))
        assert res.method == "qdplus+kim"
        up, lo = res.upper.at_valuation, res.lower.at_valuation
        assert abs(up - up_ref) < 1.5, f"T={T}: upper={up:.3f}"
        assert abs(lo - lo_ref) < 1.5, f"T={T}: lower={lo:.3f}"

    def test_upper_monotone_across_maturities(self):
        levels = [compute_boundaries(SCENARIO.replace(maturity=T)).upper.at_valuation
                  for T in (1.0, 5.0, 10.0, 15.0)]
        assert np.all(np.diff(levels) < 0.0), f"levels={levels}"

    @pytest.mark.parametrize("T", [1.0, 5.0, 10.0, 15.0])
    def test_ordering_and_bounds(self, T):
        res = compute_boundaries(SCENARIO.replace(maturity=T))
        up, lo = res.upper.levels, res.lower.levels
        if res.crossing_time == 0.0:
            assert np.all(up >= lo)
        assert np.all(lo > 0.0)
        assert np.all(up < 100.0)

    @pytest.mark.parametrize("T", [1.0, 5.0, 10.0, 15.0])
    def test_monotone_with_tolerance(self, T):
        """Walking from expiry: the band [L, U] narrows as tau grows."""
        res = compute_boundaries(SCENARIO.replace(maturity=T))
        _, up = res.upper.ascending()
        _, lo = res.lower.ascending()
        assert np.all(np.diff(up) <= 0.1)
        assert np.all(np.diff(lo) >= -0.1)

    @pytest.mark.parametrize("T", [5.0, 10.0, 15.0])
    def test_smooth(self, T):
        res = compute_boundaries(SCENARIO.replace(maturity=T))
        for curve in (res.upper, res.lower):
            taus, levels = curve.ascending()
            assert np.all(np.isfinite(levels))
            second = np.abs(np.diff(levels, n=2))
            # steep square-root opening next to expiry, flat afterwards
            assert second.max() < 10.0, f"max second difference {second.max():.3f}"
            away = second[taus[1:-1] >= 1.0]
            assert away.max() < 0.5, f"second difference past 1y {away.max():.3f}"

    def test_collocation_override(self):
        res = compute_boundaries(SCENARIO, 30)
        assert len(res.upper) == 30 and len(res.lower) == 30

    def test_call_mirror(self):
        call = SCENARIO.replace(kind=CALL, rate=-0.01, dividend=-0.005)
        res = compute_boundaries(call)
        assert res.regime is Regime.NEGATIVE_RATES_SINGLE_BOUNDARY
        assert res.method == "qdplus+kim"
        assert np.all(res.lower.levels > 100.0)
        assert np.all(res.upper.levels >= res.lower.levels)

    def test_never_exercised_has_no_curves(self):
        res = compute_boundaries(SCENARIO.replace(rate=-0.01, dividend=0.0))
        assert res.upper is None and res.lower is None


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------
class TestPriceDoubleBoundary:
    def test_no_arbitrage_floor(self):
        res = price(SCENARIO)
        assert res.method == "qdplus+kim"
        assert res.regime is Regime.DOUBLE_BOUNDARY
        assert res.price >= bs_price(SCENARIO) - 1e-12
        assert res.price >= SCENARIO.intrinsic()

    def test_greeks_finite(self):
        res = price(SCENARIO)
        for name, value in res.greeks().items():
            assert math.isfinite(value), f"{name} = {value}"
        assert -1.05 <= res.delta <= 0.05

    def test_inside_exercise_region_is_intrinsic(self):
        opt = SCENARIO.replace(spot=65.0)
        res = price(opt)
        assert res.price == 35.0, f"price={res.price}"

    def test_boundaries_attached(self):
        res = price(SCENARIO)
        assert res.boundaries is not None and res.boundaries.is_double

    def test_call_with_rate_below_dividend(self):
        call = ContractParameters(100, 100, 1.0, 0.03, 0.05, 0.2, CALL)
        res = price(call)
        assert res.regime is Regime.DOUBLE_BOUNDARY
        assert res.method == "qdplus+kim"
        assert res.boundaries.lower is None
        tree = crr(call, N=2000)
        assert abs(res.price - tree) < 0.05, f"price={res.price:.4f} tree={tree:.4f}"
        assert res.price >= bs_price(call) - 1e-12

    def test_call_with_negative_rate_below_dividend_uses_engine(self):
        call = ContractParameters(100, 100, 10.0, -0.01, -0.005, 0.08, CALL)
        res = price(call)
        assert res.regime is Regime.NEGATIVE_RATES_SINGLE_BOUNDARY
        assert res.method == "engine"
        assert res.price == crr(call, N=500)

    def test_short_maturity(self):
        res = price(SCENARIO.replace(maturity=0.25))
        assert math.isfinite(res.price)
        assert res.price >= bs_price(SCENARIO.replace(maturity=0.25)) - 1e-12


class TestCrossingBoundaries:
    """High volatility closes the exercise band before the valuation date."""
    OPT = SCENARIO.replace(maturity=5.0, volatility=0.2)

    def test_crossing_inside_horizon(self):
        res = compute_boundaries(self.OPT)
        assert 0.0 < res.crossing_time < self.OPT.maturity, f"crossing={res.crossing_time}"
        assert res.is_valid

    def test_ordered_before_crossing_and_merged_after(self):
        res = compute_boundaries(self.OPT)
        taus, up = res.upper.ascending()
        _, lo = res.lower.ascending()
        before = taus < res.crossing_time
        assert before[1:].any()
        assert np.all(up[before] >= lo[before])
        np.testing.assert_allclose(up[~before], lo[~before])
        assert np.all(lo > 0.0) and np.all(up < 100.0)

    def test_price_and_greeks(self):
        res = price(self.OPT)
        assert res.method == "qdplus+kim"
        assert math.isfinite(res.price)
        assert res.price >= self.OPT.intrinsic()
        assert res.price >= bs_price(self.OPT) - 1e-12
        for name, value in res.greeks().items():
            assert math.isfinite(value), f"{name} = {value}"


class TestPriceOtherRegimes:
    def test_positive_rates_match_engine(self):
        opt = ContractParameters(100, 100, 1.0, 0.05, 0.02, 0.2, PUT)
        res = price(opt)
        assert res.regime is Regime.POSITIVE_RATES
        assert res.method == "engine"
        assert res.price == crr(opt, N=500)

    def test_negative_rate_call_with_dividend_uses_engine(self):
        opt = ContractParameters(100, 100, 1.0, -0.01, 0.02, 0.2, CALL)
        res = price(opt)
        assert res.regime is Regime.NEGATIVE_RATES_SINGLE_BOUNDARY
        assert res.method == "engine"
        assert res.price >= bs_price(opt) - 5e-2

    def test_long_dated_low_vol_put(self):
        opt = ContractParameters(100, 100, 30.0, 0.10, 0.0, 0.02, PUT)
        res = price(opt)
        assert res.regime is Regime.POSITIVE_RATES
        assert res.method == "engine"
        assert math.isfinite(res.price)
        assert res.price >= opt.intrinsic()
        for name, value in res.greeks().items():
            assert math.isfinite(value), f"{name} = {value}"

    def test_custom_engine(self):
        opt = ContractParameters(100, 100, 1.0, 0.05, 0.02, 0.2, PUT)
        res = price(opt, engine=functools.partial(crr, N=50))
        assert res.price == crr(opt, N=50)

    @pytest.mark.parametrize("opt", [
        ContractParameters(100, 100, 1.0, -0.01, 0.0, 0.2, PUT),
        ContractParameters(100, 90, 2.0, -0.01, -0.005, 0.15, PUT),
        ContractParameters(100, 100, 1.0, 0.05, 0.0, 0.2, CALL),
        ContractParameters(100, 110, 1.0, -0.005, -0.01, 0.2, CALL),
    ])
    def test_european_equivalence(self, opt):
        res = price(opt)
        assert res.method == "european"
        assert abs(res.price - bs_price(opt)) < 1e-4


class TestNearExpiry:
    def test_intrinsic_below_min_time(self):
        opt = SCENARIO.replace(spot=90.0, maturity=0.5 * DAY)
        res = price(opt)
        assert res.method == "intrinsic"
        assert res.price == 10.0
        assert res.delta == -1.0 and res.vega == 0.0
        assert res.blend_weight == 0.0

    def test_blend_zone(self):
        opt = ContractParameters(100, 100, 2 * DAY, 0.05, 0.02, 0.2, PUT)
        res = price(opt)
        assert abs(res.blend_weight - 0.5) < 1e-9
        assert res.method == "engine"
        assert res.price >= opt.intrinsic()
        assert res.price < crr(opt, N=500)

    def test_model_zone(self):
        res = price(SCENARIO)
        assert res.blend_weight == 1.0

    def test_evaluate_near_expiry(self):
        rec, w = evaluate_near_expiry(100, 100, True, 2 * DAY)
        assert rec is Recommendation.USE_BLENDED
        assert abs(w - 0.5) < 1e-9


# ---------------------------------------------------------------------------
# Sweeps and errors
# ---------------------------------------------------------------------------
class TestPriceSweep:
    SPOTS = [60.0, 65.0, 100.0, 120.0]

    def test_sequential(self):
        results = price_sweep(SCENARIO, self.SPOTS)
        assert len(results) == 4
        assert results[1].price == 35.0
        prices = [r.price for r in results]
        assert np.all(np.diff(prices) <= 1e-9), f"put prices {prices}"

    def test_executor_matches_sequential(self):
        seq = price_sweep(SCENARIO, self.SPOTS)
        with ThreadPoolExecutor(max_workers=2) as pool:
            par = price_sweep(SCENARIO, self.SPOTS, executor=pool)
        assert [r.price for r in par] == [r.price for r in seq]


class TestErrors:
    @pytest.mark.parametrize("field, value", [
        ("spot", -1.0), ("strike", 0.0), ("maturity", 0.0),
        ("volatility", -0.2), ("rate", float("nan")), ("kind", "straddle"),
    ])
    def test_invalid_contract(self, field, value):
        with pytest.raises(InvalidInputError):
            SCENARIO.replace(**{field: value})

    def test_invalid_is_value_error(self):
        with pytest.raises(ValueError):
            ContractParameters(-1, 100, 1.0, 0.0, 0.0, 0.2)

    def test_too_few_collocation_points(self):
        with pytest.raises(InvalidInputError):
            price(SCENARIO, 2)

    def test_bad_settings(self):
        with pytest.raises(InvalidInputError):
            SolverSettings(kim_tolerance=0.0)

    def test_engine_failure_wrapped(self):
        def rejecting_engine(params):
            raise InvalidInputError(f"cannot price {params.kind}")

        opt = ContractParameters(100, 100, 1.0, 0.05, 0.0, 0.2, PUT)
        with pytest.raises(EngineError) as info:
            price(opt, engine=rejecting_engine)
        assert isinstance(info.value.__cause__, InvalidInputError)
        assert isinstance(info.value, DoubleBoundaryError)
