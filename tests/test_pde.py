"""Tests for the finite-difference PDE solver."""

import numpy as np
import pytest
from dbamerican import ContractParameters, CALL, PUT, InvalidInputError, bs_price, crr
from dbamerican.pde import fd_price, fd_exercise_region

OPT = ContractParameters(spot=100, strike=100, maturity=1.0, rate=0.05,
                         dividend=0.0, volatility=0.2, kind=CALL)
SCENARIO = ContractParameters(spot=100, strike=100, maturity=10.0, rate=-0.005,
                              dividend=-0.01, volatility=0.08, kind=PUT)
N_S, N_t = 400, 400


class TestFDEuropean:
    def test_call_vs_bs(self):
        fd = fd_price(OPT, N_S=N_S, N_t=N_t, american=False)
        bs = bs_price(OPT)
        assert abs(fd - bs) / bs < 0.001, f"FD={fd:.6f} BS={bs:.6f}"

    def test_put_vs_bs(self):
        put = OPT.replace(kind=PUT)
        fd = fd_price(put, N_S=N_S, N_t=N_t, american=False)
        bs = bs_price(put)
        assert abs(fd - bs) / bs < 0.001, f"FD={fd:.6f} BS={bs:.6f}"

    def test_negative_rates_vs_bs(self):
        fd = fd_price(SCENARIO, N_S=N_S, N_t=N_t, american=False)
        bs = bs_price(SCENARIO)
        assert abs(fd - bs) / bs < 0.005, f"FD={fd:.6f} BS={bs:.6f}"


class TestFDAmerican:
    def test_american_put_geq_european(self):
        put = OPT.replace(kind=PUT)
        eu = fd_price(put, N_S=N_S, N_t=N_t, american=False)
        am = fd_price(put, N_S=N_S, N_t=N_t)
        assert am >= eu - 0.01

    def test_american_call_eq_european_no_div(self):
        """With q=0, American call = European call (no early exercise)."""
        eu = fd_price(OPT, N_S=N_S, N_t=N_t, american=False)
        am = fd_price(OPT, N_S=N_S, N_t=N_t)
        assert abs(am - eu) < 0.05

    def test_double_boundary_vs_tree(self):
        fd = fd_price(SCENARIO, N_S=N_S, N_t=N_t)
        tree = crr(SCENARIO, N=1000)
        assert abs(fd - tree) < 0.05, f"FD={fd:.4f} tree={tree:.4f}"

    def test_geq_intrinsic_everywhere(self):
        for s in (55.0, 65.0, 75.0):
            opt = SCENARIO.replace(spot=s)
            assert fd_price(opt, N_S=N_S, N_t=N_t) >= opt.intrinsic() - 1e-9


class TestFDExerciseRegion:
    def test_double_boundary_region(self):
        region = fd_exercise_region(SCENARIO)
        assert region is not None
        low, high = region
        # band sits strictly between K r / q and K
        assert 50.0 < low < high < 100.0, f"region=({low:.3f}, {high:.3f})"

    def test_no_region_without_early_exercise(self):
        opt = SCENARIO.replace(rate=-0.01, dividend=0.0, maturity=1.0)
        assert fd_exercise_region(opt) is None

    def test_single_boundary_region_below_strike(self):
        region = fd_exercise_region(OPT.replace(kind=PUT))
        assert region is not None
        assert region[1] < 100.0


class TestFDConvergence:
    def test_convergence_with_refinement(self):
        bs = bs_price(OPT)
        errors = []
        for n in [50, 100, 200]:
            fd = fd_price(OPT, N_S=n, N_t=n, american=False)
            errors.append(abs(fd - bs))
        assert errors[1] < errors[0]
        assert errors[2] < errors[1]

    def test_bad_grid(self):
        with pytest.raises(InvalidInputError):
            fd_price(OPT, N_S=2)
        with pytest.raises(InvalidInputError):
            fd_price(OPT, theta=1.5)
