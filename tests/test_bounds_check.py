"""Tests for the bounds-check stage callback."""

from __future__ import annotations

import logging
from types import SimpleNamespace

import numpy as np
import pytest

from subcell.diagnostics.bounds_check import (
    DEVIATIONS_FILE,
    BoundsCheckCallback,
    kuzmin_pressure_error,
    limited_bar_states,
)
from subcell.limiting.bounds import BoundKey, BoundKind
from subcell.limiting.idp import SubcellLimiterIDP
from subcell.limiting.mcl import SubcellLimiterMCL
from subcell.verification.initial_conditions import initial_condition_density_wave


@pytest.fixture
def idp_stage(equations, make_semi):
    """IDP semidiscretization after one corrected forward-Euler stage."""
    limiter = SubcellLimiterIDP(equations, local_minmax_variables_cons=["rho"])
    semi = make_semi(limiter, initial_condition_density_wave)
    u = semi.compute_coefficients(0.0)
    dt = semi.max_dt(u, 0.1)
    u_new = u + dt * semi.rhs(u, 0.0)
    limiter.limit_and_correct(u_new, 0.0, dt, 1, semi)
    return semi, u, u_new, dt


class TestHelpers:
    """Limited bar states and the Kuzmin pressure error."""

    def test_limited_bar_states_without_flux(self, rng):
        bar = rng.normal(size=(4, 5, 4, 2))
        lam = rng.uniform(1.0, 2.0, size=(5, 4, 2))
        minus, plus = limited_bar_states(bar, np.zeros_like(bar), lam, 1)
        np.testing.assert_array_equal(minus, bar[:, :-1])
        np.testing.assert_array_equal(plus, bar[:, 1:])

    def test_limited_bar_states_shift(self):
        bar = np.ones((1, 3, 2, 1))
        flux = np.zeros_like(bar)
        flux[0, 1] = 0.5
        lam = np.full((3, 2, 1), 2.0)
        minus, plus = limited_bar_states(bar, flux, lam, 1)
        # node 1 sees face 1 from its negative side, node 0 from its positive side
        np.testing.assert_allclose(minus[0, 1], 0.75)
        np.testing.assert_allclose(plus[0, 0], 1.25)

    def test_kuzmin_pressure_error_sign(self, equations):
        good = equations.prim2cons(np.array([1.0, 0.5, 0.0, 1.0]))
        assert kuzmin_pressure_error(good) < 0.0
        bad = np.array([1.0, 2.0, 0.0, 1.0])
        assert kuzmin_pressure_error(bad) > 0.0


class TestBoundsCheckCallback:
    """Deviation bookkeeping and the output file."""

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError, match="interval"):
            BoundsCheckCallback(interval=0)

    def test_corrected_stage_is_in_bounds(self, idp_stage):
        semi, u, u_new, dt = idp_stage
        callback = BoundsCheckCallback()
        callback.init(semi, u, 0.0)
        callback(u_new, 0.0, dt, 1, 3, 1, False, semi)
        assert callback.max_deviation("rho_min") <= 1e-12
        assert callback.max_deviation("rho_max") <= 1e-12

    def test_measures_violation(self, idp_stage):
        semi, u, u_new, dt = idp_stage
        callback = BoundsCheckCallback()
        callback.init(semi, u, 0.0)
        bad = u_new.copy()
        bad[0] = semi.limiter.bounds(BoundKey(BoundKind.LOCAL_MIN, "rho")) - 0.25
        callback(bad, 0.0, dt, 1, 3, 1, False, semi)
        assert callback.max_deviation("rho_min") == pytest.approx(0.25)

    def test_file_format(self, idp_stage, tmp_path):
        semi, u, u_new, dt = idp_stage
        callback = BoundsCheckCallback(output_directory=tmp_path, save_errors=True, interval=2)
        callback.init(semi, u, 0.0)
        t = 0.0
        for iteration in (1, 2):
            for stage, c in zip((1, 2, 3), (0.0, 1.0, 0.5)):
                callback(u_new, t + c * dt, dt, stage, 3, iteration, False, semi)
            t += dt

        lines = (tmp_path / DEVIATIONS_FILE).read_text().splitlines()
        assert lines[0] == "# iter, simu_time, rho_min, rho_max"
        assert len(lines) == 2
        fields = lines[1].split(", ")
        assert fields[0] == "2"
        assert float(fields[1]) == pytest.approx(2.0 * dt, rel=1e-15)
        assert len(fields) == 4

    def test_current_resets_after_saved_row(self, idp_stage, tmp_path):
        semi, u, u_new, dt = idp_stage
        callback = BoundsCheckCallback(output_directory=tmp_path, save_errors=True)
        callback.init(semi, u, 0.0)
        bad = u_new.copy()
        bad[0] -= 1.0
        callback(bad, 0.0, dt, 3, 3, 1, False, semi)
        assert np.all(callback.deviations[:, 0] == 0.0)
        assert callback.max_deviation("rho_min") > 0.5

        callback(u_new, dt, dt, 3, 3, 2, False, semi)
        rows = (tmp_path / DEVIATIONS_FILE).read_text().splitlines()[1:]
        first = [float(x) for x in rows[0].split(", ")[2:]]
        second = [float(x) for x in rows[1].split(", ")[2:]]
        assert first[0] > 0.5
        assert second[0] <= 1e-12

    def test_finished_forces_row(self, idp_stage, tmp_path):
        semi, u, u_new, dt = idp_stage
        callback = BoundsCheckCallback(output_directory=tmp_path, save_errors=True, interval=10)
        callback.init(semi, u, 0.0)
        callback(u_new, 0.0, dt, 3, 3, 3, True, semi)
        assert len((tmp_path / DEVIATIONS_FILE).read_text().splitlines()) == 2

    def test_unknown_name(self, idp_stage):
        semi, u, _, _ = idp_stage
        callback = BoundsCheckCallback()
        callback.init(semi, u, 0.0)
        with pytest.raises(KeyError, match="pressure_min"):
            callback.max_deviation("pressure_min")

    def test_unknown_limiter(self, idp_stage):
        semi, u, _, dt = idp_stage
        callback = BoundsCheckCallback()
        callback.init(semi, u, 0.0)
        with pytest.raises(TypeError, match="no bounds check"):
            callback(u, 0.0, dt, 1, 3, 1, False, SimpleNamespace(limiter=object()))

    def test_finalize_logs_summary(self, equations, make_semi, caplog):
        limiter = SubcellLimiterMCL(equations, entropy_limiter_semidiscrete=True)
        semi = make_semi(limiter, initial_condition_density_wave)
        u = semi.compute_coefficients(0.0)
        semi.rhs(u, 0.0)
        callback = BoundsCheckCallback()
        callback.init(semi, u, 0.0)
        callback(u, 0.0, 0.0, 3, 3, 1, False, semi)
        with caplog.at_level(logging.INFO, logger="subcell.diagnostics.bounds_check"):
            callback.finalize(semi)
        assert "Maximum deviation from bounds" in caplog.text
        assert "semi-discrete entropy limiter" in caplog.text
