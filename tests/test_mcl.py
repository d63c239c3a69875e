"""Tests for the inline MCL limiter."""

from __future__ import annotations

import numpy as np
import pytest

from subcell.diagnostics.bounds_check import (
    BoundsCheckCallback,
    kuzmin_pressure_error,
    limited_bar_states,
)
from subcell.limiting.mcl import (
    SubcellLimiterMCL,
    clamp_flux,
    interior_faces,
    limiting_coefficient,
    minus_nodes,
    plus_nodes,
    snap_to_zero,
)
from subcell.limiting.observer import MCLAlphaRecorder
from subcell.verification.initial_conditions import (
    initial_condition_constant,
    initial_condition_density_wave,
    initial_condition_sedov_blast_wave,
)


def _limited_faces(semi):
    bs = semi.bar_states
    faces = []
    faces.extend(limited_bar_states(bs.bar_states1, semi.antidiffusive_flux1, bs.lambda1, 1))
    faces.extend(limited_bar_states(bs.bar_states2, semi.antidiffusive_flux2, bs.lambda2, 2))
    return faces


class TestFaceHelpers:
    """Index helpers and closed-form clamps."""

    def test_face_and_node_slices(self):
        faces1 = np.zeros((4, 5, 4, 2))
        faces2 = np.zeros((4, 4, 5, 2))
        nodes = np.zeros((4, 4, 4, 2))
        assert interior_faces(faces1, 1).shape == (4, 3, 4, 2)
        assert interior_faces(faces2, 2).shape == (4, 4, 3, 2)
        assert minus_nodes(nodes, 1).shape == plus_nodes(nodes, 1).shape == (4, 3, 4, 2)
        assert minus_nodes(nodes, 2).shape == (4, 4, 3, 2)

    def test_snap_to_zero(self):
        x = np.array([1e-17, -1e-17, 1e-3, -2.0])
        np.testing.assert_array_equal(snap_to_zero(x), [0.0, 0.0, 1e-3, -2.0])

    def test_clamp_flux_keeps_sign(self):
        flux = np.array([2.0, 2.0, -2.0, -2.0, 0.5])
        f_max = np.array([1.0, -1.0, 1.0, 1.0, 1.0])
        f_min = np.array([-1.0, -1.0, -1.0, 0.5, -1.0])
        np.testing.assert_array_equal(clamp_flux(flux, f_max, f_min), [1.0, 0.0, -1.0, 0.0, 0.5])

    def test_limiting_coefficient(self):
        limited = np.array([0.5, 0.0, 0.0, -1.0])
        flux = np.array([1.0, 0.0, 2.0, -1.0])
        np.testing.assert_allclose(limiting_coefficient(limited, flux), [0.5, 1.0, 0.0, 1.0])


class TestSubcellLimiterMCLConfig:
    """Construction-time validation."""

    def test_sequential_and_conservative_exclusive(self, equations):
        with pytest.raises(ValueError, match="mutually exclusive"):
            SubcellLimiterMCL(equations, sequential_limiter=True, conservative_limiter=True)

    def test_coefficient_for_all_needs_density_limiter(self, equations):
        with pytest.raises(ValueError, match="requires a density limiter"):
            SubcellLimiterMCL(equations, density_limiter=False, density_coefficient_for_all=True)

    @pytest.mark.parametrize("beta", [-0.1, 1.0])
    def test_correction_factor_range(self, equations, beta):
        with pytest.raises(ValueError, match="positivity_limiter_correction_factor"):
            SubcellLimiterMCL(
                equations, positivity_limiter_density=True, positivity_limiter_correction_factor=beta,
            )

    def test_layout(self, equations):
        limiter = SubcellLimiterMCL(equations, positivity_limiter_pressure=True)
        assert limiter.layout.names()[:2] == ["rho_min", "rho_max"]
        assert limiter.layout.names()[-1] == "pressure_min"


class TestSubcellLimiterMCL:
    """Limiting inside the RHS."""

    def test_free_stream(self, equations, make_semi):
        limiter = SubcellLimiterMCL(equations, positivity_limiter_pressure=True)
        semi = make_semi(limiter, initial_condition_constant)
        u = semi.compute_coefficients(0.0)
        du = semi.rhs(u, 0.0)
        np.testing.assert_allclose(du, 0.0, atol=1e-11)

    def test_limiter_order(self, equations, make_semi, monkeypatch):
        """Sub-limiters run in a fixed order, each orientation in turn."""
        limiter = SubcellLimiterMCL(
            equations,
            positivity_limiter_density=True,
            positivity_limiter_pressure=True,
            entropy_limiter_semidiscrete=True,
        )
        semi = make_semi(limiter, initial_condition_density_wave)
        calls = []
        for name in ("density", "sequential", "density_positivity", "pressure", "entropy"):
            method = getattr(limiter, f"_limit_{name}")

            def record(*args, _name=name, _method=method):
                calls.append(_name)
                return _method(*args)

            monkeypatch.setattr(limiter, f"_limit_{name}", record)

        semi.rhs(semi.compute_coefficients(0.0), 0.0)
        assert calls == [
            "density", "sequential", "density", "sequential",
            "density_positivity", "density_positivity",
            "pressure", "pressure", "entropy", "entropy",
        ]

    def test_conservative_limiter_replaces_sequential(self, equations, make_semi, monkeypatch):
        limiter = SubcellLimiterMCL(equations, sequential_limiter=False, conservative_limiter=True)
        semi = make_semi(limiter, initial_condition_density_wave)
        calls = []
        original = limiter._limit_conservative

        def record(*args):
            calls.append("conservative")
            return original(*args)

        monkeypatch.setattr(limiter, "_limit_conservative", record)
        semi.rhs(semi.compute_coefficients(0.0), 0.0)
        assert calls == ["conservative", "conservative"]

    @pytest.mark.parametrize("sequential", [True, False])
    def test_limited_bar_states_within_bounds(self, equations, make_semi, sequential):
        """Density and sequential/conservative limiting keep every limited bar state in bounds."""
        limiter = SubcellLimiterMCL(
            equations, sequential_limiter=sequential, conservative_limiter=not sequential,
        )
        semi = make_semi(limiter, initial_condition_density_wave)
        u = semi.compute_coefficients(0.0)
        semi.rhs(u, 0.0)

        callback = BoundsCheckCallback()
        callback.init(semi, u, 0.0)
        callback.check_mcl(u, limiter, semi)
        for name in limiter.layout.names():
            assert callback.max_deviation(name) <= 1e-9, name

    def test_density_positivity(self, equations, make_semi):
        """Limited bar-state densities stay above beta times the bar-state density."""
        beta = 0.1
        limiter = SubcellLimiterMCL(
            equations,
            density_limiter=False,
            sequential_limiter=False,
            positivity_limiter_density=True,
            positivity_limiter_correction_factor=beta,
        )
        semi = make_semi(limiter, initial_condition_density_wave)
        semi.rhs(semi.compute_coefficients(0.0), 0.0)

        bs = semi.bar_states
        for orientation, bar, flux, lam in (
            (1, bs.bar_states1, semi.antidiffusive_flux1, bs.lambda1),
            (2, bs.bar_states2, semi.antidiffusive_flux2, bs.lambda2),
        ):
            F = interior_faces(flux[0], orientation)
            rho_bar = interior_faces(bar[0], orientation)
            lam_f = interior_faces(lam, orientation)
            assert np.all(rho_bar - F / lam_f >= beta * rho_bar - 1e-13)
            assert np.all(rho_bar + F / lam_f >= beta * rho_bar - 1e-13)

    def test_pressure_positivity(self, equations, make_semi):
        """Limited bar states of a Sedov blast keep nonnegative pressure."""
        limiter = SubcellLimiterMCL(
            equations, density_limiter=False, sequential_limiter=False, positivity_limiter_pressure=True,
        )
        semi = make_semi(limiter, initial_condition_sedov_blast_wave)
        semi.rhs(semi.compute_coefficients(0.0), 0.0)
        for state in _limited_faces(semi):
            assert np.all(kuzmin_pressure_error(state) <= 1e-10)

    def test_entropy_limiter_needs_buffers(self, equations, make_semi):
        limiter = SubcellLimiterMCL(equations, entropy_limiter_semidiscrete=True)
        semi = make_semi(limiter, initial_condition_density_wave)
        u = semi.compute_coefficients(0.0)
        semi.rhs(u, 0.0)
        with pytest.raises(ValueError, match="low-order flux buffers"):
            limiter.limit(u, 0.0, np.nan, semi)

    def test_limiting_is_conservative(self, equations, make_semi):
        """The RHS integrates to zero over a periodic domain."""
        limiter = SubcellLimiterMCL(
            equations, positivity_limiter_pressure=True, entropy_limiter_semidiscrete=True,
        )
        semi = make_semi(limiter, initial_condition_density_wave)
        du = semi.rhs(semi.compute_coefficients(0.0), 0.0)
        w = semi.basis.weights
        total = np.einsum("i,j,vije->v", w, w, du)
        np.testing.assert_allclose(total, 0.0, atol=1e-10)

    def test_recorder_coefficients(self, equations, make_semi):
        recorder = MCLAlphaRecorder()
        limiter = SubcellLimiterMCL(equations, positivity_limiter_pressure=True, observer=recorder)
        semi = make_semi(limiter, initial_condition_density_wave)
        semi.rhs(semi.compute_coefficients(0.0), 0.0)
        for values in (recorder.alpha, recorder.alpha_mean, recorder.alpha_pressure):
            assert np.all(values >= -1e-14)
            assert np.all(values <= 1.0 + 1e-14)
        assert np.all(recorder.alpha_eff <= 1.0)
        assert np.any(recorder.alpha < 1.0)
