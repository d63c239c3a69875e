"""Tests for the Newton-bisection solve of the nonlinear IDP constraints."""

from __future__ import annotations

import numpy as np
import pytest
from scipy.optimize import brentq

from subcell.limiting.newton import (
    GOAL_MATH_ENTROPY,
    GOAL_PRESSURE,
    GOAL_SPEC_ENTROPY,
    newton_bisection,
    newton_loops_alpha,
)


class TestNewtonBisection:
    """Single-face solves."""

    def test_admissible_update_is_kept(self, equations):
        u = equations.prim2cons(np.array([1.0, 0.0, 0.0, 1.0]))
        dt_flux = np.array([0.0, 0.0, 0.0, 0.1])
        alpha, converged = newton_bisection(u, dt_flux, 0.5, GOAL_PRESSURE, equations.gamma)
        assert converged
        assert alpha == 0.0

    def test_pressure_root_matches_brentq(self, equations):
        """The limited update lands on p = bound."""
        u = equations.prim2cons(np.array([1.0, 0.0, 0.0, 1.0]))
        dt_flux = np.array([0.0, 1.0, 0.0, -2.0])
        bound = 0.1

        def goal(beta):
            return equations.pressure(u + beta * dt_flux) - bound

        beta_ref = brentq(goal, 0.0, 1.0 - 1e-9, xtol=1e-15)
        alpha, converged = newton_bisection(
            u, dt_flux, bound, GOAL_PRESSURE, equations.gamma, max_iterations=100,
        )
        assert converged
        assert alpha == pytest.approx(1.0 - beta_ref, abs=1e-8)
        assert equations.pressure(u + (1.0 - alpha) * dt_flux) >= bound - 1e-12

    def test_spec_entropy_minimum(self, equations):
        u = equations.prim2cons(np.array([1.0, 0.2, 0.0, 1.0]))
        dt_flux = np.array([0.3, 0.0, 0.1, -0.6])
        bound = 0.95 * float(equations.entropy_spec(u))
        assert equations.entropy_spec(u + dt_flux) < bound

        alpha, converged = newton_bisection(
            u, dt_flux, bound, GOAL_SPEC_ENTROPY, equations.gamma, max_iterations=100,
        )
        assert converged
        assert 0.0 < alpha < 1.0
        s = float(equations.entropy_spec(u + (1.0 - alpha) * dt_flux))
        assert s == pytest.approx(bound, rel=1e-8)

    def test_math_entropy_maximum(self, equations):
        u = equations.prim2cons(np.array([1.0, 0.0, 0.0, 1.0]))
        dt_flux = np.array([0.0, 0.0, 0.0, -0.5])
        bound = float(equations.entropy_math(u)) + 0.05
        assert equations.entropy_math(u + dt_flux) > bound

        alpha, converged = newton_bisection(
            u, dt_flux, bound, GOAL_MATH_ENTROPY, equations.gamma, max_iterations=100,
        )
        assert converged
        assert float(equations.entropy_math(u + (1.0 - alpha) * dt_flux)) <= bound + 1e-10

    def test_invalid_intermediate_state_shrinks_bracket(self, equations):
        """A full update with negative density is handled by bisection."""
        u = equations.prim2cons(np.array([1.0, 0.0, 0.0, 1.0]))
        dt_flux = np.array([-2.0, 0.0, 0.0, -2.0])
        alpha, _ = newton_bisection(
            u, dt_flux, 0.1, GOAL_PRESSURE, equations.gamma, max_iterations=100,
        )
        state = u + (1.0 - alpha) * dt_flux
        assert equations.is_valid_state(state)
        assert equations.pressure(state) >= 0.1 - 1e-12


class TestNewtonLoopsAlpha:
    """Node loop over all four faces."""

    def _setup(self, equations, rng, scale):
        n, nel = 3, 2
        prim = np.stack([
            rng.uniform(0.5, 1.5, size=(n, n, nel)),
            rng.uniform(-0.2, 0.2, size=(n, n, nel)),
            rng.uniform(-0.2, 0.2, size=(n, n, nel)),
            rng.uniform(0.5, 1.5, size=(n, n, nel)),
        ])
        u = equations.prim2cons(prim)
        flux1 = scale * rng.normal(size=(4, n + 1, n, nel))
        flux2 = scale * rng.normal(size=(4, n, n + 1, nel))
        invw = np.array([3.0, 0.75, 3.0])
        invJ = np.array([4.0, 4.0])
        return u, flux1, flux2, invw, invJ

    def _run(self, equations, alpha, bounds, u, flux1, flux2, invw, invJ, dt):
        return newton_loops_alpha(
            alpha, bounds, u, flux1, flux2, invw, invJ, dt,
            kind=GOAL_PRESSURE, gamma=equations.gamma, gamma_constant=4.0,
            max_iterations=100, tolerances=(1e-12, 1e-14),
        )

    def test_zero_flux_keeps_alpha(self, equations, rng):
        u, flux1, flux2, invw, invJ = self._setup(equations, rng, scale=0.0)
        alpha = np.zeros(u.shape[1:])
        bounds = 0.1 * equations.pressure(u)
        unconverged = self._run(equations, alpha, bounds, u, flux1, flux2, invw, invJ, 0.01)
        assert unconverged == 0
        np.testing.assert_array_equal(alpha, 0.0)

    def test_alpha_only_grows_and_bounds_hold(self, equations, rng):
        u, flux1, flux2, invw, invJ = self._setup(equations, rng, scale=5.0)
        alpha_start = rng.uniform(0.0, 0.3, size=u.shape[1:])
        alpha = alpha_start.copy()
        bounds = 0.1 * equations.pressure(u)
        dt = 0.05
        self._run(equations, alpha, bounds, u, flux1, flux2, invw, invJ, dt)

        assert np.all(alpha >= alpha_start)
        assert np.all(alpha <= 1.0)
        # x-face on the negative side of node (1, 1) of element 0
        i, j, e = 1, 1, 0
        face = 4.0 * invJ[e] * invw[i] * dt * flux1[:, i, j, e]
        state = u[:, i, j, e] + (1.0 - alpha[i, j, e]) * face
        assert equations.pressure(state) >= bounds[i, j, e] - 1e-12

    def test_alpha_decrease_raises(self, equations, monkeypatch):
        """A reported alpha decrease surfaces as RuntimeError."""
        from subcell.limiting import newton

        def fake_core(*args):
            info = args[-1]
            info[:] = (1.0, 3.0, 1.0, 2.0, 0.5, 0.25)
            return 0

        monkeypatch.setattr(newton, "_newton_loops_alpha_core", fake_core)
        u = np.ones((4, 2, 2, 4))
        with pytest.raises(RuntimeError, match="alpha decreased during the pressure solve at element 3"):
            newton_loops_alpha(
                np.zeros((2, 2, 4)), np.zeros((2, 2, 4)), u,
                np.zeros((4, 3, 2, 4)), np.zeros((4, 2, 3, 4)), np.ones(2), np.ones(4), 0.1,
                kind=GOAL_PRESSURE, gamma=equations.gamma, gamma_constant=4.0,
                max_iterations=10, tolerances=(1e-12, 1e-14),
            )
