"""Monotonic convex limiting (MCL), applied inline in the RHS.

Every interior subcell face carries a bar state ``u_bar`` and a wave speed
``lambda``.  The low-order scheme is a convex combination of bar states, so
the high-order scheme stays in bounds as long as every *limited* bar state

    u_bar_lim = u_bar +/- F_lim / lambda

does.  Each sub-limiter clamps or rescales the antidiffusive flux
``F = fstar - fhat`` in closed form.  They run in a fixed order and each
one reads the flux the previous ones wrote:

    1. density           clamp F_rho to [rho_min, rho_max] of both nodes
    2. sequential        clamp the fluxes of phi = (rho_v1, rho_v2, rho_e) / rho
       or conservative   clamp the raw conservative fluxes
    3. density positivity  keep rho_bar_lim >= beta * rho_bar
    4. pressure (Kuzmin) scale the full flux vector so that the limited
                         bar state has nonnegative pressure
    5. entropy           semi-discrete entropy inequality per face

The limited flux enters the RHS as ``G = fstar - F``.

References:
    D. Kuzmin, "Monolithic convex limiting for continuous finite element
    discretizations of hyperbolic conservation laws", CMAME 361 (2020).
    A. Rueda-Ramirez, B. Bolm, D. Kuzmin, G. Gassner, "Monolithic convex
    limiting for Legendre-Gauss-Lobatto discontinuous Galerkin spectral
    element methods", arXiv:2303.00374 (2023).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np

from subcell.constants import EPS
from subcell.core.arena import ScratchBuffers
from subcell.core.bases import SubcellLimiterBase
from subcell.fluid.euler import CompressibleEuler2D
from subcell.limiting.antidiffusive import add_flux_differences, antidiffusive_flux
from subcell.limiting.bounds import BoundLayout, BoundsCalculator
from subcell.limiting.observer import AlphaObserver, NullAlphaObserver

if TYPE_CHECKING:
    from subcell.config import MCLLimiterConfig
    from subcell.semidiscretization import SemidiscretizationSubcell

logger = logging.getLogger(__name__)


# ============================================================
# Face helpers
# ============================================================
# For orientation 1 the interior faces of a face array (..., n+1, n, m)
# are [..., 1:-1, :, :]; the node on their negative side is [..., :-1, :, :]
# and on their positive side [..., 1:, :, :] of a node array.

def interior_faces(a: np.ndarray, orientation: int) -> np.ndarray:
    return a[..., 1:-1, :, :] if orientation == 1 else a[..., :, 1:-1, :]


def minus_nodes(a: np.ndarray, orientation: int) -> np.ndarray:
    return a[..., :-1, :, :] if orientation == 1 else a[..., :, :-1, :]


def plus_nodes(a: np.ndarray, orientation: int) -> np.ndarray:
    return a[..., 1:, :, :] if orientation == 1 else a[..., :, 1:, :]


def snap_to_zero(x: np.ndarray) -> np.ndarray:
    """Replace values within machine epsilon of zero by zero."""
    return np.where(np.abs(x) <= EPS, 0.0, x)


def clamp_flux(flux: np.ndarray, f_max: np.ndarray, f_min: np.ndarray) -> np.ndarray:
    """Clamp ``flux`` without changing its sign."""
    return np.where(
        flux > 0.0,
        np.minimum(flux, np.maximum(f_max, 0.0)),
        np.maximum(flux, np.minimum(f_min, 0.0)),
    )


def limiting_coefficient(limited: np.ndarray, flux: np.ndarray) -> np.ndarray:
    """Ratio ``limited / flux`` in [0, 1], and 1 where ``flux`` vanishes."""
    shift = np.sign(limited) * EPS
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = np.minimum(1.0, (limited + shift) / (flux + shift))
    return np.where(np.abs(flux) <= EPS, 1.0, ratio)


def _record_min(a: np.ndarray, coefficient: np.ndarray, orientation: int) -> None:
    lo = minus_nodes(a, orientation)
    np.minimum(lo, coefficient, out=lo)
    hi = plus_nodes(a, orientation)
    np.minimum(hi, coefficient, out=hi)


def _record_sum(a: np.ndarray, value: np.ndarray, orientation: int) -> None:
    lo = minus_nodes(a, orientation)
    lo += value
    hi = plus_nodes(a, orientation)
    hi += value


def _close_mean(a: np.ndarray) -> None:
    """Element edge faces contribute 1; then average over the four faces."""
    a[..., :, 0, :] += 1.0
    a[..., :, -1, :] += 1.0
    a[..., 0, :, :] += 1.0
    a[..., -1, :, :] += 1.0
    a /= 4.0


class SubcellLimiterMCL(SubcellLimiterBase):
    """Inline MCL limiter.

    Args:
        equations: Physics object.
        density_limiter: Local bounds on density.
        density_coefficient_for_all: Scale all fluxes by the density coefficient.
        sequential_limiter: Local bounds on phi = variable / density.
        conservative_limiter: Local bounds on the raw conservative variables.
        positivity_limiter_pressure: Kuzmin pressure positivity limiter.
        positivity_limiter_pressure_exact: Exact (True) or approximate R term.
        positivity_limiter_density: Density positivity limiter.
        positivity_limiter_correction_factor: beta of the density positivity limiter.
        entropy_limiter_semidiscrete: Semi-discrete entropy limiter.
        observer: Diagnostics recorder.
    """

    inline = True

    def __init__(
        self,
        equations: CompressibleEuler2D,
        density_limiter: bool = True,
        density_coefficient_for_all: bool = False,
        sequential_limiter: bool = True,
        conservative_limiter: bool = False,
        positivity_limiter_pressure: bool = False,
        positivity_limiter_pressure_exact: bool = True,
        positivity_limiter_density: bool = False,
        positivity_limiter_correction_factor: float = 0.0,
        entropy_limiter_semidiscrete: bool = False,
        observer: AlphaObserver | None = None,
    ) -> None:
        if sequential_limiter and conservative_limiter:
            raise ValueError("sequential_limiter and conservative_limiter are mutually exclusive")
        if density_coefficient_for_all and not (density_limiter or positivity_limiter_density):
            raise ValueError("density_coefficient_for_all requires a density limiter")
        if not (0.0 <= positivity_limiter_correction_factor < 1.0):
            raise ValueError(
                "positivity_limiter_correction_factor must lie in [0, 1), got "
                f"{positivity_limiter_correction_factor}"
            )

        self.equations = equations
        self.density_limiter = density_limiter
        self.density_coefficient_for_all = density_coefficient_for_all
        self.sequential_limiter = sequential_limiter
        self.conservative_limiter = conservative_limiter
        self.positivity_limiter_pressure = positivity_limiter_pressure
        self.positivity_limiter_pressure_exact = positivity_limiter_pressure_exact
        self.positivity_limiter_density = positivity_limiter_density
        self.positivity_limiter_correction_factor = float(positivity_limiter_correction_factor)
        self.entropy_limiter_semidiscrete = entropy_limiter_semidiscrete
        self.observer = observer or NullAlphaObserver()
        self.layout = BoundLayout.for_mcl(equations.varnames(), positivity_limiter_pressure)

    @classmethod
    def from_config(
        cls,
        equations: CompressibleEuler2D,
        config: MCLLimiterConfig,
        observer: AlphaObserver | None = None,
    ) -> SubcellLimiterMCL:
        return cls(
            equations,
            density_limiter=config.density_limiter,
            density_coefficient_for_all=config.density_coefficient_for_all,
            sequential_limiter=config.sequential_limiter,
            conservative_limiter=config.conservative_limiter,
            positivity_limiter_pressure=config.positivity_limiter_pressure,
            positivity_limiter_pressure_exact=config.positivity_limiter_pressure_exact,
            positivity_limiter_density=config.positivity_limiter_density,
            positivity_limiter_correction_factor=config.positivity_limiter_correction_factor,
            entropy_limiter_semidiscrete=config.entropy_limiter_semidiscrete,
            observer=observer,
        )

    def setup(self, semi: SemidiscretizationSubcell) -> None:
        n = semi.basis.nnodes
        nel = semi.mesh.nelements
        nvars = self.equations.nvariables
        self.variable_bounds = self.layout.allocate(n, nel)
        # Views in variable order: keys alternate <v>_min, <v>_max
        self.var_min = self.variable_bounds[0:2 * nvars:2]
        self.var_max = self.variable_bounds[1:2 * nvars:2]
        self.observer.setup(nvars, n, nel)
        logger.info("MCL limiter: %s", self.describe())

    def describe(self) -> dict[str, Any]:
        return {
            "kind": "mcl",
            "density": self.density_limiter,
            "sequential": self.sequential_limiter,
            "conservative": self.conservative_limiter,
            "density_positivity": self.positivity_limiter_density,
            "pressure_positivity": self.positivity_limiter_pressure,
            "entropy": self.entropy_limiter_semidiscrete,
        }

    # --- Bounds ---

    def compute_bounds(self, u: np.ndarray, t: float, semi: SemidiscretizationSubcell) -> None:
        """Local bounds from the node values and the bar states.

        Density bounds are always computed; the other variables use the
        ratio phi = variable / density (sequential) or the raw variable
        (conservative).
        """
        bs = semi.bar_states
        bar1, bar2 = bs.bar_states1, bs.bar_states2
        calc = BoundsCalculator
        self.var_min[0], self.var_max[0] = calc.two_sided_from_bar_states(u[0], bar1[0], bar2[0])
        for v in range(1, self.equations.nvariables):
            if self.sequential_limiter:
                self.var_min[v], self.var_max[v] = calc.two_sided_from_bar_states(
                    u[v] / u[0], bar1[v] / bar1[0], bar2[v] / bar2[0],
                )
            elif self.conservative_limiter:
                self.var_min[v], self.var_max[v] = calc.two_sided_from_bar_states(
                    u[v], bar1[v], bar2[v],
                )

    # --- Antidiffusive flux ---

    def build_antidiffusive_flux(
        self, buffers: ScratchBuffers, out1: np.ndarray, out2: np.ndarray,
    ) -> None:
        antidiffusive_flux(buffers.fhat1, buffers.fstar1, -1.0, out1)
        antidiffusive_flux(buffers.fhat2, buffers.fstar2, -1.0, out2)

    # --- Limiting ---

    def limit(
        self,
        u: np.ndarray,
        t: float,
        dt: float,
        semi: SemidiscretizationSubcell,
        elements: slice = slice(None),
        buffers: ScratchBuffers | None = None,
    ) -> None:
        """Limit the antidiffusive flux of ``elements`` in the fixed order.

        ``u`` is the stage-start solution; ``buffers`` must hold the
        low-order flux of the block when the entropy limiter is on.
        """
        obs = self.observer if self.observer.enabled else None
        if obs is not None:
            obs.reset_block(elements)

        u_b = u[..., elements]
        fluxes = (semi.antidiffusive_flux1[..., elements], semi.antidiffusive_flux2[..., elements])
        bars = (semi.bar_states.bar_states1[..., elements], semi.bar_states.bar_states2[..., elements])
        lams = (semi.bar_states.lambda1[..., elements], semi.bar_states.lambda2[..., elements])
        var_min = self.var_min[..., elements]
        var_max = self.var_max[..., elements]
        views = _ObserverViews(obs, elements) if obs is not None else None

        for orientation in (1, 2):
            flux = fluxes[orientation - 1]
            bar = bars[orientation - 1]
            lam = lams[orientation - 1]
            if self.density_limiter:
                self._limit_density(u_b, flux, bar, lam, var_min, var_max, orientation, views)
            if self.sequential_limiter:
                self._limit_sequential(u_b, flux, bar, lam, var_min, var_max, orientation, views)
            elif self.conservative_limiter:
                self._limit_conservative(u_b, flux, bar, lam, var_min, var_max, orientation, views)

        if obs is not None:
            obs.finish_block(elements)

        if self.positivity_limiter_density:
            for orientation in (1, 2):
                self._limit_density_positivity(
                    fluxes[orientation - 1], bars[orientation - 1], lams[orientation - 1],
                    orientation, views,
                )

        if views is not None:
            if self.density_limiter or self.positivity_limiter_density:
                _close_mean(views.alpha_mean[0])
            if self.sequential_limiter or self.conservative_limiter:
                _close_mean(views.alpha_mean[1:])

        if self.positivity_limiter_pressure:
            for orientation in (1, 2):
                self._limit_pressure(
                    fluxes[orientation - 1], bars[orientation - 1], lams[orientation - 1],
                    orientation, views,
                )
            if views is not None:
                _close_mean(views.alpha_mean_pressure)

        if self.entropy_limiter_semidiscrete:
            if buffers is None:
                raise ValueError("the entropy limiter needs the low-order flux buffers")
            fstars = (buffers.fstar1, buffers.fstar2)
            for orientation in (1, 2):
                self._limit_entropy(
                    u_b, fluxes[orientation - 1], fstars[orientation - 1], orientation, views,
                )
            if views is not None:
                _close_mean(views.alpha_mean_entropy)

    def _limit_density(self, u, flux, bar, lam, var_min, var_max, orientation, views) -> None:
        F = interior_faces(flux[0], orientation)
        lam_f = interior_faces(lam, orientation)
        rho_bar = interior_faces(bar[0], orientation)
        f_max = lam_f * np.minimum(
            minus_nodes(var_max[0], orientation) - rho_bar,
            rho_bar - plus_nodes(var_min[0], orientation),
        )
        f_min = lam_f * np.maximum(
            minus_nodes(var_min[0], orientation) - rho_bar,
            rho_bar - plus_nodes(var_max[0], orientation),
        )
        limited = clamp_flux(F, snap_to_zero(f_max), snap_to_zero(f_min))

        coefficient = None
        if views is not None or self.density_coefficient_for_all:
            coefficient = limiting_coefficient(limited, F)
        if views is not None:
            views.add_budgets(0, u[0], rho_bar, lam_f, limited, F, orientation)
            _record_min(views.alpha[0], coefficient, orientation)
            _record_sum(views.alpha_mean[0], coefficient, orientation)

        F[...] = limited
        if self.density_coefficient_for_all:
            interior_faces(flux[1:], orientation)[...] *= coefficient

    def _limit_sequential(self, u, flux, bar, lam, var_min, var_max, orientation, views) -> None:
        lam_f = interior_faces(lam, orientation)
        rho_bar = interior_faces(bar[0], orientation)
        F_rho = interior_faces(flux[0], orientation)
        rho_limited_iim1 = lam_f * rho_bar - F_rho
        rho_limited_im1i = lam_f * rho_bar + F_rho

        for v in range(1, self.equations.nvariables):
            F = interior_faces(flux[v], orientation)
            bar_phi = interior_faces(bar[v], orientation)
            phi = bar_phi / rho_bar
            g = F + (lam_f * bar_phi - rho_limited_im1i * phi)

            g_max = np.minimum(
                rho_limited_im1i * (minus_nodes(var_max[v], orientation) - phi),
                rho_limited_iim1 * (phi - plus_nodes(var_min[v], orientation)),
            )
            g_min = np.maximum(
                rho_limited_im1i * (minus_nodes(var_min[v], orientation) - phi),
                rho_limited_iim1 * (phi - plus_nodes(var_max[v], orientation)),
            )
            g_limited = clamp_flux(g, snap_to_zero(g_max), snap_to_zero(g_min))

            if views is not None:
                coefficient = limiting_coefficient(g_limited, g)
                views.add_budgets(v, u[v], bar_phi, lam_f, g_limited, g, orientation)
                _record_min(views.alpha[v], coefficient, orientation)
                _record_sum(views.alpha_mean[v], coefficient, orientation)

            F[...] = (rho_limited_im1i * phi - lam_f * bar_phi) + g_limited

    def _limit_conservative(self, u, flux, bar, lam, var_min, var_max, orientation, views) -> None:
        lam_f = interior_faces(lam, orientation)
        for v in range(1, self.equations.nvariables):
            F = interior_faces(flux[v], orientation)
            bar_phi = interior_faces(bar[v], orientation)
            f_max = lam_f * np.minimum(
                minus_nodes(var_max[v], orientation) - bar_phi,
                bar_phi - plus_nodes(var_min[v], orientation),
            )
            f_min = lam_f * np.maximum(
                minus_nodes(var_min[v], orientation) - bar_phi,
                bar_phi - plus_nodes(var_max[v], orientation),
            )
            limited = clamp_flux(F, snap_to_zero(f_max), snap_to_zero(f_min))

            if views is not None:
                coefficient = limiting_coefficient(limited, F)
                views.add_budgets(v, u[v], bar_phi, lam_f, limited, F, orientation)
                _record_min(views.alpha[v], coefficient, orientation)
                _record_sum(views.alpha_mean[v], coefficient, orientation)

            F[...] = limited

    def _limit_density_positivity(self, flux, bar, lam, orientation, views) -> None:
        beta = self.positivity_limiter_correction_factor
        F = interior_faces(flux[0], orientation)
        lam_f = interior_faces(lam, orientation)
        rho_bar = interior_faces(bar[0], orientation)
        f_max = snap_to_zero((1.0 - beta) * lam_f * rho_bar)
        limited = clamp_flux(F, f_max, -f_max)

        coefficient = None
        if views is not None or self.density_coefficient_for_all:
            with np.errstate(divide="ignore", invalid="ignore"):
                coefficient = np.where(np.abs(F) <= EPS, 1.0, limited / F)
        if views is not None:
            _record_min(views.alpha[0], coefficient, orientation)
            if not self.density_limiter:
                _record_sum(views.alpha_mean[0], coefficient, orientation)

        F[...] = limited
        if self.density_coefficient_for_all:
            interior_faces(flux[1:], orientation)[...] *= coefficient

    def _limit_pressure(self, flux, bar, lam, orientation, views) -> None:
        F = interior_faces(flux, orientation)
        b = interior_faces(bar, orientation)
        lam_f = interior_faces(lam, orientation)

        bar_state_velocity = b[1] ** 2 + b[2] ** 2
        flux_velocity = F[1] ** 2 + F[2] ** 2
        Q = lam_f**2 * (b[0] * b[3] - 0.5 * bar_state_velocity)
        if self.positivity_limiter_pressure_exact:
            R_max = lam_f * np.abs(b[1] * F[1] + b[2] * F[2] - b[0] * F[3] - b[3] * F[0])
        else:
            R_max = lam_f * (
                np.sqrt(bar_state_velocity * flux_velocity)
                + np.abs(b[0] * F[3]) + np.abs(b[3] * F[0])
            )
        R_max = R_max + np.maximum(0.0, 0.5 * flux_velocity - F[3] * F[0])

        with np.errstate(divide="ignore", invalid="ignore"):
            alpha = np.where(R_max > Q, Q / R_max, 1.0)
        F *= alpha

        if views is not None:
            _record_min(views.alpha_pressure, alpha, orientation)
            _record_sum(views.alpha_mean_pressure, alpha, orientation)

    def _limit_entropy(self, u, flux, fstar, orientation, views) -> None:
        eq = self.equations
        u_m = minus_nodes(u, orientation)
        u_p = plus_nodes(u, orientation)
        v_m = eq.cons2entropy(u_m)
        v_p = eq.cons2entropy(u_p)
        psi_m = np.sum(v_m * eq.flux(u_m, orientation), axis=0) - (
            u_m[orientation] / u_m[0] * eq.entropy_math(u_m)
        )
        psi_p = np.sum(v_p * eq.flux(u_p, orientation), axis=0) - (
            u_p[orientation] / u_p[0] * eq.entropy_math(u_p)
        )
        delta_v = v_p - v_m

        F = interior_faces(flux, orientation)
        entropy_production_fv = (
            np.sum(delta_v * interior_faces(fstar, orientation), axis=0) - (psi_p - psi_m)
        )
        delta_entropy_production = np.sum(delta_v * F, axis=0)

        violated = (entropy_production_fv + delta_entropy_production > 0.0) & (
            delta_entropy_production != 0.0
        )
        ratio = np.minimum(
            1.0, (np.abs(entropy_production_fv) + EPS) / (np.abs(delta_entropy_production) + EPS),
        )
        alpha = np.where(violated, ratio, 1.0)
        F *= alpha

        if views is not None:
            _record_min(views.alpha_entropy, alpha, orientation)
            _record_sum(views.alpha_mean_entropy, alpha, orientation)

    # --- Correction ---

    def correct(
        self,
        target: np.ndarray,
        dt: float,
        semi: SemidiscretizationSubcell,
        elements: slice = slice(None),
    ) -> None:
        """Add the limited flux to ``target`` (a RHS), with ``G = fstar - F``."""
        add_flux_differences(
            target[..., elements],
            dt * semi.mesh.inverse_jacobian[elements],
            semi.antidiffusive_flux1[..., elements],
            semi.antidiffusive_flux2[..., elements],
            semi.basis.inverse_weights,
        )

    def __repr__(self) -> str:
        return f"SubcellLimiterMCL({self.describe()})"


class _ObserverViews:
    """Block views of the MCL recorder arrays."""

    def __init__(self, observer: AlphaObserver, elements: slice) -> None:
        self.alpha = observer.alpha[..., elements]
        self.alpha_mean = observer.alpha_mean[..., elements]
        self.alpha_pressure = observer.alpha_pressure[..., elements]
        self.alpha_mean_pressure = observer.alpha_mean_pressure[..., elements]
        self.alpha_entropy = observer.alpha_entropy[..., elements]
        self.alpha_mean_entropy = observer.alpha_mean_entropy[..., elements]
        self.P = observer.P[..., elements]
        self.Q = observer.Q[..., elements]

    def add_budgets(self, v, u_v, bar_v, lam, limited, flux, orientation) -> None:
        """Accumulate the limited (P) and unlimited (Q) flux budgets of variable ``v``."""
        for nodes, budget_P, budget_Q in (
            (minus_nodes(u_v, orientation), minus_nodes(self.P[v], orientation),
             minus_nodes(self.Q[v], orientation)),
            (plus_nodes(u_v, orientation), plus_nodes(self.P[v], orientation),
             plus_nodes(self.Q[v], orientation)),
        ):
            aux = np.abs(lam * (bar_v - nodes))
            budget_P += aux + np.abs(limited)
            budget_Q += aux + np.abs(flux)
