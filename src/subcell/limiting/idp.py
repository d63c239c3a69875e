"""Invariant-domain-preserving (IDP) subcell limiter.

The RHS of every stage uses the low-order subcell fluxes only.  After the
forward-Euler stage update, this limiter computes a blending coefficient
alpha per node (0 = keep the full antidiffusive flux, 1 = pure low order)
and adds the admissible part of the antidiffusive flux back:

    u += -dt J^-1 ( w_i^-1 ((1 - a1[i+1]) F1[i+1] - (1 - a1[i]) F1[i])
                  + w_j^-1 ((1 - a2[j+1]) F2[j+1] - (1 - a2[j]) F2[j]) )

with the face coefficient a1[i] = max(alpha[i-1], alpha[i]) and zero on
element edge faces.

Constraint passes, in order, each only raising alpha:
    local min/max     Zalesak limiter on selected conservative variables
    spec_entropy      Newton-bisection on the specific-entropy minimum
    math_entropy      Newton-bisection on the mathematical-entropy maximum
    positivity        one-sided Zalesak limiter (conservative variables)
                      and Newton-bisection (pressure)

References:
    S. Zalesak, "Fully multidimensional flux-corrected transport algorithms
    for fluids", J. Comput. Phys. 31 (1979).
    A. Rueda-Ramirez, W. Pazner, G. Gassner, "Subcell limiting strategies
    for discontinuous Galerkin spectral element methods",
    Comput. Fluids 247 (2022).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable

import numpy as np

from subcell.constants import EPS, ZALESAK_EPS_FACTOR
from subcell.core.arena import ScratchBuffers
from subcell.core.bases import SubcellLimiterBase
from subcell.fluid.euler import CompressibleEuler2D
from subcell.limiting.antidiffusive import add_flux_differences, antidiffusive_flux
from subcell.limiting.bounds import BoundKey, BoundKind, BoundLayout, BoundsCalculator
from subcell.limiting.newton import (
    GOAL_MATH_ENTROPY,
    GOAL_PRESSURE,
    GOAL_SPEC_ENTROPY,
    newton_loops_alpha,
)
from subcell.limiting.observer import AlphaObserver, NullAlphaObserver, node_volumes

if TYPE_CHECKING:
    from subcell.config import IDPLimiterConfig
    from subcell.semidiscretization import SemidiscretizationSubcell

logger = logging.getLogger(__name__)

# Nonlinear positivity variables and their Newton goal
NONLINEAR_VARIABLES = {"pressure": GOAL_PRESSURE}


def zalesak_flux_budgets(
    flux1: np.ndarray,
    flux2: np.ndarray,
    inverse_weights: np.ndarray,
    inverse_jacobian: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Sum of positive (Pp) and negative (Pm) face contributions per node.

    Args:
        flux1: Antidiffusive x flux of one variable, shape (n+1, n, nel).
        flux2: Antidiffusive y flux of one variable, shape (n, n+1, nel).
        inverse_weights: Inverse quadrature weights, shape (n,).
        inverse_jacobian: Per-element inverse Jacobian, shape (nel,).

    Returns:
        (Pp, Pm), each of shape (n, n, nel), scaled by the inverse Jacobian.
    """
    invw_i = inverse_weights[:, None, None]
    invw_j = inverse_weights[None, :, None]
    contributions = (
        invw_i * flux1[:-1],
        -invw_i * flux1[1:],
        invw_j * flux2[:, :-1],
        -invw_j * flux2[:, 1:],
    )
    Pp = np.zeros_like(contributions[0])
    Pm = np.zeros_like(contributions[0])
    for c in contributions:
        Pp += np.maximum(0.0, c)
        Pm += np.minimum(0.0, c)
    return inverse_jacobian * Pp, inverse_jacobian * Pm


def regularized_ratio(Q: np.ndarray, P: np.ndarray, scale: np.ndarray | float) -> np.ndarray:
    """``|Q| / (|P| + 100 eps |scale|)`` without dividing by zero.

    Where the denominator vanishes the ratio is infinite if ``Q != 0`` and
    zero otherwise.
    """
    num = np.abs(Q)
    den = np.abs(P) + ZALESAK_EPS_FACTOR * EPS * np.abs(scale)
    out = np.where(num > 0.0, np.inf, 0.0)
    return np.divide(num, den, out=out, where=den > 0.0)


class SubcellLimiterIDP(SubcellLimiterBase):
    """A-posteriori IDP limiter.

    Args:
        equations: Physics object.
        local_minmax_variables_cons: Conservative variables with local two-sided bounds.
        positivity_variables_cons: Conservative variables kept above a
            fraction of their low-order value.
        positivity_variables_nonlinear: Nonlinear quantities (``pressure``)
            kept above a fraction of their low-order value.
        positivity_correction_factor: That fraction, in (0, 1).
        spec_entropy: Enforce a local minimum of the specific entropy.
        math_entropy: Enforce a local maximum of the mathematical entropy.
        bar_states: Take local bounds from bar states (True) or from the
            low-order solution and its neighbors (False).
        max_iterations_newton: Newton-bisection iteration cap.
        newton_tolerances: (relative, absolute) Newton tolerances.
        gamma_constant_newton: Face-share factor of the Newton solve
            (default ``2 * ndims``).
        observer: Diagnostics recorder.
    """

    inline = False

    def __init__(
        self,
        equations: CompressibleEuler2D,
        local_minmax_variables_cons: Iterable[str] = (),
        positivity_variables_cons: Iterable[str] = (),
        positivity_variables_nonlinear: Iterable[str] = (),
        positivity_correction_factor: float = 0.1,
        spec_entropy: bool = False,
        math_entropy: bool = False,
        bar_states: bool = True,
        max_iterations_newton: int = 10,
        newton_tolerances: tuple[float, float] = (1.0e-12, 1.0e-14),
        gamma_constant_newton: float | None = None,
        observer: AlphaObserver | None = None,
    ) -> None:
        varnames = equations.varnames()
        self.equations = equations
        self.local_minmax_variables_cons = tuple(local_minmax_variables_cons)
        self.positivity_variables_cons = tuple(positivity_variables_cons)
        self.positivity_variables_nonlinear = tuple(positivity_variables_nonlinear)

        for name in self.local_minmax_variables_cons + self.positivity_variables_cons:
            if name not in varnames:
                raise ValueError(f"unknown conservative variable '{name}', expected one of {varnames}")
        for name in self.positivity_variables_nonlinear:
            if name not in NONLINEAR_VARIABLES:
                raise ValueError(
                    f"unknown nonlinear variable '{name}', expected one of {sorted(NONLINEAR_VARIABLES)}"
                )
        if spec_entropy and math_entropy:
            raise ValueError("spec_entropy and math_entropy cannot both be enabled")
        if not (0.0 < positivity_correction_factor < 1.0):
            raise ValueError(
                f"positivity_correction_factor must lie in (0, 1), got {positivity_correction_factor}"
            )
        if not (
            self.local_minmax_variables_cons or self.positivity_variables_cons
            or self.positivity_variables_nonlinear or spec_entropy or math_entropy
        ):
            raise ValueError("IDP limiter needs at least one active bound")

        self.local_minmax = bool(self.local_minmax_variables_cons)
        self.positivity = bool(self.positivity_variables_cons or self.positivity_variables_nonlinear)
        self.spec_entropy = spec_entropy
        self.math_entropy = math_entropy
        self.positivity_correction_factor = float(positivity_correction_factor)
        self.bar_states = bar_states
        self.requires_bar_states = bar_states
        self.max_iterations_newton = int(max_iterations_newton)
        self.newton_tolerances = (float(newton_tolerances[0]), float(newton_tolerances[1]))
        self.gamma_constant_newton = (
            float(gamma_constant_newton) if gamma_constant_newton is not None
            else 2.0 * equations.ndims
        )
        self.observer = observer or NullAlphaObserver()
        self._unconverged: list[int] = []

        self.layout = BoundLayout.for_idp(
            self.local_minmax_variables_cons,
            spec_entropy,
            math_entropy,
            self.positivity_variables_cons,
            self.positivity_variables_nonlinear,
        )
        self._index = {name: k for k, name in enumerate(varnames)}

    @classmethod
    def from_config(
        cls,
        equations: CompressibleEuler2D,
        config: IDPLimiterConfig,
        observer: AlphaObserver | None = None,
    ) -> SubcellLimiterIDP:
        return cls(
            equations,
            local_minmax_variables_cons=config.local_minmax_variables_cons,
            positivity_variables_cons=config.positivity_variables_cons,
            positivity_variables_nonlinear=config.positivity_variables_nonlinear,
            positivity_correction_factor=config.positivity_correction_factor,
            spec_entropy=config.spec_entropy,
            math_entropy=config.math_entropy,
            bar_states=config.bar_states,
            max_iterations_newton=config.max_iterations_newton,
            newton_tolerances=config.newton_tolerances,
            gamma_constant_newton=config.gamma_constant_newton,
            observer=observer,
        )

    def setup(self, semi: SemidiscretizationSubcell) -> None:
        n = semi.basis.nnodes
        nel = semi.mesh.nelements
        self.variable_bounds = self.layout.allocate(n, nel)
        self.alpha = np.zeros((n, n, nel))
        self.alpha1 = np.zeros((n + 1, n, nel))
        self.alpha2 = np.zeros((n, n + 1, nel))
        self.volumes = node_volumes(semi.basis.weights, semi.mesh.inverse_jacobian)
        logger.info("IDP limiter: bounds %s, bar_states=%s", self.layout.names(), self.bar_states)

    def describe(self) -> dict[str, Any]:
        return {
            "kind": "idp",
            "bounds": self.layout.names(),
            "bar_states": self.bar_states,
            "positivity_correction_factor": self.positivity_correction_factor,
        }

    def bounds(self, key: BoundKey) -> np.ndarray:
        """Stored bound array of ``key``, shape (n, n, nel)."""
        return self.variable_bounds[self.layout.index(key)]

    # --- Bounds ---

    def compute_bounds(self, u: np.ndarray, t: float, semi: SemidiscretizationSubcell) -> None:
        """Bounds from the bar states of the stage-start solution.

        Without bar states the bounds come from the low-order update and
        are computed in ``limit_and_correct`` instead.
        """
        if not self.bar_states:
            return
        bs = semi.bar_states
        calc = BoundsCalculator
        for name in self.local_minmax_variables_cons:
            v = self._index[name]
            var_min, var_max = calc.two_sided_from_bar_states(
                u[v], bs.bar_states1[v], bs.bar_states2[v],
            )
            self.bounds(BoundKey(BoundKind.LOCAL_MIN, name))[...] = var_min
            self.bounds(BoundKey(BoundKind.LOCAL_MAX, name))[...] = var_max
        if self.spec_entropy:
            entropy = self.equations.entropy_spec
            self.bounds(BoundKey(BoundKind.SPEC_ENTROPY_MIN, "entropy"))[...] = (
                calc.one_sided_from_bar_states(
                    entropy(u), entropy(bs.bar_states1), entropy(bs.bar_states2), upper=False,
                )
            )
        if self.math_entropy:
            entropy = self.equations.entropy_math
            self.bounds(BoundKey(BoundKind.MATH_ENTROPY_MAX, "entropy"))[...] = (
                calc.one_sided_from_bar_states(
                    entropy(u), entropy(bs.bar_states1), entropy(bs.bar_states2), upper=True,
                )
            )

    def compute_bounds_from_solution(
        self, u: np.ndarray, t: float, semi: SemidiscretizationSubcell,
    ) -> None:
        """Bounds over each node of the low-order update and its neighbors."""
        calc = semi.bounds_calculator
        for name in self.local_minmax_variables_cons:
            v = self._index[name]
            var_min, var_max = calc.two_sided_from_solution(u, t, lambda w, v=v: w[v])
            self.bounds(BoundKey(BoundKind.LOCAL_MIN, name))[...] = var_min
            self.bounds(BoundKey(BoundKind.LOCAL_MAX, name))[...] = var_max
        if self.spec_entropy:
            self.bounds(BoundKey(BoundKind.SPEC_ENTROPY_MIN, "entropy"))[...] = (
                calc.one_sided_from_solution(u, t, self.equations.entropy_spec, upper=False)
            )
        if self.math_entropy:
            self.bounds(BoundKey(BoundKind.MATH_ENTROPY_MAX, "entropy"))[...] = (
                calc.one_sided_from_solution(u, t, self.equations.entropy_math, upper=True)
            )

    # --- Antidiffusive flux ---

    def build_antidiffusive_flux(
        self, buffers: ScratchBuffers, out1: np.ndarray, out2: np.ndarray,
    ) -> None:
        antidiffusive_flux(buffers.fhat1, buffers.fstar1, +1.0, out1)
        antidiffusive_flux(buffers.fhat2, buffers.fstar2, +1.0, out2)

    # --- Limiting ---

    def limit_and_correct(
        self,
        u: np.ndarray,
        t: float,
        dt: float,
        stage: int,
        semi: SemidiscretizationSubcell,
    ) -> None:
        if not self.bar_states:
            self.compute_bounds_from_solution(u, t, semi)

        self._unconverged = []
        semi.partition.run(lambda worker, elements: self.limit(u, t, dt, semi, elements))
        semi.partition.run(lambda worker, elements: self.correct(u, dt, semi, elements))

        unconverged = sum(self._unconverged)
        if unconverged:
            logger.warning(
                "Stage %d: %d Newton-bisection solves hit max_iterations_newton=%d",
                stage, unconverged, self.max_iterations_newton,
            )
        if self.observer.enabled:
            self.observer.record(self.alpha, self.volumes)

    def limit(
        self,
        u: np.ndarray,
        t: float,
        dt: float,
        semi: SemidiscretizationSubcell,
        elements: slice = slice(None),
        buffers: ScratchBuffers | None = None,
    ) -> None:
        """Compute alpha and the face coefficients on ``elements``."""
        alpha = self.alpha[..., elements]
        alpha[...] = 0.0
        u_b = u[..., elements]
        flux1 = semi.antidiffusive_flux1[..., elements]
        flux2 = semi.antidiffusive_flux2[..., elements]
        invw = semi.basis.inverse_weights
        invJ = semi.mesh.inverse_jacobian[elements]
        bounds = self.variable_bounds[..., elements]
        unconverged = 0

        for name in self.local_minmax_variables_cons:
            v = self._index[name]
            var = u_b[v]
            var_min = bounds[self.layout.index(BoundKey(BoundKind.LOCAL_MIN, name))]
            var_max = bounds[self.layout.index(BoundKey(BoundKind.LOCAL_MAX, name))]
            Pp, Pm = zalesak_flux_budgets(flux1[v], flux2[v], invw, invJ)
            Qp = np.maximum(0.0, (var_max - var) / dt)
            Qm = np.minimum(0.0, (var_min - var) / dt)
            ratio = np.minimum(regularized_ratio(Qp, Pp, var_max), regularized_ratio(Qm, Pm, var_max))
            np.maximum(alpha, 1.0 - np.minimum(1.0, ratio), out=alpha)

        newton_args = (flux1, flux2, invw, invJ, dt)
        if self.spec_entropy:
            bound = bounds[self.layout.index(BoundKey(BoundKind.SPEC_ENTROPY_MIN, "entropy"))]
            unconverged += self._newton(alpha, bound, u_b, GOAL_SPEC_ENTROPY, *newton_args)

        if self.math_entropy:
            bound = bounds[self.layout.index(BoundKey(BoundKind.MATH_ENTROPY_MAX, "entropy"))]
            unconverged += self._newton(alpha, bound, u_b, GOAL_MATH_ENTROPY, *newton_args)

        corr = self.positivity_correction_factor
        for name in self.positivity_variables_cons:
            v = self._index[name]
            var = u_b[v]
            var_min = bounds[self.layout.index(
                BoundLayout.positivity_key(name, self.local_minmax_variables_cons)
            )]
            if name in self.local_minmax_variables_cons:
                np.maximum(var_min, corr * var, out=var_min)
            else:
                var_min[...] = corr * var
            _, Pm = zalesak_flux_budgets(flux1[v], flux2[v], invw, invJ)
            Qm = np.minimum(0.0, (var_min - var) / dt)
            np.maximum(alpha, 1.0 - regularized_ratio(Qm, Pm, 1.0), out=alpha)

        for name in self.positivity_variables_nonlinear:
            bound = bounds[self.layout.index(BoundKey(BoundKind.NONLINEAR_MIN, name))]
            bound[...] = corr * self.equations.pressure(u_b)
            unconverged += self._newton(alpha, bound, u_b, NONLINEAR_VARIABLES[name], *newton_args)

        self._unconverged.append(unconverged)
        self._face_alphas(alpha, self.alpha1[..., elements], self.alpha2[..., elements])

    def _newton(
        self,
        alpha: np.ndarray,
        bound: np.ndarray,
        u: np.ndarray,
        kind: int,
        flux1: np.ndarray,
        flux2: np.ndarray,
        inverse_weights: np.ndarray,
        inverse_jacobian: np.ndarray,
        dt: float,
    ) -> int:
        return newton_loops_alpha(
            alpha, bound, u, flux1, flux2, inverse_weights, inverse_jacobian, dt,
            kind=kind,
            gamma=self.equations.gamma,
            gamma_constant=self.gamma_constant_newton,
            max_iterations=self.max_iterations_newton,
            tolerances=self.newton_tolerances,
        )

    @staticmethod
    def _face_alphas(alpha: np.ndarray, alpha1: np.ndarray, alpha2: np.ndarray) -> None:
        alpha1[0] = 0.0
        alpha1[-1] = 0.0
        np.maximum(alpha[:-1], alpha[1:], out=alpha1[1:-1])
        alpha2[:, 0] = 0.0
        alpha2[:, -1] = 0.0
        np.maximum(alpha[:, :-1], alpha[:, 1:], out=alpha2[:, 1:-1])

    def correct(
        self,
        target: np.ndarray,
        dt: float,
        semi: SemidiscretizationSubcell,
        elements: slice = slice(None),
    ) -> None:
        """Add the alpha-weighted antidiffusive flux to the state ``target``."""
        flux1 = (1.0 - self.alpha1[..., elements]) * semi.antidiffusive_flux1[..., elements]
        flux2 = (1.0 - self.alpha2[..., elements]) * semi.antidiffusive_flux2[..., elements]
        scale = -dt * semi.mesh.inverse_jacobian[elements]
        add_flux_differences(
            target[..., elements], scale, flux1, flux2, semi.basis.inverse_weights,
        )

    def __repr__(self) -> str:
        return f"SubcellLimiterIDP(bounds={self.layout.names()})"
