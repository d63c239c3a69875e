"""Subcell-limited DGSEM semidiscretization of the 2D Euler equations.

``rhs(u, t)`` evaluates, in order:

    1. bar states: faces inside the elements (per worker block), then
       element interfaces and physical boundaries
    2. limiter bounds from the stage-start solution and the bar states
    3. DG surface fluxes at interfaces and boundaries (local Lax-Friedrichs)
    4. per worker block: fhat, fstar, the antidiffusive flux, the low-order
       face-form update and, for an inline limiter, the limited correction

The face form of the update at node (i, j) is

    du = -J^-1 (w_i^-1 (G1[i+1] - G1[i]) + w_j^-1 (G2[j+1] - G2[j]))

with G = fstar on interior subcell faces and G = surface flux on the
element edge faces.  An inline limiter adds its limited antidiffusive
flux on top; an a-posteriori limiter corrects the stage update later
through ``limit_and_correct``.
"""

from __future__ import annotations

import logging
from typing import Callable

import numpy as np

from subcell.core.arena import ElementPartition, ScratchArena
from subcell.core.bases import SubcellLimiterBase
from subcell.fluid.boundary import BoundaryCondition
from subcell.fluid.euler import CompressibleEuler2D
from subcell.geometry.basis import LobattoLegendreBasis
from subcell.geometry.mesh import (
    X_NEG,
    X_POS,
    Y_NEG,
    Y_POS,
    CartesianMesh2D,
    boundary_view,
    orientation_of,
)
from subcell.limiting.antidiffusive import AntidiffusiveFluxBuilder, add_flux_differences
from subcell.limiting.bar_states import BarStateComputer, BarStates
from subcell.limiting.bounds import BoundsCalculator

logger = logging.getLogger(__name__)

InitialCondition = Callable[[np.ndarray, float, CompressibleEuler2D], np.ndarray]


class SemidiscretizationSubcell:
    """Mesh, basis, physics and limiter wired into one RHS operator.

    Args:
        mesh: Cartesian element mesh.
        equations: Physics object.
        basis: Lobatto-Legendre basis.
        limiter: IDP or MCL limiter.
        boundary_conditions: One boundary condition per direction
            (0 = -x, 1 = +x, 2 = -y, 3 = +y).  Periodic conditions must
            match the mesh periodicity.
        initial_condition: ``f(x, t, equations)`` returning conservative
            states for coordinates ``x`` of shape (2, ...).
        n_workers: Number of element blocks processed concurrently.
    """

    def __init__(
        self,
        mesh: CartesianMesh2D,
        equations: CompressibleEuler2D,
        basis: LobattoLegendreBasis,
        limiter: SubcellLimiterBase,
        boundary_conditions: dict[int, BoundaryCondition],
        initial_condition: InitialCondition,
        n_workers: int = 1,
    ) -> None:
        self._check_boundary_conditions(mesh, boundary_conditions)

        self.mesh = mesh
        self.equations = equations
        self.basis = basis
        self.limiter = limiter
        self.boundary_conditions = boundary_conditions
        self.initial_condition = initial_condition

        n = basis.nnodes
        nvars = equations.nvariables
        nel = mesh.nelements
        self.node_coordinates = mesh.node_coordinates(basis)

        self.bar_states = BarStates.allocate(nvars, n, nel)
        self.bar_state_computer = BarStateComputer(
            mesh, equations, boundary_conditions, self.node_coordinates,
        )
        self.bounds_calculator = BoundsCalculator(
            mesh, equations, boundary_conditions, self.node_coordinates,
        )
        self.flux_builder = AntidiffusiveFluxBuilder(basis, equations)

        self.antidiffusive_flux1 = np.zeros((nvars, n + 1, n, nel))
        self.antidiffusive_flux2 = np.zeros((nvars, n, n + 1, nel))
        # [:, 0] is the negative-side edge face of each element, [:, 1] the positive one
        self.surface_flux1 = np.zeros((nvars, 2, n, nel))
        self.surface_flux2 = np.zeros((nvars, 2, n, nel))

        self.partition = ElementPartition(nel, n_workers)
        self.arena = ScratchArena(self.partition, nvars, n)

        limiter.setup(self)
        logger.info(
            "Semidiscretization: %s, polydeg=%d, %d element(s), %d worker(s), limiter=%s",
            mesh, basis.polydeg, nel, self.partition.n_workers, type(limiter).__name__,
        )

    @staticmethod
    def _check_boundary_conditions(
        mesh: CartesianMesh2D, boundary_conditions: dict[int, BoundaryCondition],
    ) -> None:
        for direction in (X_NEG, X_POS, Y_NEG, Y_POS):
            if direction not in boundary_conditions:
                raise ValueError(f"missing boundary condition for direction {direction}")
            periodic_mesh = mesh.periodicity[orientation_of(direction) - 1]
            periodic_bc = boundary_conditions[direction].periodic
            if periodic_mesh != periodic_bc:
                raise ValueError(
                    f"boundary condition {boundary_conditions[direction]!r} on direction "
                    f"{direction} does not match mesh periodicity {mesh.periodicity}"
                )

    # --- Initial data ---

    def compute_coefficients(self, t: float) -> np.ndarray:
        """Nodal values of the initial condition at time ``t``."""
        u = np.asarray(
            self.initial_condition(self.node_coordinates, t, self.equations), dtype=np.float64,
        )
        return np.ascontiguousarray(u)

    # --- RHS ---

    def rhs(self, u: np.ndarray, t: float, du: np.ndarray | None = None) -> np.ndarray:
        if du is None:
            du = np.empty_like(u)
        limiter = self.limiter

        if limiter.requires_bar_states:
            self.partition.run(lambda worker, elements: self._bar_states_interior(u, elements))
            self.bar_state_computer.compute_interfaces(u, t, self.bar_states)
            limiter.compute_bounds(u, t, self)

        self._compute_surface_fluxes(u, t)
        self.partition.run(lambda worker, elements: self._rhs_block(u, t, du, worker, elements))
        return du

    def _bar_states_interior(self, u: np.ndarray, elements: slice) -> None:
        bs = self.bar_states
        block = BarStates(
            bar_states1=bs.bar_states1[..., elements],
            bar_states2=bs.bar_states2[..., elements],
            lambda1=bs.lambda1[..., elements],
            lambda2=bs.lambda2[..., elements],
        )
        self.bar_state_computer.compute_interior(u[..., elements], block)

    def _compute_surface_fluxes(self, u: np.ndarray, t: float) -> None:
        surface_flux = self.equations.flux_lax_friedrichs
        for orientation, (left, right), surface in (
            (1, self.mesh.interfaces_x, self.surface_flux1),
            (2, self.mesh.interfaces_y, self.surface_flux2),
        ):
            if len(left) == 0:
                continue
            neg, pos = (X_NEG, X_POS) if orientation == 1 else (Y_NEG, Y_POS)
            u_ll = boundary_view(u, pos)[..., left]
            u_rr = boundary_view(u, neg)[..., right]
            flux = surface_flux(u_ll, u_rr, orientation)
            surface[:, 1][..., left] = flux
            surface[:, 0][..., right] = flux

        for direction, elements in self.mesh.boundaries.items():
            orientation = orientation_of(direction)
            u_inner = boundary_view(u, direction)[..., elements]
            u_outer = self.bar_state_computer.outer_state(u_inner, elements, t, direction)
            surface = self.surface_flux1 if orientation == 1 else self.surface_flux2
            if direction in (X_NEG, Y_NEG):
                surface[:, 0][..., elements] = surface_flux(u_outer, u_inner, orientation)
            else:
                surface[:, 1][..., elements] = surface_flux(u_inner, u_outer, orientation)

    def _rhs_block(
        self, u: np.ndarray, t: float, du: np.ndarray, worker: int, elements: slice,
    ) -> None:
        limiter = self.limiter
        buffers = self.arena.buffers(worker)
        self.flux_builder.calcflux(u[..., elements], buffers)
        limiter.build_antidiffusive_flux(
            buffers,
            self.antidiffusive_flux1[..., elements],
            self.antidiffusive_flux2[..., elements],
        )
        if limiter.inline:
            limiter.limit(u, t, np.nan, self, elements, buffers)

        fstar1, fstar2 = buffers.fstar1, buffers.fstar2
        fstar1[:, 0] = self.surface_flux1[:, 0][..., elements]
        fstar1[:, -1] = self.surface_flux1[:, 1][..., elements]
        fstar2[:, :, 0] = self.surface_flux2[:, 0][..., elements]
        fstar2[:, :, -1] = self.surface_flux2[:, 1][..., elements]

        du_block = du[..., elements]
        du_block[...] = 0.0
        add_flux_differences(
            du_block, -self.mesh.inverse_jacobian[elements], fstar1, fstar2,
            self.basis.inverse_weights,
        )
        if limiter.inline:
            limiter.correct(du, 1.0, self, elements)

    # --- Time step ---

    def max_dt(self, u: np.ndarray, cfl: float) -> float:
        """CFL time step ``cfl * 2 / (n * max_e J^-1 (max lambda_1 + max lambda_2))``.

        The face speeds are maxima of the nodal speeds on either side, so the
        element maxima are taken over the nodal speeds directly.
        """
        eq = self.equations
        c = np.sqrt(np.abs(eq.gamma * eq.pressure(u) / u[0]))
        speed1 = np.max(np.abs(u[1] / u[0]) + c, axis=(0, 1))
        speed2 = np.max(np.abs(u[2] / u[0]) + c, axis=(0, 1))
        max_scaled_speed = float(np.max(self.mesh.inverse_jacobian * (speed1 + speed2)))
        if not np.isfinite(max_scaled_speed) or max_scaled_speed <= 0.0:
            raise RuntimeError(f"invalid wave speed estimate {max_scaled_speed}")
        return cfl * 2.0 / (self.basis.nnodes * max_scaled_speed)

    def close(self) -> None:
        self.partition.close()

    def __repr__(self) -> str:
        return (
            f"SemidiscretizationSubcell({self.mesh!r}, polydeg={self.basis.polydeg}, "
            f"limiter={self.limiter!r})"
        )
