"""Bar states and wave speeds at every subcell face.

For an adjacent node pair (u_ll, u_rr) across a face with orientation d:

    lambda    = max_abs_speed(u_ll, u_rr, d)
    bar_state = 0.5 (u_ll + u_rr) - 0.5 (f_d(u_rr) - f_d(u_ll)) / lambda

The bar state is the intermediate state of the local Lax-Friedrichs
Riemann solver.  It stays in the invariant region of the Euler equations
as long as lambda bounds the fastest signal speed, which is what makes it
a safe reference for the limiter bounds.

The faces are filled in two ordered phases:
    (a) faces between nodes inside one element (vectorized over elements)
    (b) element interfaces and physical boundaries

Phase (b) writes the outermost face rows that phase (a) never touches.

Reference:
    J.-L. Guermond, B. Popov, "Invariant domains and first-order continuous
    finite element approximation for hyperbolic systems",
    SIAM J. Numer. Anal. 54 (2016).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from subcell.constants import TINY
from subcell.fluid.boundary import BoundaryCondition
from subcell.fluid.euler import CompressibleEuler2D
from subcell.geometry.mesh import (
    X_NEG,
    X_POS,
    Y_NEG,
    Y_POS,
    CartesianMesh2D,
    boundary_view,
    orientation_of,
)

logger = logging.getLogger(__name__)


@dataclass
class BarStates:
    """Bar states and wave speeds per face.

    Attributes:
        bar_states1: x-face bar states, shape (nvars, n+1, n, nel).
        bar_states2: y-face bar states, shape (nvars, n, n+1, nel).
        lambda1: x-face wave speeds, shape (n+1, n, nel).
        lambda2: y-face wave speeds, shape (n, n+1, nel).
    """

    bar_states1: np.ndarray
    bar_states2: np.ndarray
    lambda1: np.ndarray
    lambda2: np.ndarray

    @classmethod
    def allocate(cls, nvars: int, nnodes: int, nelements: int) -> BarStates:
        n = nnodes
        return cls(
            bar_states1=np.zeros((nvars, n + 1, n, nelements)),
            bar_states2=np.zeros((nvars, n, n + 1, nelements)),
            lambda1=np.zeros((n + 1, n, nelements)),
            lambda2=np.zeros((n, n + 1, nelements)),
        )

    def face_arrays(self, orientation: int) -> tuple[np.ndarray, np.ndarray]:
        """(bar_states, lambda) of one orientation."""
        if orientation == 1:
            return self.bar_states1, self.lambda1
        return self.bar_states2, self.lambda2


def bar_state(
    equations: CompressibleEuler2D,
    u_ll: np.ndarray,
    u_rr: np.ndarray,
    orientation: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(bar_state, lambda)`` for node pairs (vectorized).

    ``lambda`` is floored at the smallest normal double so that a face with
    zero signal speed does not divide by zero.
    """
    lam = np.maximum(equations.max_abs_speed_naive(u_ll, u_rr, orientation), TINY)
    f_ll = equations.flux(u_ll, orientation)
    f_rr = equations.flux(u_rr, orientation)
    bar = 0.5 * (u_ll + u_rr) - 0.5 * (f_rr - f_ll) / lam
    return bar, lam


class BarStateComputer:
    """Fill ``BarStates`` for a full solution array.

    Args:
        mesh: Element mesh providing interfaces and boundaries.
        equations: Physics object.
        boundary_conditions: Outer-state evaluator per boundary direction.
        node_coordinates: Node coordinates, shape (2, n, n, nel).
    """

    def __init__(
        self,
        mesh: CartesianMesh2D,
        equations: CompressibleEuler2D,
        boundary_conditions: dict[int, BoundaryCondition],
        node_coordinates: np.ndarray,
    ) -> None:
        self.mesh = mesh
        self.equations = equations
        self.boundary_conditions = boundary_conditions
        self.node_coordinates = node_coordinates

    def compute(self, u: np.ndarray, t: float, out: BarStates) -> BarStates:
        """Run both phases into ``out`` and return it."""
        self.compute_interior(u, out)
        self.compute_interfaces(u, t, out)
        return out

    # --- Phase (a): faces inside each element ---

    def compute_interior(self, u: np.ndarray, out: BarStates) -> None:
        eq = self.equations
        bar, lam = bar_state(eq, u[:, :-1], u[:, 1:], orientation=1)
        out.bar_states1[:, 1:-1] = bar
        out.lambda1[1:-1] = lam

        bar, lam = bar_state(eq, u[:, :, :-1], u[:, :, 1:], orientation=2)
        out.bar_states2[:, :, 1:-1] = bar
        out.lambda2[:, 1:-1] = lam

    # --- Phase (b): element interfaces and physical boundaries ---

    def compute_interfaces(self, u: np.ndarray, t: float, out: BarStates) -> None:
        eq = self.equations
        for orientation, (left, right) in (
            (1, self.mesh.interfaces_x),
            (2, self.mesh.interfaces_y),
        ):
            if len(left) == 0:
                continue
            neg, pos = (X_NEG, X_POS) if orientation == 1 else (Y_NEG, Y_POS)
            u_ll = boundary_view(u, pos)[..., left]
            u_rr = boundary_view(u, neg)[..., right]
            bar, lam = bar_state(eq, u_ll, u_rr, orientation)

            bars, lams = out.face_arrays(orientation)
            boundary_view(bars, pos)[..., left] = bar
            boundary_view(lams, pos)[..., left] = lam
            boundary_view(bars, neg)[..., right] = bar
            boundary_view(lams, neg)[..., right] = lam

        for direction, elements in self.mesh.boundaries.items():
            orientation = orientation_of(direction)
            u_inner = boundary_view(u, direction)[..., elements]
            u_outer = self.outer_state(u_inner, elements, t, direction)
            if direction in (X_NEG, Y_NEG):
                bar, lam = bar_state(eq, u_outer, u_inner, orientation)
            else:
                bar, lam = bar_state(eq, u_inner, u_outer, orientation)
            bars, lams = out.face_arrays(orientation)
            boundary_view(bars, direction)[..., elements] = bar
            boundary_view(lams, direction)[..., elements] = lam

    def outer_state(
        self, u_inner: np.ndarray, elements: np.ndarray, t: float, direction: int,
    ) -> np.ndarray:
        """Outer states of the boundary nodes of ``elements`` on ``direction``."""
        x = boundary_view(self.node_coordinates, direction)[..., elements]
        bc = self.boundary_conditions[direction]
        return bc.outer_state(u_inner, x, t, orientation_of(direction), direction, self.equations)
