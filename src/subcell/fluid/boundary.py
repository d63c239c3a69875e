"""Physical boundary conditions as outer-state evaluators.

A boundary condition supplies the "ghost" state on the far side of a
physical boundary face.  The same outer state feeds the bar states at the
boundary, the FV-solution bounds, and the DG surface flux, so all three
see a consistent picture of the boundary.

All evaluators are vectorized over trailing axes: ``u_inner`` has shape
``(nvars, ...)`` and ``x`` has shape ``(2, ...)`` with the same trailing axes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

import numpy as np

from subcell.fluid.euler import CompressibleEuler2D

BoundaryValueFunction = Callable[[np.ndarray, float, CompressibleEuler2D], np.ndarray]


class BoundaryCondition(ABC):
    """Abstract outer-state evaluator for one side of the domain."""

    periodic = False

    @abstractmethod
    def outer_state(
        self,
        u_inner: np.ndarray,
        x: np.ndarray,
        t: float,
        orientation: int,
        direction: int,
        equations: CompressibleEuler2D,
    ) -> np.ndarray:
        """Return the outer state for every boundary node.

        Args:
            u_inner: Interior states at the boundary nodes, shape (nvars, ...).
            x: Node coordinates, shape (2, ...).
            t: Current time.
            orientation: 1 for x faces, 2 for y faces.
            direction: Boundary index 0 (-x), 1 (+x), 2 (-y), 3 (+y).
            equations: Physics object.

        Returns:
            Outer states, shape (nvars, ...).
        """


class BoundaryConditionPeriodic(BoundaryCondition):
    """Marker for periodic directions; the mesh connects the faces."""

    periodic = True

    def outer_state(self, u_inner, x, t, orientation, direction, equations):
        raise RuntimeError("periodic boundaries have no outer state; the mesh must be periodic")

    def __repr__(self) -> str:
        return "BoundaryConditionPeriodic()"


class BoundaryConditionSlipWall(BoundaryCondition):
    """Reflecting wall: mirror the face-normal momentum."""

    def outer_state(self, u_inner, x, t, orientation, direction, equations):
        u_outer = np.array(u_inner, copy=True)
        u_outer[orientation] = -u_outer[orientation]
        return u_outer

    def __repr__(self) -> str:
        return "BoundaryConditionSlipWall()"


class BoundaryConditionDirichlet(BoundaryCondition):
    """Prescribed outer state ``boundary_value_function(x, t, equations)``."""

    def __init__(self, boundary_value_function: BoundaryValueFunction) -> None:
        self.boundary_value_function = boundary_value_function

    def outer_state(self, u_inner, x, t, orientation, direction, equations):
        u_outer = np.asarray(self.boundary_value_function(x, t, equations), dtype=np.float64)
        if u_outer.ndim == 1:
            u_outer = u_outer.reshape((-1,) + (1,) * (u_inner.ndim - 1))
        return np.broadcast_to(u_outer, u_inner.shape).copy()

    def __repr__(self) -> str:
        return f"BoundaryConditionDirichlet({self.boundary_value_function!r})"
