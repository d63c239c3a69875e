"""Uniform Cartesian element mesh with interface and boundary enumeration.

Elements are numbered x-fastest: ``element = ex + nx * ey``.  Every element
is a square of side ``dx`` mapped to the reference square [-1, 1]^2, so the
(inverse) Jacobian is a single constant per element.

Connectivity is exposed as flat index arrays so that face loops can be
vectorized over all interfaces at once:

    interfaces_x: (left_ids, right_ids) for faces normal to x
    interfaces_y: (left_ids, right_ids) for faces normal to y
    boundaries:   {direction: element_ids} for non-periodic directions,
                  direction 0 = -x, 1 = +x, 2 = -y, 3 = +y

For directions 0 and 2 the element lies on the right of the boundary face
(its first node row touches the boundary); for 1 and 3 it lies on the left.
"""

from __future__ import annotations

import logging

import numpy as np

from subcell.geometry.basis import LobattoLegendreBasis

logger = logging.getLogger(__name__)

# Boundary direction indices
X_NEG, X_POS, Y_NEG, Y_POS = 0, 1, 2, 3


def orientation_of(direction: int) -> int:
    """Face orientation (1 = x, 2 = y) of a boundary direction."""
    return 1 if direction in (X_NEG, X_POS) else 2


def boundary_view(a: np.ndarray, direction: int) -> np.ndarray:
    """View of the node (or face) row of ``a[..., i, j, element]`` on one side.

    Works for node arrays ``(..., n, n, nel)`` and for face arrays of the
    matching orientation ``(..., n+1, n, nel)`` / ``(..., n, n+1, nel)``.
    The result has shape ``(..., n, nel)`` and shares memory with ``a``.
    """
    if direction == X_NEG:
        return a[..., 0, :, :]
    if direction == X_POS:
        return a[..., -1, :, :]
    if direction == Y_NEG:
        return a[..., :, 0, :]
    if direction == Y_POS:
        return a[..., :, -1, :]
    raise ValueError(f"unknown boundary direction {direction}")


class CartesianMesh2D:
    """Uniform 2D mesh of square elements.

    Args:
        coordinates_min: Lower-left corner (x_min, y_min).
        coordinates_max: Upper-right corner (x_max, y_max).
        cells_per_dimension: Number of elements (nx, ny).
        periodicity: Periodic flags per direction.
    """

    def __init__(
        self,
        coordinates_min: tuple[float, float],
        coordinates_max: tuple[float, float],
        cells_per_dimension: tuple[int, int],
        periodicity: tuple[bool, bool] = (True, True),
    ) -> None:
        nx, ny = (int(c) for c in cells_per_dimension)
        if nx < 1 or ny < 1:
            raise ValueError(f"cells_per_dimension must be positive, got {cells_per_dimension}")

        self.coordinates_min = np.asarray(coordinates_min, dtype=np.float64)
        self.coordinates_max = np.asarray(coordinates_max, dtype=np.float64)
        extent = self.coordinates_max - self.coordinates_min
        if np.any(extent <= 0.0):
            raise ValueError("coordinates_max must exceed coordinates_min in every direction")

        dx = extent[0] / nx
        dy = extent[1] / ny
        if not np.isclose(dx, dy, rtol=1e-12, atol=0.0):
            raise ValueError(f"elements must be square, got dx={dx:.6e}, dy={dy:.6e}")

        self.nx = nx
        self.ny = ny
        self.dx = float(dx)
        self.periodicity = (bool(periodicity[0]), bool(periodicity[1]))
        self.nelements = nx * ny
        self.inverse_jacobian = np.full(self.nelements, 2.0 / self.dx)

        self.interfaces_x = self._build_interfaces(orientation=1)
        self.interfaces_y = self._build_interfaces(orientation=2)
        self.boundaries = self._build_boundaries()

        logger.debug(
            "Mesh %dx%d elements, dx=%.4e, periodic=%s, %d x-interfaces, %d y-interfaces",
            nx, ny, self.dx, self.periodicity,
            len(self.interfaces_x[0]), len(self.interfaces_y[0]),
        )

    # --- Element indexing ---

    def element_id(self, ex: int | np.ndarray, ey: int | np.ndarray) -> int | np.ndarray:
        return ex + self.nx * ey

    def element_centers(self) -> np.ndarray:
        """Element center coordinates, shape (2, nelements)."""
        ex = np.arange(self.nelements) % self.nx
        ey = np.arange(self.nelements) // self.nx
        xc = self.coordinates_min[0] + (ex + 0.5) * self.dx
        yc = self.coordinates_min[1] + (ey + 0.5) * self.dx
        return np.stack([xc, yc])

    def node_coordinates(self, basis: LobattoLegendreBasis) -> np.ndarray:
        """Physical coordinates of all nodes, shape (2, n, n, nelements).

        Axis 1 follows the reference xi direction, axis 2 the eta direction.
        """
        centers = self.element_centers()
        half = 0.5 * self.dx
        xi = basis.nodes
        shape = (basis.nnodes, basis.nnodes, self.nelements)
        x = centers[0][None, None, :] + half * xi[:, None, None]
        y = centers[1][None, None, :] + half * xi[None, :, None]
        return np.stack([np.broadcast_to(x, shape), np.broadcast_to(y, shape)])

    # --- Connectivity ---

    def _build_interfaces(self, orientation: int) -> tuple[np.ndarray, np.ndarray]:
        ex, ey = np.meshgrid(np.arange(self.nx), np.arange(self.ny), indexing="ij")
        ex = ex.ravel()
        ey = ey.ravel()
        if orientation == 1:
            periodic = self.periodicity[0]
            mask = np.ones_like(ex, dtype=bool) if periodic else ex < self.nx - 1
            left = self.element_id(ex[mask], ey[mask])
            right = self.element_id((ex[mask] + 1) % self.nx, ey[mask])
        else:
            periodic = self.periodicity[1]
            mask = np.ones_like(ey, dtype=bool) if periodic else ey < self.ny - 1
            left = self.element_id(ex[mask], ey[mask])
            right = self.element_id(ex[mask], (ey[mask] + 1) % self.ny)
        order = np.argsort(left, kind="stable")
        return left[order].astype(np.int64), right[order].astype(np.int64)

    def _build_boundaries(self) -> dict[int, np.ndarray]:
        boundaries: dict[int, np.ndarray] = {}
        if not self.periodicity[0]:
            ey = np.arange(self.ny)
            boundaries[X_NEG] = np.asarray(self.element_id(0, ey), dtype=np.int64)
            boundaries[X_POS] = np.asarray(self.element_id(self.nx - 1, ey), dtype=np.int64)
        if not self.periodicity[1]:
            ex = np.arange(self.nx)
            boundaries[Y_NEG] = np.asarray(self.element_id(ex, 0), dtype=np.int64)
            boundaries[Y_POS] = np.asarray(self.element_id(ex, self.ny - 1), dtype=np.int64)
        return boundaries

    @property
    def total_volume(self) -> float:
        return float(np.prod(self.coordinates_max - self.coordinates_min))

    def __repr__(self) -> str:
        return (
            f"CartesianMesh2D(cells=({self.nx}, {self.ny}), dx={self.dx:.4e}, "
            f"periodicity={self.periodicity})"
        )
