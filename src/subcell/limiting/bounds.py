"""Bound keys, their dense layout, and the bound computations.

Every tracked bound is a ``BoundKey`` (kind + variable name).  A
``BoundLayout`` fixes the order of the active keys once, at limiter
construction, and maps each key to a dense index.  Bound values are then
stored in one array ``variable_bounds[k, i, j, element]`` and deviations
in ``deviations[k, 2]`` without any string lookup at run time.

``BoundsCalculator`` is a set of pure functions: it only reads its inputs
and returns freshly allocated arrays.

Two bound sources are supported:
    bar states:   min/max over the node value and its four incident
                  bar-state values
    FV solution:  min/max over the node value and the values of its direct
                  neighbors (across interfaces, and outer states at
                  physical boundaries)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

import numpy as np

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

# Function of a state array (nvars, ...) returning one scalar per node
StateFunction = Callable[[np.ndarray], np.ndarray]


class BoundKind(enum.Enum):
    LOCAL_MIN = "local_min"
    LOCAL_MAX = "local_max"
    SPEC_ENTROPY_MIN = "spec_entropy_min"
    MATH_ENTROPY_MAX = "math_entropy_max"
    POSITIVITY_MIN = "positivity_min"
    NONLINEAR_MIN = "nonlinear_min"
    PRESSURE_KUZMIN = "pressure_kuzmin"


_MAX_KINDS = (BoundKind.LOCAL_MAX, BoundKind.MATH_ENTROPY_MAX)


@dataclass(frozen=True)
class BoundKey:
    """One tracked bound.

    Attributes:
        kind: What the bound constrains.
        variable: Variable name (conservative variable, ``pressure`` or
            ``entropy`` for the entropy bounds).
    """

    kind: BoundKind
    variable: str

    @property
    def is_max(self) -> bool:
        return self.kind in _MAX_KINDS

    @property
    def name(self) -> str:
        if self.kind is BoundKind.SPEC_ENTROPY_MIN:
            return "spec_entropy_min"
        if self.kind is BoundKind.MATH_ENTROPY_MAX:
            return "math_entropy_max"
        suffix = "_max" if self.is_max else "_min"
        return self.variable + suffix


class BoundLayout:
    """Ordered, deduplicated set of active bound keys."""

    def __init__(self, keys: Iterable[BoundKey]) -> None:
        ordered: list[BoundKey] = []
        for key in keys:
            if key not in ordered:
                ordered.append(key)
        self.keys = tuple(ordered)
        self._index = {key: k for k, key in enumerate(self.keys)}

    def index(self, key: BoundKey) -> int:
        return self._index[key]

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __len__(self) -> int:
        return len(self.keys)

    def __iter__(self) -> Iterator[BoundKey]:
        return iter(self.keys)

    def names(self) -> list[str]:
        return [key.name for key in self.keys]

    def allocate(self, nnodes: int, nelements: int) -> np.ndarray:
        """Dense bound storage ``(nkeys, n, n, nel)``."""
        return np.zeros((len(self.keys), nnodes, nnodes, nelements))

    @classmethod
    def for_idp(
        cls,
        local_minmax_variables: Iterable[str] = (),
        spec_entropy: bool = False,
        math_entropy: bool = False,
        positivity_variables_cons: Iterable[str] = (),
        positivity_variables_nonlinear: Iterable[str] = (),
    ) -> BoundLayout:
        local = list(local_minmax_variables)
        keys: list[BoundKey] = []
        for name in local:
            keys.append(BoundKey(BoundKind.LOCAL_MIN, name))
            keys.append(BoundKey(BoundKind.LOCAL_MAX, name))
        if spec_entropy:
            keys.append(BoundKey(BoundKind.SPEC_ENTROPY_MIN, "entropy"))
        if math_entropy:
            keys.append(BoundKey(BoundKind.MATH_ENTROPY_MAX, "entropy"))
        for name in positivity_variables_cons:
            keys.append(cls.positivity_key(name, local))
        for name in positivity_variables_nonlinear:
            keys.append(BoundKey(BoundKind.NONLINEAR_MIN, name))
        return cls(keys)

    @classmethod
    def for_mcl(cls, varnames: Iterable[str], pressure_positivity: bool = False) -> BoundLayout:
        keys: list[BoundKey] = []
        for name in varnames:
            keys.append(BoundKey(BoundKind.LOCAL_MIN, name))
            keys.append(BoundKey(BoundKind.LOCAL_MAX, name))
        if pressure_positivity:
            keys.append(BoundKey(BoundKind.PRESSURE_KUZMIN, "pressure"))
        return cls(keys)

    @staticmethod
    def positivity_key(name: str, local_minmax_variables: Iterable[str]) -> BoundKey:
        """Positivity of a variable that already has a local minimum shares its key."""
        if name in local_minmax_variables:
            return BoundKey(BoundKind.LOCAL_MIN, name)
        return BoundKey(BoundKind.POSITIVITY_MIN, name)

    def __repr__(self) -> str:
        return f"BoundLayout({self.names()})"


# ============================================================
# Bound computations
# ============================================================

def _bar_neighborhood(
    node_values: np.ndarray, bar1_values: np.ndarray, bar2_values: np.ndarray,
) -> tuple[np.ndarray, ...]:
    return (
        node_values,
        bar1_values[:-1],
        bar1_values[1:],
        bar2_values[:, :-1],
        bar2_values[:, 1:],
    )


class BoundsCalculator:
    """Pure bound computations on node arrays ``(n, n, nel)``.

    Args:
        mesh: Element mesh (interfaces, boundaries).
        equations: Physics object for boundary outer states.
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

    # --- Bounds from bar states ---

    @staticmethod
    def two_sided_from_bar_states(
        node_values: np.ndarray, bar1_values: np.ndarray, bar2_values: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        """(min, max) over each node and its four incident bar-state values.

        Args:
            node_values: Quantity at the nodes, shape (n, n, nel).
            bar1_values: Quantity at the x-face bar states, shape (n+1, n, nel).
            bar2_values: Quantity at the y-face bar states, shape (n, n+1, nel).
        """
        stencil = _bar_neighborhood(node_values, bar1_values, bar2_values)
        var_min = np.array(stencil[0], copy=True)
        var_max = np.array(stencil[0], copy=True)
        for values in stencil[1:]:
            np.minimum(var_min, values, out=var_min)
            np.maximum(var_max, values, out=var_max)
        return var_min, var_max

    @staticmethod
    def one_sided_from_bar_states(
        node_values: np.ndarray,
        bar1_values: np.ndarray,
        bar2_values: np.ndarray,
        upper: bool,
    ) -> np.ndarray:
        """Min (or max if ``upper``) over each node and its incident bar states."""
        stencil = _bar_neighborhood(node_values, bar1_values, bar2_values)
        op = np.maximum if upper else np.minimum
        bound = np.array(stencil[0], copy=True)
        for values in stencil[1:]:
            op(bound, values, out=bound)
        return bound

    # --- Bounds from the FV solution ---

    def two_sided_from_solution(
        self, u: np.ndarray, t: float, variable: StateFunction,
    ) -> tuple[np.ndarray, np.ndarray]:
        """(min, max) of ``variable`` over each node and its direct neighbors."""
        return (
            self.one_sided_from_solution(u, t, variable, upper=False),
            self.one_sided_from_solution(u, t, variable, upper=True),
        )

    def one_sided_from_solution(
        self, u: np.ndarray, t: float, variable: StateFunction, upper: bool,
    ) -> np.ndarray:
        op = np.maximum if upper else np.minimum
        values = variable(u)
        bound = np.array(values, copy=True)

        # Neighbors inside each element
        op(bound[:-1], values[1:], out=bound[:-1])
        op(bound[1:], values[:-1], out=bound[1:])
        op(bound[:, :-1], values[:, 1:], out=bound[:, :-1])
        op(bound[:, 1:], values[:, :-1], out=bound[:, 1:])

        # Neighbors across element interfaces
        for neg, pos, (left, right) in (
            (X_NEG, X_POS, self.mesh.interfaces_x),
            (Y_NEG, Y_POS, self.mesh.interfaces_y),
        ):
            if len(left) == 0:
                continue
            values_left = boundary_view(values, pos)[..., left]
            values_right = boundary_view(values, neg)[..., right]
            view = boundary_view(bound, pos)
            view[..., left] = op(view[..., left], values_right)
            view = boundary_view(bound, neg)
            view[..., right] = op(view[..., right], values_left)

        # Outer states at physical boundaries
        for direction, elements in self.mesh.boundaries.items():
            u_inner = boundary_view(u, direction)[..., elements]
            x = boundary_view(self.node_coordinates, direction)[..., elements]
            bc = self.boundary_conditions[direction]
            u_outer = bc.outer_state(
                u_inner, x, t, orientation_of(direction), direction, self.equations,
            )
            view = boundary_view(bound, direction)
            view[..., elements] = op(view[..., elements], variable(u_outer))
        return bound
