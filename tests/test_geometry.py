"""Tests for the LGL basis and the Cartesian mesh."""

from __future__ import annotations

import numpy as np
import pytest

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


class TestLobattoLegendreBasis:
    """LGL nodes, weights and differentiation operators."""

    @pytest.mark.parametrize("polydeg", [1, 2, 3, 5])
    def test_weights_sum_to_two(self, polydeg):
        """Quadrature integrates 1 exactly over [-1, 1]."""
        basis = LobattoLegendreBasis(polydeg)
        assert basis.weights.sum() == pytest.approx(2.0, rel=1e-14)

    def test_nodes_include_endpoints(self):
        """LGL nodes contain both interval ends."""
        basis = LobattoLegendreBasis(4)
        assert basis.nodes[0] == -1.0
        assert basis.nodes[-1] == 1.0
        assert np.all(np.diff(basis.nodes) > 0)

    def test_known_polydeg_2(self):
        """Degree 2: nodes (-1, 0, 1), weights (1/3, 4/3, 1/3)."""
        basis = LobattoLegendreBasis(2)
        np.testing.assert_allclose(basis.nodes, [-1.0, 0.0, 1.0], atol=1e-15)
        np.testing.assert_allclose(basis.weights, [1.0 / 3.0, 4.0 / 3.0, 1.0 / 3.0], rtol=1e-14)

    def test_derivative_annihilates_constants(self):
        """Rows of D sum to zero."""
        basis = LobattoLegendreBasis(3)
        np.testing.assert_allclose(basis.derivative_matrix.sum(axis=1), 0.0, atol=1e-13)

    def test_derivative_exact_for_polynomials(self):
        """D differentiates x^k exactly for k <= polydeg."""
        basis = LobattoLegendreBasis(4)
        x = basis.nodes
        for k in range(1, 5):
            np.testing.assert_allclose(
                basis.derivative_matrix @ x**k, k * x ** (k - 1), atol=1e-12,
            )

    def test_split_operator_has_zero_diagonal(self):
        """D_split = 2D with boundary corrections has a zero diagonal."""
        basis = LobattoLegendreBasis(3)
        np.testing.assert_allclose(np.diag(basis.derivative_split), 0.0, atol=1e-12)

    def test_invalid_polydeg(self):
        with pytest.raises(ValueError, match="polydeg"):
            LobattoLegendreBasis(0)


class TestCartesianMesh2D:
    """Element numbering, connectivity and coordinates."""

    def test_periodic_interfaces(self):
        """Every element has one x and one y interface on its positive side."""
        mesh = CartesianMesh2D((0.0, 0.0), (3.0, 2.0), (3, 2), periodicity=(True, True))
        left, right = mesh.interfaces_x
        assert len(left) == 6
        assert mesh.boundaries == {}
        # element 2 (ex=2, ey=0) wraps to element 0
        assert right[list(left).index(2)] == 0

    def test_nonperiodic_boundaries(self):
        mesh = CartesianMesh2D((0.0, 0.0), (3.0, 1.0), (3, 1), periodicity=(False, True))
        assert len(mesh.interfaces_x[0]) == 2
        np.testing.assert_array_equal(mesh.boundaries[X_NEG], [0])
        np.testing.assert_array_equal(mesh.boundaries[X_POS], [2])
        assert Y_NEG not in mesh.boundaries

    def test_single_row_connects_to_itself(self):
        """A periodic single element row is its own y neighbor."""
        mesh = CartesianMesh2D((0.0, 0.0), (2.0, 1.0), (2, 1), periodicity=(False, True))
        left, right = mesh.interfaces_y
        np.testing.assert_array_equal(left, right)

    def test_non_square_rejected(self):
        with pytest.raises(ValueError, match="square"):
            CartesianMesh2D((0.0, 0.0), (2.0, 1.0), (2, 2))

    def test_inverse_jacobian(self):
        mesh = CartesianMesh2D((0.0, 0.0), (1.0, 1.0), (4, 4))
        np.testing.assert_allclose(mesh.inverse_jacobian, 8.0)

    def test_node_coordinates_span_domain(self):
        basis = LobattoLegendreBasis(3)
        mesh = CartesianMesh2D((-1.0, -1.0), (1.0, 1.0), (2, 2))
        x = mesh.node_coordinates(basis)
        assert x.shape == (2, 4, 4, 4)
        assert x[0].min() == pytest.approx(-1.0)
        assert x[1].max() == pytest.approx(1.0)
        # x varies along axis 1 only
        np.testing.assert_allclose(x[0][:, 0, :], x[0][:, 3, :])

    def test_boundary_view_is_writable_view(self):
        a = np.zeros((2, 4, 4, 3))
        boundary_view(a, Y_POS)[..., 1] = 7.0
        assert np.all(a[:, :, -1, 1] == 7.0)
        assert a.sum() == 7.0 * 2 * 4

    def test_orientation_of(self):
        assert orientation_of(X_NEG) == orientation_of(X_POS) == 1
        assert orientation_of(Y_NEG) == orientation_of(Y_POS) == 2
