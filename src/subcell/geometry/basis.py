"""Legendre-Gauss-Lobatto nodal basis for the DGSEM.

The solution inside each element is a tensor-product Lagrange polynomial
on the LGL nodes.  Because the quadrature nodes coincide with the
interpolation nodes, the scheme can be rewritten node by node as a
finite-volume-like update on subcells whose widths are the quadrature
weights.  This is what makes subcell limiting possible.

Operators provided:
    nodes:            LGL nodes on [-1, 1], shape (n,)
    weights:          LGL quadrature weights, shape (n,)
    inverse_weights:  1 / weights
    derivative_matrix: D[i, j] = l_j'(x_i)
    derivative_split: 2 D with the boundary corrections that zero its
                      diagonal (used by the flux-differencing volume term)

Reference:
    Kopriva, "Implementing Spectral Methods for Partial Differential
    Equations" (2009), Algorithms 25, 37.
"""

from __future__ import annotations

import numpy as np
from numpy.polynomial import legendre as _leg
from scipy.special import eval_legendre


def lgl_nodes_and_weights(polydeg: int) -> tuple[np.ndarray, np.ndarray]:
    """Compute the Legendre-Gauss-Lobatto nodes and weights.

    The interior nodes are the roots of P_N'(x); the weights are
    w_i = 2 / (N (N + 1) P_N(x_i)^2).

    Args:
        polydeg: Polynomial degree N (number of nodes is N + 1).

    Returns:
        (nodes, weights), each of shape (N + 1,).
    """
    if polydeg < 1:
        raise ValueError(f"polydeg must be >= 1, got {polydeg}")

    coeffs = np.zeros(polydeg + 1)
    coeffs[-1] = 1.0
    interior = np.sort(np.real(_leg.legroots(_leg.legder(coeffs))))
    nodes = np.concatenate(([-1.0], interior, [1.0]))

    p_n = eval_legendre(polydeg, nodes)
    weights = 2.0 / (polydeg * (polydeg + 1) * p_n**2)
    return nodes, weights


def barycentric_weights(nodes: np.ndarray) -> np.ndarray:
    """Barycentric weights w_j = 1 / prod_{k != j} (x_j - x_k)."""
    diff = nodes[:, None] - nodes[None, :]
    np.fill_diagonal(diff, 1.0)
    return 1.0 / np.prod(diff, axis=1)


def polynomial_derivative_matrix(nodes: np.ndarray) -> np.ndarray:
    """Lagrange differentiation matrix D[i, j] = l_j'(x_i).

    Off-diagonal entries use the barycentric formula; the diagonal is
    the negative row sum so that D annihilates constants exactly.
    """
    wbary = barycentric_weights(nodes)
    diff = nodes[:, None] - nodes[None, :]
    np.fill_diagonal(diff, 1.0)
    D = (wbary[None, :] / wbary[:, None]) / diff
    np.fill_diagonal(D, 0.0)
    np.fill_diagonal(D, -np.sum(D, axis=1))
    return D


class LobattoLegendreBasis:
    """Nodal LGL basis with the operators needed by subcell limiting.

    Args:
        polydeg: Polynomial degree N >= 1.
    """

    def __init__(self, polydeg: int) -> None:
        self.polydeg = polydeg
        self.nodes, self.weights = lgl_nodes_and_weights(polydeg)
        self.inverse_weights = 1.0 / self.weights
        self.derivative_matrix = polynomial_derivative_matrix(self.nodes)

        # D_split = 2 D - B / W, so that its diagonal vanishes on LGL nodes
        D_split = 2.0 * self.derivative_matrix
        D_split[0, 0] += 1.0 / self.weights[0]
        D_split[-1, -1] -= 1.0 / self.weights[-1]
        self.derivative_split = D_split

    @property
    def nnodes(self) -> int:
        """Number of nodes per direction."""
        return self.polydeg + 1

    def __repr__(self) -> str:
        return f"LobattoLegendreBasis(polydeg={self.polydeg})"
