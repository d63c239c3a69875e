"""High-order and low-order subcell fluxes and their difference.

On LGL nodes the flux-differencing volume term can be rewritten node by
node as a finite-volume update with "FV-form" fluxes ``fhat`` on the
subcell faces:

    flux_temp[i] = sum_k D_split[i, k] f_vol(u_i, u_k)
    fhat[0]      = 0
    fhat[i+1]    = fhat[i] + w_i flux_temp[i],   i = 0, ..., N-1
    fhat[N+1]    = 0

The low-order flux ``fstar`` is the two-point FV flux between neighbor
nodes.  Both vanish on the element edge faces; the DG surface flux is
applied there instead, so the antidiffusive flux only lives on interior
subcell faces.

Sign conventions (kept separate per limiter family):
    IDP:  F = fhat - fstar
    MCL:  F = fstar - fhat

Reference:
    T. Fisher, M. Carpenter, "High-order entropy stable finite difference
    schemes for nonlinear conservation laws: Finite domains",
    J. Comput. Phys. 252 (2013).
"""

from __future__ import annotations

from typing import Callable

import numpy as np

from subcell.core.arena import ScratchBuffers
from subcell.fluid.euler import CompressibleEuler2D
from subcell.geometry.basis import LobattoLegendreBasis

TwoPointFlux = Callable[[np.ndarray, np.ndarray, int], np.ndarray]


class AntidiffusiveFluxBuilder:
    """Assemble ``fhat`` and ``fstar`` for one block of elements.

    Args:
        basis: Nodal basis providing weights and ``derivative_split``.
        equations: Physics object.
        volume_flux_dg: Symmetric two-point flux of the high-order scheme
            (default ``equations.flux_ranocha``).
        volume_flux_fv: Two-point flux of the low-order scheme
            (default ``equations.flux_lax_friedrichs``).
    """

    def __init__(
        self,
        basis: LobattoLegendreBasis,
        equations: CompressibleEuler2D,
        volume_flux_dg: TwoPointFlux | None = None,
        volume_flux_fv: TwoPointFlux | None = None,
    ) -> None:
        self.basis = basis
        self.equations = equations
        self.volume_flux_dg = volume_flux_dg or equations.flux_ranocha
        self.volume_flux_fv = volume_flux_fv or equations.flux_lax_friedrichs

    def calcflux_fhat(self, u: np.ndarray, buffers: ScratchBuffers) -> None:
        """Fill ``buffers.fhat1/fhat2`` for the block ``u`` (nvars, n, n, m)."""
        weights = self.basis.weights
        D_split = self.basis.derivative_split
        fhat1, fhat2, flux_temp = buffers.fhat1, buffers.fhat2, buffers.flux_temp

        # x: pairwise fluxes between nodes (i, j) and (k, j)
        pair = self.volume_flux_dg(u[:, :, None], u[:, None, :], 1)
        np.einsum("ik,vikje->vije", D_split, pair, out=flux_temp)
        fhat1[:, 0] = 0.0
        fhat1[:, 1:] = np.cumsum(weights[None, :, None, None] * flux_temp, axis=1)
        fhat1[:, -1] = 0.0

        # y: pairwise fluxes between nodes (i, j) and (i, k)
        pair = self.volume_flux_dg(u[:, :, :, None], u[:, :, None, :], 2)
        np.einsum("jk,vijke->vije", D_split, pair, out=flux_temp)
        fhat2[:, :, 0] = 0.0
        fhat2[:, :, 1:] = np.cumsum(weights[None, None, :, None] * flux_temp, axis=2)
        fhat2[:, :, -1] = 0.0

    def calcflux_fv(self, u: np.ndarray, buffers: ScratchBuffers) -> None:
        """Fill ``buffers.fstar1/fstar2`` for the block ``u``."""
        fstar1, fstar2 = buffers.fstar1, buffers.fstar2
        fstar1[:, 0] = 0.0
        fstar1[:, -1] = 0.0
        fstar1[:, 1:-1] = self.volume_flux_fv(u[:, :-1], u[:, 1:], 1)

        fstar2[:, :, 0] = 0.0
        fstar2[:, :, -1] = 0.0
        fstar2[:, :, 1:-1] = self.volume_flux_fv(u[:, :, :-1], u[:, :, 1:], 2)

    def calcflux(self, u: np.ndarray, buffers: ScratchBuffers) -> None:
        self.calcflux_fhat(u, buffers)
        self.calcflux_fv(u, buffers)


def antidiffusive_flux(
    fhat: np.ndarray, fstar: np.ndarray, sign: float, out: np.ndarray,
) -> np.ndarray:
    """``out = sign * (fhat - fstar)``; zero on the element edge faces."""
    np.subtract(fhat, fstar, out=out)
    if sign < 0.0:
        np.negative(out, out=out)
    return out


def add_flux_differences(
    target: np.ndarray,
    scale: np.ndarray | float,
    flux1: np.ndarray,
    flux2: np.ndarray,
    inverse_weights: np.ndarray,
) -> None:
    """``target += scale * (w_i^-1 (F1[i+1] - F1[i]) + w_j^-1 (F2[j+1] - F2[j]))``.

    ``scale`` broadcasts against the element axis, e.g. ``-dt * J^-1``.
    """
    invw = inverse_weights
    target += scale * (
        invw[None, :, None, None] * (flux1[:, 1:] - flux1[:, :-1])
        + invw[None, None, :, None] * (flux2[:, :, 1:] - flux2[:, :, :-1])
    )
