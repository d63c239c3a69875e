"""Initial conditions ``f(x, t, equations) -> u`` for the verification problems.

``x`` has shape (2, ...); the returned conservative state has shape
(4, ...) with the same trailing axes.
"""

from __future__ import annotations

import numpy as np

from subcell.fluid.euler import CompressibleEuler2D

# Blast-wave parameters (Sedov setup after the FLASH user guide)
BLAST_RADIUS = 0.21875
BLAST_ENERGY = 1.0
AMBIENT_PRESSURE = 1.0e-5


def initial_condition_constant(x: np.ndarray, t: float, equations: CompressibleEuler2D) -> np.ndarray:
    """Free stream; every consistent scheme must preserve it exactly."""
    shape = x.shape[1:]
    return np.stack([
        np.full(shape, 1.0),
        np.full(shape, 0.1),
        np.full(shape, -0.2),
        np.full(shape, 10.0),
    ])


def initial_condition_density_wave(
    x: np.ndarray, t: float, equations: CompressibleEuler2D,
) -> np.ndarray:
    """Smooth density wave advected with constant velocity and pressure.

    The exact solution at time ``t`` is the initial profile shifted by
    ``(v1, v2) t``; the domain period must be a multiple of 1.
    """
    v1, v2, p = 0.1, 0.2, 20.0
    rho = 1.0 + 0.98 * np.sin(2.0 * np.pi * (x[0] + x[1] - t * (v1 + v2)))
    prim = np.stack([rho, np.full_like(rho, v1), np.full_like(rho, v2), np.full_like(rho, p)])
    return equations.prim2cons(prim)


def initial_condition_blast_wave_1d(
    x: np.ndarray, t: float, equations: CompressibleEuler2D,
) -> np.ndarray:
    """Planar blast wave: a high-pressure slab around x = 0, uniform in y.

    rho = 1 and v = 0 everywhere; the slab of half-width ``BLAST_RADIUS``
    holds the energy ``BLAST_ENERGY`` per unit length, the ambient gas has
    pressure ``AMBIENT_PRESSURE``.
    """
    p_inner = (equations.gamma - 1.0) * BLAST_ENERGY / (2.0 * BLAST_RADIUS)
    rho = np.ones_like(x[0])
    p = np.where(np.abs(x[0]) > BLAST_RADIUS, AMBIENT_PRESSURE, p_inner)
    zero = np.zeros_like(rho)
    return equations.prim2cons(np.stack([rho, zero, zero, p]))


def initial_condition_sedov_blast_wave(
    x: np.ndarray, t: float, equations: CompressibleEuler2D,
) -> np.ndarray:
    """Sedov blast wave centered at the origin."""
    r = np.sqrt(x[0] ** 2 + x[1] ** 2)
    p_inner = 3.0 * (equations.gamma - 1.0) * BLAST_ENERGY / (3.0 * np.pi * BLAST_RADIUS**2)
    rho = np.ones_like(r)
    p = np.where(r > BLAST_RADIUS, AMBIENT_PRESSURE, p_inner)
    zero = np.zeros_like(rho)
    return equations.prim2cons(np.stack([rho, zero, zero, p]))


INITIAL_CONDITIONS = {
    "constant": initial_condition_constant,
    "density_wave": initial_condition_density_wave,
    "blast_wave_1d": initial_condition_blast_wave_1d,
    "sedov_blast_wave": initial_condition_sedov_blast_wave,
}


def get_initial_condition(name: str):
    """Look up an initial condition by name.

    Raises:
        KeyError: If the name is unknown.
    """
    if name not in INITIAL_CONDITIONS:
        available = ", ".join(INITIAL_CONDITIONS)
        raise KeyError(f"Unknown initial condition '{name}'. Available: {available}")
    return INITIAL_CONDITIONS[name]
