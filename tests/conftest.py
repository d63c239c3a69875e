"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import numpy as np
import pytest

from subcell.fluid.boundary import BoundaryConditionPeriodic
from subcell.fluid.euler import CompressibleEuler2D
from subcell.geometry.basis import LobattoLegendreBasis
from subcell.geometry.mesh import CartesianMesh2D


@pytest.fixture
def equations():
    return CompressibleEuler2D(gamma=1.4)


@pytest.fixture
def basis():
    """Degree-3 basis (4 nodes per direction)."""
    return LobattoLegendreBasis(3)


@pytest.fixture
def periodic_mesh():
    """2x2 periodic mesh on [-1, 1]^2."""
    return CartesianMesh2D((-1.0, -1.0), (1.0, 1.0), (2, 2), periodicity=(True, True))


@pytest.fixture
def periodic_bcs():
    return {direction: BoundaryConditionPeriodic() for direction in range(4)}


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


def random_states(equations, shape, rng, rho=(0.5, 2.0), v=(-0.5, 0.5), p=(0.5, 2.0)):
    """Random valid conservative states of shape (4, *shape)."""
    prim = np.stack([
        rng.uniform(*rho, size=shape),
        rng.uniform(*v, size=shape),
        rng.uniform(*v, size=shape),
        rng.uniform(*p, size=shape),
    ])
    return equations.prim2cons(prim)


@pytest.fixture
def make_states(equations, rng):
    """Factory for random valid states: ``make_states(shape, **ranges)``."""
    def _make(shape, **ranges):
        return random_states(equations, shape, rng, **ranges)
    return _make


@pytest.fixture
def sample_config_dict():
    """Minimal valid SimulationConfig as a dictionary."""
    return {
        "problem": "density_wave",
        "polydeg": 3,
        "mesh": {
            "coordinates_min": [-1.0, -1.0],
            "coordinates_max": [1.0, 1.0],
            "cells_per_dimension": [2, 2],
            "periodicity": [True, True],
        },
        "tspan": [0.0, 0.1],
        "cfl": 0.5,
        "limiter": {"kind": "idp", "positivity_variables_cons": ["rho"]},
    }


@pytest.fixture
def make_semi(equations, basis, periodic_mesh, periodic_bcs):
    """Factory ``make_semi(limiter, initial_condition, mesh=None, bcs=None, n_workers=1)``."""
    from subcell.semidiscretization import SemidiscretizationSubcell

    def _make(limiter, initial_condition, mesh=None, bcs=None, n_workers=1):
        return SemidiscretizationSubcell(
            mesh or periodic_mesh,
            equations,
            basis,
            limiter,
            bcs or periodic_bcs,
            initial_condition,
            n_workers=n_workers,
        )
    return _make
