"""Named configurations for the standard limiter test problems.

Each preset unpacks into ``SimulationConfig(**get_preset(name))``.  All of
them use a CFL number below the convexity limit of the subcell low-order
scheme at polydeg 3 (the smallest LGL weight, 1/6).
"""

from __future__ import annotations

import copy
from typing import Any

# Quasi-1D mesh: one element row, periodic in y, square elements
_BLAST_1D_CELLS = 32
_BLAST_1D = {
    "problem": "blast_wave_1d",
    "polydeg": 3,
    "mesh": {
        "coordinates_min": [-2.0, 0.0],
        "coordinates_max": [2.0, 4.0 / _BLAST_1D_CELLS],
        "cells_per_dimension": [_BLAST_1D_CELLS, 1],
        "periodicity": [False, True],
    },
    "boundary_conditions": ["slip_wall", "slip_wall", "periodic", "periodic"],
    "tspan": [0.0, 0.5],
    "cfl": 0.15,
    "bounds_check": {"enabled": True, "save_errors": False, "interval": 100},
}

PRESETS: dict[str, dict[str, Any]] = {
    "blast_wave_idp": {
        **_BLAST_1D,
        "limiter": {
            "kind": "idp",
            "positivity_variables_cons": ["rho"],
            "positivity_variables_nonlinear": ["pressure"],
            "positivity_correction_factor": 0.1,
        },
    },
    "blast_wave_mcl": {
        **_BLAST_1D,
        "limiter": {
            "kind": "mcl",
            "density_limiter": True,
            "sequential_limiter": True,
            "positivity_limiter_density": True,
            "positivity_limiter_pressure": True,
        },
    },
    "sedov_mcl": {
        "problem": "sedov_blast_wave",
        "polydeg": 3,
        "mesh": {
            "coordinates_min": [-2.0, -2.0],
            "coordinates_max": [2.0, 2.0],
            "cells_per_dimension": [8, 8],
            "periodicity": [True, True],
        },
        "tspan": [0.0, 3.0],
        "cfl": 0.15,
        "limiter": {
            "kind": "mcl",
            "density_limiter": True,
            "sequential_limiter": True,
            "positivity_limiter_pressure": True,
            "positivity_limiter_pressure_exact": True,
            "entropy_limiter_semidiscrete": True,
        },
        "bounds_check": {"enabled": True, "save_errors": True, "interval": 100},
        "limiting_analysis": {"enabled": True, "interval": 1},
    },
    "density_wave_idp": {
        "problem": "density_wave",
        "polydeg": 3,
        "mesh": {
            "coordinates_min": [-1.0, -1.0],
            "coordinates_max": [1.0, 1.0],
            "cells_per_dimension": [4, 4],
            "periodicity": [True, True],
        },
        "tspan": [0.0, 2.0],
        "cfl": 0.15,
        "limiter": {
            "kind": "idp",
            "positivity_variables_cons": ["rho"],
            "positivity_correction_factor": 0.1,
            "max_iterations_newton": 10,
            "newton_tolerances": [1.0e-12, 1.0e-14],
        },
        "bounds_check": {"enabled": True, "save_errors": True, "interval": 1},
    },
}

DESCRIPTIONS = {
    "blast_wave_idp": "Planar blast wave, IDP density and pressure positivity",
    "blast_wave_mcl": "Planar blast wave, MCL with density and pressure positivity",
    "sedov_mcl": "Sedov blast wave, MCL with pressure and entropy limiting",
    "density_wave_idp": "Smooth density wave, IDP positivity (convergence setup)",
}


def list_presets() -> list[dict[str, str]]:
    """Name, limiter kind and description of every preset."""
    return [
        {"name": name, "limiter": preset["limiter"]["kind"], "description": DESCRIPTIONS[name]}
        for name, preset in PRESETS.items()
    ]


def get_preset(name: str) -> dict[str, Any]:
    """Return an independent copy of a preset.

    Raises:
        KeyError: If the preset name is not found.
    """
    if name not in PRESETS:
        raise KeyError(f"Unknown preset '{name}'. Available: {', '.join(PRESETS)}")
    return copy.deepcopy(PRESETS[name])
