"""Planar blast wave benchmark for the subcell limiters.

A slab of gas at very high pressure expands into a near-vacuum ambient
(p = 1e-5).  Without limiting, the high-order scheme produces negative
pressures within a few steps; the IDP positivity limiter and MCL must
keep density and pressure positive at every node for the whole run.

Setup
-----
- Domain: [-2, 2] x [0, dx], one element row (periodic in y), slip walls in x
- gamma = 1.4
- rho = 1, v = 0
- p = (gamma - 1) E / (2 r0) for |x| <= r0, 1e-5 outside

Reference trace
---------------
After every step the runner records the L1, L2 and Linf norms of
``rho - 1``.  A trace saved with :func:`save_reference_trace` pins a run
(limiter, cells, polydeg, cfl, step count); :func:`compare_reference_trace`
replays the comparison for a later run of the same parameters.

Usage::

    from subcell.verification.blast_wave import run_blast_wave_1d

    result = run_blast_wave_1d(limiter="idp", cells=32, n_steps=50)
    print(f"min pressure: {result.min_pressure:.3e}, positive: {result.positivity}")
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from subcell.config import SimulationConfig
from subcell.limiting.observer import node_volumes
from subcell.presets import get_preset

logger = logging.getLogger(__name__)

# Parameters that identify a reference trace
TRACE_PARAMETERS = ("limiter", "cells", "polydeg", "cfl", "n_steps")


# ============================================================
# Result dataclass
# ============================================================

@dataclass
class BlastWaveResult:
    """Container for planar blast wave results.

    Attributes:
        u_final: Conservative state at the final time, shape (4, n, n, nel).
        x: Node x coordinates, shape (n, n, nel).
        min_density_trace: Minimum nodal density after every step.
        min_pressure_trace: Minimum nodal pressure after every step.
        norm_trace: L1, L2 and Linf norms of rho - 1 after every step,
            shape (n_steps, 3).
        t_end: Final time reached.
        n_steps: Number of timesteps taken.
        limiter: Limiter kind, ``"idp"`` or ``"mcl"``.
        parameters: Run parameters identifying the trace.
        summary: Engine run summary.
    """

    u_final: np.ndarray
    x: np.ndarray
    min_density_trace: np.ndarray
    min_pressure_trace: np.ndarray
    norm_trace: np.ndarray
    t_end: float
    n_steps: int
    limiter: str
    parameters: dict[str, Any] = field(default_factory=dict)
    summary: dict[str, Any] = field(default_factory=dict)

    @property
    def l1_density(self) -> float:
        """Volume-weighted L1 norm of rho - 1 at the final time."""
        return float(self.norm_trace[-1, 0])

    @property
    def l2_density(self) -> float:
        return float(self.norm_trace[-1, 1])

    @property
    def linf_density(self) -> float:
        return float(self.norm_trace[-1, 2])

    @property
    def min_density(self) -> float:
        return float(np.min(self.min_density_trace))

    @property
    def min_pressure(self) -> float:
        return float(np.min(self.min_pressure_trace))

    @property
    def positivity(self) -> bool:
        """Density and pressure stayed positive after every step."""
        return self.min_density > 0.0 and self.min_pressure > 0.0

    @property
    def finite(self) -> bool:
        return bool(np.all(np.isfinite(self.u_final)))


def density_error_norms(rho: np.ndarray, volumes: np.ndarray) -> tuple[float, float, float]:
    """Volume-weighted L1 and L2 norms and the maximum of ``|rho - 1|``."""
    error = np.abs(rho - 1.0)
    total = float(np.sum(volumes))
    return (
        float(np.sum(volumes * error) / total),
        float(np.sqrt(np.sum(volumes * error**2) / total)),
        float(np.max(error)),
    )


# ============================================================
# Runner
# ============================================================

def blast_wave_config(
    limiter: str = "idp",
    cells: int = 32,
    polydeg: int = 3,
    t_end: float = 0.5,
    cfl: float = 0.15,
    **overrides: Any,
) -> SimulationConfig:
    """Planar blast wave configuration on a quasi-1D mesh of ``cells`` elements."""
    if limiter not in ("idp", "mcl"):
        raise ValueError(f"limiter must be 'idp' or 'mcl', got '{limiter}'")
    preset = get_preset(f"blast_wave_{limiter}")
    dx = 4.0 / cells
    preset["mesh"] = {
        "coordinates_min": [-2.0, 0.0],
        "coordinates_max": [2.0, dx],
        "cells_per_dimension": [cells, 1],
        "periodicity": [False, True],
    }
    preset["polydeg"] = polydeg
    preset["tspan"] = [0.0, t_end]
    preset["cfl"] = cfl
    preset.update(overrides)
    return SimulationConfig(**preset)


def run_blast_wave_1d(
    limiter: str = "idp",
    cells: int = 32,
    polydeg: int = 3,
    t_end: float = 0.5,
    cfl: float = 0.15,
    n_steps: int | None = None,
    **overrides: Any,
) -> BlastWaveResult:
    """Run the planar blast wave and collect positivity and norm traces.

    Args:
        limiter: ``"idp"`` or ``"mcl"``.
        cells: Number of elements in x.
        polydeg: Polynomial degree.
        t_end: Final time.
        cfl: CFL number.
        n_steps: Step cap (None = run to ``t_end``).
        **overrides: Further ``SimulationConfig`` fields.

    Returns:
        BlastWaveResult.
    """
    from subcell.engine import SimulationEngine

    config = blast_wave_config(limiter, cells, polydeg, t_end, cfl, **overrides)
    engine = SimulationEngine(config)
    semi = engine.semi
    volumes = node_volumes(semi.basis.weights, semi.mesh.inverse_jacobian)
    min_density: list[float] = []
    min_pressure: list[float] = []
    norms: list[tuple[float, float, float]] = []
    try:
        while True:
            result = engine.step(_max_steps=n_steps)
            min_density.append(result.min_density)
            min_pressure.append(result.min_pressure)
            norms.append(density_error_norms(engine.u[0], volumes))
            if result.finished:
                break
        engine.finalize()
    finally:
        engine.close()

    summary = {
        "steps": engine.step_count,
        "sim_time": engine.time,
        "min_density": float(np.min(min_density)),
        "min_pressure": float(np.min(min_pressure)),
    }
    logger.info(
        "Blast wave (%s): %d steps to t=%.4f, min rho=%.4e, min p=%.4e",
        limiter, engine.step_count, engine.time, summary["min_density"], summary["min_pressure"],
    )
    return BlastWaveResult(
        u_final=engine.u.copy(),
        x=semi.node_coordinates[0].copy(),
        min_density_trace=np.asarray(min_density),
        min_pressure_trace=np.asarray(min_pressure),
        norm_trace=np.asarray(norms),
        t_end=engine.time,
        n_steps=engine.step_count,
        limiter=limiter,
        parameters={
            "limiter": limiter,
            "cells": cells,
            "polydeg": polydeg,
            "cfl": cfl,
            "n_steps": engine.step_count,
        },
        summary=summary,
    )


# ============================================================
# Reference trace
# ============================================================

def save_reference_trace(result: BlastWaveResult, path: str | Path) -> Path:
    """Write the run parameters and the per-step norm trace as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "parameters": {key: result.parameters[key] for key in TRACE_PARAMETERS},
        "norms": result.norm_trace.tolist(),
    }
    path.write_text(json.dumps(data, indent=2))
    logger.info("Reference trace written to %s (%d steps)", path, result.n_steps)
    return path


def load_reference_trace(path: str | Path) -> dict[str, Any]:
    """Read a trace written by :func:`save_reference_trace`."""
    data = json.loads(Path(path).read_text())
    norms = np.asarray(data["norms"], dtype=float)
    if norms.ndim != 2 or norms.shape[1] != 3:
        raise ValueError(f"{path}: norms must have shape (n_steps, 3), got {norms.shape}")
    return {"parameters": data["parameters"], "norms": norms}


def compare_reference_trace(result: BlastWaveResult, reference: dict[str, Any]) -> float:
    """Largest relative deviation of the norm trace from a reference trace.

    Raises:
        ValueError: If the run parameters differ from the reference's.
    """
    expected = reference["parameters"]
    for key in TRACE_PARAMETERS:
        if result.parameters[key] != expected[key]:
            raise ValueError(
                f"run parameter {key}={result.parameters[key]!r} does not match "
                f"the reference ({expected[key]!r})"
            )
    ref = reference["norms"]
    scale = np.maximum(np.abs(ref), np.finfo(float).tiny)
    return float(np.max(np.abs(result.norm_trace - ref) / scale))
