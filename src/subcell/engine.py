"""Simulation engine: SSP-RK3 time loop around the subcell semidiscretization.

Wires together: config -> mesh, basis, equations, limiter -> semidiscretization
-> stage callbacks (limiter correction, bounds check) -> step-end analysis.

Each step of the three-stage Shu-Osher SSP-RK scheme runs, per stage:

    1. du = rhs(u, t + c_s dt)
    2. u  = u + dt du                      (forward Euler stage update)
    3. limiter.limit_and_correct(...)      (a-posteriori IDP correction)
    4. stage callbacks (bounds check)
    5. u  = a_s u_0 + b_s u                (convex combination)

with a = (0, 3/4, 1/3), b = (1, 1/4, 2/3), c = (0, 1, 1/2).
"""

from __future__ import annotations

import logging
import time as wall_time
from typing import Any

import numpy as np

from subcell.config import IDPLimiterConfig, SimulationConfig
from subcell.core.bases import StageCallbackBase, StepResult, SubcellLimiterBase
from subcell.diagnostics.bounds_check import BoundsCheckCallback
from subcell.diagnostics.limiting_analysis import LimitingAnalysisCallback
from subcell.fluid.boundary import (
    BoundaryCondition,
    BoundaryConditionDirichlet,
    BoundaryConditionPeriodic,
    BoundaryConditionSlipWall,
)
from subcell.fluid.euler import CompressibleEuler2D
from subcell.geometry.basis import LobattoLegendreBasis
from subcell.geometry.mesh import CartesianMesh2D
from subcell.limiting.idp import SubcellLimiterIDP
from subcell.limiting.mcl import SubcellLimiterMCL
from subcell.limiting.observer import AlphaObserver, IDPAlphaRecorder, MCLAlphaRecorder
from subcell.semidiscretization import SemidiscretizationSubcell
from subcell.verification.initial_conditions import get_initial_condition

logger = logging.getLogger(__name__)

# SSP-RK3 (Shu-Osher) coefficients
SSPRK33_A = (0.0, 3.0 / 4.0, 1.0 / 3.0)
SSPRK33_B = (1.0, 1.0 / 4.0, 2.0 / 3.0)
SSPRK33_C = (0.0, 1.0, 1.0 / 2.0)


def build_boundary_conditions(
    names: tuple[str, ...], initial_condition,
) -> dict[int, BoundaryCondition]:
    """Boundary condition objects per direction; Dirichlet uses the initial condition."""
    conditions: dict[int, BoundaryCondition] = {}
    for direction, name in enumerate(names):
        if name == "periodic":
            conditions[direction] = BoundaryConditionPeriodic()
        elif name == "slip_wall":
            conditions[direction] = BoundaryConditionSlipWall()
        elif name == "dirichlet":
            conditions[direction] = BoundaryConditionDirichlet(initial_condition)
        else:
            raise ValueError(f"unknown boundary condition '{name}'")
    return conditions


def build_limiter(
    equations: CompressibleEuler2D, config: SimulationConfig,
) -> SubcellLimiterBase:
    """Limiter from config, with a coefficient recorder when analysis output is on."""
    limiter_config = config.limiter
    analysis = config.limiting_analysis.enabled
    observer: AlphaObserver | None = None
    if isinstance(limiter_config, IDPLimiterConfig):
        if analysis:
            observer = IDPAlphaRecorder(n_stages=len(SSPRK33_A))
        return SubcellLimiterIDP.from_config(equations, limiter_config, observer)
    if analysis and limiter_config.plotting:
        observer = MCLAlphaRecorder()
    return SubcellLimiterMCL.from_config(equations, limiter_config, observer)


class SimulationEngine:
    """Subcell-limited DGSEM simulation engine.

    Args:
        config: Validated simulation configuration.
        stage_callbacks: Extra callbacks run after every stage, after the
            bounds check.
    """

    def __init__(
        self,
        config: SimulationConfig,
        stage_callbacks: list[StageCallbackBase] | None = None,
    ) -> None:
        self.config = config
        self.equations = CompressibleEuler2D(config.gamma)
        self.basis = LobattoLegendreBasis(config.polydeg)
        mesh_cfg = config.mesh
        self.mesh = CartesianMesh2D(
            mesh_cfg.coordinates_min,
            mesh_cfg.coordinates_max,
            mesh_cfg.cells_per_dimension,
            mesh_cfg.periodicity,
        )
        initial_condition = get_initial_condition(config.problem)
        self.limiter = build_limiter(self.equations, config)
        self.semi = SemidiscretizationSubcell(
            self.mesh,
            self.equations,
            self.basis,
            self.limiter,
            build_boundary_conditions(config.boundary_conditions, initial_condition),
            initial_condition,
            n_workers=config.n_workers,
        )

        self.stage_callbacks: list[StageCallbackBase] = []
        self.bounds_check: BoundsCheckCallback | None = None
        if config.bounds_check.enabled:
            self.bounds_check = BoundsCheckCallback.from_config(config.bounds_check)
            self.stage_callbacks.append(self.bounds_check)
        else:
            logger.warning("Bounds check disabled; limiter bounds are not verified")
        self.stage_callbacks.extend(stage_callbacks or [])

        self.limiting_analysis: LimitingAnalysisCallback | None = None
        if config.limiting_analysis.enabled:
            self.limiting_analysis = LimitingAnalysisCallback.from_config(config.limiting_analysis)

        self.t_start, self.t_end = config.tspan
        self.time = self.t_start
        self.step_count = 0
        self.u = self.semi.compute_coefficients(self.time)
        self._du = np.empty_like(self.u)
        self._u0 = np.empty_like(self.u)
        self._initialized = False
        self._finalized = False

        logger.info(
            "Engine ready: problem=%s, tspan=(%.4g, %.4g), cfl=%.3g",
            config.problem, self.t_start, self.t_end, config.cfl,
        )

    def _initialize(self) -> None:
        for callback in self.stage_callbacks:
            callback.init(self.semi, self.u, self.time)
        if self.limiting_analysis is not None:
            self.limiting_analysis.init(self.semi, self.u, self.time)
        self._initialized = True

    # --- Time stepping ---

    def step(self, *, _max_steps: int | None = None) -> StepResult:
        """Advance the solution by one SSP-RK3 step."""
        if not self._initialized:
            self._initialize()

        semi = self.semi
        u, du, u0 = self.u, self._du, self._u0
        t = self.time
        dt = min(semi.max_dt(u, self.config.cfl), self.t_end - t)
        iteration = self.step_count + 1
        reached_end = self.t_end - (t + dt) <= 1e-14 * max(abs(self.t_end), 1.0)
        finished = reached_end or (_max_steps is not None and iteration >= _max_steps)
        n_stages = len(SSPRK33_A)

        np.copyto(u0, u)
        for s in range(n_stages):
            stage = s + 1
            t_stage = t + SSPRK33_C[s] * dt
            semi.rhs(u, t_stage, du)
            u += dt * du
            self.limiter.limit_and_correct(u, t_stage, dt, stage, semi)
            for callback in self.stage_callbacks:
                callback(u, t_stage, dt, stage, n_stages, iteration, finished, semi)
            if s > 0:
                u *= SSPRK33_B[s]
                u += SSPRK33_A[s] * u0

        self.time = self.t_end if reached_end else t + dt
        self.step_count = iteration
        self._check_state()

        if self.limiting_analysis is not None:
            self.limiting_analysis(u, self.time, iteration, finished, semi)

        logger.debug("Step %d: t=%.6e, dt=%.4e", iteration, self.time, dt)
        return self._make_step_result(dt=dt, finished=finished)

    def _check_state(self) -> None:
        if not np.all(np.isfinite(self.u)):
            raise RuntimeError(f"non-finite solution after step {self.step_count} (t={self.time:.6e})")
        valid = self.equations.is_valid_state(self.u)
        if not np.all(valid):
            bad = int(np.count_nonzero(~valid))
            raise RuntimeError(
                f"{bad} node(s) with nonpositive density or pressure after step "
                f"{self.step_count} (t={self.time:.6e})"
            )

    def _make_step_result(self, *, dt: float, finished: bool) -> StepResult:
        return StepResult(
            time=self.time,
            step=self.step_count,
            dt=dt,
            min_density=float(np.min(self.u[0])),
            min_pressure=float(np.min(self.equations.pressure(self.u))),
            finished=finished,
        )

    # --- Batch run ---

    def run(self, max_steps: int | None = None) -> dict[str, Any]:
        """Execute the simulation loop.

        Args:
            max_steps: Maximum number of timesteps (None = run to the end time).

        Returns:
            Dictionary with summary statistics.
        """
        t_wall_start = wall_time.monotonic()
        logger.info("Starting simulation: t_end=%.4e", self.t_end)

        min_density = np.inf
        min_pressure = np.inf
        while True:
            result = self.step(_max_steps=max_steps)
            min_density = min(min_density, result.min_density)
            min_pressure = min(min_pressure, result.min_pressure)
            if result.finished:
                break

        self.finalize()
        t_wall = wall_time.monotonic() - t_wall_start
        summary = {
            "steps": self.step_count,
            "sim_time": self.time,
            "wall_time_s": t_wall,
            "min_density": float(min_density),
            "min_pressure": float(min_pressure),
        }
        if self.bounds_check is not None:
            summary["max_deviations"] = {
                key.name: float(self.bounds_check.deviations[k, 1])
                for k, key in enumerate(self.bounds_check.layout)
            }

        logger.info(
            "Simulation complete: %d steps in %.2f s (%.1f steps/s)",
            self.step_count, t_wall, self.step_count / max(t_wall, 1e-10),
        )
        return summary

    def finalize(self) -> None:
        """Run the finalize hooks of all callbacks once."""
        if self._finalized:
            return
        for callback in self.stage_callbacks:
            callback.finalize(self.semi)
        if self.limiting_analysis is not None:
            self.limiting_analysis.finalize(self.semi)
        self._finalized = True

    def close(self) -> None:
        """Release the worker pool."""
        self.semi.close()
