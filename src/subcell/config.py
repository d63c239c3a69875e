"""Pydantic v2 configuration system for subcell-limited simulations.

Provides validated, typed configuration with submodels for the mesh, the
limiter (IDP or MCL, discriminated on ``kind``) and the diagnostics
callbacks.  Mutually exclusive limiter options are rejected at
construction time, before any step executes.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, model_validator

from subcell.constants import EULER_VARNAMES, GAMMA_AIR

BOUNDARY_CONDITION_NAMES = ("periodic", "slip_wall", "dirichlet")
NONLINEAR_VARIABLE_NAMES = ("pressure",)


class MeshConfig(BaseModel):
    """Uniform Cartesian element mesh."""

    coordinates_min: tuple[float, float] = Field((-1.0, -1.0), description="Lower-left corner")
    coordinates_max: tuple[float, float] = Field((1.0, 1.0), description="Upper-right corner")
    cells_per_dimension: tuple[int, int] = Field((8, 8), description="Elements (nx, ny)")
    periodicity: tuple[bool, bool] = Field((True, True), description="Periodic in x, y")

    @model_validator(mode="after")
    def validate_extent(self) -> MeshConfig:
        if any(n < 1 for n in self.cells_per_dimension):
            raise ValueError("cells_per_dimension values must be positive integers")
        dx = (self.coordinates_max[0] - self.coordinates_min[0]) / self.cells_per_dimension[0]
        dy = (self.coordinates_max[1] - self.coordinates_min[1]) / self.cells_per_dimension[1]
        if dx <= 0.0 or dy <= 0.0:
            raise ValueError("coordinates_max must exceed coordinates_min in every direction")
        if abs(dx - dy) > 1e-12 * max(dx, dy):
            raise ValueError(f"elements must be square, got dx={dx:.6e}, dy={dy:.6e}")
        return self


class IDPLimiterConfig(BaseModel):
    """Invariant-domain-preserving limiter (a-posteriori correction)."""

    kind: Literal["idp"] = "idp"
    local_minmax_variables_cons: list[str] = Field(
        default_factory=list, description="Conservative variables with local min/max bounds",
    )
    positivity_variables_cons: list[str] = Field(
        default_factory=list, description="Conservative variables kept positive",
    )
    positivity_variables_nonlinear: list[str] = Field(
        default_factory=list, description="Nonlinear quantities kept positive ('pressure')",
    )
    positivity_correction_factor: float = Field(
        0.1, gt=0, lt=1, description="Fraction of the low-order value used as lower bound",
    )
    spec_entropy: bool = Field(False, description="Local minimum of the specific entropy")
    math_entropy: bool = Field(False, description="Local maximum of the mathematical entropy")
    bar_states: bool = Field(
        True, description="Bounds from bar states (True) or the low-order solution (False)",
    )
    max_iterations_newton: int = Field(10, ge=1, description="Newton-bisection iteration cap")
    newton_tolerances: tuple[float, float] = Field(
        (1.0e-12, 1.0e-14), description="(relative, absolute) Newton tolerances",
    )
    gamma_constant_newton: float | None = Field(
        None, gt=0, description="Face-share factor of the Newton solve (None = 2 * ndims)",
    )

    @model_validator(mode="after")
    def validate_bounds(self) -> IDPLimiterConfig:
        if self.spec_entropy and self.math_entropy:
            raise ValueError("spec_entropy and math_entropy cannot both be enabled")
        for name in self.local_minmax_variables_cons + self.positivity_variables_cons:
            if name not in EULER_VARNAMES:
                raise ValueError(
                    f"unknown conservative variable '{name}', expected one of {EULER_VARNAMES}"
                )
        for name in self.positivity_variables_nonlinear:
            if name not in NONLINEAR_VARIABLE_NAMES:
                raise ValueError(
                    f"unknown nonlinear variable '{name}', expected one of {NONLINEAR_VARIABLE_NAMES}"
                )
        if not (
            self.local_minmax_variables_cons or self.positivity_variables_cons
            or self.positivity_variables_nonlinear or self.spec_entropy or self.math_entropy
        ):
            raise ValueError("IDP limiter needs at least one active bound")
        if any(tol <= 0.0 for tol in self.newton_tolerances):
            raise ValueError("newton_tolerances must be positive")
        return self


class MCLLimiterConfig(BaseModel):
    """Monotonic convex limiter (inline in the RHS)."""

    kind: Literal["mcl"] = "mcl"
    density_limiter: bool = Field(True, description="Local bounds on density")
    density_coefficient_for_all: bool = Field(
        False, description="Scale all variables by the density limiting coefficient",
    )
    sequential_limiter: bool = Field(True, description="Local bounds on variable / density")
    conservative_limiter: bool = Field(False, description="Local bounds on conservative variables")
    positivity_limiter_pressure: bool = Field(False, description="Kuzmin pressure positivity")
    positivity_limiter_pressure_exact: bool = Field(
        True, description="Exact (True) or approximate pressure admissibility term",
    )
    positivity_limiter_density: bool = Field(False, description="Density positivity limiter")
    positivity_limiter_correction_factor: float = Field(
        0.0, ge=0, lt=1, description="beta of the density positivity limiter",
    )
    entropy_limiter_semidiscrete: bool = Field(False, description="Semi-discrete entropy limiter")
    plotting: bool = Field(True, description="Record limiting coefficients for analysis output")

    @model_validator(mode="after")
    def validate_limiters(self) -> MCLLimiterConfig:
        if self.sequential_limiter and self.conservative_limiter:
            raise ValueError("sequential_limiter and conservative_limiter are mutually exclusive")
        if self.density_coefficient_for_all and not (
            self.density_limiter or self.positivity_limiter_density
        ):
            raise ValueError("density_coefficient_for_all requires a density limiter")
        return self


LimiterConfig = Annotated[
    Union[IDPLimiterConfig, MCLLimiterConfig], Field(discriminator="kind"),
]


class BoundsCheckConfig(BaseModel):
    """Bounds-check diagnostics."""

    enabled: bool = Field(True, description="Check bounds after every stage")
    output_directory: str = Field("out", description="Directory of deviations.txt")
    save_errors: bool = Field(False, description="Append deviation rows to deviations.txt")
    interval: int = Field(1, ge=1, description="Steps between saved rows")


class LimitingAnalysisConfig(BaseModel):
    """Limiting-coefficient output."""

    enabled: bool = Field(False, description="Write alphas_*.txt")
    output_directory: str = Field("out", description="Output directory")
    interval: int = Field(1, ge=1, description="Steps between rows")


class SimulationConfig(BaseModel):
    """Top-level simulation configuration."""

    problem: str = Field(..., description="Name of the initial condition")
    gamma: float = Field(GAMMA_AIR, gt=1, description="Ratio of specific heats")
    polydeg: int = Field(3, ge=1, description="Polynomial degree of the DG basis")
    mesh: MeshConfig = Field(default_factory=MeshConfig)
    boundary_conditions: tuple[str, str, str, str] = Field(
        ("periodic", "periodic", "periodic", "periodic"),
        description="Boundary condition per direction (-x, +x, -y, +y)",
    )
    tspan: tuple[float, float] = Field((0.0, 1.0), description="Start and end time")
    cfl: float = Field(0.15, gt=0, description="CFL number")
    n_workers: int = Field(1, ge=1, description="Element blocks processed concurrently")
    limiter: LimiterConfig = Field(
        default_factory=lambda: IDPLimiterConfig(
            positivity_variables_cons=["rho"], positivity_variables_nonlinear=["pressure"],
        ),
        description="Limiter configuration, selected by 'kind'",
    )
    bounds_check: BoundsCheckConfig = Field(default_factory=BoundsCheckConfig)
    limiting_analysis: LimitingAnalysisConfig = Field(default_factory=LimitingAnalysisConfig)

    @model_validator(mode="after")
    def validate_setup(self) -> SimulationConfig:
        from subcell.verification.initial_conditions import INITIAL_CONDITIONS

        if self.problem not in INITIAL_CONDITIONS:
            available = ", ".join(INITIAL_CONDITIONS)
            raise ValueError(f"unknown problem '{self.problem}'. Available: {available}")
        if self.tspan[1] <= self.tspan[0]:
            raise ValueError("tspan end must exceed tspan start")
        for direction, name in enumerate(self.boundary_conditions):
            if name not in BOUNDARY_CONDITION_NAMES:
                raise ValueError(
                    f"unknown boundary condition '{name}', expected one of {BOUNDARY_CONDITION_NAMES}"
                )
            periodic = self.mesh.periodicity[direction // 2]
            if periodic != (name == "periodic"):
                raise ValueError(
                    f"boundary condition '{name}' on direction {direction} does not match "
                    f"mesh periodicity {self.mesh.periodicity}"
                )
        return self

    # --- I/O helpers ---

    @classmethod
    def from_file(cls, path: str | Path) -> SimulationConfig:
        """Load configuration from a JSON file."""
        path = Path(path)
        with path.open() as f:
            data = json.load(f)
        return cls(**data)

    def to_json(self, path: str | Path | None = None) -> str:
        """Serialize to JSON string, optionally writing to file."""
        out = self.model_dump_json(indent=2)
        if path is not None:
            Path(path).write_text(out)
        return out
