"""Core abstract base classes and shared data structures.

Defines the interface contracts the limiting engine is built on:
- ``StepResult``: summary of one SSP-RK step
- ``SubcellLimiterBase``: ABC for the two limiter families (IDP, MCL)
- ``StageCallbackBase``: ABC for per-stage diagnostics callbacks

Both limiter families expose the same four operations
(``compute_bounds``, ``build_antidiffusive_flux``, ``limit``, ``correct``).
They differ in *when* they act: an ``inline`` limiter (MCL) limits and
applies the antidiffusive flux inside the RHS evaluation, an a-posteriori
limiter (IDP) corrects the low-order update once per stage through
``limit_and_correct``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from subcell.core.arena import ScratchBuffers
    from subcell.semidiscretization import SemidiscretizationSubcell


@dataclass
class StepResult:
    """Result of a single simulation timestep.

    Attributes:
        time: Simulation time after this step.
        step: Step number after this step.
        dt: Timestep size used.
        min_density: Smallest nodal density after the step.
        min_pressure: Smallest nodal pressure after the step.
        finished: True when the final time or max_steps was reached.
    """

    time: float = 0.0
    step: int = 0
    dt: float = 0.0
    min_density: float = 0.0
    min_pressure: float = 0.0
    finished: bool = False


class SubcellLimiterBase(ABC):
    """Abstract base for subcell flux limiters.

    Attributes:
        inline: True when limiting happens inside the RHS (MCL), False for
            an a-posteriori correction after each stage (IDP).
        requires_bar_states: True when the RHS must fill bar states.
    """

    inline: bool = False
    requires_bar_states: bool = True

    def setup(self, semi: SemidiscretizationSubcell) -> None:
        """Allocate limiter storage once the discretization is known."""

    @abstractmethod
    def compute_bounds(self, u: np.ndarray, t: float, semi: SemidiscretizationSubcell) -> None:
        """Derive the per-node bounds from ``u`` and the current bar states."""

    @abstractmethod
    def build_antidiffusive_flux(
        self, buffers: ScratchBuffers, out1: np.ndarray, out2: np.ndarray,
    ) -> None:
        """Write the antidiffusive flux of one element block into ``out1``/``out2``."""

    @abstractmethod
    def limit(
        self,
        u: np.ndarray,
        t: float,
        dt: float,
        semi: SemidiscretizationSubcell,
        elements: slice = slice(None),
        buffers: ScratchBuffers | None = None,
    ) -> None:
        """Limit the stored antidiffusive flux on ``elements``."""

    @abstractmethod
    def correct(
        self,
        target: np.ndarray,
        dt: float,
        semi: SemidiscretizationSubcell,
        elements: slice = slice(None),
    ) -> None:
        """Add the limited antidiffusive contribution to ``target``."""

    def limit_and_correct(
        self,
        u: np.ndarray,
        t: float,
        dt: float,
        stage: int,
        semi: SemidiscretizationSubcell,
    ) -> None:
        """Per-stage hook called by the time integrator after the update.

        Inline limiters have nothing left to do here.
        """
        if self.inline:
            return
        self.limit(u, t, dt, semi)
        self.correct(u, dt, semi)

    def describe(self) -> dict[str, Any]:
        """Short summary of the active configuration, for logging."""
        return {"kind": type(self).__name__}


class StageCallbackBase(ABC):
    """Abstract base for callbacks invoked after every Runge-Kutta stage."""

    def init(self, semi: SemidiscretizationSubcell, u: np.ndarray, t: float) -> None:
        """Prepare output before the first step."""

    @abstractmethod
    def __call__(
        self,
        u: np.ndarray,
        t: float,
        dt: float,
        stage: int,
        n_stages: int,
        iteration: int,
        finished: bool,
        semi: SemidiscretizationSubcell,
    ) -> None:
        """Inspect the updated state of one stage.

        Args:
            u: Stage state after the update (and IDP correction).
            t: Stage time ``t_n + c_s dt``; equal to the step start at stage 1.
            dt: Step size.
            stage: Stage index, starting at 1.
            n_stages: Number of stages of the integrator.
            iteration: Step counter after this step completes.
            finished: True on the last step of the run.
            semi: Semidiscretization providing the limiter and arrays.
        """

    def finalize(self, semi: SemidiscretizationSubcell) -> None:
        """Clean up resources and print summaries."""
