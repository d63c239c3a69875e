"""Bounds-check stage callback: measure how far the solution leaves its bounds.

After every Runge-Kutta stage (and after the IDP correction of that stage)
the callback recomputes every active bound quantity and records the
largest violation per bound key:

    deviations[k, 0]   current maximum since the last saved row
    deviations[k, 1]   running maximum over the whole run

A correct limiter keeps both at floating-point level.  Deviations are only
reported, never raised.

Output (``save_errors=True``): ``<output_directory>/deviations.txt``,
appended to, with the header

    # iter, simu_time, <key>, <key>, ...

and one row per saved step holding the ``current`` entries.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from subcell.core.bases import StageCallbackBase
from subcell.limiting.bounds import BoundKey, BoundKind
from subcell.limiting.idp import SubcellLimiterIDP
from subcell.limiting.mcl import SubcellLimiterMCL

if TYPE_CHECKING:
    from subcell.semidiscretization import SemidiscretizationSubcell

logger = logging.getLogger(__name__)

DEVIATIONS_FILE = "deviations.txt"


def limited_bar_states(
    bar: np.ndarray, flux: np.ndarray, lam: np.ndarray, orientation: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Limited bar states seen by each node from its two faces of one orientation.

    Returns ``(bar[i] - F[i] / lambda[i], bar[i+1] + F[i+1] / lambda[i+1])``
    (or the same along j), each with the node array shape.
    """
    if orientation == 1:
        return bar[..., :-1, :, :] - flux[..., :-1, :, :] / lam[:-1], (
            bar[..., 1:, :, :] + flux[..., 1:, :, :] / lam[1:]
        )
    return bar[..., :, :-1, :] - flux[..., :, :-1, :] / lam[:, :-1], (
        bar[..., :, 1:, :] + flux[..., :, 1:, :] / lam[:, 1:]
    )


def kuzmin_pressure_error(u: np.ndarray) -> np.ndarray:
    """``0.5 |m|^2 - rho E``; nonpositive for a state with nonnegative pressure."""
    return 0.5 * (u[1] ** 2 + u[2] ** 2) - u[0] * u[3]


class BoundsCheckCallback(StageCallbackBase):
    """Track the deviation of the solution from the limiter bounds.

    Args:
        output_directory: Directory of ``deviations.txt``.
        save_errors: Write a row every ``interval`` steps.
        interval: Steps between saved rows.
    """

    def __init__(
        self,
        output_directory: str | Path = "out",
        save_errors: bool = False,
        interval: int = 1,
    ) -> None:
        if interval < 1:
            raise ValueError(f"interval must be >= 1, got {interval}")
        self.output_directory = Path(output_directory)
        self.save_errors = save_errors
        self.interval = interval
        self.deviations = np.zeros((0, 2))
        self.layout = None
        self._step_start = 0.0

    @classmethod
    def from_config(cls, config) -> BoundsCheckCallback:
        return cls(
            output_directory=config.output_directory,
            save_errors=config.save_errors,
            interval=config.interval,
        )

    @property
    def path(self) -> Path:
        return self.output_directory / DEVIATIONS_FILE

    def init(self, semi: SemidiscretizationSubcell, u: np.ndarray, t: float) -> None:
        self.layout = semi.limiter.layout
        self.deviations = np.zeros((len(self.layout), 2))
        if self.save_errors:
            self.output_directory.mkdir(parents=True, exist_ok=True)
            with self.path.open("a") as f:
                f.write("# iter, simu_time, " + ", ".join(self.layout.names()) + "\n")
            logger.info("Bounds check: writing %s every %d step(s)", self.path, self.interval)

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
        if stage == 1:
            self._step_start = t
        limiter = semi.limiter
        if isinstance(limiter, SubcellLimiterIDP):
            self.check_idp(u, limiter)
        elif isinstance(limiter, SubcellLimiterMCL):
            self.check_mcl(u, limiter, semi)
        else:
            raise TypeError(f"no bounds check for limiter {type(limiter).__name__}")

        if stage != n_stages:
            return
        if iteration % self.interval != 0 and not finished:
            return
        if self.save_errors:
            with self.path.open("a") as f:
                row = ", ".join(f"{d:.16e}" for d in self.deviations[:, 0])
                f.write(f"{iteration}, {self._step_start + dt:.16e}, {row}\n")
        self.deviations[:, 0] = 0.0

    def _record(self, key: BoundKey, deviation: np.ndarray | float) -> None:
        k = self.layout.index(key)
        value = float(np.max(deviation))
        current = self.deviations[k]
        current[0] = max(current[0], value)
        current[1] = max(current[1], current[0])

    # --- IDP ---

    def check_idp(self, u: np.ndarray, limiter: SubcellLimiterIDP) -> None:
        eq = limiter.equations
        index = {name: v for v, name in enumerate(eq.varnames())}
        for key in self.layout:
            bound = limiter.bounds(key)
            if key.kind in (BoundKind.LOCAL_MIN, BoundKind.POSITIVITY_MIN):
                deviation = bound - u[index[key.variable]]
            elif key.kind is BoundKind.LOCAL_MAX:
                deviation = u[index[key.variable]] - bound
            elif key.kind is BoundKind.SPEC_ENTROPY_MIN:
                deviation = bound - eq.entropy_spec(u)
            elif key.kind is BoundKind.MATH_ENTROPY_MAX:
                deviation = eq.entropy_math(u) - bound
            elif key.kind is BoundKind.NONLINEAR_MIN:
                deviation = bound - eq.pressure(u)
            else:
                raise ValueError(f"unexpected bound {key.name} for the IDP limiter")
            self._record(key, deviation)

    # --- MCL ---

    def check_mcl(
        self, u: np.ndarray, limiter: SubcellLimiterMCL, semi: SemidiscretizationSubcell,
    ) -> None:
        bs = semi.bar_states
        faces = []
        for orientation, bar, flux, lam in (
            (1, bs.bar_states1, semi.antidiffusive_flux1, bs.lambda1),
            (2, bs.bar_states2, semi.antidiffusive_flux2, bs.lambda2),
        ):
            faces.extend(limited_bar_states(bar, flux, lam, orientation))

        var_min, var_max = limiter.var_min, limiter.var_max
        varnames = limiter.equations.varnames()

        if limiter.density_limiter:
            self._record_two_sided(varnames[0], u[0], [w[0] for w in faces], var_min[0], var_max[0])

        if limiter.sequential_limiter or limiter.conservative_limiter:
            for v in range(1, limiter.equations.nvariables):
                if limiter.sequential_limiter:
                    node = u[v] / u[0]
                    limited = [w[v] / w[0] for w in faces]
                else:
                    node = u[v]
                    limited = [w[v] for w in faces]
                self._record_two_sided(varnames[v], node, limited, var_min[v], var_max[v])

        if limiter.positivity_limiter_pressure:
            key = BoundKey(BoundKind.PRESSURE_KUZMIN, "pressure")
            self._record(key, kuzmin_pressure_error(u))
            for w in faces:
                self._record(key, kuzmin_pressure_error(w))

        if limiter.positivity_limiter_density:
            key = BoundKey(BoundKind.LOCAL_MIN, varnames[0])
            beta = limiter.positivity_limiter_correction_factor
            self._record(key, -u[0])
            for orientation, bar, flux, lam in (
                (1, bs.bar_states1, semi.antidiffusive_flux1, bs.lambda1),
                (2, bs.bar_states2, semi.antidiffusive_flux2, bs.lambda2),
            ):
                shifted = bar[0] - beta * bar[0]
                minus, plus = limited_bar_states(
                    shifted[None], flux[0][None], lam, orientation,
                )
                self._record(key, -minus[0])
                self._record(key, -plus[0])

    def _record_two_sided(
        self,
        variable: str,
        node: np.ndarray,
        limited: list[np.ndarray],
        var_min: np.ndarray,
        var_max: np.ndarray,
    ) -> None:
        key_min = BoundKey(BoundKind.LOCAL_MIN, variable)
        key_max = BoundKey(BoundKind.LOCAL_MAX, variable)
        self._record(key_min, var_min - node)
        self._record(key_max, node - var_max)
        for values in limited:
            self._record(key_min, var_min - values)
            self._record(key_max, values - var_max)

    # --- Summary ---

    def finalize(self, semi: SemidiscretizationSubcell) -> None:
        if self.layout is None:
            return
        logger.info("Maximum deviation from bounds:")
        for key, (_, running_max) in zip(self.layout, self.deviations):
            logger.info("  %s: %.6e", key.name, running_max)
        limiter = semi.limiter
        if isinstance(limiter, SubcellLimiterMCL) and limiter.entropy_limiter_semidiscrete:
            logger.warning("No bounds check for the semi-discrete entropy limiter")

    def max_deviation(self, name: str) -> float:
        """Running maximum deviation of the bound with display name ``name``."""
        for k, key in enumerate(self.layout):
            if key.name == name:
                return float(self.deviations[k, 1])
        raise KeyError(f"no bound named '{name}'; active: {self.layout.names()}")

    def __repr__(self) -> str:
        return (
            f"BoundsCheckCallback(output_directory={str(self.output_directory)!r}, "
            f"save_errors={self.save_errors}, interval={self.interval})"
        )
