"""Step-end output of the limiting coefficients.

IDP (``alphas_min.txt``)::

    # iter, simu_time, alpha_max, alpha_avg

MCL (``alphas_min.txt``, ``alphas_mean.txt``, ``alphas_eff.txt``)::

    # iter, simu_time, alpha_min_rho, alpha_avg_rho, alpha_min_rho_v1, ...

``alphas_mean.txt`` additionally carries ``alpha_min_pressure,
alpha_avg_pressure`` and ``alpha_min_entropy, alpha_avg_entropy`` when
the pressure or entropy limiter is active.  Averages are volume-weighted
over all nodes.  Headers are written on the first save.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from subcell.limiting.idp import SubcellLimiterIDP
from subcell.limiting.mcl import SubcellLimiterMCL
from subcell.limiting.observer import IDPAlphaRecorder, MCLAlphaRecorder, node_volumes

if TYPE_CHECKING:
    from subcell.semidiscretization import SemidiscretizationSubcell

logger = logging.getLogger(__name__)


def _volume_average(values: np.ndarray, volumes: np.ndarray) -> float:
    return float(np.sum(volumes * values) / np.sum(volumes))


class LimitingAnalysisCallback:
    """Write limiting-coefficient statistics every ``interval`` steps.

    Args:
        output_directory: Directory of the ``alphas_*.txt`` files.
        interval: Steps between rows.
    """

    def __init__(self, output_directory: str | Path = "out", interval: int = 1) -> None:
        if interval < 1:
            raise ValueError(f"interval must be >= 1, got {interval}")
        self.output_directory = Path(output_directory)
        self.interval = interval
        self._header_written = False
        self._enabled = True
        self._steps = 0

    @classmethod
    def from_config(cls, config) -> LimitingAnalysisCallback:
        return cls(output_directory=config.output_directory, interval=config.interval)

    def init(self, semi: SemidiscretizationSubcell, u: np.ndarray, t: float) -> None:
        observer = semi.limiter.observer
        if not isinstance(observer, (IDPAlphaRecorder, MCLAlphaRecorder)):
            logger.warning(
                "Limiting analysis requested but %s records no coefficients; output disabled",
                type(semi.limiter).__name__,
            )
            self._enabled = False
            return
        self.output_directory.mkdir(parents=True, exist_ok=True)
        self.volumes = node_volumes(semi.basis.weights, semi.mesh.inverse_jacobian)

    def __call__(
        self,
        u: np.ndarray,
        t: float,
        iteration: int,
        finished: bool,
        semi: SemidiscretizationSubcell,
    ) -> None:
        if not self._enabled:
            return
        self._steps += 1
        if iteration % self.interval != 0 and not finished:
            return
        limiter = semi.limiter
        if isinstance(limiter, SubcellLimiterIDP):
            self._save_idp(iteration, t, limiter.observer)
        elif isinstance(limiter, SubcellLimiterMCL):
            self._save_mcl(iteration, t, limiter)
        self._header_written = True
        self._steps = 0

    def _write(self, filename: str, header: list[str], iteration: int, t: float, values) -> None:
        path = self.output_directory / filename
        with path.open("a") as f:
            if not self._header_written:
                f.write("# iter, simu_time, " + ", ".join(header) + "\n")
            row = ", ".join(f"{value:.16e}" for value in values)
            f.write(f"{iteration}, {t:.16e}, {row}\n")

    def _save_idp(self, iteration: int, t: float, observer: IDPAlphaRecorder) -> None:
        alpha_avg = observer.alpha_avg / max(self._steps, 1)
        self._write(
            "alphas_min.txt", ["alpha_max", "alpha_avg"], iteration, t,
            [observer.alpha_max, alpha_avg],
        )
        observer.reset()

    def _save_mcl(self, iteration: int, t: float, limiter: SubcellLimiterMCL) -> None:
        obs = limiter.observer
        varnames = limiter.equations.varnames()
        header = [f"alpha_{stat}_{name}" for name in varnames for stat in ("min", "avg")]

        for filename, arrays in (
            ("alphas_min.txt", obs.alpha),
            ("alphas_eff.txt", obs.alpha_eff),
        ):
            values = []
            for v in range(len(varnames)):
                values += [float(np.min(arrays[v])), _volume_average(arrays[v], self.volumes)]
            self._write(filename, header, iteration, t, values)

        mean_header = list(header)
        values = []
        for v in range(len(varnames)):
            values += [float(np.min(obs.alpha_mean[v])), _volume_average(obs.alpha_mean[v], self.volumes)]
        if limiter.positivity_limiter_pressure:
            mean_header += ["alpha_min_pressure", "alpha_avg_pressure"]
            values += [
                float(np.min(obs.alpha_pressure)),
                _volume_average(obs.alpha_mean_pressure, self.volumes),
            ]
        if limiter.entropy_limiter_semidiscrete:
            mean_header += ["alpha_min_entropy", "alpha_avg_entropy"]
            values += [
                float(np.min(obs.alpha_entropy)),
                _volume_average(obs.alpha_mean_entropy, self.volumes),
            ]
        self._write("alphas_mean.txt", mean_header, iteration, t, values)

    def finalize(self, semi: SemidiscretizationSubcell) -> None:
        if self._enabled and self._header_written:
            logger.info("Limiting analysis written to %s", self.output_directory)

    def __repr__(self) -> str:
        return (
            f"LimitingAnalysisCallback(output_directory={str(self.output_directory)!r}, "
            f"interval={self.interval})"
        )
