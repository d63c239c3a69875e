"""Tests for the SSP-RK3 simulation engine and the blast wave benchmark."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from subcell.config import SimulationConfig
from subcell.core.bases import StageCallbackBase
from subcell.engine import SSPRK33_A, SSPRK33_B, SSPRK33_C, SimulationEngine
from subcell.limiting.idp import SubcellLimiterIDP
from subcell.limiting.mcl import SubcellLimiterMCL
from subcell.presets import PRESETS, get_preset
from subcell.verification.blast_wave import (
    BlastWaveResult,
    blast_wave_config,
    compare_reference_trace,
    load_reference_trace,
    run_blast_wave_1d,
    save_reference_trace,
)

REFERENCE_DIR = Path(__file__).parent / "data"


def _config(sample_config_dict, tmp_path, **overrides):
    data = dict(sample_config_dict)
    data["cfl"] = 0.1
    data["bounds_check"] = {"enabled": True, "output_directory": str(tmp_path)}
    data.update(overrides)
    return SimulationConfig(**data)


@pytest.fixture
def engine_factory():
    engines = []

    def _make(config, stage_callbacks=None):
        engine = SimulationEngine(config, stage_callbacks)
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()


class _StageRecorder(StageCallbackBase):
    def __init__(self):
        self.calls = []
        self.times = []
        self.initialized = False
        self.finalized = 0

    def init(self, semi, u, t):
        self.initialized = True

    def __call__(self, u, t, dt, stage, n_stages, iteration, finished, semi):
        self.calls.append((iteration, stage, n_stages, finished))
        self.times.append(t)

    def finalize(self, semi):
        self.finalized += 1


class _DensityDrop(StageCallbackBase):
    """Push the density negative after the last stage."""

    def __call__(self, u, t, dt, stage, n_stages, iteration, finished, semi):
        if stage == n_stages:
            u[0, 0, 0, 0] = -10.0


class TestSSPRK33:
    def test_coefficients_are_consistent(self):
        """Every stage is a convex combination and the stage times match."""
        for a, b in zip(SSPRK33_A, SSPRK33_B):
            assert a + b == pytest.approx(1.0)
            assert a >= 0.0 and b >= 0.0
        assert SSPRK33_C == (0.0, 1.0, 0.5)


class TestSimulationEngine:
    """Time stepping on a small periodic mesh."""

    def test_builds_limiter_from_config(self, sample_config_dict, tmp_path, engine_factory):
        engine = engine_factory(_config(sample_config_dict, tmp_path))
        assert isinstance(engine.limiter, SubcellLimiterIDP)
        mcl = engine_factory(_config(sample_config_dict, tmp_path, limiter={"kind": "mcl"}))
        assert isinstance(mcl.limiter, SubcellLimiterMCL)
        assert mcl.limiter.inline

    def test_free_stream_preserved(self, sample_config_dict, tmp_path, engine_factory):
        config = _config(sample_config_dict, tmp_path, problem="constant")
        engine = engine_factory(config)
        u0 = engine.u.copy()
        summary = engine.run(max_steps=3)
        assert summary["steps"] == 3
        np.testing.assert_allclose(engine.u, u0, rtol=1e-12, atol=1e-12)
        assert summary["max_deviations"]["rho_min"] <= 1e-12

    @pytest.mark.parametrize("limiter", [
        {"kind": "idp", "positivity_variables_cons": ["rho"]},
        {"kind": "mcl", "positivity_limiter_pressure": True},
    ])
    def test_free_stream_both_limiters(self, sample_config_dict, tmp_path, engine_factory, limiter):
        engine = engine_factory(_config(sample_config_dict, tmp_path, problem="constant", limiter=limiter))
        u0 = engine.u.copy()
        engine.run(max_steps=2)
        np.testing.assert_allclose(engine.u, u0, rtol=1e-12, atol=1e-12)

    def test_step_result(self, sample_config_dict, tmp_path, engine_factory):
        engine = engine_factory(_config(sample_config_dict, tmp_path))
        result = engine.step()
        assert result.step == 1
        assert result.dt > 0.0
        assert engine.time == pytest.approx(result.dt)
        assert result.min_density > 0.0
        assert result.min_pressure > 0.0
        assert not result.finished

    def test_run_reaches_end_time(self, sample_config_dict, tmp_path, engine_factory):
        config = _config(sample_config_dict, tmp_path, tspan=[0.0, 0.005])
        engine = engine_factory(config)
        summary = engine.run()
        assert summary["sim_time"] == 0.005
        assert engine.time == 0.005
        assert summary["min_density"] > 0.0

    def test_mass_conservation(self, sample_config_dict, tmp_path, engine_factory):
        engine = engine_factory(_config(sample_config_dict, tmp_path, limiter={"kind": "mcl"}))
        w = engine.basis.weights
        mass_before = np.einsum("i,j,ije->", w, w, engine.u[0])
        engine.run(max_steps=3)
        mass_after = np.einsum("i,j,ije->", w, w, engine.u[0])
        assert mass_after == pytest.approx(mass_before, rel=1e-12)

    def test_idp_stays_in_bounds(self, sample_config_dict, tmp_path, engine_factory):
        limiter = {
            "kind": "idp",
            "local_minmax_variables_cons": ["rho"],
            "positivity_variables_nonlinear": ["pressure"],
        }
        engine = engine_factory(_config(sample_config_dict, tmp_path, limiter=limiter))
        summary = engine.run(max_steps=3)
        assert summary["max_deviations"]["rho_min"] <= 1e-11
        assert summary["max_deviations"]["rho_max"] <= 1e-11
        assert summary["max_deviations"]["pressure_min"] <= 1e-8

    def test_stage_callbacks(self, sample_config_dict, tmp_path, engine_factory):
        recorder = _StageRecorder()
        engine = engine_factory(_config(sample_config_dict, tmp_path), stage_callbacks=[recorder])
        assert engine.stage_callbacks[0] is engine.bounds_check
        engine.run(max_steps=2)
        assert recorder.initialized
        assert recorder.calls == [
            (1, 1, 3, False), (1, 2, 3, False), (1, 3, 3, False),
            (2, 1, 3, True), (2, 2, 3, True), (2, 3, 3, True),
        ]
        engine.finalize()
        assert recorder.finalized == 1

    def test_stage_callbacks_see_stage_time(self, sample_config_dict, tmp_path, engine_factory):
        recorder = _StageRecorder()
        engine = engine_factory(_config(sample_config_dict, tmp_path), stage_callbacks=[recorder])
        result = engine.step()
        dt = result.dt
        np.testing.assert_allclose(recorder.times, [0.0, dt, 0.5 * dt], rtol=1e-15)

    def test_invalid_state_raises(self, sample_config_dict, tmp_path, engine_factory):
        engine = engine_factory(_config(sample_config_dict, tmp_path), stage_callbacks=[_DensityDrop()])
        with pytest.raises(RuntimeError, match="nonpositive density or pressure"):
            engine.step()

    def test_bounds_check_disabled(self, sample_config_dict, tmp_path, engine_factory):
        config = _config(sample_config_dict, tmp_path)
        config.bounds_check.enabled = False
        engine = engine_factory(config)
        assert engine.bounds_check is None
        assert "max_deviations" not in engine.run(max_steps=1)


class TestPresetRuns:
    """Every shipped preset steps cleanly with its bounds checked."""

    @pytest.mark.parametrize("name", sorted(PRESETS))
    def test_preset_stays_in_bounds(self, name, tmp_path, engine_factory):
        data = get_preset(name)
        data["bounds_check"] = {"enabled": True, "output_directory": str(tmp_path)}
        if "limiting_analysis" in data:
            data["limiting_analysis"]["output_directory"] = str(tmp_path / "alpha")
        engine = engine_factory(SimulationConfig(**data))
        summary = engine.run(max_steps=5)
        assert summary["steps"] == 5
        assert np.all(np.isfinite(engine.u))
        assert summary["min_density"] > 0.0
        assert summary["min_pressure"] > 0.0
        assert max(summary["max_deviations"].values()) <= 1e-10


class TestLimitingAnalysis:
    """Coefficient files written at the end of a step."""

    def test_idp_files(self, sample_config_dict, tmp_path, engine_factory):
        config = _config(
            sample_config_dict, tmp_path,
            limiting_analysis={"enabled": True, "output_directory": str(tmp_path)},
        )
        engine = engine_factory(config)
        engine.run(max_steps=2)
        lines = (tmp_path / "alphas_min.txt").read_text().splitlines()
        assert lines[0] == "# iter, simu_time, alpha_max, alpha_avg"
        assert len(lines) == 3
        alpha_max, alpha_avg = (float(x) for x in lines[-1].split(", ")[2:])
        assert 0.0 <= alpha_avg <= alpha_max <= 1.0

    def test_mcl_files(self, sample_config_dict, tmp_path, engine_factory):
        config = _config(
            sample_config_dict, tmp_path,
            limiter={"kind": "mcl", "positivity_limiter_pressure": True},
            limiting_analysis={"enabled": True, "output_directory": str(tmp_path), "interval": 2},
        )
        engine = engine_factory(config)
        engine.run(max_steps=3)
        for name in ("alphas_min.txt", "alphas_eff.txt", "alphas_mean.txt"):
            lines = (tmp_path / name).read_text().splitlines()
            assert lines[0].startswith("# iter, simu_time, alpha_min_rho, alpha_avg_rho")
            # iteration 2 by interval, iteration 3 as the final step
            assert [line.split(", ")[0] for line in lines[1:]] == ["2", "3"]
        header = (tmp_path / "alphas_mean.txt").read_text().splitlines()[0]
        assert header.endswith("alpha_min_pressure, alpha_avg_pressure")

    def test_mcl_without_plotting(self, sample_config_dict, tmp_path, engine_factory):
        config = _config(
            sample_config_dict, tmp_path,
            limiter={"kind": "mcl", "plotting": False},
            limiting_analysis={"enabled": True, "output_directory": str(tmp_path / "alpha")},
        )
        engine = engine_factory(config)
        engine.run(max_steps=1)
        assert not (tmp_path / "alpha").exists()


class TestBlastWave:
    """Planar blast wave into a near vacuum."""

    def test_config(self):
        config = blast_wave_config("mcl", cells=8)
        assert config.mesh.cells_per_dimension == (8, 1)
        assert config.mesh.coordinates_max[1] == pytest.approx(0.5)
        assert config.boundary_conditions[0] == "slip_wall"

    def test_bad_limiter(self):
        with pytest.raises(ValueError, match="limiter must be"):
            blast_wave_config("fct")

    @pytest.mark.slow
    @pytest.mark.parametrize("limiter", ["idp", "mcl"])
    def test_positivity(self, limiter):
        result = run_blast_wave_1d(limiter=limiter, cells=16, n_steps=40)
        assert result.n_steps == 40
        assert result.finite
        assert result.positivity
        assert result.min_pressure > 0.0
        assert result.summary["steps"] == 40
        assert 0.0 < result.l1_density <= result.l2_density <= result.linf_density

    def test_reference_parameters_must_match(self):
        result = BlastWaveResult(
            u_final=np.ones((4, 2, 2, 1)),
            x=np.zeros((2, 2, 1)),
            min_density_trace=np.ones(2),
            min_pressure_trace=np.ones(2),
            norm_trace=np.array([[1.0, 2.0, 3.0], [2.0, 3.0, 4.0]]),
            t_end=0.1,
            n_steps=2,
            limiter="idp",
            parameters={"limiter": "idp", "cells": 8, "polydeg": 3, "cfl": 0.15, "n_steps": 2},
        )
        reference = {"parameters": dict(result.parameters), "norms": result.norm_trace * (1.0 + 1e-6)}
        assert compare_reference_trace(result, reference) == pytest.approx(1e-6, rel=1e-5)
        reference["parameters"]["cells"] = 16
        with pytest.raises(ValueError, match="cells=8"):
            compare_reference_trace(result, reference)

    @pytest.mark.slow
    def test_norm_trace(self):
        result = run_blast_wave_1d(limiter="idp", cells=8, n_steps=6)
        assert result.norm_trace.shape == (6, 3)
        assert result.l1_density == result.norm_trace[-1, 0]
        assert np.all(result.norm_trace[:, 0] <= result.norm_trace[:, 2])
        assert result.parameters == {"limiter": "idp", "cells": 8, "polydeg": 3, "cfl": 0.15, "n_steps": 6}

    @pytest.mark.slow
    @pytest.mark.parametrize("limiter", ["idp", "mcl"])
    def test_trace_independent_of_workers(self, limiter, tmp_path):
        """A trace saved from a serial run reproduces under the threaded element loop."""
        serial = run_blast_wave_1d(limiter=limiter, cells=8, n_steps=10)
        path = save_reference_trace(serial, tmp_path / f"{limiter}.json")
        reference = load_reference_trace(path)
        np.testing.assert_array_equal(reference["norms"], serial.norm_trace)
        threaded = run_blast_wave_1d(limiter=limiter, cells=8, n_steps=10, n_workers=2)
        assert compare_reference_trace(threaded, reference) <= 1e-12

    @pytest.mark.slow
    @pytest.mark.parametrize("limiter", ["idp", "mcl"])
    def test_recorded_reference_trace(self, limiter):
        """L1, L2 and Linf after every step match the recorded trace."""
        path = REFERENCE_DIR / f"blast_wave_{limiter}.json"
        if not path.exists():
            pytest.skip(
                f"no recorded trace at {path}; record it with "
                f"`subcell blast-wave --limiter {limiter} --cells 16 --steps 40 --save-trace {path}`"
            )
        reference = load_reference_trace(path)
        params = reference["parameters"]
        result = run_blast_wave_1d(
            limiter=params["limiter"], cells=params["cells"], polydeg=params["polydeg"],
            cfl=params["cfl"], n_steps=params["n_steps"],
        )
        assert result.positivity
        assert compare_reference_trace(result, reference) <= 1e-8
