"""Tests for the click command-line interface."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from subcell.cli.main import cli
from subcell.presets import PRESETS


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(sample_config_dict, tmp_path):
    data = dict(sample_config_dict)
    data["cfl"] = 0.1
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data))
    return path


class TestCLI:
    """Commands of the ``subcell`` entry point."""

    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("simulate", "verify", "presets", "show-preset", "blast-wave"):
            assert command in result.output

    def test_presets(self, runner):
        result = runner.invoke(cli, ["presets"])
        assert result.exit_code == 0
        for name in PRESETS:
            assert name in result.output

    def test_show_preset(self, runner):
        result = runner.invoke(cli, ["show-preset", "sedov_mcl"])
        assert result.exit_code == 0
        preset = json.loads(result.output)
        assert preset["problem"] == "sedov_blast_wave"
        assert preset["limiter"]["kind"] == "mcl"

    def test_show_unknown_preset(self, runner):
        result = runner.invoke(cli, ["show-preset", "nope"])
        assert result.exit_code == 1
        assert "Unknown preset" in result.output

    def test_verify(self, runner, config_file):
        result = runner.invoke(cli, ["verify", str(config_file)])
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "Limiter: idp" in result.output

    def test_verify_invalid(self, runner, sample_config_dict, tmp_path):
        sample_config_dict["limiter"] = {"kind": "mcl", "conservative_limiter": True}
        path = tmp_path / "bad.json"
        path.write_text(json.dumps(sample_config_dict))
        result = runner.invoke(cli, ["verify", str(path)])
        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_verify_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["verify", str(tmp_path / "missing.json")])
        assert result.exit_code != 0

    def test_simulate(self, runner, config_file, tmp_path):
        out = tmp_path / "out"
        result = runner.invoke(
            cli, ["simulate", str(config_file), "--steps", "2", "--output-dir", str(out)],
        )
        assert result.exit_code == 0, result.output
        assert "Simulation Summary" in result.output
        assert "steps: 2" in result.output
        assert "rho_min" in result.output

    @pytest.mark.slow
    def test_blast_wave(self, runner):
        result = runner.invoke(cli, ["blast-wave", "--limiter", "mcl", "--cells", "8", "--steps", "5"])
        assert result.exit_code == 0, result.output
        assert "positivity: True" in result.output

    @pytest.mark.slow
    def test_blast_wave_reference(self, runner, tmp_path):
        trace = tmp_path / "trace.json"
        args = ["blast-wave", "--limiter", "idp", "--cells", "8", "--steps", "4"]
        result = runner.invoke(cli, [*args, "--save-trace", str(trace)])
        assert result.exit_code == 0, result.output
        assert json.loads(trace.read_text())["parameters"]["n_steps"] == 4

        result = runner.invoke(cli, [*args, "--reference", str(trace)])
        assert result.exit_code == 0, result.output
        assert "reference_deviation: 0.000000e+00" in result.output

        result = runner.invoke(cli, ["blast-wave", "--cells", "8", "--steps", "3", "--reference", str(trace)])
        assert result.exit_code == 1
        assert "Reference error" in result.output
