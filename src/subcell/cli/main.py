"""Command-line interface for the subcell limiting engine.

Usage:
    subcell simulate config.json --steps=100
    subcell presets
    subcell show-preset blast_wave_idp
    subcell blast-wave --limiter mcl --cells 32 --steps 50
    subcell blast-wave --cells 16 --steps 40 --reference trace.json
"""

from __future__ import annotations

import json
import logging
import sys

import click


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Subcell limiting: IDP and MCL flux limiting for DGSEM."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _echo_summary(summary: dict) -> None:
    for key, val in summary.items():
        if isinstance(val, dict):
            click.echo(f"  {key}:")
            for name, item in val.items():
                click.echo(f"    {name}: {item:.6e}")
        elif isinstance(val, float):
            click.echo(f"  {key}: {val:.6e}")
        else:
            click.echo(f"  {key}: {val}")


@cli.command()
@click.argument("config_file", type=click.Path(exists=True))
@click.option("--steps", type=int, default=None, help="Max timesteps (default: run to the end time).")
@click.option("--output-dir", type=str, default=None, help="Override the diagnostics output directory.")
def simulate(config_file: str, steps: int | None, output_dir: str | None) -> None:
    """Run a simulation from a configuration file."""
    from subcell.config import SimulationConfig
    from subcell.engine import SimulationEngine

    click.echo(f"Loading config from {config_file}")
    config = SimulationConfig.from_file(config_file)

    if output_dir:
        config.bounds_check.output_directory = output_dir
        config.limiting_analysis.output_directory = output_dir

    engine = SimulationEngine(config)
    click.echo(f"Limiter: {engine.limiter.describe()}")
    try:
        summary = engine.run(max_steps=steps)
    finally:
        engine.close()

    click.echo("\n--- Simulation Summary ---")
    _echo_summary(summary)


@cli.command()
@click.argument("config_file", type=click.Path(exists=True))
def verify(config_file: str) -> None:
    """Verify a configuration file is valid."""
    from pydantic import ValidationError

    from subcell.config import SimulationConfig

    try:
        config = SimulationConfig.from_file(config_file)
    except (ValidationError, ValueError) as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    click.echo("Configuration is valid:")
    click.echo(f"  Problem: {config.problem}")
    click.echo(f"  Mesh: {list(config.mesh.cells_per_dimension)} elements, polydeg={config.polydeg}")
    click.echo(f"  tspan: {list(config.tspan)}, CFL={config.cfl}")
    click.echo(f"  Limiter: {config.limiter.kind}")


@cli.command()
def presets() -> None:
    """List the available configuration presets."""
    from subcell.presets import list_presets

    for info in list_presets():
        click.echo(f"  {info['name']:<18} [{info['limiter']}] {info['description']}")


@cli.command("show-preset")
@click.argument("name")
def show_preset(name: str) -> None:
    """Print a preset as JSON."""
    from subcell.presets import get_preset

    try:
        preset = get_preset(name)
    except KeyError as exc:
        click.echo(str(exc.args[0]), err=True)
        sys.exit(1)
    click.echo(json.dumps(preset, indent=2))


@cli.command("blast-wave")
@click.option(
    "--limiter", type=click.Choice(["idp", "mcl"], case_sensitive=False), default="idp",
    help="Limiter family.",
)
@click.option("--cells", type=int, default=32, help="Elements in x.")
@click.option("--steps", type=int, default=None, help="Max timesteps (default: run to t_end).")
@click.option("--t-end", type=float, default=0.5, help="Final time.")
@click.option("--save-trace", type=click.Path(), default=None, help="Write the norm trace as JSON.")
@click.option(
    "--reference", type=click.Path(exists=True), default=None,
    help="Compare the norm trace against a saved trace.",
)
@click.option("--rtol", type=float, default=1e-8, help="Relative tolerance for --reference.")
def blast_wave(
    limiter: str,
    cells: int,
    steps: int | None,
    t_end: float,
    save_trace: str | None,
    reference: str | None,
    rtol: float,
) -> None:
    """Run the planar blast wave and report positivity."""
    from subcell.verification.blast_wave import (
        compare_reference_trace,
        load_reference_trace,
        run_blast_wave_1d,
        save_reference_trace,
    )

    result = run_blast_wave_1d(
        limiter=limiter.lower(), cells=cells, n_steps=steps, t_end=t_end,
        bounds_check={"enabled": True, "save_errors": False},
    )
    click.echo("\n--- Blast Wave Summary ---")
    _echo_summary(result.summary)
    click.echo(f"  l1_density: {result.l1_density:.6e}")
    click.echo(f"  l2_density: {result.l2_density:.6e}")
    click.echo(f"  linf_density: {result.linf_density:.6e}")
    click.echo(f"  positivity: {result.positivity}")
    if save_trace is not None:
        click.echo(f"  trace: {save_reference_trace(result, save_trace)}")
    if reference is not None:
        try:
            deviation = compare_reference_trace(result, load_reference_trace(reference))
        except ValueError as exc:
            click.echo(f"Reference error: {exc}", err=True)
            sys.exit(1)
        click.echo(f"  reference_deviation: {deviation:.6e}")
        if deviation > rtol:
            click.echo(f"Norm trace differs from {reference} (rtol={rtol:g})", err=True)
            sys.exit(1)
    if not result.positivity:
        sys.exit(1)


if __name__ == "__main__":
    cli()
