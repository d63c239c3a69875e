"""Verification problems for the subcell limiters."""

from subcell.verification.blast_wave import (
    BlastWaveResult,
    blast_wave_config,
    compare_reference_trace,
    density_error_norms,
    load_reference_trace,
    run_blast_wave_1d,
    save_reference_trace,
)
from subcell.verification.initial_conditions import (
    INITIAL_CONDITIONS,
    get_initial_condition,
    initial_condition_blast_wave_1d,
    initial_condition_constant,
    initial_condition_density_wave,
    initial_condition_sedov_blast_wave,
)

__all__ = [
    "INITIAL_CONDITIONS",
    "BlastWaveResult",
    "blast_wave_config",
    "compare_reference_trace",
    "density_error_norms",
    "get_initial_condition",
    "initial_condition_blast_wave_1d",
    "initial_condition_constant",
    "initial_condition_density_wave",
    "initial_condition_sedov_blast_wave",
    "load_reference_trace",
    "run_blast_wave_1d",
    "save_reference_trace",
]
