"""Subcell flux limiting: bar states, antidiffusive fluxes, bounds and limiters."""

from subcell.limiting.antidiffusive import AntidiffusiveFluxBuilder, antidiffusive_flux
from subcell.limiting.bar_states import BarStateComputer, BarStates
from subcell.limiting.bounds import BoundKey, BoundKind, BoundLayout, BoundsCalculator
from subcell.limiting.idp import SubcellLimiterIDP
from subcell.limiting.mcl import SubcellLimiterMCL
from subcell.limiting.observer import (
    AlphaObserver,
    IDPAlphaRecorder,
    MCLAlphaRecorder,
    NullAlphaObserver,
)

__all__ = [
    "AlphaObserver",
    "AntidiffusiveFluxBuilder",
    "BarStateComputer",
    "BarStates",
    "BoundKey",
    "BoundKind",
    "BoundLayout",
    "BoundsCalculator",
    "IDPAlphaRecorder",
    "MCLAlphaRecorder",
    "NullAlphaObserver",
    "SubcellLimiterIDP",
    "SubcellLimiterMCL",
    "antidiffusive_flux",
]
