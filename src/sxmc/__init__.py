"""
sxmc: histogram-mixture likelihood fits with a portable Metropolis sampler
"""

from __future__ import annotations

from sxmc._version import version as __version__
from sxmc.config import FitConfig
from sxmc.driver import ChainDriver, ChainResult, run_fit
from sxmc.histogram import EvalHist
from sxmc.likelihood import NLL, PENALTY
from sxmc.parameters import ParameterSpace
from sxmc.sampler import ChainBuffer, MetropolisSampler
from sxmc.signals import Signal, build_signals

__all__ = [
    "NLL",
    "PENALTY",
    "ChainBuffer",
    "ChainDriver",
    "ChainResult",
    "EvalHist",
    "FitConfig",
    "MetropolisSampler",
    "ParameterSpace",
    "Signal",
    "__version__",
    "build_signals",
    "run_fit",
]
