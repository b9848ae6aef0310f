"""
Mixture components of the fit.

A :class:`Signal` owns its sample table and its own :class:`EvalHist`, since
each signal is rebinned independently for every systematic draw.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping

import numpy as np
import numpy.typing as npt

from sxmc.config import FitConfig
from sxmc.exceptions import ConfigurationError
from sxmc.histogram import EvalHist
from sxmc.kernels import ParallelKernel
from sxmc.samples import load_samples
from sxmc.systematics import build_transforms

log = logging.getLogger(__name__)


class Signal:
    """
    One component of the fit model.

    Attributes:
        name: Signal identifier
        title: Display title
        nexpected: Expected number of events
        sigma: Gaussian prior width on the event count, 0 for none
        jump: Proposal width on the event count
        histogram: The evaluator turning samples into per-event densities
    """

    def __init__(
        self,
        name: str,
        nexpected: float,
        histogram: EvalHist,
        *,
        title: str = "",
        sigma: float = 0.0,
        jump: float | None = None,
    ) -> None:
        if nexpected < 0:
            msg = f"Signal '{name}': nexpected must be non-negative, got {nexpected}"
            raise ConfigurationError(msg)
        self.name = name
        self.title = title or name
        self.nexpected = float(nexpected)
        self.sigma = float(sigma)
        self.jump = float(jump) if jump is not None else math.sqrt(max(self.nexpected, 1.0))
        self.histogram = histogram

    @property
    def samples(self) -> npt.NDArray[np.float64]:
        """The sample table the histogram is built from."""
        return self.histogram.samples

    def __repr__(self) -> str:
        return f"Signal(name={self.name!r}, nexpected={self.nexpected})"


def build_signals(
    config: FitConfig,
    kernel: ParallelKernel | None = None,
    tables: Mapping[str, npt.ArrayLike] | None = None,
) -> list[Signal]:
    """
    Build every fit signal with its evaluator.

    Args:
        config: The validated fit configuration
        kernel: Kernel shared by the evaluators
        tables: Source tables (events x ``pdfs.fields``) by signal name; signals
            not listed are read from their configured files

    Returns:
        Signals in parameter order
    """
    layout = config.layout
    transforms = build_transforms(config.systematics, layout)
    tables = tables or {}

    signals = []
    for spec in config.fit_signals:
        log.info("Loading data for %s", spec.name)
        source = tables[spec.name] if spec.name in tables else load_samples(spec.files, spec.name)
        samples = layout.select(source)
        histogram = EvalHist.from_layout(
            samples, config.observables, layout, transforms, kernel=kernel
        )
        signal = Signal(
            spec.name,
            config.nexpected(spec),
            histogram,
            title=spec.title,
            sigma=config.prior_sigma(spec),
            jump=spec.jump,
        )
        if spec.rate > 0:
            years = len(samples) / spec.rate
            log.info(
                "Initializing PDF for %s using %d events (%.3g y)",
                spec.name,
                len(samples),
                years,
            )
        signals.append(signal)
    return signals


__all__ = ("Signal", "build_signals")
