"""
Fake-experiment datasets.

Draws a synthetic dataset from the signal samples: a Poisson-fluctuated
number of events per signal, picked uniformly (with replacement) among the
sample events that fall inside every observable range.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import numpy.typing as npt

from sxmc.exceptions import ConfigurationError
from sxmc.signals import Signal

log = logging.getLogger(__name__)


def make_fake_dataset(
    signals: Sequence[Signal],
    rng: np.random.Generator,
    *,
    poisson: bool = True,
) -> tuple[npt.NDArray[np.float64], dict[str, int]]:
    """
    Build one fake dataset.

    Args:
        signals: Signals to draw from, with their expected counts
        rng: Generator owned by this experiment
        poisson: Fluctuate each count around ``nexpected``; otherwise round it

    Returns:
        (events x fields table, events drawn per signal)

    Raises:
        ConfigurationError: If a signal with a non-zero expectation has no
            sample event in range
    """
    tables = []
    counts: dict[str, int] = {}
    for signal in signals:
        nevents = int(rng.poisson(signal.nexpected)) if poisson else round(signal.nexpected)
        counts[signal.name] = nevents
        if nevents == 0:
            continue

        pool = signal.samples[signal.histogram.in_range(signal.samples)]
        if len(pool) == 0:
            msg = f"Signal '{signal.name}' has no sample events inside the observable ranges"
            raise ConfigurationError(msg)
        tables.append(pool[rng.integers(0, len(pool), size=nevents)])

    width = signals[0].samples.shape[1] if signals else 0
    data = np.concatenate(tables) if tables else np.zeros((0, width))
    log.debug("Fake dataset with %d events: %s", len(data), counts)
    return data, counts


__all__ = ("make_fake_dataset",)
