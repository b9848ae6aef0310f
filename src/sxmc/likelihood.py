r"""
Negative log-likelihood of the histogram mixture.

.. math::

    \mathrm{NLL}(\vec p) = -\sum_i \log \sum_j r_j L_{ij} + \sum_j r_j
        + \sum_{k:\,\sigma_k > 0} \left(\frac{p_k - \mu_k}{\sigma_k}\right)^2

with :math:`r` the rate block of :math:`\vec p` and :math:`L` the per-event
lookup table. Points outside the physical region (a negative rate, or an
event with non-positive mixture density) evaluate to :data:`PENALTY` so the
sampler treats them as improbable instead of failing.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import numpy as np
import numpy.typing as npt

from sxmc.exceptions import ConfigurationError
from sxmc.kernels import ParallelKernel, ThreadPoolKernel
from sxmc.parameters import ParameterSpace
from sxmc.signals import Signal

log = logging.getLogger(__name__)

#: NLL assigned to unphysical parameter vectors.
PENALTY = 1e6


def nll_total(
    pars: npt.NDArray[np.float64],
    nsignals: int,
    means: npt.NDArray[np.float64],
    sigmas: npt.NDArray[np.float64],
    event_log_sum: float,
) -> float:
    """
    Add the global terms to a reduced event sum.

    Args:
        pars: Full parameter vector, rates first
        nsignals: Length of the rate block
        means: Prior means, one per parameter
        sigmas: Prior widths, one per parameter; only positive widths constrain
        event_log_sum: :math:`\\sum_i \\log \\sum_j r_j L_{ij}` over all events

    Returns:
        The NLL, or :data:`PENALTY` if any rate is negative
    """
    rates = pars[:nsignals]
    if np.any(rates < 0):
        return PENALTY

    total = -event_log_sum + math.fsum(rates)

    constrained = sigmas > 0
    pulls = (pars[constrained] - means[constrained]) / sigmas[constrained]
    return float(total + np.dot(pulls, pulls))


class NLL:
    """
    Callable NLL over parameter vectors.

    Each signal's evaluator rebins only when the systematic values change;
    proposals that move rates alone reuse the cached lookup table.

    Args:
        signals: Signals in parameter order, all evaluated at the same events
        space: Parameter vector layout
        kernel: Kernel for the event reduction
    """

    def __init__(
        self,
        signals: Sequence[Signal],
        space: ParameterSpace,
        kernel: ParallelKernel | None = None,
    ) -> None:
        if not signals:
            msg = "The likelihood needs at least one signal"
            raise ConfigurationError(msg)
        if len(signals) != space.nsignals:
            msg = f"Parameter space has {space.nsignals} rates for {len(signals)} signals"
            raise ConfigurationError(msg)
        nevents = {signal.histogram.nevents for signal in signals}
        if len(nevents) != 1:
            msg = f"Signals are evaluated at different event counts: {sorted(nevents)}"
            raise ConfigurationError(msg)

        self.signals = tuple(signals)
        self.space = space
        self.kernel = kernel or ThreadPoolKernel()
        self._columns: tuple[npt.NDArray[np.float64], ...] = ()
        self._lut: npt.NDArray[np.float64] | None = None

    @property
    def nevents(self) -> int:
        """Number of events in the lookup table."""
        return self.signals[0].histogram.nevents

    def lut(self, pars: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Events x signals lookup table for a parameter vector.

        Only the systematic block of ``pars`` matters here.
        """
        values = self.space.systematic_values(pars)
        columns = tuple(signal.histogram.evaluate(values) for signal in self.signals)
        if self._lut is None or len(columns) != len(self._columns) or any(
            new is not old for new, old in zip(columns, self._columns, strict=True)
        ):
            self._lut = np.column_stack(columns)
            self._columns = columns
        return self._lut

    def __call__(self, pars: npt.ArrayLike) -> float:
        vector = np.asarray(pars, dtype=np.float64)
        if vector.shape != (len(self.space),):
            msg = f"Expected a parameter vector of length {len(self.space)}, got shape {vector.shape}"
            raise ValueError(msg)
        if not np.all(np.isfinite(vector)):
            return PENALTY

        rates = self.space.rates(vector)
        if np.any(rates < 0):
            return PENALTY

        event_log_sum, nonpositive = self.kernel.reduce_events(self.lut(vector), rates)
        if nonpositive:
            return PENALTY

        return nll_total(
            vector, self.space.nsignals, self.space.means, self.space.sigmas, event_log_sum
        )

    def __repr__(self) -> str:
        return f"NLL(signals={[s.name for s in self.signals]}, nevents={self.nevents})"


__all__ = ("NLL", "PENALTY", "nll_total")
