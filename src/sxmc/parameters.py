"""
Layout of the sampled parameter vector.

The vector holds the rate of every signal, in signal order, followed by the
value of every free systematic, in systematic order. Every kernel indexes the
vector through a :class:`ParameterSpace`; fixed systematics never enter the
vector and are held at their prior mean.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt

if TYPE_CHECKING:
    from sxmc.config import Systematic
    from sxmc.signals import Signal


class ParameterSpace:
    """
    Names, priors and proposal widths of the parameter vector.

    Attributes:
        names: Parameter names, rates first
        means: Prior means and starting values
        sigmas: Gaussian prior widths, 0 where unconstrained
        jumps: Proposal widths, 0 where the parameter is held constant
        nsignals: Length of the rate block
    """

    def __init__(
        self, signals: Sequence[Signal], systematics: Sequence[Systematic] = ()
    ) -> None:
        self.nsignals = len(signals)
        self.free_systematics = tuple(
            i for i, systematic in enumerate(systematics) if not systematic.fixed
        )
        free = [systematics[i] for i in self.free_systematics]

        self.names = tuple(
            [signal.name for signal in signals] + [systematic.name for systematic in free]
        )
        self.means = np.array(
            [signal.nexpected for signal in signals] + [s.mean for s in free],
            dtype=np.float64,
        )
        self.sigmas = np.array(
            [signal.sigma for signal in signals] + [s.sigma for s in free],
            dtype=np.float64,
        )
        self.jumps = np.array(
            [signal.jump for signal in signals] + [s.proposal_width for s in free],
            dtype=np.float64,
        )
        self._systematic_means = np.array(
            [systematic.mean for systematic in systematics], dtype=np.float64
        )

    def __len__(self) -> int:
        return len(self.names)

    def index(self, name: str) -> int:
        """Position of a named parameter in the vector."""
        return self.names.index(name)

    def initial(self) -> npt.NDArray[np.float64]:
        """Starting vector: every parameter at its prior mean."""
        return self.means.copy()

    def rates(self, pars: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """The rate block of a parameter vector."""
        return pars[: self.nsignals]

    def systematic_values(
        self, pars: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        """
        Value of every configured systematic, fixed ones at their mean.

        The result is indexed like the transforms' ``parameter`` slots.
        """
        values = self._systematic_means.copy()
        values[list(self.free_systematics)] = pars[self.nsignals :]
        return values

    def __repr__(self) -> str:
        return f"ParameterSpace({list(self.names)})"


__all__ = ("ParameterSpace",)
