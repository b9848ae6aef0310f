"""
Metropolis sampler and chain buffer.

Every step cycles through three states:

- ``PROPOSE``: draw a Gaussian jump for every free parameter, one generator
  per parameter lane;
- ``EVALUATE``: compute the NLL of the proposal (the only expensive, parallel
  phase);
- ``DECIDE``: the serial Metropolis decision, then append the current vector
  to the chain buffer.

The chain ends in ``DONE`` after ``nsteps`` steps, with exactly one buffer
row per step.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from enum import Enum

import numpy as np
import numpy.typing as npt

from sxmc.exceptions import ChainBufferFullError, SamplerStateError
from sxmc.kernels import ParallelKernel, ThreadPoolKernel
from sxmc.likelihood import PENALTY

log = logging.getLogger(__name__)


class SamplerState(Enum):
    """Phase of the current step."""

    PROPOSE = "propose"
    EVALUATE = "evaluate"
    DECIDE = "decide"
    DONE = "done"


def spawn_generators(seed: int | np.random.SeedSequence, n: int) -> list[np.random.Generator]:
    """
    Independent generators derived from one root seed.

    Generator ``k`` depends only on the root seed and ``k``, never on how
    lanes are scheduled.
    """
    root = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    return [np.random.default_rng(child) for child in root.spawn(n)]


class ChainBuffer:
    """
    Preallocated record of a chain.

    Row ``i`` holds the parameter vector after step ``i`` followed by its NLL.

    Args:
        nsteps: Number of rows
        names: Parameter names, one per vector entry
    """

    def __init__(self, nsteps: int, names: Sequence[str]) -> None:
        if nsteps < 0:
            msg = f"nsteps must be non-negative, got {nsteps}"
            raise ValueError(msg)
        self.names = tuple(names)
        self.rows = np.zeros((nsteps, len(self.names) + 1), dtype=np.float64)
        self.counter = 0

    @property
    def nsteps(self) -> int:
        """Capacity of the buffer."""
        return int(self.rows.shape[0])

    @property
    def full(self) -> bool:
        """Whether every row has been written."""
        return self.counter >= self.nsteps

    def __len__(self) -> int:
        return self.counter

    def append(self, vector: npt.NDArray[np.float64], nll: float) -> None:
        """
        Write the next row.

        Raises:
            ChainBufferFullError: If every row is already written
        """
        if self.full:
            msg = f"Chain buffer already holds all {self.nsteps} steps"
            raise ChainBufferFullError(msg)
        self.rows[self.counter, :-1] = vector
        self.rows[self.counter, -1] = nll
        self.counter += 1

    @property
    def parameters(self) -> npt.NDArray[np.float64]:
        """Written parameter vectors, steps x parameters."""
        return self.rows[: self.counter, :-1]

    @property
    def nll(self) -> npt.NDArray[np.float64]:
        """NLL of every written row."""
        return self.rows[: self.counter, -1]

    def column(self, name: str) -> npt.NDArray[np.float64]:
        """Trace of one named parameter."""
        return self.parameters[:, self.names.index(name)]

    def after_burnin(self, fraction: float) -> npt.NDArray[np.float64]:
        """
        Written rows with the first ``fraction`` of the chain dropped.

        Burn-in is a read-side view; the buffer itself is never trimmed.
        """
        if not 0 <= fraction < 1:
            msg = f"Burn-in fraction must be in [0, 1), got {fraction}"
            raise ValueError(msg)
        return self.rows[int(self.counter * fraction) : self.counter]


class MetropolisSampler:
    """
    Metropolis-Hastings chain with Gaussian proposals.

    Args:
        nll: Objective, maps a parameter vector to its NLL
        start: Starting vector
        jumps: Proposal width per parameter; 0 holds a parameter constant
        nsteps: Steps in the chain
        names: Parameter names for the chain buffer
        seed: Root seed; one generator per parameter plus one for decisions
        kernel: Kernel for the proposal lanes
        penalty: NLL marking an unphysical vector; a penalised proposal is
            never accepted while the current vector is physical
    """

    def __init__(
        self,
        nll: Callable[[npt.NDArray[np.float64]], float],
        start: npt.ArrayLike,
        jumps: npt.ArrayLike,
        nsteps: int,
        *,
        names: Sequence[str] | None = None,
        seed: int | np.random.SeedSequence = 0,
        kernel: ParallelKernel | None = None,
        penalty: float = PENALTY,
    ) -> None:
        self.nll = nll
        self.penalty = penalty
        self.current = np.array(start, dtype=np.float64).ravel()
        self.jumps = np.array(jumps, dtype=np.float64).ravel()
        if self.jumps.shape != self.current.shape:
            msg = f"Got {self.jumps.size} proposal widths for {self.current.size} parameters"
            raise ValueError(msg)
        if np.any(self.jumps < 0):
            msg = "Proposal widths must be non-negative"
            raise ValueError(msg)

        self.nparameters = self.current.size
        self.nsteps = nsteps
        self.kernel = kernel or ThreadPoolKernel()
        self.names = tuple(names) if names is not None else tuple(
            f"p{i}" for i in range(self.nparameters)
        )
        self.buffer = ChainBuffer(nsteps, self.names)

        *self._lane_rngs, self._decision_rng = spawn_generators(seed, self.nparameters + 1)

        self.nll_current = float(self.nll(self.current))
        self.proposed = self.current.copy()
        self.nll_proposed = self.nll_current
        self.accepted = 0
        self.state = SamplerState.PROPOSE if nsteps > 0 else SamplerState.DONE

    def _expect(self, state: SamplerState) -> None:
        if self.state is not state:
            msg = f"Cannot {state.value} while the sampler is in state {self.state.name}"
            raise SamplerStateError(msg)

    @property
    def steps_done(self) -> int:
        """Completed steps."""
        return self.buffer.counter

    @property
    def acceptance_rate(self) -> float:
        """Fraction of completed steps that accepted their proposal."""
        return self.accepted / self.steps_done if self.steps_done else math.nan

    def propose(self) -> npt.NDArray[np.float64]:
        """PROPOSE: draw ``current + jump * N(0, 1)`` for every free parameter."""
        self._expect(SamplerState.PROPOSE)
        proposed = self.current.copy()

        def body(lane: slice) -> None:
            for k in range(lane.start, lane.stop):
                if self.jumps[k] > 0:
                    proposed[k] = self.current[k] + self.jumps[k] * self._lane_rngs[k].standard_normal()

        self.kernel.launch(self.nparameters, body)
        self.proposed = proposed
        self.state = SamplerState.EVALUATE
        return proposed

    def evaluate(self) -> float:
        """EVALUATE: NLL of the proposed vector."""
        self._expect(SamplerState.EVALUATE)
        self.nll_proposed = float(self.nll(self.proposed))
        self.state = SamplerState.DECIDE
        return self.nll_proposed

    def decide(self) -> bool:
        """
        DECIDE: Metropolis acceptance and chain append.

        Returns:
            Whether the proposal was accepted
        """
        self._expect(SamplerState.DECIDE)
        u = self._decision_rng.uniform()
        # a physical NLL may exceed the penalty value, so match it exactly
        if self.nll_proposed == self.penalty and self.nll_current != self.penalty:
            accept = False
        else:
            accept = self.nll_proposed < self.nll_current or u <= math.exp(
                self.nll_current - self.nll_proposed
            )
        if accept:
            self.current = self.proposed.copy()
            self.nll_current = self.nll_proposed
            self.accepted += 1

        self.buffer.append(self.current, self.nll_current)
        self.state = SamplerState.DONE if self.buffer.full else SamplerState.PROPOSE
        return accept

    def step(self) -> bool:
        """Run one full PROPOSE, EVALUATE, DECIDE cycle."""
        self.propose()
        self.evaluate()
        return self.decide()

    def run(self) -> ChainBuffer:
        """Step until the chain is done."""
        while self.state is not SamplerState.DONE:
            self.step()
        return self.buffer


__all__ = (
    "ChainBuffer",
    "MetropolisSampler",
    "SamplerState",
    "spawn_generators",
)
