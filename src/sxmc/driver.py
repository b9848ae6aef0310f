"""
Chain driver.

Runs Metropolis chains step by step, optionally once per fake experiment.
Burn-in is left to consumers of the returned chain buffers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from contextlib import nullcontext

import numpy as np
import numpy.typing as npt
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from sxmc.config import FitConfig
from sxmc.generator import make_fake_dataset
from sxmc.kernels import ParallelKernel, ThreadPoolKernel, get_kernel
from sxmc.likelihood import NLL
from sxmc.logging import console
from sxmc.parameters import ParameterSpace
from sxmc.sampler import ChainBuffer, MetropolisSampler, SamplerState
from sxmc.signals import Signal, build_signals

log = logging.getLogger(__name__)

DatasetGenerator = Callable[
    [Sequence[Signal], np.random.Generator],
    tuple[npt.NDArray[np.float64], dict[str, int]],
]


class ChainResult:
    """
    A finished chain.

    Attributes:
        buffer: One row per step, parameters followed by NLL
        accepted: Number of accepted proposals
        experiment: Fake-experiment index, ``None`` for a single fit
        counts: Events per signal in the fake dataset, if any
    """

    def __init__(
        self,
        buffer: ChainBuffer,
        accepted: int,
        *,
        experiment: int | None = None,
        counts: Mapping[str, int] | None = None,
    ) -> None:
        self.buffer = buffer
        self.accepted = accepted
        self.experiment = experiment
        self.counts = dict(counts or {})

    @property
    def nsteps(self) -> int:
        return len(self.buffer)

    @property
    def names(self) -> tuple[str, ...]:
        return self.buffer.names

    @property
    def acceptance_rate(self) -> float:
        return self.accepted / self.nsteps if self.nsteps else 0.0

    def __repr__(self) -> str:
        return (
            f"ChainResult(experiment={self.experiment}, nsteps={self.nsteps}, "
            f"acceptance={self.acceptance_rate:.3f})"
        )


class ChainDriver:
    """
    Owns the step loop.

    Args:
        nsteps: Steps per chain
        seed: Root seed; experiments and chains get independent children
        kernel: Kernel for proposals (and for NLLs the driver builds)
        progress: Show a progress bar while sampling
    """

    def __init__(
        self,
        nsteps: int,
        *,
        seed: int = 0,
        kernel: ParallelKernel | None = None,
        progress: bool = True,
    ) -> None:
        self.nsteps = nsteps
        self.seed = seed
        self.kernel = kernel or ThreadPoolKernel()
        self.progress = progress

    @classmethod
    def from_config(
        cls,
        config: FitConfig,
        *,
        kernel: ParallelKernel | None = None,
        progress: bool = True,
    ) -> ChainDriver:
        """Driver using the step count, seed and back-end of a configuration."""
        return cls(
            config.fit.steps,
            seed=config.fit.seed,
            kernel=kernel
            or get_kernel(config.fit.backend, lanes=config.fit.lanes, mode=config.fit.mode),
            progress=progress,
        )

    def run(
        self,
        nll: NLL,
        *,
        start: npt.ArrayLike | None = None,
        seed: int | np.random.SeedSequence | None = None,
        description: str = "Sampling",
    ) -> ChainResult:
        """
        Run one chain of ``nsteps`` steps.

        Args:
            nll: Objective, with the parameter space it is defined on
            start: Starting vector; the prior means by default
            seed: Chain seed; the driver seed by default
            description: Progress bar label
        """
        space = nll.space
        sampler = MetropolisSampler(
            nll,
            space.initial() if start is None else start,
            space.jumps,
            self.nsteps,
            names=space.names,
            seed=self.seed if seed is None else seed,
            kernel=self.kernel,
        )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", style="cyan"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            console=console,
            expand=True,
            transient=True,
            disable=not self.progress,
        ) as progress_bar:
            task = progress_bar.add_task(description, total=self.nsteps)
            while sampler.state is not SamplerState.DONE:
                sampler.step()
                progress_bar.advance(task)

        log.info(
            "Chain finished: %d/%d accepted (%.1f%%)",
            sampler.accepted,
            self.nsteps,
            100.0 * sampler.acceptance_rate if self.nsteps else 0.0,
        )
        return ChainResult(sampler.buffer, sampler.accepted)

    def run_experiments(
        self,
        signals: Sequence[Signal],
        space: ParameterSpace,
        nexperiments: int,
        *,
        generator: DatasetGenerator = make_fake_dataset,
    ) -> list[ChainResult]:
        """
        Run one chain per fake experiment.

        Every experiment draws a fresh dataset, evaluates all signals at it and
        samples a new chain. Experiment ``i`` uses child ``i`` of the root seed
        for both its dataset and its chain.
        """
        results = []
        for experiment, sequence in enumerate(
            np.random.SeedSequence(self.seed).spawn(nexperiments)
        ):
            data_seed, chain_seed = sequence.spawn(2)
            data, counts = generator(signals, np.random.default_rng(data_seed))
            log.info("Experiment %d: %d events %s", experiment, len(data), counts)

            for signal in signals:
                signal.histogram.set_eval_points(data)

            result = self.run(
                NLL(signals, space, kernel=self.kernel),
                seed=chain_seed,
                description=f"Experiment {experiment}",
            )
            result.experiment = experiment
            result.counts = counts
            results.append(result)
        return results


def run_fit(
    config: FitConfig,
    *,
    kernel: ParallelKernel | None = None,
    tables: Mapping[str, npt.ArrayLike] | None = None,
    generator: DatasetGenerator = make_fake_dataset,
    progress: bool = True,
) -> list[ChainResult]:
    """
    Build the model described by ``config`` and run every fake experiment.

    Args:
        config: Validated fit configuration
        kernel: Kernel override; built from ``fit.backend`` by default and
            closed on return, while a kernel passed in is left open
        tables: Sample tables by signal name instead of the configured files
        generator: Fake dataset generator
        progress: Show progress bars
    """
    log.info("Fit configuration:\n%s", config.summary())
    with (
        nullcontext(kernel)
        if kernel is not None
        else get_kernel(config.fit.backend, lanes=config.fit.lanes, mode=config.fit.mode)
    ) as active:
        driver = ChainDriver.from_config(config, kernel=active, progress=progress)
        signals = build_signals(config, kernel=active, tables=tables)
        space = ParameterSpace(signals, config.systematics)
        return driver.run_experiments(
            signals, space, config.fit.experiments, generator=generator
        )


__all__ = ("ChainDriver", "ChainResult", "DatasetGenerator", "run_fit")
