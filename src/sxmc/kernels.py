"""
Device-portable parallel kernels.

A kernel body is written once and launched over ``n`` work items split into
lanes. :class:`ThreadPoolKernel` runs lanes on CPU threads;
:class:`TensorKernel` runs a single grid launch and compiles the event
reduction into a pytensor graph, so the same reduction can execute through
any pytensor mode (C, NUMBA, JAX on an accelerator).

Lane results are always returned in lane order and the launch only returns
once every lane finished, which is the barrier the serial sampler steps rely
on.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from types import ModuleType, TracebackType
from typing import Any, ClassVar, TypeVar, cast

import numpy as np
import numpy.typing as npt
import pytensor.tensor as pt
from pytensor import function

from sxmc.exceptions import ConfigurationError, KernelError

log = logging.getLogger(__name__)

R = TypeVar("R")


def lane_slices(n: int, lanes: int) -> list[slice]:
    """
    Split ``range(n)`` into at most ``lanes`` contiguous, non-empty slices.

    Every item lands in exactly one slice. ``n == 0`` yields one empty slice so
    reductions still see a lane.
    """
    if n <= 0:
        return [slice(0, 0)]
    lanes = max(1, min(lanes, n))
    bounds = [(lane * n) // lanes for lane in range(lanes + 1)]
    return [slice(lo, hi) for lo, hi in zip(bounds[:-1], bounds[1:], strict=True)]


def mixture_log_sum(lut: Any, rates: Any, xp: ModuleType = np) -> tuple[Any, Any]:
    r"""
    Per-event body of the likelihood reduction.

    .. math::

        \sum_i \log \sum_j r_j L_{ij}

    Non-positive (or nan) densities are excluded from the log sum and counted instead,
    so callers can apply a penalty rather than propagate ``-inf``/``nan``.

    Args:
        lut: Events x signals lookup table
        rates: Signal rates
        xp: Array namespace, ``numpy`` or ``pytensor.tensor``

    Returns:
        (log sum, number of non-positive densities)
    """
    density = xp.dot(lut, rates)
    positive = density > 0
    log_sum = xp.sum(xp.log(xp.where(positive, density, 1.0)))
    nonpositive = xp.sum(~positive)
    return log_sum, nonpositive


class ParallelKernel(ABC):
    """Launch interface shared by every back-end."""

    name: ClassVar[str]
    lanes: int

    @abstractmethod
    def launch(self, n: int, body: Callable[[slice], R]) -> list[R]:
        """
        Run ``body`` over ``range(n)`` split into lanes.

        Args:
            n: Number of work items
            body: Callable receiving the slice of items owned by one lane

        Returns:
            One result per lane, in lane order

        Raises:
            KernelError: If a lane runs out of memory
        """

    @abstractmethod
    def reduce_events(
        self, lut: npt.NDArray[np.float64], rates: npt.NDArray[np.float64]
    ) -> tuple[float, int]:
        """
        Reduce :func:`mixture_log_sum` over every event.

        Returns:
            (log sum over events, number of non-positive densities)
        """

    def close(self) -> None:
        """Release back-end resources."""

    def __enter__(self) -> ParallelKernel:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(lanes={self.lanes})"


class ThreadPoolKernel(ParallelKernel):
    """
    CPU lanes on a thread pool.

    numpy releases the GIL inside its inner loops, so lanes working on
    disjoint event slices run concurrently. A single lane runs inline.
    """

    name = "cpu"

    def __init__(self, lanes: int = 1) -> None:
        if lanes < 1:
            msg = f"ThreadPoolKernel needs at least one lane, got {lanes}"
            raise ConfigurationError(msg)
        self.lanes = lanes
        self._pool = (
            ThreadPoolExecutor(max_workers=lanes, thread_name_prefix="sxmc-lane")
            if lanes > 1
            else None
        )

    def launch(self, n: int, body: Callable[[slice], R]) -> list[R]:
        slices = lane_slices(n, self.lanes)
        try:
            if self._pool is None or len(slices) == 1:
                return [body(lane) for lane in slices]
            futures = [self._pool.submit(body, lane) for lane in slices]
            return [future.result() for future in futures]
        except MemoryError as exc:
            msg = f"{self!r} ran out of memory on {n} items"
            raise KernelError(msg) from exc

    def reduce_events(
        self, lut: npt.NDArray[np.float64], rates: npt.NDArray[np.float64]
    ) -> tuple[float, int]:
        partials = self.launch(
            lut.shape[0], lambda lane: mixture_log_sum(lut[lane], rates)
        )
        log_sum = math.fsum(float(partial[0]) for partial in partials)
        nonpositive = sum(int(partial[1]) for partial in partials)
        return log_sum, nonpositive

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None


class TensorKernel(ParallelKernel):
    """
    Grid launch with the event reduction compiled by pytensor.

    Args:
        mode: pytensor compilation mode, e.g. ``FAST_RUN``, ``NUMBA`` or ``JAX``
    """

    name = "tensor"

    def __init__(self, mode: str = "FAST_RUN") -> None:
        self.lanes = 1
        self.mode = mode
        self._reduce: Callable[..., list[npt.NDArray[Any]]] | None = None

    def launch(self, n: int, body: Callable[[slice], R]) -> list[R]:
        try:
            return [body(slice(0, max(n, 0)))]
        except MemoryError as exc:
            msg = f"{self!r} ran out of memory on {n} items"
            raise KernelError(msg) from exc

    def _compiled_reduce(self) -> Callable[..., list[npt.NDArray[Any]]]:
        if self._reduce is None:
            lut = pt.matrix("lut", dtype="float64")
            rates = pt.vector("rates", dtype="float64")
            log_sum, nonpositive = mixture_log_sum(lut, rates, xp=pt)
            log.debug("Compiling event reduction with mode %s", self.mode)
            self._reduce = cast(
                Callable[..., list[npt.NDArray[Any]]],
                function(
                    inputs=[lut, rates],
                    outputs=[log_sum, nonpositive],
                    mode=self.mode,
                    name="mixture_log_sum",
                ),
            )
        return self._reduce

    def reduce_events(
        self, lut: npt.NDArray[np.float64], rates: npt.NDArray[np.float64]
    ) -> tuple[float, int]:
        reduce = self._compiled_reduce()
        try:
            log_sum, nonpositive = reduce(
                np.asarray(lut, dtype=np.float64), np.asarray(rates, dtype=np.float64)
            )
        except MemoryError as exc:
            msg = f"{self!r} ran out of memory reducing {len(lut)} events"
            raise KernelError(msg) from exc
        return float(log_sum), int(nonpositive)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(mode={self.mode!r})"


KERNELS: dict[str, type[ParallelKernel]] = {
    ThreadPoolKernel.name: ThreadPoolKernel,
    TensorKernel.name: TensorKernel,
}


def get_kernel(backend: str = "cpu", *, lanes: int = 1, mode: str = "FAST_RUN") -> ParallelKernel:
    """
    Build the kernel for a back-end name.

    Args:
        backend: ``cpu`` or ``tensor``
        lanes: CPU lanes (``cpu`` only)
        mode: pytensor mode (``tensor`` only)

    Raises:
        ConfigurationError: If the back-end is unknown
    """
    if backend == ThreadPoolKernel.name:
        return ThreadPoolKernel(lanes)
    if backend == TensorKernel.name:
        return TensorKernel(mode)
    msg = f"Unknown kernel back-end '{backend}', expected one of {sorted(KERNELS)}"
    raise ConfigurationError(msg)


__all__ = (
    "KERNELS",
    "ParallelKernel",
    "TensorKernel",
    "ThreadPoolKernel",
    "get_kernel",
    "lane_slices",
    "mixture_log_sum",
)
