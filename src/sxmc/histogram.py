"""
Histogram PDF evaluator.

Turns a sample table plus a draw of systematic values into one density value
per event: transform a private copy of the samples, bin them with ``hist``,
normalise, and look every evaluation point back up in its bin.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import Iterable, Sequence
from functools import reduce
from typing import TYPE_CHECKING

import hist
import numpy as np
import numpy.typing as npt

from sxmc.exceptions import ConfigurationError, FieldIndexError
from sxmc.kernels import ParallelKernel, ThreadPoolKernel
from sxmc.systematics import Transform

if TYPE_CHECKING:
    from sxmc.config import Observable
    from sxmc.layout import FieldLayout

log = logging.getLogger(__name__)


class EvalHist:
    """
    Binned density of one signal, evaluated per event.

    Regular axes are half-open, ``[low, high)``: an event on an interior bin
    edge belongs to the higher bin and an event on the upper bound is out of
    range. Out-of-range samples do not enter any bin but still count in the
    normalisation, so the bin contents sum to the in-range fraction.

    The density of a bin is its fraction of the samples. It carries no units,
    so the NLL scale does not depend on the units of the observables.

    The last systematic-value vector and its LUT column are cached; asking
    again for the same values returns the cached column without rebinning.

    Args:
        samples: Events x fields sample table
        axes: One regular axis per observable
        observable_fields: Sample-table column of each axis
        kernel: Kernel used for transform, fill and lookup lanes
    """

    def __init__(
        self,
        samples: npt.ArrayLike,
        axes: Sequence[hist.axis.Regular],
        observable_fields: Sequence[int],
        kernel: ParallelKernel | None = None,
    ) -> None:
        self.samples = np.array(samples, dtype=np.float64, order="C")
        if self.samples.ndim != 2:
            msg = f"Sample table must be 2-dimensional, got shape {self.samples.shape}"
            raise ConfigurationError(msg)
        if len(axes) != len(observable_fields) or not axes:
            msg = f"Need one field per axis, got {len(axes)} axes and {len(observable_fields)} fields"
            raise ConfigurationError(msg)
        for field in observable_fields:
            self._check_field(field, "Observable")

        self.axes = tuple(axes)
        self.observable_fields = tuple(observable_fields)
        self.kernel = kernel or ThreadPoolKernel()
        self.systematics: list[Transform] = []

        self._eval_points: npt.NDArray[np.float64] | None = None
        self._cache_values: npt.NDArray[np.float64] | None = None
        self._cache_lut: npt.NDArray[np.float64] | None = None

    @classmethod
    def from_layout(
        cls,
        samples: npt.ArrayLike,
        observables: Sequence[Observable],
        layout: FieldLayout,
        transforms: Iterable[Transform] = (),
        kernel: ParallelKernel | None = None,
    ) -> EvalHist:
        """Build an evaluator for a sample table laid out by ``layout``."""
        evaluator = cls(
            samples,
            [observable.to_hist() for observable in observables],
            layout.observable_fields,
            kernel=kernel,
        )
        for transform in transforms:
            evaluator.add_systematic(transform)
        return evaluator

    @property
    def nfields(self) -> int:
        """Width of the sample table."""
        return int(self.samples.shape[1])

    @property
    def nsamples(self) -> int:
        """Number of sample events, in range or not."""
        return int(self.samples.shape[0])

    @property
    def nevents(self) -> int:
        """Number of LUT entries produced by :meth:`evaluate`."""
        if self._eval_points is None:
            return self.nsamples
        return int(self._eval_points.shape[0])

    def _check_field(self, field: int, owner: str) -> None:
        if not 0 <= field < self.nfields:
            msg = f"{owner} bound to column {field}, but the sample table has {self.nfields} columns"
            raise FieldIndexError(msg)

    def _invalidate(self) -> None:
        self._cache_values = None
        self._cache_lut = None

    def add_systematic(self, transform: Transform) -> None:
        """
        Register a systematic transform.

        Raises:
            FieldIndexError: If the transform touches a column outside the table
        """
        for field in transform.fields:
            self._check_field(field, f"Systematic {transform.kind.value}")
        self.systematics.append(transform)
        self._invalidate()

    def set_eval_points(self, points: npt.ArrayLike | None) -> None:
        """
        Set the events the density is evaluated at.

        Args:
            points: Events x fields, same layout as the samples; ``None`` to
                evaluate at the (transformed) samples themselves
        """
        if points is None:
            self._eval_points = None
        else:
            table = np.array(points, dtype=np.float64, order="C")
            if table.ndim != 2 or table.shape[1] != self.nfields:
                msg = f"Evaluation points must have shape (events, {self.nfields}), got {table.shape}"
                raise ConfigurationError(msg)
            self._eval_points = table
        self._invalidate()

    def _values(self, values: npt.ArrayLike | None) -> npt.NDArray[np.float64]:
        needed = max((t.parameter + 1 for t in self.systematics), default=0)
        if values is None:
            return np.zeros(needed)
        array = np.array(values, dtype=np.float64).ravel()
        if array.size < needed:
            msg = f"Expected at least {needed} systematic values, got {array.size}"
            raise ValueError(msg)
        return array

    def _empty(self) -> hist.Hist:
        return hist.Hist(*self.axes, storage=hist.storage.Double())

    def _transformed(
        self, lane: slice, values: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        chunk = self.samples[lane].copy()
        for transform in self.systematics:
            transform.apply(chunk, float(values[transform.parameter]))
        return chunk

    def _columns(self, table: npt.NDArray[np.float64]) -> list[npt.NDArray[np.float64]]:
        return [table[:, field] for field in self.observable_fields]

    def _fill(
        self, values: npt.NDArray[np.float64]
    ) -> tuple[hist.Hist, dict[int, npt.NDArray[np.float64]]]:
        def body(lane: slice) -> tuple[int, hist.Hist, npt.NDArray[np.float64]]:
            chunk = self._transformed(lane, values)
            counts = self._empty()
            counts.fill(*self._columns(chunk))
            return lane.start, counts, chunk

        partials = self.kernel.launch(self.nsamples, body)
        counts = reduce(operator.add, (partial[1] for partial in partials))
        return counts, {start: chunk for start, _, chunk in partials}

    def _density(self, counts: hist.Hist) -> npt.NDArray[np.float64]:
        if self.nsamples == 0:
            return np.zeros(counts.values().shape)
        return np.asarray(counts.values(), dtype=np.float64) / self.nsamples

    def bin_indices(
        self, table: npt.NDArray[np.float64]
    ) -> tuple[tuple[npt.NDArray[np.intp], ...], npt.NDArray[np.bool_]]:
        """
        Bin index of every event along every axis, and the in-range mask.
        """
        inside = np.ones(len(table), dtype=bool)
        indices = []
        for axis, column in zip(self.axes, self._columns(table), strict=True):
            index = np.asarray(axis.index(column), dtype=np.intp).reshape(-1)
            inside &= (index >= 0) & (index < len(axis))
            indices.append(index)
        return tuple(indices), inside

    def in_range(self, table: npt.ArrayLike) -> npt.NDArray[np.bool_]:
        """Mask of the events inside every observable range."""
        return self.bin_indices(np.asarray(table, dtype=np.float64))[1]

    def _lookup(
        self, density: npt.NDArray[np.float64], table: npt.NDArray[np.float64]
    ) -> npt.NDArray[np.float64]:
        indices, inside = self.bin_indices(table)
        lut = np.zeros(len(table))
        lut[inside] = density[tuple(index[inside] for index in indices)]
        return lut

    def histogram(self, values: npt.ArrayLike | None = None) -> hist.Hist:
        """
        The normalised density histogram for a systematic-value vector.

        Intended for diagnostics and plotting; it does not touch the cache.
        """
        counts, _ = self._fill(self._values(values))
        density = self._empty()
        density.view(flow=False)[...] = self._density(counts)
        return density

    def evaluate(self, values: npt.ArrayLike | None = None) -> npt.NDArray[np.float64]:
        """
        Density at every evaluation point, in original event order.

        Args:
            values: Systematic-value array, indexed by each transform's
                ``parameter``; ``None`` means every systematic at zero

        Returns:
            Read-only array with one entry per evaluation point
        """
        array = self._values(values)
        if (
            self._cache_lut is not None
            and self._cache_values is not None
            and np.array_equal(array, self._cache_values)
        ):
            return self._cache_lut

        counts, chunks = self._fill(array)
        density = self._density(counts)

        if self._eval_points is None:
            parts = self.kernel.launch(
                self.nsamples, lambda lane: self._lookup(density, chunks[lane.start])
            )
        else:
            points = self._eval_points
            parts = self.kernel.launch(
                len(points), lambda lane: self._lookup(density, points[lane])
            )

        lut = np.concatenate(parts) if parts else np.zeros(0)
        lut.flags.writeable = False
        self._cache_values = array.copy()
        self._cache_lut = lut
        return lut

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(nsamples={self.nsamples}, "
            f"axes={[axis.name for axis in self.axes]}, "
            f"systematics={len(self.systematics)})"
        )


__all__ = ("EvalHist",)
