"""
Tests for the histogram PDF evaluator.
"""

from __future__ import annotations

import hist
import numpy as np
import pytest

from sxmc.config import Observable
from sxmc.exceptions import ConfigurationError, FieldIndexError
from sxmc.histogram import EvalHist
from sxmc.kernels import ThreadPoolKernel
from sxmc.systematics import ResolutionScaleTransform, ShiftTransform


@pytest.fixture
def axis():
    """Eight unit bins on [0, 8)."""
    return Observable(name="x", field="x", bins=8, min=0.0, max=8.0).to_hist()


def column(values):
    return np.asarray(values, dtype=np.float64).reshape(-1, 1)


class TestConstruction:
    """Test EvalHist validation."""

    def test_field_out_of_range(self, axis):
        with pytest.raises(FieldIndexError, match="column 2"):
            EvalHist(column([1.0]), [axis], [2])

    def test_not_2d(self, axis):
        with pytest.raises(ConfigurationError, match="2-dimensional"):
            EvalHist(np.zeros(3), [axis], [0])

    def test_axes_fields_mismatch(self, axis):
        with pytest.raises(ConfigurationError, match="one field per axis"):
            EvalHist(column([1.0]), [axis], [0, 0])

    def test_systematic_field_out_of_range(self, axis):
        evaluator = EvalHist(column([1.0]), [axis], [0])
        with pytest.raises(FieldIndexError, match="column 1"):
            evaluator.add_systematic(
                ResolutionScaleTransform(observable_field=0, truth_field=1, parameter=0)
            )


class TestEvaluate:
    """Test densities evaluated at the samples and at external points."""

    def test_bin_edges(self, axis, kernel):
        """Interior edges belong to the higher bin, the upper bound is out of range."""
        samples = column([0.0, 1.0, 1.5, 7.999, 8.0, -0.5])
        evaluator = EvalHist(samples, [axis], [0], kernel=kernel)

        lut = evaluator.evaluate()

        # 6 samples, unit bins: bin 0 holds 1, bin 1 holds 2, bin 7 holds 1
        np.testing.assert_allclose(lut, [1 / 6, 2 / 6, 2 / 6, 1 / 6, 0.0, 0.0])

    def test_out_of_range_normalisation(self, axis):
        """Bin contents sum to the in-range fraction."""
        samples = column([0.5, 1.5, 2.5, 3.5, 9.0, 10.0, -1.0, 20.0])
        evaluator = EvalHist(samples, [axis], [0])

        density = evaluator.histogram()

        assert density.sum() == pytest.approx(0.5)
        assert evaluator.in_range(samples).sum() == 4

    def test_identity_without_systematics(self, axis):
        """Zero systematic values give the same LUT as no systematics at all."""
        rng = np.random.default_rng(1)
        samples = np.column_stack(
            [rng.uniform(0.0, 8.0, 500), rng.uniform(0.0, 8.0, 500)]
        )
        plain = EvalHist(samples, [axis], [0])
        deformed = EvalHist(samples, [axis], [0])
        deformed.add_systematic(ShiftTransform(observable_field=0, parameter=0))
        deformed.add_systematic(
            ResolutionScaleTransform(observable_field=0, truth_field=1, parameter=1)
        )

        np.testing.assert_array_equal(
            deformed.evaluate(np.zeros(2)), plain.evaluate()
        )

    def test_shift_moves_events(self, axis):
        """A shift of one bin width moves every sample one bin up."""
        samples = column([0.5, 0.5, 1.5, 2.5])
        evaluator = EvalHist(samples, [axis], [0])
        evaluator.add_systematic(ShiftTransform(observable_field=0, parameter=0))
        evaluator.set_eval_points(column([0.5, 1.5, 2.5, 3.5]))

        np.testing.assert_allclose(evaluator.evaluate([0.0]), [0.5, 0.25, 0.25, 0.0])
        np.testing.assert_allclose(evaluator.evaluate([1.0]), [0.0, 0.5, 0.25, 0.25])

    def test_eval_points(self, axis, kernel):
        """External points are looked up in the sample histogram, in order."""
        evaluator = EvalHist(column([0.5, 0.5, 3.5, 3.5]), [axis], [0], kernel=kernel)
        evaluator.set_eval_points(column([3.2, 0.9, 5.0, 8.5, 0.0]))

        lut = evaluator.evaluate()

        assert evaluator.nevents == 5
        np.testing.assert_allclose(lut, [0.5, 0.5, 0.0, 0.0, 0.5])

    def test_eval_points_shape(self, axis):
        evaluator = EvalHist(column([0.5]), [axis], [0])
        with pytest.raises(ConfigurationError, match="shape"):
            evaluator.set_eval_points(np.zeros((3, 2)))

    def test_lanes_agree(self, axis):
        """Splitting work over lanes does not change the result."""
        rng = np.random.default_rng(2)
        samples = column(rng.normal(4.0, 2.0, 1001))
        single = EvalHist(samples, [axis], [0])
        with ThreadPoolKernel(4) as kernel:
            multi = EvalHist(samples, [axis], [0], kernel=kernel)
            np.testing.assert_array_equal(multi.evaluate(), single.evaluate())

    def test_two_dimensional(self):
        """Each bin holds its fraction of the samples."""
        axes = [
            hist.axis.Regular(2, 0.0, 2.0, name="a"),
            hist.axis.Regular(2, 0.0, 1.0, name="b"),
        ]
        samples = np.array([[0.5, 0.25], [0.5, 0.75], [1.5, 0.25], [1.5, 0.25]])
        evaluator = EvalHist(samples, axes, [0, 1])

        np.testing.assert_allclose(evaluator.evaluate(), [0.25, 0.25, 0.5, 0.5])

    def test_independent_of_units(self):
        """Rescaling the observables leaves the densities unchanged."""
        rng = np.random.default_rng(3)
        samples = np.column_stack([rng.uniform(0, 10, 400), rng.uniform(0, 6, 400)])
        metres = EvalHist(
            samples,
            [hist.axis.Regular(20, 0.0, 10.0), hist.axis.Regular(20, 0.0, 6.0)],
            [0, 1],
        )
        millimetres = EvalHist(
            samples * 1000.0,
            [hist.axis.Regular(20, 0.0, 1e4), hist.axis.Regular(20, 0.0, 6e3)],
            [0, 1],
        )

        np.testing.assert_allclose(millimetres.evaluate(), metres.evaluate())

    def test_values_too_short(self, axis):
        evaluator = EvalHist(column([0.5]), [axis], [0])
        evaluator.add_systematic(ShiftTransform(observable_field=0, parameter=1))
        with pytest.raises(ValueError, match="at least 2"):
            evaluator.evaluate([0.0])


class TestCache:
    """Test caching on the last systematic values."""

    def test_same_values_cached(self, axis):
        evaluator = EvalHist(column([0.5, 1.5]), [axis], [0])
        evaluator.add_systematic(ShiftTransform(observable_field=0, parameter=0))

        first = evaluator.evaluate([0.1])
        assert evaluator.evaluate([0.1]) is first
        assert evaluator.evaluate([0.2]) is not first

    def test_read_only(self, axis):
        lut = EvalHist(column([0.5]), [axis], [0]).evaluate()
        with pytest.raises(ValueError, match="read-only"):
            lut[0] = 1.0

    def test_eval_points_invalidate(self, axis):
        evaluator = EvalHist(column([0.5, 1.5]), [axis], [0])
        first = evaluator.evaluate()
        evaluator.set_eval_points(column([0.5]))

        second = evaluator.evaluate()

        assert second is not first
        assert second.shape == (1,)
