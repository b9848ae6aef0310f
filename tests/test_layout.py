"""Tests for resolving field names to sample-table columns."""

from __future__ import annotations

import numpy as np
import pytest

from sxmc.config import Observable, ResolutionScaleSystematic, ScaleSystematic
from sxmc.exceptions import ConfigurationError, FieldIndexError
from sxmc.layout import index_with_append, resolve_fields

FIELDS = ["x", "y", "true_x", "weight"]


@pytest.fixture
def observables():
    return [
        Observable(name="y_obs", field="y", bins=2, min=0.0, max=1.0),
        Observable(name="x_obs", field="x", bins=2, min=0.0, max=1.0),
    ]


def test_index_with_append():
    values = [3, 1]
    assert index_with_append(values, 1) == 1
    assert index_with_append(values, 7) == 2
    assert values == [3, 1, 7]


class TestResolveFields:
    """Test resolve_fields."""

    def test_observables_in_order(self, observables):
        """Observable columns follow observable order, not file order."""
        layout = resolve_fields(FIELDS, observables)

        assert layout.columns == (1, 0)
        assert layout.observable_fields == (0, 1)
        assert layout.names == ["y", "x"]
        assert layout.width == 2

    def test_truth_fields_appended(self, observables):
        """Truth fields get new columns after the observables."""
        systematics = [
            ScaleSystematic(name="scale", observable_field="x"),
            ResolutionScaleSystematic(
                name="res", observable_field="x", truth_field="true_x"
            ),
        ]
        layout = resolve_fields(FIELDS, observables, systematics)

        assert layout.columns == (1, 0, 2)
        assert layout.systematic_fields[0].observable == 1
        assert layout.systematic_fields[1].observable == 1
        assert layout.systematic_fields[1].truth == 2

    def test_unknown_field(self, observables):
        """Unknown field names raise a FieldIndexError."""
        systematics = [
            ResolutionScaleSystematic(
                name="res", observable_field="x", truth_field="true_z"
            )
        ]
        with pytest.raises(FieldIndexError, match="unknown field 'true_z'"):
            resolve_fields(FIELDS, observables, systematics)

    def test_reused_field(self):
        """Two observables cannot bin the same field."""
        observables = [
            Observable(name="a", field="x", bins=2, min=0.0, max=1.0),
            Observable(name="b", field="x", bins=4, min=0.0, max=1.0),
        ]
        with pytest.raises(ConfigurationError, match="reuses field 'x'"):
            resolve_fields(FIELDS, observables)

    def test_systematic_on_unbinned_field(self, observables):
        """Systematics must act on an observable field."""
        with pytest.raises(ConfigurationError, match="not an observable field"):
            resolve_fields(
                FIELDS, observables, [ScaleSystematic(name="w", observable_field="weight")]
            )


class TestSelect:
    """Test FieldLayout.select."""

    def test_select(self, observables):
        """Selection reorders and copies the referenced columns."""
        layout = resolve_fields(FIELDS, observables)
        table = np.arange(8.0).reshape(2, 4)

        selected = layout.select(table)

        np.testing.assert_array_equal(selected, [[1.0, 0.0], [5.0, 4.0]])
        assert selected.flags.c_contiguous
        selected[0, 0] = -1.0
        assert table[0, 1] == 1.0

    def test_wrong_width(self, observables):
        """Tables must have one column per source field."""
        layout = resolve_fields(FIELDS, observables)
        with pytest.raises(ConfigurationError, match="expected"):
            layout.select(np.zeros((3, 2)))
