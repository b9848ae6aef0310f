"""
Sample field layout.

Maps named fields onto columns of the per-signal sample table. Observable
fields come first, in observable order, followed by any extra fields needed
by systematics (truth fields). The resulting index table is computed once
at configuration time and is the only place field names are matched.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np
import numpy.typing as npt
from pydantic import BaseModel, ConfigDict

from sxmc.exceptions import ConfigurationError, FieldIndexError

if TYPE_CHECKING:
    from sxmc.config import Observable, Systematic


def index_with_append(values: list[int], value: int) -> int:
    """Position of ``value`` in ``values``, appending it first if absent."""
    if value not in values:
        values.append(value)
    return values.index(value)


class SystematicFields(BaseModel):
    """Column indices a systematic is bound to."""

    model_config = ConfigDict(frozen=True)

    observable: int
    truth: int | None = None


class FieldLayout(BaseModel):
    """
    Resolved column layout of the sample tables.

    Attributes:
        source_fields: Column names of the files the samples are read from
        columns: Source column index for each sample-table column
        observable_fields: Sample-table column of each observable
        systematic_fields: Sample-table columns of each systematic
    """

    model_config = ConfigDict(frozen=True)

    source_fields: tuple[str, ...]
    columns: tuple[int, ...]
    observable_fields: tuple[int, ...]
    systematic_fields: tuple[SystematicFields, ...] = ()

    @property
    def width(self) -> int:
        """Number of columns in a sample table."""
        return len(self.columns)

    @property
    def names(self) -> list[str]:
        """Field names of the sample-table columns, in order."""
        return [self.source_fields[column] for column in self.columns]

    def select(self, table: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """
        Copy the referenced columns of a source table, in layout order.

        Args:
            table: Events x source fields

        Returns:
            Events x layout width, float64, C-contiguous

        Raises:
            ConfigurationError: If the table does not have one column per source field
        """
        source = np.asarray(table, dtype=np.float64)
        if source.ndim != 2 or source.shape[1] != len(self.source_fields):
            msg = (
                f"Sample table has shape {source.shape}, expected "
                f"(events, {len(self.source_fields)}) for fields {list(self.source_fields)}"
            )
            raise ConfigurationError(msg)
        return np.ascontiguousarray(source[:, list(self.columns)])


def _source_index(fields: Sequence[str], field: str, owner: str) -> int:
    try:
        return list(fields).index(field)
    except ValueError:
        msg = f"{owner} references unknown field '{field}', available fields: {list(fields)}"
        raise FieldIndexError(msg) from None


def resolve_fields(
    fields: Sequence[str],
    observables: Sequence[Observable],
    systematics: Sequence[Systematic] = (),
) -> FieldLayout:
    """
    Resolve observable and systematic field names to sample-table columns.

    Args:
        fields: Column names of the source files
        observables: Observables in binning order
        systematics: Systematics in parameter order

    Returns:
        FieldLayout: The validated index table

    Raises:
        FieldIndexError: If a field name is unknown
        ConfigurationError: If two observables share a field, or a systematic
            acts on a field that is not an observable
    """
    columns: list[int] = []
    observable_fields: list[int] = []
    for observable in observables:
        source = _source_index(fields, observable.field, f"Observable '{observable.name}'")
        if source in columns:
            msg = f"Observable '{observable.name}' reuses field '{observable.field}'"
            raise ConfigurationError(msg)
        observable_fields.append(index_with_append(columns, source))

    systematic_fields: list[SystematicFields] = []
    for systematic in systematics:
        owner = f"Systematic '{systematic.name}'"
        source = _source_index(fields, systematic.observable_field, owner)
        if source not in columns[: len(observable_fields)]:
            msg = f"{owner} acts on '{systematic.observable_field}', which is not an observable field"
            raise ConfigurationError(msg)
        truth = None
        truth_field = getattr(systematic, "truth_field", None)
        if truth_field is not None:
            truth = index_with_append(columns, _source_index(fields, truth_field, owner))
        systematic_fields.append(
            SystematicFields(observable=columns.index(source), truth=truth)
        )

    return FieldLayout(
        source_fields=tuple(fields),
        columns=tuple(columns),
        observable_fields=tuple(observable_fields),
        systematic_fields=tuple(systematic_fields),
    )


__all__ = ("FieldLayout", "SystematicFields", "index_with_append", "resolve_fields")
