"""
Systematic transforms applied to sample tables before binning.

Each transform is bound to sample-table columns and to a slot in the
systematic-value array. Transforms modify a table in place; callers hand
them a private copy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, Literal

import numpy as np
import numpy.typing as npt
from pydantic import BaseModel, ConfigDict, Field, model_validator

from sxmc.exceptions import ConfigurationError

if TYPE_CHECKING:
    from sxmc.config import Systematic
    from sxmc.layout import FieldLayout


class SystematicKind(str, Enum):
    """Kinds of sample deformation."""

    SHIFT = "shift"
    SCALE = "scale"
    RESOLUTION_SCALE = "resolution_scale"


class Transform(BaseModel, ABC):
    """
    Base transform of one sample-table column.

    Attributes:
        observable_field: Column the transform modifies
        parameter: Index into the systematic-value array
    """

    model_config = ConfigDict(frozen=True)

    kind: SystematicKind
    observable_field: int = Field(..., ge=0)
    parameter: int = Field(..., ge=0)

    @property
    def fields(self) -> tuple[int, ...]:
        """Every column the transform reads or writes."""
        return (self.observable_field,)

    @abstractmethod
    def apply(self, table: npt.NDArray[np.float64], value: float) -> None:
        """Apply this transform to ``table`` in place."""


class ShiftTransform(Transform):
    """``x -> x + value``"""

    kind: Literal[SystematicKind.SHIFT] = SystematicKind.SHIFT

    def apply(self, table: npt.NDArray[np.float64], value: float) -> None:
        table[:, self.observable_field] += value


class ScaleTransform(Transform):
    """``x -> x * (1 + value)``"""

    kind: Literal[SystematicKind.SCALE] = SystematicKind.SCALE

    def apply(self, table: npt.NDArray[np.float64], value: float) -> None:
        table[:, self.observable_field] *= 1.0 + value


class ResolutionScaleTransform(Transform):
    """``x -> t + (x - t) * (1 + value)`` with ``t`` the true value."""

    kind: Literal[SystematicKind.RESOLUTION_SCALE] = SystematicKind.RESOLUTION_SCALE
    truth_field: int = Field(..., ge=0)

    @model_validator(mode="after")
    def check_fields(self) -> ResolutionScaleTransform:
        """Truth and observable columns must differ."""
        if self.truth_field == self.observable_field:
            msg = f"truth_field and observable_field are both column {self.truth_field}"
            raise ValueError(msg)
        return self

    @property
    def fields(self) -> tuple[int, ...]:
        return (self.observable_field, self.truth_field)

    def apply(self, table: npt.NDArray[np.float64], value: float) -> None:
        # (x - t) + t is not bit-exact in floating point
        if value == 0.0:
            return
        truth = table[:, self.truth_field]
        observed = table[:, self.observable_field]
        observed -= truth
        observed *= 1.0 + value
        observed += truth


_TRANSFORMS: dict[SystematicKind, type[Transform]] = {
    SystematicKind.SHIFT: ShiftTransform,
    SystematicKind.SCALE: ScaleTransform,
    SystematicKind.RESOLUTION_SCALE: ResolutionScaleTransform,
}


def build_transforms(
    systematics: Sequence[Systematic], layout: FieldLayout
) -> list[Transform]:
    """
    Bind configured systematics to the resolved sample layout.

    The i-th systematic reads slot i of the systematic-value array.

    Raises:
        ConfigurationError: If the layout and the systematic list disagree, or a
            kind is unknown
    """
    if len(systematics) != len(layout.systematic_fields):
        msg = (
            f"Layout resolves {len(layout.systematic_fields)} systematics, "
            f"got {len(systematics)}"
        )
        raise ConfigurationError(msg)

    transforms: list[Transform] = []
    for parameter, (systematic, fields) in enumerate(
        zip(systematics, layout.systematic_fields, strict=True)
    ):
        try:
            kind = SystematicKind(systematic.type)
        except ValueError:
            msg = f"Unknown systematic type '{systematic.type}' for '{systematic.name}'"
            raise ConfigurationError(msg) from None
        if kind is SystematicKind.RESOLUTION_SCALE:
            transforms.append(
                ResolutionScaleTransform(
                    observable_field=fields.observable,
                    truth_field=fields.truth,
                    parameter=parameter,
                )
            )
        else:
            transforms.append(
                _TRANSFORMS[kind](observable_field=fields.observable, parameter=parameter)
            )
    return transforms


__all__ = (
    "ResolutionScaleTransform",
    "ScaleTransform",
    "ShiftTransform",
    "SystematicKind",
    "Transform",
    "build_transforms",
)
