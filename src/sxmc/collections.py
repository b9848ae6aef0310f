"""Generic collection classes for named configuration items."""

from __future__ import annotations

from abc import ABC
from collections.abc import Iterator
from typing import Any, TypeVar

from pydantic import BaseModel, PrivateAttr, RootModel, model_validator


class NamedModel(BaseModel, ABC):
    """ABC for objects that have a name attribute."""

    name: str


T = TypeVar("T", bound=NamedModel)


class NamedCollection(RootModel[list[T]]):
    """Generic collection providing dict-like access to named items.

    Accepts either a list of items carrying a ``name`` or a JSON object keyed
    by name (the key becomes the item's ``name``). Registration order is kept;
    it defines positions in parameter vectors downstream.
    """

    _map: dict[str, T] = PrivateAttr(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def names_from_keys(cls, data: Any) -> Any:
        """Turn ``{"name": {...}}`` mappings into a list of named items."""
        if isinstance(data, dict):
            return [
                {**value, "name": key} if isinstance(value, dict) else value
                for key, value in data.items()
            ]
        return data

    @model_validator(mode="after")
    def unique_names(self) -> NamedCollection[T]:
        """Reject collections that repeat a name."""
        names = [item.name for item in self.root]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            msg = f"{type(self).__name__} contains duplicate names: {duplicates}"
            raise ValueError(msg)
        return self

    def model_post_init(self, __context: Any, /) -> None:
        """Initialize computed collections after Pydantic validation."""
        self._map = {item.name: item for item in self.root}

    def __getitem__(self, item: str | int) -> T:
        if isinstance(item, int):
            return self.root[item]
        return self._map[item]

    def get(self, name: str, default: T | None = None) -> T | None:
        """Get an item by name, returning default if not found."""
        return self._map.get(name, default)

    def __contains__(self, name: str) -> bool:
        return name in self._map

    def __iter__(self) -> Iterator[T]:  # type: ignore[override]
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({[item.name for item in self]})"
