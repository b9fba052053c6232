"""Tri-state field updates.

A partial update names, per field, whether the value stays as it is, is set
to something new, or is cleared::

    UNCHANGED            # leave the stored value alone
    SetTo("Juniors")     # replace it
    CLEAR                # drop it (None)

``field_update_from`` converts a raw mapping entry, where a missing key means
"unchanged" and ``None`` / blank string means "clear".
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Mapping, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Unchanged:
    def __repr__(self) -> str:
        return "UNCHANGED"


@dataclass(frozen=True)
class Clear:
    def __repr__(self) -> str:
        return "CLEAR"


@dataclass(frozen=True)
class SetTo(Generic[T]):
    value: T


UNCHANGED = Unchanged()
CLEAR = Clear()

FieldUpdate = Union[Unchanged, SetTo[T], Clear]


def field_update_from(data: Mapping[str, Any], key: str) -> FieldUpdate[Any]:
    if key not in data:
        return UNCHANGED
    value = data[key]
    if value is None:
        return CLEAR
    if isinstance(value, str) and not value.strip():
        return CLEAR
    return SetTo(value)


def resolve(update: FieldUpdate[T], current: T | None) -> T | None:
    """Apply ``update`` on top of ``current``."""
    if isinstance(update, SetTo):
        return update.value
    if isinstance(update, Clear):
        return None
    return current


__all__ = [
    "CLEAR",
    "Clear",
    "FieldUpdate",
    "SetTo",
    "UNCHANGED",
    "Unchanged",
    "field_update_from",
    "resolve",
]
