"""Deterministic approximate byte costs for retained history data."""

from __future__ import annotations

from typing import Any

from .pmap import PersistentMap
from .records import Color, EntityRecord, Quaternion, Vec3

WORD = 8
ENTRY_OVERHEAD = 2 * WORD


def estimate_size(value: Any) -> int:
    """Approximate serialized size of ``value``.

    The figure is stable across runs and interpreters, which is all budget
    accounting needs; it is not ``sys.getsizeof``.
    """

    if value is None or isinstance(value, bool):
        return 1
    if isinstance(value, (int, float)):
        return WORD
    if isinstance(value, str):
        return WORD + len(value.encode("utf-8"))
    if isinstance(value, bytes):
        return WORD + len(value)
    if isinstance(value, Vec3):
        return 3 * WORD
    if isinstance(value, (Quaternion, Color)):
        return 4 * WORD
    if isinstance(value, (tuple, frozenset)):
        return WORD + sum(estimate_size(item) for item in value)
    if isinstance(value, PersistentMap):
        return WORD + sum(
            ENTRY_OVERHEAD + estimate_size(key) + estimate_size(item)
            for key, item in value.items()
        )
    if isinstance(value, EntityRecord):
        return (
            2 * WORD
            + estimate_size(value.name)
            + estimate_size(value.children)
            + estimate_size(value.fields)
        )
    return WORD + len(repr(value).encode("utf-8"))


def record_delta_size(before: EntityRecord, after: EntityRecord) -> int:
    """Cost of the fields that differ between two versions of one record."""

    if before is after:
        return 0
    size = 0
    if before.name != after.name:
        size += estimate_size(before.name) + estimate_size(after.name)
    if before.parent != after.parent:
        size += 2 * WORD
    if before.children != after.children:
        size += estimate_size(before.children) + estimate_size(after.children)
    for path in before.fields.diff_keys(after.fields):
        size += ENTRY_OVERHEAD + estimate_size(path)
        size += estimate_size(before.fields.get(path))
        size += estimate_size(after.fields.get(path))
    return size


__all__ = ["ENTRY_OVERHEAD", "estimate_size", "record_delta_size"]
