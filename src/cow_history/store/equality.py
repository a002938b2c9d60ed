"""Type-strict value comparison used for change detection.

``1`` and ``1.0``, ``0.0`` and ``-0.0``, ``True`` and ``1`` compare equal
under ``==`` but are different stored values; an edit between them must be
recorded so undo restores the exact original.
"""

from __future__ import annotations

import math
from dataclasses import fields, is_dataclass
from typing import Any, Mapping

_MISSING = object()


def same_value(left: Any, right: Any) -> bool:
    if left is right:
        return True
    if type(left) is not type(right):
        return False
    if isinstance(left, float):
        if math.isnan(left) or math.isnan(right):
            return math.isnan(left) and math.isnan(right)
        return left == right and math.copysign(1.0, left) == math.copysign(1.0, right)
    if isinstance(left, tuple):
        return len(left) == len(right) and all(
            same_value(a, b) for a, b in zip(left, right)
        )
    if isinstance(left, frozenset):
        return left == right and all(
            any(same_value(item, other) for other in right) for item in left
        )
    if isinstance(left, Mapping):
        if len(left) != len(right):
            return False
        return all(
            same_value(value, right.get(key, _MISSING)) for key, value in left.items()
        )
    if is_dataclass(left):
        return all(
            same_value(getattr(left, spec.name), getattr(right, spec.name))
            for spec in fields(left)
        )
    return left == right


__all__ = ["same_value"]
