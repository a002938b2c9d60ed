"""Entity records and the immutable value types stored in their fields."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Tuple

from cow_history.errors import ValidationError

from .pmap import PersistentMap

EntityId = int

_PATH_SEGMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True, slots=True)
class Vec3:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)


@dataclass(frozen=True, slots=True)
class Quaternion:
    """Orientation stored in its canonical four-component form.

    Components are kept exactly as given; history never splits a rotation
    into per-axis angles and never rebuilds one from them.
    """

    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def identity(cls) -> "Quaternion":
        return cls()

    @classmethod
    def from_axis_angle(cls, axis: Vec3, degrees: float) -> "Quaternion":
        length = math.sqrt(axis.x * axis.x + axis.y * axis.y + axis.z * axis.z)
        if length == 0.0:
            raise ValueError("rotation axis cannot be zero-length")
        half = math.radians(degrees) / 2.0
        scale = math.sin(half) / length
        return cls(math.cos(half), axis.x * scale, axis.y * scale, axis.z * scale)

    def normalized(self) -> "Quaternion":
        norm = math.sqrt(self.w**2 + self.x**2 + self.y**2 + self.z**2)
        if norm == 0.0:
            raise ValueError("cannot normalize a zero quaternion")
        return Quaternion(self.w / norm, self.x / norm, self.y / norm, self.z / norm)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.w, self.x, self.y, self.z)


@dataclass(frozen=True, slots=True)
class Color:
    r: float = 1.0
    g: float = 1.0
    b: float = 1.0
    a: float = 1.0


COMPOSITE_TYPES = (Vec3, Quaternion, Color)
_SCALAR_TYPES = (type(None), bool, int, float, str, bytes)


def ensure_value(value: Any, *, path: str = "") -> Any:
    """Reject anything that could alias live mutable state."""

    if isinstance(value, _SCALAR_TYPES) or isinstance(value, COMPOSITE_TYPES):
        return value
    if isinstance(value, (tuple, frozenset)):
        for item in value:
            ensure_value(item, path=path)
        return value
    raise ValidationError(
        f"Field '{path}' cannot hold mutable value of type {type(value).__name__}",
        target=path or None,
    )


def ensure_field_path(path: str) -> str:
    segments = path.split(".") if path else []
    if not segments or not all(_PATH_SEGMENT.match(segment) for segment in segments):
        raise ValidationError(f"Invalid field path '{path}'", target=path)
    return path


def is_composite(value: Any) -> bool:
    return isinstance(value, COMPOSITE_TYPES) or isinstance(value, tuple)


DEFAULT_TRANSFORM: Mapping[str, Any] = {
    "transform.position": Vec3(),
    "transform.rotation": Quaternion.identity(),
    "transform.scale": Vec3(1.0, 1.0, 1.0),
}


@dataclass(frozen=True, slots=True)
class EntityRecord:
    """One arena slot. Hierarchy is expressed only through ids."""

    entity_id: EntityId
    name: str
    parent: Optional[EntityId] = None
    children: Tuple[EntityId, ...] = ()
    fields: PersistentMap[str, Any] = field(default_factory=PersistentMap)

    def with_fields(self, fields: PersistentMap[str, Any]) -> "EntityRecord":
        return replace(self, fields=fields)

    def with_children(self, children: Tuple[EntityId, ...]) -> "EntityRecord":
        return replace(self, children=children)

    def component_fields(self, component: str) -> Tuple[str, ...]:
        prefix = f"{component}."
        return tuple(path for path in self.fields if path.startswith(prefix))


__all__ = [
    "COMPOSITE_TYPES",
    "Color",
    "DEFAULT_TRANSFORM",
    "EntityId",
    "EntityRecord",
    "Quaternion",
    "Vec3",
    "ensure_field_path",
    "ensure_value",
    "is_composite",
]
