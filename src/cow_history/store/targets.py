"""Targets, tagged snapshots and the schema registry they are checked against."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, Iterator, Optional, Tuple

from .equality import same_value
from .pmap import PersistentMap
from .records import EntityId, EntityRecord, ensure_field_path
from .sizing import ENTRY_OVERHEAD, estimate_size, record_delta_size


class TargetKind(str, Enum):
    FIELD = "field"
    ENTITY = "entity"
    SUBTREE = "subtree"


@dataclass(frozen=True, slots=True)
class Target:
    """Stable reference to the unit an operation touches."""

    kind: TargetKind
    entity_id: EntityId
    path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind is TargetKind.FIELD:
            if self.path is None:
                raise ValueError("field targets require a path")
            ensure_field_path(self.path)
        elif self.path is not None:
            raise ValueError(f"{self.kind.value} targets do not take a path")

    @classmethod
    def field(cls, entity_id: EntityId, path: str) -> "Target":
        return cls(TargetKind.FIELD, entity_id, path)

    @classmethod
    def entity(cls, entity_id: EntityId) -> "Target":
        return cls(TargetKind.ENTITY, entity_id)

    @classmethod
    def subtree(cls, root_id: EntityId) -> "Target":
        return cls(TargetKind.SUBTREE, root_id)

    @property
    def tag(self) -> str:
        if self.kind is TargetKind.FIELD:
            return f"field:{self.path}"
        return self.kind.value

    def __str__(self) -> str:
        if self.path:
            return f"{self.kind.value}:{self.entity_id}:{self.path}"
        return f"{self.kind.value}:{self.entity_id}"


class _Absent:
    __slots__ = ()

    def __repr__(self) -> str:
        return "ABSENT"

    def __reduce__(self) -> str:
        return "ABSENT"


ABSENT: Any = _Absent()


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Immutable capture of one target at one store version.

    ``entries`` maps keys (field paths, record attributes or entity ids) to
    captured values or ``ABSENT``. Values are shared with the store, never
    copied.
    """

    tag: str
    schema_version: int
    target: Target
    entries: Tuple[Tuple[Hashable, Any], ...]
    store_version: int

    def as_dict(self) -> Dict[Hashable, Any]:
        return dict(self.entries)

    def keys(self) -> Tuple[Hashable, ...]:
        return tuple(key for key, _ in self.entries)

    def __iter__(self) -> Iterator[Tuple[Hashable, Any]]:
        return iter(self.entries)


@dataclass(frozen=True, slots=True)
class SnapshotDelta:
    changed_keys: Tuple[Hashable, ...]
    size: int

    @property
    def is_empty(self) -> bool:
        return not self.changed_keys


def _value_delta(before: Any, after: Any) -> int:
    if before is after:
        return 0
    if isinstance(before, EntityRecord) and isinstance(after, EntityRecord):
        return record_delta_size(before, after)
    if isinstance(before, PersistentMap) and isinstance(after, PersistentMap):
        return sum(
            ENTRY_OVERHEAD
            + estimate_size(key)
            + estimate_size(before.get(key))
            + estimate_size(after.get(key))
            for key in before.diff_keys(after)
        )
    if same_value(before, after):
        return 0
    size = 0
    if before is not ABSENT:
        size += estimate_size(before)
    if after is not ABSENT:
        size += estimate_size(after)
    return size


def diff_snapshots(before: Snapshot, after: Snapshot) -> SnapshotDelta:
    """Changed keys and their approximate byte cost between two captures."""

    left = before.as_dict()
    right = after.as_dict()
    changed = []
    size = 0
    for key in dict.fromkeys(list(left) + list(right)):
        cost = _value_delta(left.get(key, ABSENT), right.get(key, ABSENT))
        if cost:
            changed.append(key)
            size += ENTRY_OVERHEAD + cost
    return SnapshotDelta(changed_keys=tuple(changed), size=size)


@dataclass
class SchemaRegistry:
    """Current schema version per snapshot tag (1 unless bumped)."""

    default_version: int = 1
    _versions: Dict[str, int] = field(default_factory=dict)

    def version_of(self, tag: str) -> int:
        return self._versions.get(tag, self.default_version)

    def set_version(self, tag: str, version: int) -> None:
        if version < 1:
            raise ValueError("schema versions start at 1")
        self._versions[tag] = version

    def bump(self, tag: str) -> int:
        version = self.version_of(tag) + 1
        self._versions[tag] = version
        return version


__all__ = [
    "ABSENT",
    "SchemaRegistry",
    "Snapshot",
    "SnapshotDelta",
    "Target",
    "TargetKind",
    "diff_snapshots",
]
