"""Copy-on-write snapshot store: persistent maps, records and captures."""

from .pmap import PersistentMap
from .records import (
    Color,
    DEFAULT_TRANSFORM,
    EntityId,
    EntityRecord,
    Quaternion,
    Vec3,
    ensure_field_path,
    ensure_value,
)
from .sizing import estimate_size
from .store import COPY_SUFFIX, SnapshotStore, StateProvider, StoreVersion
from .targets import (
    ABSENT,
    SchemaRegistry,
    Snapshot,
    SnapshotDelta,
    Target,
    TargetKind,
    diff_snapshots,
)

__all__ = [
    "ABSENT",
    "COPY_SUFFIX",
    "Color",
    "DEFAULT_TRANSFORM",
    "EntityId",
    "EntityRecord",
    "PersistentMap",
    "Quaternion",
    "SchemaRegistry",
    "Snapshot",
    "SnapshotDelta",
    "SnapshotStore",
    "StateProvider",
    "StoreVersion",
    "Target",
    "TargetKind",
    "Vec3",
    "diff_snapshots",
    "ensure_field_path",
    "ensure_value",
    "estimate_size",
]
