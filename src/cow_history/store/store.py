"""Versioned copy-on-write entity arena exposing capture/restore."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, replace
from typing import (
    Any,
    Callable,
    Dict,
    Hashable,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Tuple,
)

from cow_history.errors import ApplyError, SchemaMismatch, ValidationError
from cow_history.runtime.telemetry import span

from .equality import same_value
from .pmap import PersistentMap
from .records import (
    EntityId,
    EntityRecord,
    ensure_field_path,
    ensure_value,
    is_composite,
)
from .targets import (
    ABSENT,
    SchemaRegistry,
    Snapshot,
    SnapshotDelta,
    Target,
    TargetKind,
    diff_snapshots,
)

Entities = PersistentMap[EntityId, EntityRecord]

COPY_SUFFIX = " (Copy)"


@dataclass(frozen=True, slots=True)
class StoreVersion:
    """One immutable world state; ``parent`` links the lineage by number."""

    number: int
    parent: Optional[int]
    entities: Entities


class StateProvider(Protocol):
    """The narrow capability the history engine depends on."""

    def capture(self, target: Target) -> Snapshot:
        """Return an immutable capture of the live state at ``target``."""
        ...

    def restore(self, target: Target, snapshot: Snapshot) -> None:
        """Write ``snapshot`` back into live state or raise ``ApplyError``."""
        ...


class SnapshotStore:
    """Entity arena whose every commit is a new structurally-shared version."""

    def __init__(
        self,
        *,
        schemas: Optional[SchemaRegistry] = None,
        logger_name: Optional[str] = None,
    ) -> None:
        self.schemas = schemas or SchemaRegistry()
        self._logger_name = logger_name
        self._lock = threading.RLock()
        self._version_numbers = itertools.count(1)
        self._entity_ids = itertools.count(1)
        self._head = StoreVersion(number=0, parent=None, entities=PersistentMap())
        self._restorers: Dict[
            TargetKind, Callable[[Entities, Target, Snapshot], Entities]
        ] = {
            TargetKind.FIELD: self._restore_field,
            TargetKind.ENTITY: self._restore_entity,
            TargetKind.SUBTREE: self._restore_subtree,
        }

    # ------------------------------------------------------------------ reads

    @property
    def version(self) -> StoreVersion:
        return self._head

    def __len__(self) -> int:
        return len(self._head.entities)

    def get(
        self, entity_id: EntityId, *, version: Optional[StoreVersion] = None
    ) -> Optional[EntityRecord]:
        return (version or self._head).entities.get(entity_id)

    def exists(self, entity_id: EntityId) -> bool:
        return entity_id in self._head.entities

    def require(self, entity_id: EntityId) -> EntityRecord:
        record = self._head.entities.get(entity_id)
        if record is None:
            raise ValidationError(
                f"Entity {entity_id} does not exist", target=entity_id
            )
        return record

    def roots(self) -> Tuple[EntityId, ...]:
        return tuple(
            entity_id
            for entity_id, record in self._head.entities.items()
            if record.parent is None
        )

    def descendants(
        self, entity_id: EntityId, *, version: Optional[StoreVersion] = None
    ) -> Tuple[EntityId, ...]:
        """``entity_id`` followed by every descendant in pre-order."""

        return tuple(_walk((version or self._head).entities, entity_id))

    def allocate_id(self) -> EntityId:
        with self._lock:
            return next(self._entity_ids)

    # -------------------------------------------------------------- mutations

    def spawn(
        self,
        name: str,
        *,
        parent: Optional[EntityId] = None,
        fields: Optional[Mapping[str, Any]] = None,
        entity_id: Optional[EntityId] = None,
    ) -> EntityId:
        with self._lock:
            entities = self._head.entities
            new_id = entity_id if entity_id is not None else self.allocate_id()
            if new_id in entities:
                raise ValidationError(f"Entity {new_id} already exists", target=new_id)
            if parent is not None:
                self.require(parent)
            record = EntityRecord(
                entity_id=new_id,
                name=name,
                parent=parent,
                fields=PersistentMap(_checked_fields(fields or {})),
            )
            entities = entities.set(new_id, record)
            if parent is not None:
                entities = _append_child(entities, parent, new_id)
            self._commit(entities)
            return new_id

    def set_field(self, entity_id: EntityId, path: str, value: Any) -> None:
        self.set_fields(entity_id, {path: value})

    def validate_fields(
        self, entity_id: EntityId, values: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """Check a pending write against the live record without committing."""

        record = self.require(entity_id)
        checked = _checked_fields(values)
        for path in checked:
            _ensure_not_channel(record, path)
        return checked

    def set_fields(self, entity_id: EntityId, values: Mapping[str, Any]) -> None:
        with self._lock:
            record = self.require(entity_id)
            checked = self.validate_fields(entity_id, values)
            fields = record.fields.update(checked)
            if fields is record.fields:
                return
            self._commit(self._head.entities.set(entity_id, record.with_fields(fields)))

    def remove_field(self, entity_id: EntityId, path: str) -> None:
        self.remove_fields(entity_id, (path,))

    def remove_fields(self, entity_id: EntityId, paths: Iterable[str]) -> None:
        with self._lock:
            record = self.require(entity_id)
            fields = record.fields
            for path in paths:
                if path not in fields:
                    raise ValidationError(
                        f"Entity {entity_id} has no field '{path}'",
                        target=entity_id,
                    )
                fields = fields.delete(path)
            if fields is record.fields:
                return
            self._commit(self._head.entities.set(entity_id, record.with_fields(fields)))

    def rename(self, entity_id: EntityId, name: str) -> None:
        with self._lock:
            record = self.require(entity_id)
            if record.name == name:
                return
            self._commit(
                self._head.entities.set(entity_id, replace(record, name=name))
            )

    def remove_subtree(self, entity_id: EntityId) -> Tuple[EntityId, ...]:
        with self._lock:
            record = self.require(entity_id)
            entities = self._head.entities
            removed = tuple(_walk(entities, entity_id))
            if record.parent is not None:
                entities = _remove_child(entities, record.parent, entity_id)
            for removed_id in removed:
                entities = entities.discard(removed_id)
            self._commit(entities)
            return removed

    def duplicate_subtree(
        self, source_id: EntityId, *, new_root_id: Optional[EntityId] = None
    ) -> EntityId:
        """Copy ``source_id`` and all descendants under fresh ids.

        The copy is attached to the source's parent; internal parent/child
        links are remapped onto the new ids.
        """

        with self._lock:
            source = self.require(source_id)
            entities = self._head.entities
            id_map: Dict[EntityId, EntityId] = {}
            for old_id in _walk(entities, source_id):
                if old_id == source_id and new_root_id is not None:
                    if new_root_id in entities:
                        raise ValidationError(
                            f"Entity {new_root_id} already exists", target=new_root_id
                        )
                    id_map[old_id] = new_root_id
                else:
                    id_map[old_id] = self.allocate_id()

            for old_id, new_id in id_map.items():
                original = entities[old_id]
                entities = entities.set(
                    new_id,
                    replace(
                        original,
                        entity_id=new_id,
                        name=f"{original.name}{COPY_SUFFIX}",
                        parent=(
                            source.parent
                            if old_id == source_id
                            else id_map[original.parent]  # type: ignore[index]
                        ),
                        children=tuple(id_map[child] for child in original.children),
                    ),
                )
            new_root = id_map[source_id]
            if source.parent is not None:
                entities = _append_child(entities, source.parent, new_root)
            self._commit(entities)
            return new_root

    def reparent(self, entity_id: EntityId, new_parent: Optional[EntityId]) -> None:
        with self._lock:
            record = self.require(entity_id)
            if record.parent == new_parent:
                return
            entities = self._head.entities
            if new_parent is not None:
                self.require(new_parent)
                if new_parent in set(_walk(entities, entity_id)):
                    raise ValidationError(
                        f"Cannot parent entity {entity_id} under its own descendant",
                        target=entity_id,
                    )
            if record.parent is not None:
                entities = _remove_child(entities, record.parent, entity_id)
            entities = entities.set(entity_id, replace(record, parent=new_parent))
            if new_parent is not None:
                entities = _append_child(entities, new_parent, entity_id)
            self._commit(entities)

    def checkout(self, version: StoreVersion) -> None:
        """Move the head to ``version``; later commits branch from it."""

        with self._lock:
            self._head = version

    # ----------------------------------------------------- capture / restore

    def capture(
        self,
        target: Target,
        *,
        version: Optional[StoreVersion] = None,
        include: Iterable[EntityId] = (),
    ) -> Snapshot:
        source = version or self._head
        if target.kind is TargetKind.SUBTREE:
            scope = _subtree_scope(source.entities, target.entity_id)
            scope.extend(include)
            return self._capture_ids(target, source, dict.fromkeys(scope))

        record = source.entities.get(target.entity_id)
        if record is None:
            raise ValidationError(
                f"Cannot capture {target}: entity does not exist", target=target
            )
        entries: Tuple[Tuple[Hashable, Any], ...]
        if target.kind is TargetKind.FIELD:
            entries = ((target.path, record.fields.get(target.path, ABSENT)),)
        else:
            entries = (("name", record.name), ("fields", record.fields))
        return self._snapshot(target, source, entries)

    def capture_pair(
        self, target: Target, before: StoreVersion
    ) -> Tuple[Snapshot, Snapshot]:
        """Capture ``target`` at ``before`` and at the head over one id scope."""

        with self._lock:
            after = self._head
            if target.kind is not TargetKind.SUBTREE:
                return (
                    self.capture(target, version=before),
                    self.capture(target, version=after),
                )
            scope = dict.fromkeys(
                _subtree_scope(before.entities, target.entity_id)
                + _subtree_scope(after.entities, target.entity_id)
            )
            return (
                self._capture_ids(target, before, scope),
                self._capture_ids(target, after, scope),
            )

    def restore(self, target: Target, snapshot: Snapshot) -> None:
        with span(
            "store::restore",
            logger_name=self._logger_name,
            component="store",
            metadata={"target": str(target), "tag": snapshot.tag},
        ):
            with self._lock:
                if snapshot.target != target or snapshot.tag != target.tag:
                    raise ApplyError(
                        f"Snapshot tagged '{snapshot.tag}' for {snapshot.target} "
                        f"cannot be restored into {target}",
                        target=target,
                        reason="incompatible_target",
                    )
                expected = self.schemas.version_of(snapshot.tag)
                if snapshot.schema_version != expected:
                    raise SchemaMismatch(
                        f"Snapshot '{snapshot.tag}' has schema v{snapshot.schema_version}, "
                        f"current is v{expected}",
                        tag=snapshot.tag,
                        expected=expected,
                        found=snapshot.schema_version,
                        target=target,
                    )
                restorer = self._restorers[target.kind]
                entities = restorer(self._head.entities, target, snapshot)
                if not entities.shares_root_with(self._head.entities):
                    self._commit(entities)

    def diff(self, before: Snapshot, after: Snapshot) -> SnapshotDelta:
        return diff_snapshots(before, after)

    # -------------------------------------------------------------- internals

    def _commit(self, entities: Entities) -> StoreVersion:
        self._head = StoreVersion(
            number=next(self._version_numbers),
            parent=self._head.number,
            entities=entities,
        )
        return self._head

    def _snapshot(
        self,
        target: Target,
        source: StoreVersion,
        entries: Tuple[Tuple[Hashable, Any], ...],
    ) -> Snapshot:
        return Snapshot(
            tag=target.tag,
            schema_version=self.schemas.version_of(target.tag),
            target=target,
            entries=entries,
            store_version=source.number,
        )

    def _capture_ids(
        self, target: Target, source: StoreVersion, ids: Iterable[EntityId]
    ) -> Snapshot:
        entities = source.entities
        entries = tuple((entity_id, entities.get(entity_id, ABSENT)) for entity_id in ids)
        return self._snapshot(target, source, entries)

    def _restore_field(
        self, entities: Entities, target: Target, snapshot: Snapshot
    ) -> Entities:
        record = _existing(entities, target)
        value = snapshot.as_dict().get(target.path, ABSENT)
        if value is ABSENT:
            fields = record.fields.discard(target.path)
        else:
            fields = record.fields.set(target.path, value)
        if fields is record.fields:
            return entities
        return entities.set(target.entity_id, record.with_fields(fields))

    def _restore_entity(
        self, entities: Entities, target: Target, snapshot: Snapshot
    ) -> Entities:
        record = _existing(entities, target)
        captured = snapshot.as_dict()
        updated = replace(record, name=captured["name"], fields=captured["fields"])
        if same_value(updated, record):
            return entities
        return entities.set(target.entity_id, updated)

    def _restore_subtree(
        self, entities: Entities, target: Target, snapshot: Snapshot
    ) -> Entities:
        restored = entities
        removed: List[EntityId] = []
        for entity_id, record in snapshot.entries:
            if record is ABSENT:
                if entity_id in restored:
                    removed.append(entity_id)
                    restored = restored.discard(entity_id)
            else:
                restored = restored.set(entity_id, record)
        captured = set(snapshot.keys())
        for entity_id in removed:
            orphans = [
                child
                for child in entities[entity_id].children
                if child not in captured
            ]
            if orphans:
                raise ApplyError(
                    f"Restoring {target} would orphan entities {orphans}",
                    target=target,
                    reason="dangling_reference",
                )
        for entity_id, record in snapshot.entries:
            if record is ABSENT:
                continue
            linked = list(record.children)
            if record.parent is not None:
                linked.append(record.parent)
            missing = [other for other in linked if other not in restored]
            if missing:
                raise ApplyError(
                    f"Restoring {target} references missing entities {missing}",
                    target=target,
                    reason="dangling_reference",
                )
        return restored


def _walk(entities: Entities, root: EntityId) -> List[EntityId]:
    ordered: List[EntityId] = []
    seen = set()
    stack = [root]
    while stack:
        entity_id = stack.pop()
        record = entities.get(entity_id)
        if record is None or entity_id in seen:
            continue
        seen.add(entity_id)
        ordered.append(entity_id)
        stack.extend(reversed(record.children))
    return ordered


def _subtree_scope(entities: Entities, root: EntityId) -> List[EntityId]:
    scope = _walk(entities, root) or [root]
    record = entities.get(root)
    if record is not None and record.parent is not None:
        scope.append(record.parent)
    return scope


def _existing(entities: Entities, target: Target) -> EntityRecord:
    record = entities.get(target.entity_id)
    if record is None:
        raise ApplyError(
            f"{target} no longer exists", target=target, reason="missing_target"
        )
    return record


def _append_child(entities: Entities, parent: EntityId, child: EntityId) -> Entities:
    record = entities[parent]
    if child in record.children:
        return entities
    return entities.set(parent, record.with_children(record.children + (child,)))


def _remove_child(entities: Entities, parent: EntityId, child: EntityId) -> Entities:
    record = entities.get(parent)
    if record is None or child not in record.children:
        return entities
    children = tuple(existing for existing in record.children if existing != child)
    return entities.set(parent, record.with_children(children))


def _checked_fields(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        ensure_field_path(path): ensure_value(value, path=path)
        for path, value in values.items()
    }


def _ensure_not_channel(record: EntityRecord, path: str) -> None:
    segments = path.split(".")
    for end in range(1, len(segments)):
        prefix = ".".join(segments[:end])
        if prefix in record.fields and is_composite(record.fields[prefix]):
            raise ValidationError(
                f"'{path}' addresses a channel of multi-component field '{prefix}'; "
                f"write '{prefix}' as a whole value",
                target=record.entity_id,
            )


__all__ = [
    "COPY_SUFFIX",
    "SnapshotStore",
    "StateProvider",
    "StoreVersion",
]
