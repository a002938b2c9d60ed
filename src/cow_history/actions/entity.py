"""Structural verbs: spawn, delete, duplicate, reparent and rename entities."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from cow_history.errors import ValidationError
from cow_history.history import EditKind, EditingSession
from cow_history.store import DEFAULT_TRANSFORM, EntityId, Target


def spawn_entity(
    session: EditingSession,
    name: str = "New Entity",
    *,
    parent: Optional[EntityId] = None,
    fields: Optional[Mapping[str, Any]] = None,
    description: str = "Spawn Entity",
) -> EntityId:
    """Create an entity carrying the default transform plus ``fields``."""

    store = session.store
    if parent is not None:
        store.require(parent)
    initial = dict(DEFAULT_TRANSFORM)
    initial.update(fields or {})
    entity_id = store.allocate_id()
    with session.edit(Target.subtree(entity_id), description, kind=EditKind.SPAWN):
        store.spawn(name, parent=parent, fields=initial, entity_id=entity_id)
    return entity_id


def delete_entity(
    session: EditingSession,
    entity_id: EntityId,
    *,
    description: str = "Delete Entity",
) -> None:
    session.store.require(entity_id)
    with session.edit(Target.subtree(entity_id), description, kind=EditKind.DELETE):
        session.store.remove_subtree(entity_id)


def duplicate_entity(
    session: EditingSession,
    entity_id: EntityId,
    *,
    description: str = "Duplicate Entity",
) -> EntityId:
    """Copy ``entity_id`` with its descendants next to the original."""

    store = session.store
    store.require(entity_id)
    copy_id = store.allocate_id()
    with session.edit(Target.subtree(copy_id), description, kind=EditKind.DUPLICATE):
        store.duplicate_subtree(entity_id, new_root_id=copy_id)
    return copy_id


def reparent_entity(
    session: EditingSession,
    entity_id: EntityId,
    new_parent: Optional[EntityId],
    *,
    description: str = "Reparent Entity",
) -> None:
    store = session.store
    record = store.require(entity_id)
    if new_parent is not None:
        store.require(new_parent)
        if new_parent in store.descendants(entity_id):
            raise ValidationError(
                f"Cannot parent entity {entity_id} under its own descendant",
                target=entity_id,
            )
    if record.parent == new_parent:
        return
    with session.edit(Target.subtree(entity_id), description, kind=EditKind.REPARENT):
        store.reparent(entity_id, new_parent)


def rename_entity(
    session: EditingSession,
    entity_id: EntityId,
    name: str,
    *,
    description: str = "Rename Entity",
) -> None:
    if not name.strip():
        raise ValidationError("Entity name cannot be empty", target=entity_id)
    session.store.require(entity_id)
    with session.edit(Target.entity(entity_id), description, kind=EditKind.RENAME):
        session.store.rename(entity_id, name)


__all__ = [
    "delete_entity",
    "duplicate_entity",
    "rename_entity",
    "reparent_entity",
    "spawn_entity",
]
