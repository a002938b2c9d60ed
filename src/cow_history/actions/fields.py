"""Property verbs: field writes, transform helpers and components.

Components are field namespaces: ``light.color`` and ``light.intensity``
belong to the ``light`` component of their entity.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from cow_history.errors import ValidationError
from cow_history.history import EditKind, EditingSession
from cow_history.store import EntityId, Quaternion, Target, Vec3, ensure_field_path

POSITION = "transform.position"
ROTATION = "transform.rotation"
SCALE = "transform.scale"


def set_field(
    session: EditingSession,
    entity_id: EntityId,
    path: str,
    value: Any,
    *,
    description: Optional[str] = None,
) -> None:
    """Write one whole field value as a single recorded edit.

    Channel paths such as ``transform.rotation.x`` are rejected before any
    state changes.
    """

    session.store.validate_fields(entity_id, {path: value})
    with session.edit(
        Target.field(entity_id, path),
        description or f"Set {path}",
        kind=EditKind.SET_FIELD,
    ):
        session.store.set_field(entity_id, path, value)


def remove_field(
    session: EditingSession,
    entity_id: EntityId,
    path: str,
    *,
    description: Optional[str] = None,
) -> None:
    record = session.store.require(entity_id)
    if path not in record.fields:
        raise ValidationError(
            f"Entity {entity_id} has no field '{path}'", target=entity_id
        )
    with session.edit(
        Target.field(entity_id, path),
        description or f"Remove {path}",
        kind=EditKind.REMOVE_FIELD,
    ):
        session.store.remove_field(entity_id, path)


def set_position(
    session: EditingSession, entity_id: EntityId, position: Vec3
) -> None:
    set_field(session, entity_id, POSITION, position, description="Set position")


def set_rotation(
    session: EditingSession, entity_id: EntityId, rotation: Quaternion
) -> None:
    set_field(session, entity_id, ROTATION, rotation, description="Set rotation")


def set_scale(session: EditingSession, entity_id: EntityId, scale: Vec3) -> None:
    set_field(session, entity_id, SCALE, scale, description="Set scale")


def add_component(
    session: EditingSession,
    entity_id: EntityId,
    component: str,
    values: Mapping[str, Any],
    *,
    description: Optional[str] = None,
) -> None:
    """Attach ``component`` with its initial ``values`` keyed by field name."""

    store = session.store
    ensure_field_path(component)
    record = store.require(entity_id)
    if record.component_fields(component):
        raise ValidationError(
            f"Entity {entity_id} already has component '{component}'",
            target=entity_id,
        )
    if not values:
        raise ValidationError(
            f"Component '{component}' needs at least one field", target=entity_id
        )
    prefixed = {f"{component}.{name}": value for name, value in values.items()}
    store.validate_fields(entity_id, prefixed)
    with session.edit(
        Target.entity(entity_id),
        description or f"Add {component}",
        kind=EditKind.ADD_COMPONENT,
    ):
        store.set_fields(entity_id, prefixed)


def remove_component(
    session: EditingSession,
    entity_id: EntityId,
    component: str,
    *,
    description: Optional[str] = None,
) -> None:
    store = session.store
    paths = store.require(entity_id).component_fields(component)
    if not paths:
        raise ValidationError(
            f"Entity {entity_id} has no component '{component}'", target=entity_id
        )
    with session.edit(
        Target.entity(entity_id),
        description or f"Remove {component}",
        kind=EditKind.REMOVE_COMPONENT,
    ):
        store.remove_fields(entity_id, paths)


__all__ = [
    "POSITION",
    "ROTATION",
    "SCALE",
    "add_component",
    "remove_component",
    "remove_field",
    "set_field",
    "set_position",
    "set_rotation",
    "set_scale",
]
