"""Editor verbs that mutate the store and record one operation each."""

from .entity import (
    delete_entity,
    duplicate_entity,
    rename_entity,
    reparent_entity,
    spawn_entity,
)
from .fields import (
    add_component,
    remove_component,
    remove_field,
    set_field,
    set_position,
    set_rotation,
    set_scale,
)

__all__ = [
    "spawn_entity",
    "delete_entity",
    "duplicate_entity",
    "reparent_entity",
    "rename_entity",
    "set_field",
    "remove_field",
    "set_position",
    "set_rotation",
    "set_scale",
    "add_component",
    "remove_component",
]
