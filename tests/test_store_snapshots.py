import pytest

from cow_history.errors import ApplyError, SchemaMismatch, ValidationError
from cow_history.store import (
    ABSENT,
    COPY_SUFFIX,
    DEFAULT_TRANSFORM,
    Quaternion,
    SnapshotStore,
    Target,
    Vec3,
)


def make_store() -> SnapshotStore:
    return SnapshotStore()


def make_entity(store: SnapshotStore, name: str = "Cube", **kwargs) -> int:
    return store.spawn(name, fields=dict(DEFAULT_TRANSFORM), **kwargs)


def test_mutations_commit_new_versions_and_keep_old_ones() -> None:
    store = make_store()
    entity = make_entity(store)
    first = store.version

    store.set_field(entity, "transform.position", Vec3(1.0, 0.0, 0.0))

    assert store.version is not first
    assert store.version.parent == first.number
    assert store.get(entity, version=first).fields["transform.position"] == Vec3()
    assert store.get(entity).fields["transform.position"] == Vec3(1.0, 0.0, 0.0)


def test_field_capture_and_restore() -> None:
    store = make_store()
    entity = make_entity(store)
    target = Target.field(entity, "transform.scale")
    before = store.capture(target)

    store.set_field(entity, "transform.scale", Vec3(2.0, 2.0, 2.0))
    store.restore(target, before)

    assert store.get(entity).fields["transform.scale"] == Vec3(1.0, 1.0, 1.0)
    assert before.tag == "field:transform.scale"
    assert before.schema_version == 1


def test_field_capture_of_missing_field_restores_absence() -> None:
    store = make_store()
    entity = make_entity(store)
    target = Target.field(entity, "light.intensity")
    before = store.capture(target)

    store.set_field(entity, "light.intensity", 3.5)
    store.restore(target, before)

    assert before.as_dict() == {"light.intensity": ABSENT}
    assert "light.intensity" not in store.get(entity).fields


def test_channel_paths_are_rejected() -> None:
    store = make_store()
    entity = make_entity(store)

    with pytest.raises(ValidationError):
        store.set_field(entity, "transform.rotation.x", 0.5)
    assert store.get(entity).fields["transform.rotation"] == Quaternion.identity()


def test_mutable_values_are_rejected() -> None:
    store = make_store()
    entity = make_entity(store)

    with pytest.raises(ValidationError):
        store.set_field(entity, "tags", ["a", "b"])
    store.set_field(entity, "tags", ("a", "b"))
    assert store.get(entity).fields["tags"] == ("a", "b")


def test_restore_rejects_incompatible_target() -> None:
    store = make_store()
    entity = make_entity(store)
    snapshot = store.capture(Target.field(entity, "transform.scale"))

    with pytest.raises(ApplyError) as excinfo:
        store.restore(Target.field(entity, "transform.position"), snapshot)
    assert excinfo.value.reason == "incompatible_target"


def test_restore_missing_target_raises_apply_error() -> None:
    store = make_store()
    entity = make_entity(store)
    target = Target.entity(entity)
    snapshot = store.capture(target)
    store.remove_subtree(entity)

    with pytest.raises(ApplyError) as excinfo:
        store.restore(target, snapshot)
    assert excinfo.value.reason == "missing_target"


def test_restore_checks_schema_version() -> None:
    store = make_store()
    entity = make_entity(store)
    target = Target.field(entity, "transform.position")
    snapshot = store.capture(target)
    store.schemas.bump(target.tag)

    with pytest.raises(SchemaMismatch) as excinfo:
        store.restore(target, snapshot)
    assert excinfo.value.expected == 2
    assert excinfo.value.found == 1
    assert excinfo.value.tag == "field:transform.position"


def test_capture_pair_covers_structural_changes() -> None:
    store = make_store()
    parent = make_entity(store, "Parent")
    child = make_entity(store, "Child", parent=parent)
    start = store.version

    store.remove_subtree(child)
    before, after = store.capture_pair(Target.subtree(child), start)

    assert before.keys() == after.keys() == (child, parent)
    assert after.as_dict()[child] is ABSENT
    store.restore(Target.subtree(child), before)
    assert store.get(parent).children == (child,)
    assert store.get(child).parent == parent


def test_subtree_restore_refuses_to_orphan_entities() -> None:
    store = make_store()
    entity = store.allocate_id()
    target = Target.subtree(entity)
    empty = store.capture(target)
    store.spawn("Parent", entity_id=entity)
    child = make_entity(store, "Child", parent=entity)
    head = store.version

    with pytest.raises(ApplyError) as excinfo:
        store.restore(target, empty)
    assert excinfo.value.reason == "dangling_reference"
    assert empty.as_dict() == {entity: ABSENT}
    assert store.version is head
    assert store.get(child).parent == entity


def test_duplicate_subtree_remaps_ids_and_names() -> None:
    store = make_store()
    root = make_entity(store, "Root")
    first = make_entity(store, "A", parent=root)
    make_entity(store, "B", parent=root)

    copy = store.duplicate_subtree(root)
    copied = store.descendants(copy)

    assert len(copied) == 3
    assert store.get(copy).name == f"Root{COPY_SUFFIX}"
    assert store.get(copied[1]).name == f"A{COPY_SUFFIX}"
    assert store.get(copied[1]).parent == copy
    assert first not in copied


def test_reparent_rejects_cycles() -> None:
    store = make_store()
    root = make_entity(store, "Root")
    child = make_entity(store, "Child", parent=root)

    with pytest.raises(ValidationError):
        store.reparent(root, child)
    store.reparent(child, None)
    assert set(store.roots()) == {root, child}
    assert store.get(root).children == ()
