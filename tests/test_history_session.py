import threading

import pytest

from cow_history.actions import set_field, set_position
from cow_history.errors import ValidationError
from cow_history.history import EditKind, EditingSession
from cow_history.runtime import HistoryConfig
from cow_history.store import DEFAULT_TRANSFORM, Quaternion, SnapshotStore, Target, Vec3

POSITION = "transform.position"


def make_session() -> EditingSession:
    return EditingSession(SnapshotStore(), config=HistoryConfig(coalesce=False))


def make_entity(session: EditingSession) -> int:
    return session.store.spawn("Cube", fields=dict(DEFAULT_TRANSFORM))


def fields(session: EditingSession, entity: int):
    return session.store.get(entity).fields


def test_transaction_records_one_group() -> None:
    session = make_session()
    entity = make_entity(session)

    with session.transaction("Move and scale") as transaction:
        set_position(session, entity, Vec3(1, 0, 0))
        set_field(session, entity, "transform.scale", Vec3(2, 2, 2))

    assert transaction.result is not None
    assert len(transaction.result.group) == 2
    assert len(session.list()) == 1
    session.undo()
    assert fields(session, entity)[POSITION] == Vec3(0, 0, 0)
    assert fields(session, entity)["transform.scale"] == Vec3(1, 1, 1)


def test_failed_transaction_leaves_state_and_history_untouched() -> None:
    session = make_session()
    entity = make_entity(session)
    start = session.store.version.entities

    with pytest.raises(ValidationError):
        with session.transaction("Broken batch"):
            set_position(session, entity, Vec3(1, 0, 0))
            set_field(session, entity, "transform.rotation.x", 0.5)
            set_position(session, entity, Vec3(3, 0, 0))

    assert not session.can_undo()
    assert not session.in_transaction
    assert session.store.version.entities == start


def test_nested_transactions_join_the_outer_one() -> None:
    session = make_session()
    entity = make_entity(session)

    outer = session.begin_transaction("Outer")
    inner = session.begin_transaction("Inner")
    set_position(session, entity, Vec3(1, 0, 0))
    assert session.end_transaction() is None
    set_position(session, entity, Vec3(2, 0, 0))
    result = session.end_transaction()

    assert inner == outer
    assert result.group.description == "Outer"
    assert len(session.list()) == 1


def test_empty_transaction_pushes_nothing() -> None:
    session = make_session()

    session.begin_transaction("Nothing")
    assert session.end_transaction() is None
    assert not session.can_undo()
    with pytest.raises(ValidationError):
        session.end_transaction()


def test_undo_is_refused_while_a_transaction_is_open() -> None:
    session = make_session()
    entity = make_entity(session)
    set_position(session, entity, Vec3(1, 0, 0))

    session.begin_transaction("Pending")
    with pytest.raises(ValidationError):
        session.undo()
    session.cancel_transaction()
    assert session.undo() is not None


def test_edit_block_records_before_and_after() -> None:
    session = make_session()
    entity = make_entity(session)
    target = Target.field(entity, POSITION)

    with session.edit(target, "Snap to grid", kind=EditKind.SET_FIELD) as record:
        session.store.set_field(entity, POSITION, Vec3(4, 0, 0))

    assert record.result is not None
    assert record.result.group.single.before.as_dict() == {POSITION: Vec3(0, 0, 0)}
    assert session.peek_undo_description() == "Snap to grid"


def test_edit_block_failure_puts_state_back() -> None:
    session = make_session()
    entity = make_entity(session)

    with pytest.raises(RuntimeError):
        with session.edit(Target.entity(entity), "Explode"):
            session.store.set_field(entity, POSITION, Vec3(9, 9, 9))
            raise RuntimeError("tool crashed")

    assert fields(session, entity)[POSITION] == Vec3(0, 0, 0)
    assert not session.can_undo()


def test_no_change_edit_is_dropped() -> None:
    session = make_session()
    entity = make_entity(session)

    set_position(session, entity, Vec3(0.0, 0.0, 0.0))

    assert not session.can_undo()


def test_gesture_commit_records_single_step() -> None:
    session = make_session()
    entity = make_entity(session)
    gesture = session.gesture(Target.field(entity, POSITION), "Drag")

    for x in (1, 2, 3):
        gesture.update(lambda store, x=x: store.set_field(entity, POSITION, Vec3(x, 0, 0)))
    gesture.commit()

    assert len(session.list()) == 1
    session.undo()
    assert fields(session, entity)[POSITION] == Vec3(0, 0, 0)
    with pytest.raises(ValidationError):
        gesture.commit()


def test_gesture_cancel_restores_start_and_records_nothing() -> None:
    session = make_session()
    entity = make_entity(session)
    rotation = Quaternion.from_axis_angle(Vec3(0, 1, 0), 90.0)

    gesture = session.gesture(Target.field(entity, "transform.rotation"), "Rotate")
    gesture.update(lambda store: store.set_field(entity, "transform.rotation", rotation))
    gesture.cancel()

    assert fields(session, entity)["transform.rotation"] == Quaternion.identity()
    assert not session.can_undo()


def test_gesture_context_cancels_on_error() -> None:
    session = make_session()
    entity = make_entity(session)

    with pytest.raises(KeyError):
        with session.gesture(Target.field(entity, POSITION), "Drag") as gesture:
            gesture.update(lambda store: store.set_field(entity, POSITION, Vec3(7, 0, 0)))
            raise KeyError("pointer lost")

    assert fields(session, entity)[POSITION] == Vec3(0, 0, 0)
    assert not session.can_undo()


def test_numeric_type_change_is_recorded_and_undone_exactly() -> None:
    session = make_session()
    entity = session.store.spawn("Lamp", fields={"light.intensity": 1, "light.bias": 0.0})

    set_field(session, entity, "light.intensity", 1.0)
    set_field(session, entity, "light.bias", -0.0)

    assert len(session.list()) == 2
    session.undo()
    session.undo()
    assert type(fields(session, entity)["light.intensity"]) is int
    assert str(fields(session, entity)["light.bias"]) == "0.0"


def test_gesture_inside_transaction_joins_the_group() -> None:
    session = make_session()
    entity = make_entity(session)

    with session.transaction("Place and rename"):
        gesture = session.gesture(Target.field(entity, POSITION), "Drag")
        gesture.update(lambda store: store.set_field(entity, POSITION, Vec3(4.0, 0.0, 0.0)))
        assert gesture.commit() is None
        with session.edit(Target.entity(entity), "Rename", kind=EditKind.RENAME):
            session.store.rename(entity, "Placed")

    assert [entry.description for entry in session.list()] == ["Place and rename"]
    assert session.list()[0].operation_count == 2
    session.undo()
    assert fields(session, entity)[POSITION] == Vec3(0, 0, 0)
    assert session.store.get(entity).name == "Cube"


def test_inner_transaction_failure_handled_inside_outer_block() -> None:
    session = make_session()
    entity = make_entity(session)

    with session.transaction("Outer") as outer:
        try:
            with session.transaction("Inner"):
                set_position(session, entity, Vec3(1.0, 0.0, 0.0))
                raise RuntimeError("inner step failed")
        except RuntimeError:
            pass

    assert outer.result is None
    assert not session.in_transaction
    assert not session.can_undo()
    assert fields(session, entity)[POSITION] == Vec3(0, 0, 0)


def test_gesture_commit_waits_for_the_session_writer() -> None:
    session = make_session()
    entity = make_entity(session)
    gesture = session.gesture(Target.field(entity, POSITION), "Drag")
    gesture.update(lambda store: store.set_field(entity, POSITION, Vec3(5.0, 0.0, 0.0)))

    with session._lock:
        committer = threading.Thread(target=gesture.commit)
        committer.start()
        committer.join(timeout=0.2)
        assert committer.is_alive()
        assert session.list() == ()
    committer.join()

    assert [entry.description for entry in session.list()] == ["Drag"]
