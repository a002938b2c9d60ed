import threading
from typing import List

import pytest

from cow_history.actions import set_position, set_scale
from cow_history.errors import SchemaMismatch
from cow_history.history import EditingSession, EvictionNotice, History, HistoryStatus
from cow_history.runtime import HistoryConfig
from cow_history.store import DEFAULT_TRANSFORM, SnapshotStore, Vec3

POSITION = "transform.position"


def make_session(**config) -> EditingSession:
    config.setdefault("coalesce", False)
    return EditingSession(SnapshotStore(), config=HistoryConfig(**config))


def make_entity(session: EditingSession) -> int:
    return session.store.spawn("Cube", fields=dict(DEFAULT_TRANSFORM))


def position(session: EditingSession, entity: int) -> Vec3:
    return session.store.get(entity).fields[POSITION]


def test_position_undo_redo_sequence() -> None:
    session = make_session()
    entity = make_entity(session)

    set_position(session, entity, Vec3(1, 0, 0))
    set_position(session, entity, Vec3(2, 0, 0))

    session.undo()
    assert position(session, entity) == Vec3(1, 0, 0)
    session.undo()
    assert position(session, entity) == Vec3(0, 0, 0)
    session.redo()
    assert position(session, entity) == Vec3(1, 0, 0)
    session.redo()
    assert position(session, entity) == Vec3(2, 0, 0)
    assert session.redo() is None


def test_nothing_to_undo_returns_none() -> None:
    session = make_session()

    assert session.undo() is None
    assert session.redo() is None
    assert session.peek_undo_description() is None


def test_new_edit_discards_redo_branch() -> None:
    session = make_session()
    entity = make_entity(session)
    set_position(session, entity, Vec3(1, 0, 0))
    set_position(session, entity, Vec3(2, 0, 0))

    session.undo()
    set_scale(session, entity, Vec3(3, 3, 3))

    assert not session.can_redo()
    assert [entry.description for entry in session.list()] == [
        "Set position",
        "Set scale",
    ]


def test_redo_after_undo_matches_original_after_state() -> None:
    session = make_session()
    entity = make_entity(session)
    set_position(session, entity, Vec3(5, 6, 7))
    recorded = session.history.top.single

    session.undo()
    session.redo()

    assert session.store.capture(recorded.target).entries == recorded.after.entries


def test_memory_budget_evicts_oldest_entries() -> None:
    session = make_session()
    entity = make_entity(session)
    set_position(session, entity, Vec3(1, 0, 0))
    cost = session.history.top.cost
    history = History(session.store, budget_bytes=cost * 3)
    session = EditingSession(
        session.store, config=HistoryConfig(coalesce=False), history=history
    )
    notices: List[EvictionNotice] = []
    history.subscribe(notices.append)

    for x in (2, 3, 4, 5):
        set_position(session, entity, Vec3(x, 0, 0))

    assert len(notices) == 1
    assert notices[0].evicted == 1
    assert notices[0].descriptions == ("Set position",)
    assert history.memory_used <= history.budget_bytes
    while session.undo() is not None:
        pass
    assert position(session, entity) == Vec3(2, 0, 0)


def test_max_depth_caps_entry_count() -> None:
    session = make_session(max_depth=2)
    entity = make_entity(session)

    for x in (1, 2, 3):
        set_position(session, entity, Vec3(x, 0, 0))

    assert session.history.stats().undo_count == 2


def test_save_point_tracks_clean_state() -> None:
    session = make_session()
    entity = make_entity(session)
    assert session.is_clean()

    set_position(session, entity, Vec3(1, 0, 0))
    assert session.status is HistoryStatus.DIRTY
    session.save()
    assert session.is_clean()

    set_position(session, entity, Vec3(2, 0, 0))
    assert not session.is_clean()
    session.undo()
    assert session.is_clean()
    session.undo()
    assert not session.is_clean()
    session.redo()
    assert session.is_clean()


def test_save_point_lost_when_its_branch_is_discarded() -> None:
    session = make_session()
    entity = make_entity(session)
    set_position(session, entity, Vec3(1, 0, 0))
    set_position(session, entity, Vec3(2, 0, 0))
    session.save()

    session.undo()
    set_position(session, entity, Vec3(9, 0, 0))

    assert session.history.save_index is None
    assert not session.is_clean()
    session.undo()
    assert not session.is_clean()


def test_schema_mismatch_isolates_only_the_affected_entry() -> None:
    session = make_session()
    entity = make_entity(session)
    set_position(session, entity, Vec3(1, 0, 0))
    set_scale(session, entity, Vec3(2, 2, 2))
    session.store.schemas.bump(f"field:{POSITION}")

    assert session.undo().description == "Set scale"
    with pytest.raises(SchemaMismatch):
        session.undo()

    assert position(session, entity) == Vec3(1, 0, 0)
    assert session.can_undo()
    assert session.peek_undo_description() == "Set position"
    assert [entry.unusable for entry in session.list()] == [True, False]
    with pytest.raises(SchemaMismatch):
        session.undo()

    assert session.redo().description == "Set scale"
    assert session.store.get(entity).fields["transform.scale"] == Vec3(2, 2, 2)


def test_list_reports_positions_and_save_point() -> None:
    session = make_session()
    entity = make_entity(session)
    for x in (1, 2, 3):
        set_position(session, entity, Vec3(x, 0, 0))
    session.undo()
    session.save()

    entries = session.list()

    assert [(entry.side, entry.position) for entry in entries] == [
        ("undo", 1),
        ("undo", 2),
        ("redo", 3),
    ]
    assert [entry.is_save_point for entry in entries] == [False, True, False]
    assert [entry.position for entry in session.list(1)] == [2, 3]


def test_clear_drops_everything() -> None:
    session = make_session()
    entity = make_entity(session)
    set_position(session, entity, Vec3(1, 0, 0))
    session.save()

    session.history.clear()

    assert not session.can_undo()
    assert session.history.memory_used == 0
    assert session.is_clean()


def test_readers_see_consistent_state_while_a_writer_runs() -> None:
    session = make_session()
    entity = make_entity(session)
    history = session.history
    failures: List[str] = []
    done = threading.Event()

    def write() -> None:
        try:
            for step in range(200):
                set_position(session, entity, Vec3(float(step + 1), 0.0, 0.0))
                if step % 3 == 0:
                    session.undo()
        finally:
            done.set()

    def read() -> None:
        while not done.is_set():
            state = history.state()
            retained = state.undo_stack + state.redo_stack
            if state.memory_used != sum(group.cost for group in retained):
                failures.append("memory total does not match retained groups")
            entries = history.list()
            positions = [entry.position for entry in entries]
            if positions != list(range(1, len(entries) + 1)):
                failures.append(f"positions out of order: {positions}")

    writer = threading.Thread(target=write)
    readers = [threading.Thread(target=read) for _ in range(2)]
    for thread in readers:
        thread.start()
    writer.start()
    writer.join()
    for thread in readers:
        thread.join()

    assert failures == []
    assert len(history.list()) == history.stats().undo_count + history.stats().redo_count
