"""Editing session: transaction scoping, gestures and the UI-facing surface."""

from __future__ import annotations

import threading
import time
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Tuple

from cow_history.errors import ValidationError
from cow_history.runtime import telemetry
from cow_history.runtime.config import HistoryConfig
from cow_history.store import Snapshot, SnapshotStore, StoreVersion, Target

from .coalescer import Coalescer, SubmitResult
from .history import History, HistoryEntry, HistoryStatus
from .operation import EditKind, Operation, OperationGroup


@dataclass
class _OpenTransaction:
    transaction_id: int
    description: str
    operations: List[Operation] = field(default_factory=list)
    depth: int = 1


@dataclass
class EditRecord:
    """Filled in when an ``edit`` block exits; ``result`` is None inside a
    transaction or when the block changed nothing."""

    target: Target
    description: str
    result: Optional[SubmitResult] = None


class EditingSession:
    """Session-scoped owner of one History, held by the editing context.

    All mutation goes through the session lock, so exactly one logical
    writer drives the history at a time.
    """

    def __init__(
        self,
        store: SnapshotStore,
        *,
        config: Optional[HistoryConfig] = None,
        history: Optional[History] = None,
        coalescer: Optional[Coalescer] = None,
        clock: Optional[Callable[[], float]] = None,
        logger_name: Optional[str] = None,
    ) -> None:
        self.store = store
        self.config = config or HistoryConfig.from_env()
        self._logger_name = logger_name
        self.history = history or History(
            store, config=self.config, logger_name=logger_name
        )
        self.coalescer = coalescer or Coalescer(
            self.history,
            window_ms=self.config.merge_window_ms,
            clock=clock or time.monotonic,
            enabled=self.config.coalesce,
        )
        self._lock = threading.RLock()
        self._open: Optional[_OpenTransaction] = None

    # ---------------------------------------------------------- transactions

    @property
    def in_transaction(self) -> bool:
        return self._open is not None

    def begin_transaction(self, description: str) -> int:
        """Open a transaction; nested calls join the outermost one."""

        with self._lock:
            if self._open is not None:
                self._open.depth += 1
                return self._open.transaction_id
            self._open = _OpenTransaction(
                transaction_id=self.history.next_transaction_id(),
                description=description,
            )
            return self._open.transaction_id

    def end_transaction(self) -> Optional[SubmitResult]:
        with self._lock:
            pending = self._require_open()
            pending.depth -= 1
            if pending.depth:
                return None
            self._open = None
            if not pending.operations:
                telemetry.record_event(
                    "session.empty_transaction",
                    level="debug",
                    data={"description": pending.description},
                    logger_name=self._logger_name,
                )
                return None
            group = OperationGroup(
                transaction_id=pending.transaction_id,
                description=pending.description,
                operations=tuple(pending.operations),
                committed_at=self.coalescer.clock(),
            )
            return self.coalescer.submit(group)

    def cancel_transaction(self) -> None:
        """Abandon the open transaction and put recorded edits back."""

        with self._lock:
            pending = self._require_open()
            self._open = None
            group = OperationGroup(
                transaction_id=pending.transaction_id,
                description=pending.description,
                operations=tuple(pending.operations),
            )
            group.revert_all(self.store)
            telemetry.record_event(
                "session.cancel",
                level="info",
                data={
                    "description": pending.description,
                    "operations": len(pending.operations),
                },
                logger_name=self._logger_name,
            )

    def transaction(self, description: str) -> "Transaction":
        return Transaction(self, description)

    # ----------------------------------------------------------------- edits

    def submit(
        self,
        target: Target,
        before: Snapshot,
        after: Snapshot,
        description: str,
        *,
        kind: EditKind = EditKind.CUSTOM,
    ) -> Optional[SubmitResult]:
        """Consume one ``(target, before, after, description)`` edit."""

        operation = Operation(target, before, after, description, kind)
        if operation.is_noop:
            telemetry.record_event(
                "session.noop_edit",
                level="debug",
                data={"target": str(target), "description": description},
                logger_name=self._logger_name,
            )
            return None
        with self._lock:
            if self._open is not None:
                self._open.operations.append(operation)
                return None
            group = OperationGroup(
                transaction_id=self.history.next_transaction_id(),
                description=description,
                operations=(operation,),
                committed_at=self.coalescer.clock(),
            )
            return self.coalescer.submit(group)

    @contextmanager
    def edit(
        self,
        target: Target,
        description: str,
        *,
        kind: EditKind = EditKind.CUSTOM,
    ) -> Iterator[EditRecord]:
        """Run live mutations of ``target`` and record them as one operation.

        Before/after are captured synchronously when the block exits. A
        failure inside the block puts ``target`` back and aborts any open
        transaction.
        """

        record = EditRecord(target=target, description=description)
        with self._lock:
            start = self.store.version
            try:
                yield record
            except Exception:
                self._put_back(target, start)
                if self._open is not None:
                    self.cancel_transaction()
                raise
            before, after = self.store.capture_pair(target, start)
            record.result = self.submit(target, before, after, description, kind=kind)

    def gesture(
        self,
        target: Target,
        description: str,
        *,
        kind: EditKind = EditKind.SET_FIELD,
    ) -> "Gesture":
        return Gesture(self, target, description, kind)

    # ------------------------------------------------------ history surface

    def undo(self) -> Optional[OperationGroup]:
        with self._lock:
            self._ensure_idle("undo")
            return self.history.undo()

    def redo(self) -> Optional[OperationGroup]:
        with self._lock:
            self._ensure_idle("redo")
            return self.history.redo()

    def can_undo(self) -> bool:
        return self.history.can_undo()

    def can_redo(self) -> bool:
        return self.history.can_redo()

    def peek_undo_description(self) -> Optional[str]:
        return self.history.peek_undo_description()

    def peek_redo_description(self) -> Optional[str]:
        return self.history.peek_redo_description()

    def list(self, limit: Optional[int] = None) -> Tuple[HistoryEntry, ...]:
        return self.history.list(limit)

    def save(self) -> None:
        self.history.save()

    def is_clean(self) -> bool:
        return self.history.is_clean()

    @property
    def status(self) -> HistoryStatus:
        return self.history.status

    # -------------------------------------------------------------- internals

    def _require_open(self) -> _OpenTransaction:
        if self._open is None:
            raise ValidationError("No transaction is open")
        return self._open

    def _ensure_idle(self, action: str) -> None:
        if self._open is not None:
            raise ValidationError(
                f"Cannot {action} while transaction '{self._open.description}' is open"
            )

    def _put_back(self, target: Target, start: StoreVersion) -> None:
        if self.store.version is start:
            return
        before, _ = self.store.capture_pair(target, start)
        self.store.restore(target, before)


class Transaction(AbstractContextManager["Transaction"]):
    """``with`` form of begin/end; an exception cancels the whole group."""

    def __init__(self, session: EditingSession, description: str) -> None:
        self.session = session
        self.description = description
        self.result: Optional[SubmitResult] = None
        self._span_cm: Optional[AbstractContextManager[object]] = None

    def __enter__(self) -> "Transaction":
        self._span_cm = telemetry.span(
            name=f"session::{self.description}",
            component="session",
            metadata={"transaction": self.description},
        )
        self._span_cm.__enter__()
        self.session.begin_transaction(self.description)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if not self.session.in_transaction:
                # an inner block already cancelled the shared transaction
                self.result = None
            elif exc_type is None:
                self.result = self.session.end_transaction()
            else:
                self.session.cancel_transaction()
        finally:
            if self._span_cm is not None:
                self._span_cm.__exit__(exc_type, exc, tb)
        return False


class Gesture(AbstractContextManager["Gesture"]):
    """Continuous interaction (drag, slider) committed or cancelled once.

    ``update`` mutates live state for preview without touching history;
    ``commit`` records start-to-current as one edit; ``cancel`` restores the
    state captured when the gesture began and records nothing.
    """

    def __init__(
        self,
        session: EditingSession,
        target: Target,
        description: str,
        kind: EditKind,
    ) -> None:
        self.session = session
        self.target = target
        self.description = description
        self.kind = kind
        with session._lock:
            self.start_version = session.store.version
            self.start = session.store.capture(target)
        self.active = True

    def update(self, mutate: Callable[[SnapshotStore], None]) -> None:
        self._ensure_active()
        mutate(self.session.store)

    def commit(self) -> Optional[SubmitResult]:
        with self.session._lock:
            self._ensure_active()
            self.active = False
            store = self.session.store
            before, after = store.capture_pair(self.target, self.start_version)
            return self.session.submit(
                self.target, before, after, self.description, kind=self.kind
            )

    def cancel(self) -> None:
        with self.session._lock:
            self._ensure_active()
            self.active = False
            store = self.session.store
            before, _ = store.capture_pair(self.target, self.start_version)
            store.restore(self.target, before)
        telemetry.record_event(
            "gesture.cancel",
            level="debug",
            data={"target": str(self.target), "description": self.description},
        )

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self.active:
            if exc_type is None:
                self.commit()
            else:
                self.cancel()
        return False

    def _ensure_active(self) -> None:
        if not self.active:
            raise ValidationError(
                f"Gesture '{self.description}' already finished", target=self.target
            )


__all__ = ["EditRecord", "EditingSession", "Gesture", "Transaction"]
