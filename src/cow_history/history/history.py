"""Undo/redo stack machine with save-point tracking and memory eviction."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from cow_history.errors import ApplyError, SchemaMismatch
from cow_history.runtime import telemetry
from cow_history.runtime.config import HistoryConfig
from cow_history.store import StateProvider

from .operation import OperationGroup


class HistoryStatus(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"


@dataclass(frozen=True, slots=True)
class EvictionNotice:
    """Oldest entries were dropped to honour the budget; undo stops earlier now."""

    evicted: int
    freed_bytes: int
    descriptions: Tuple[str, ...]
    memory_used: int
    budget_bytes: int

    @property
    def message(self) -> str:
        return (
            f"History limit reached: discarded {self.evicted} oldest "
            f"step(s) ({self.freed_bytes} bytes)"
        )


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """Row shown by history list surfaces."""

    description: str
    transaction_id: int
    side: str
    position: int
    cost: int
    operation_count: int
    unusable: bool = False
    is_save_point: bool = False


@dataclass(frozen=True, slots=True)
class HistoryState:
    undo_stack: Tuple[OperationGroup, ...]
    redo_stack: Tuple[OperationGroup, ...]
    save_index: Optional[int]
    memory_used: int


@dataclass(frozen=True, slots=True)
class HistoryStats:
    undo_count: int
    redo_count: int
    memory_used: int
    budget_bytes: int
    max_depth: int


NoticeCallback = Callable[[EvictionNotice], None]


class History:
    """Two stacks plus a cursor; the only owner of retained groups.

    Every public method takes the instance lock, so a reader calling
    ``list`` or ``state`` never observes a half-applied mutation.
    """

    def __init__(
        self,
        provider: StateProvider,
        *,
        budget_bytes: Optional[int] = None,
        max_depth: Optional[int] = None,
        config: Optional[HistoryConfig] = None,
        logger_name: Optional[str] = None,
    ) -> None:
        config = config or HistoryConfig()
        self.provider = provider
        self.budget_bytes = (
            budget_bytes if budget_bytes is not None else config.memory_budget_bytes
        )
        self.max_depth = max_depth if max_depth is not None else config.max_depth
        if self.budget_bytes <= 0:
            raise ValueError("budget_bytes must be positive")
        self._logger_name = logger_name
        self._lock = threading.RLock()
        self._undo: List[OperationGroup] = []
        self._redo: List[OperationGroup] = []
        self._save_index: Optional[int] = 0
        self._memory_used = 0
        self._generation = 0
        self._unusable: Dict[int, SchemaMismatch] = {}
        self._transaction_ids = itertools.count(1)
        self._subscribers: List[NoticeCallback] = []

    # ------------------------------------------------------------ properties

    @property
    def memory_used(self) -> int:
        return self._memory_used

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def save_index(self) -> Optional[int]:
        return self._save_index

    @property
    def top(self) -> Optional[OperationGroup]:
        with self._lock:
            return self._undo[-1] if self._undo else None

    @property
    def status(self) -> HistoryStatus:
        return HistoryStatus.CLEAN if self.is_clean() else HistoryStatus.DIRTY

    def next_transaction_id(self) -> int:
        with self._lock:
            return next(self._transaction_ids)

    def subscribe(self, callback: NoticeCallback) -> None:
        self._subscribers.append(callback)

    # ------------------------------------------------------------- mutations

    def push(self, group: OperationGroup) -> Optional[EvictionNotice]:
        if not group.operations:
            return None
        with self._lock, telemetry.span(
            "history::push",
            logger_name=self._logger_name,
            component="history",
            metadata={"transaction": group.transaction_id},
        ):
            self._discard_redo()
            self._undo.append(group)
            self._memory_used += group.cost
            self._generation += 1
            telemetry.record_event(
                "history.push",
                level="debug",
                data={
                    "description": group.description,
                    "cost": group.cost,
                    "memory_used": self._memory_used,
                },
                logger_name=self._logger_name,
            )
            return self._evict()

    def replace_top(self, group: OperationGroup) -> Optional[EvictionNotice]:
        """Swap the newest undo entry for ``group`` (used when coalescing)."""

        with self._lock:
            if not self._undo:
                raise IndexError("no undo entry to replace")
            previous = self._undo[-1]
            if self._save_index == len(self._undo):
                self._save_index = None
            self._discard_redo()
            self._undo[-1] = group
            self._memory_used += group.cost - previous.cost
            self._generation += 1
            return self._evict()

    def undo(self) -> Optional[OperationGroup]:
        """Revert the newest group; ``None`` when there is nothing to undo."""

        with self._lock:
            if not self._undo:
                return None
            group = self._undo[-1]
            with telemetry.span(
                "history::undo",
                logger_name=self._logger_name,
                component="history",
                metadata={"transaction": group.transaction_id},
            ):
                self._run(group, group.revert_all)
                self._undo.pop()
                self._redo.append(group)
                self._generation += 1
            return group

    def redo(self) -> Optional[OperationGroup]:
        """Re-apply the newest undone group; ``None`` when there is none."""

        with self._lock:
            if not self._redo:
                return None
            group = self._redo[-1]
            with telemetry.span(
                "history::redo",
                logger_name=self._logger_name,
                component="history",
                metadata={"transaction": group.transaction_id},
            ):
                self._run(group, group.apply_all)
                self._redo.pop()
                self._undo.append(group)
                self._generation += 1
            return group

    def save(self) -> None:
        """Mark the current cursor as the saved point. Performs no I/O."""

        with self._lock:
            self._save_index = len(self._undo)
            self._generation += 1

    def clear(self) -> None:
        with self._lock:
            self._save_index = 0 if self._save_index == len(self._undo) else None
            self._undo.clear()
            self._redo.clear()
            self._unusable.clear()
            self._memory_used = 0
            self._generation += 1

    # --------------------------------------------------------------- queries

    def can_undo(self) -> bool:
        with self._lock:
            return bool(self._undo)

    def can_redo(self) -> bool:
        with self._lock:
            return bool(self._redo)

    def is_clean(self) -> bool:
        with self._lock:
            return self._save_index == len(self._undo)

    def peek_undo_description(self) -> Optional[str]:
        with self._lock:
            return self._undo[-1].description if self._undo else None

    def peek_redo_description(self) -> Optional[str]:
        with self._lock:
            return self._redo[-1].description if self._redo else None

    def is_unusable(self, group: OperationGroup) -> bool:
        with self._lock:
            return group.transaction_id in self._unusable

    def list(self, limit: Optional[int] = None) -> Tuple[HistoryEntry, ...]:
        """Entries in chronological order, undo side first.

        ``position`` is the cursor value reached once the entry is applied.
        ``limit`` keeps at most that many entries on each side of the cursor.
        """

        with self._lock:
            undo = list(self._undo)
            redo = list(reversed(self._redo))
            if limit is not None:
                undo = undo[max(0, len(undo) - limit) :]
                redo = redo[:limit]
            cursor = len(self._undo)
            first = cursor - len(undo) + 1
            rows = [
                self._entry(group, "undo", first + offset)
                for offset, group in enumerate(undo)
            ]
            rows.extend(
                self._entry(group, "redo", cursor + 1 + offset)
                for offset, group in enumerate(redo)
            )
            return tuple(rows)

    def state(self) -> HistoryState:
        with self._lock:
            return HistoryState(
                undo_stack=tuple(self._undo),
                redo_stack=tuple(self._redo),
                save_index=self._save_index,
                memory_used=self._memory_used,
            )

    def stats(self) -> HistoryStats:
        with self._lock:
            return HistoryStats(
                undo_count=len(self._undo),
                redo_count=len(self._redo),
                memory_used=self._memory_used,
                budget_bytes=self.budget_bytes,
                max_depth=self.max_depth,
            )

    # -------------------------------------------------------------- internals

    def _entry(self, group: OperationGroup, side: str, position: int) -> HistoryEntry:
        return HistoryEntry(
            description=group.description,
            transaction_id=group.transaction_id,
            side=side,
            position=position,
            cost=group.cost,
            operation_count=len(group),
            unusable=group.transaction_id in self._unusable,
            is_save_point=position == self._save_index,
        )

    def _run(
        self, group: OperationGroup, action: Callable[[StateProvider], None]
    ) -> None:
        known = self._unusable.get(group.transaction_id)
        if known is not None:
            raise SchemaMismatch(
                f"History entry '{group.description}' is unusable after a schema change",
                tag=known.tag,
                expected=known.expected,
                found=known.found,
                target=known.target,
            )
        try:
            action(self.provider)
        except SchemaMismatch as exc:
            self._unusable[group.transaction_id] = exc
            telemetry.record_event(
                "history.schema_mismatch",
                level="error",
                data={
                    "description": group.description,
                    "tag": exc.tag,
                    "expected": exc.expected,
                    "found": exc.found,
                },
                logger_name=self._logger_name,
            )
            raise
        except ApplyError as exc:
            telemetry.record_event(
                "history.apply_failed",
                level="warning",
                data={"description": group.description, "reason": exc.reason},
                logger_name=self._logger_name,
            )
            raise

    def _discard_redo(self) -> None:
        if not self._redo:
            return
        if self._save_index is not None and self._save_index > len(self._undo):
            self._save_index = None
        for group in self._redo:
            self._memory_used -= group.cost
            self._unusable.pop(group.transaction_id, None)
        self._redo.clear()

    def _over_limit(self) -> bool:
        if self._memory_used > self.budget_bytes:
            return True
        return bool(self.max_depth) and len(self._undo) > self.max_depth

    def _evict(self) -> Optional[EvictionNotice]:
        evicted: List[OperationGroup] = []
        while self._undo and self._over_limit():
            group = self._undo.pop(0)
            self._memory_used -= group.cost
            self._unusable.pop(group.transaction_id, None)
            evicted.append(group)
            if self._save_index is not None:
                self._save_index = self._save_index - 1 if self._save_index else None
        if not evicted:
            return None

        notice = EvictionNotice(
            evicted=len(evicted),
            freed_bytes=sum(group.cost for group in evicted),
            descriptions=tuple(group.description for group in evicted),
            memory_used=self._memory_used,
            budget_bytes=self.budget_bytes,
        )
        telemetry.record_event(
            "history.evicted",
            level="warning",
            data={
                "evicted": notice.evicted,
                "freed_bytes": notice.freed_bytes,
                "memory_used": notice.memory_used,
                "budget_bytes": notice.budget_bytes,
            },
            logger_name=self._logger_name,
        )
        for callback in list(self._subscribers):
            callback(notice)
        return notice


__all__ = [
    "EvictionNotice",
    "History",
    "HistoryEntry",
    "HistoryState",
    "HistoryStats",
    "HistoryStatus",
]
