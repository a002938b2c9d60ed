"""Undo/redo history: operations, the stack machine, coalescing and sessions."""

from .coalescer import Coalescer, SubmitResult
from .history import (
    EvictionNotice,
    History,
    HistoryEntry,
    HistoryState,
    HistoryStats,
    HistoryStatus,
)
from .operation import EditKind, Operation, OperationGroup
from .session import EditingSession, EditRecord, Gesture, Transaction

__all__ = [
    "Coalescer",
    "EditKind",
    "EditRecord",
    "EditingSession",
    "EvictionNotice",
    "Gesture",
    "History",
    "HistoryEntry",
    "HistoryState",
    "HistoryStats",
    "HistoryStatus",
    "Operation",
    "OperationGroup",
    "SubmitResult",
    "Transaction",
]
