"""Error taxonomy shared by the store and the history engine."""

from __future__ import annotations

from typing import Any, Optional


class HistoryError(RuntimeError):
    """Base class for every recoverable failure raised by this package."""

    def __init__(self, message: str, *, target: Optional[Any] = None) -> None:
        super().__init__(message)
        self.target = target


class ValidationError(HistoryError):
    """Raised when an edit precondition fails before any mutation starts."""


class ApplyError(HistoryError):
    """Raised when a snapshot cannot be written back into live state."""

    def __init__(
        self,
        message: str,
        *,
        target: Optional[Any] = None,
        reason: str = "apply_failed",
        rollback_failed: bool = False,
    ) -> None:
        super().__init__(message, target=target)
        self.reason = reason
        self.rollback_failed = rollback_failed


class SchemaMismatch(ApplyError):
    """Raised when a retained snapshot was captured under another schema."""

    def __init__(
        self,
        message: str,
        *,
        tag: str,
        expected: int,
        found: int,
        target: Optional[Any] = None,
    ) -> None:
        super().__init__(message, target=target, reason="schema_mismatch")
        self.tag = tag
        self.expected = expected
        self.found = found


__all__ = [
    "HistoryError",
    "ValidationError",
    "ApplyError",
    "SchemaMismatch",
]
