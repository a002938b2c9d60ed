"""Merge policy that folds continuous gestures into a single undo step."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

from cow_history.runtime import telemetry

from .history import EvictionNotice, History
from .operation import OperationGroup


@dataclass(frozen=True, slots=True)
class SubmitResult:
    """Outcome of handing a closed group to the coalescer."""

    group: OperationGroup
    merged: bool
    notice: Optional[EvictionNotice] = None


class Coalescer:
    """Decides between ``History.push`` and rewriting the newest entry.

    A group merges into the top entry only when both hold exactly one
    operation on the same target with the same kind and captured scope, the
    new group was committed inside the window, and the history has not moved (undo, redo,
    save or any other push) since this coalescer last touched it.
    """

    def __init__(
        self,
        history: History,
        *,
        window_ms: int = 500,
        clock: Callable[[], float] = time.monotonic,
        enabled: bool = True,
    ) -> None:
        if window_ms < 0:
            raise ValueError("window_ms must be non-negative")
        self.history = history
        self.window_ms = window_ms
        self.clock = clock
        self.enabled = enabled
        self._last_transaction: Optional[int] = None
        self._last_generation: Optional[int] = None

    def reset(self) -> None:
        self._last_transaction = None
        self._last_generation = None

    def submit(self, group: OperationGroup) -> SubmitResult:
        top = self._merge_target(group)
        if top is not None:
            merged = top.merged_with(group)
            notice = self.history.replace_top(merged)
            telemetry.record_event(
                "coalescer.merge",
                level="debug",
                data={"description": merged.description, "cost": merged.cost},
            )
            self._remember(merged)
            return SubmitResult(group=merged, merged=True, notice=notice)

        notice = self.history.push(group)
        self._remember(group)
        return SubmitResult(group=group, merged=False, notice=notice)

    def can_merge(self, group: OperationGroup) -> bool:
        return self._merge_target(group) is not None

    def _merge_target(self, group: OperationGroup) -> Optional[OperationGroup]:
        """The top entry ``group`` may fold into, or ``None``."""

        if not self.enabled or self._last_generation != self.history.generation:
            return None
        top = self.history.top
        if top is None or top.transaction_id != self._last_transaction:
            return None
        if self.history.is_unusable(top):
            return None
        previous, incoming = top.single, group.single
        if previous is None or incoming is None or not previous.can_merge(incoming):
            return None
        elapsed_ms = (group.committed_at - top.committed_at) * 1000.0
        return top if 0.0 <= elapsed_ms <= self.window_ms else None

    def _remember(self, group: OperationGroup) -> None:
        top = self.history.top
        if top is not None and top.transaction_id == group.transaction_id:
            self._last_transaction = group.transaction_id
            self._last_generation = self.history.generation
        else:
            self.reset()


__all__ = ["Coalescer", "SubmitResult"]
