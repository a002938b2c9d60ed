"""History panel adapter that wires an EditingSession into UI callbacks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

from cow_history.errors import HistoryError, SchemaMismatch
from cow_history.history import (
    EditingSession,
    EvictionNotice,
    HistoryEntry,
    OperationGroup,
)


def _noop(*_args, **_kwargs) -> None:  # pragma: no cover - default hook
    return None


@dataclass(slots=True)
class HistoryPanelHooks:
    """Callbacks invoked by the adapter to update the history widgets."""

    update_list: Callable[[Sequence[HistoryEntry]], None]
    update_status: Callable[[str], None] = _noop
    # Transient notices: evictions and failed undo/redo attempts
    notify: Callable[[str], None] = _noop
    log: Callable[[str], None] = _noop


class HistoryPanelAdapter:
    """Bridges session commands and history notices to a panel surface."""

    def __init__(
        self,
        session: EditingSession,
        hooks: HistoryPanelHooks,
        *,
        limit: int = 50,
    ) -> None:
        self.session = session
        self.hooks = hooks
        self.limit = limit
        session.history.subscribe(self._handle_eviction)
        self.refresh()

    def undo(self) -> Optional[OperationGroup]:
        self._log_state("undo ->", next=self.session.peek_undo_description())
        return self._run("undo", self.session.undo)

    def redo(self) -> Optional[OperationGroup]:
        self._log_state("redo ->", next=self.session.peek_redo_description())
        return self._run("redo", self.session.redo)

    def save(self) -> None:
        self.session.save()
        self._log_state("save <-")
        self.refresh()

    def refresh(self) -> None:
        self.hooks.update_list(self.session.list(self.limit))
        self.hooks.update_status(self.session.status.value)

    def _run(
        self, action: str, call: Callable[[], Optional[OperationGroup]]
    ) -> Optional[OperationGroup]:
        group: Optional[OperationGroup] = None
        try:
            group = call()
        except SchemaMismatch as exc:
            self.hooks.notify(
                f"Cannot {action}: history entry was recorded with schema "
                f"v{exc.found}, current is v{exc.expected}"
            )
        except HistoryError as exc:
            self.hooks.notify(f"Cannot {action}: {exc}")
        else:
            if group is None:
                self.hooks.notify(f"Nothing to {action}")
        self._log_state(
            f"{action} <-",
            description=group.description if group is not None else None,
        )
        self.refresh()
        return group

    def _handle_eviction(self, notice: EvictionNotice) -> None:
        self._log_state("evicted ->", evicted=notice.evicted)
        self.hooks.notify(notice.message)

    def _log_state(self, prefix: str, **fields: object) -> None:
        snapshot = self._state_metadata()
        snapshot.update({k: v for k, v in fields.items() if v is not None})
        parts = [prefix]
        for key, value in snapshot.items():
            parts.append(f"{key}={value!r}")
        self.hooks.log(" ".join(parts))

    def _state_metadata(self) -> Dict[str, object]:
        stats = self.session.history.stats()
        return {
            "undo": stats.undo_count,
            "redo": stats.redo_count,
            "memory": stats.memory_used,
            "status": self.session.status.value,
        }


__all__ = ["HistoryPanelAdapter", "HistoryPanelHooks"]
