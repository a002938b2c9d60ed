"""UI-facing adapters."""

from .panel import HistoryPanelAdapter, HistoryPanelHooks

__all__ = ["HistoryPanelAdapter", "HistoryPanelHooks"]
