"""Runtime services: telemetry and configuration."""

from .config import HistoryConfig

__all__ = ["HistoryConfig", "config", "telemetry"]
