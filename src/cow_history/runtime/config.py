"""Environment-driven configuration for history sessions."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

ENV_PREFIX = "COW_HISTORY_"

DEFAULT_MEMORY_BUDGET = 32 * 1024 * 1024
DEFAULT_MERGE_WINDOW_MS = 500


def env_value(
    name: str,
    default: Optional[str] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    source = os.environ if environ is None else environ
    return source.get(f"{ENV_PREFIX}{name}", default)


def env_flag(
    name: str, default: bool, *, environ: Optional[Mapping[str, str]] = None
) -> bool:
    raw = env_value(name, environ=environ)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, environ: Optional[Mapping[str, str]]) -> int:
    raw = env_value(name, environ=environ)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must be non-negative")
    return value


@dataclass(frozen=True, slots=True)
class HistoryConfig:
    """Tunables shared by History, Coalescer and EditingSession.

    ``max_depth`` of 0 leaves the entry count unbounded; memory is then the
    only eviction trigger.
    """

    memory_budget_bytes: int = DEFAULT_MEMORY_BUDGET
    merge_window_ms: int = DEFAULT_MERGE_WINDOW_MS
    max_depth: int = 0
    coalesce: bool = True

    def __post_init__(self) -> None:
        if self.memory_budget_bytes <= 0:
            raise ValueError("memory_budget_bytes must be positive")
        if self.merge_window_ms < 0:
            raise ValueError("merge_window_ms must be non-negative")
        if self.max_depth < 0:
            raise ValueError("max_depth must be non-negative")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HistoryConfig":
        return cls(
            memory_budget_bytes=_env_int(
                "MEMORY_BUDGET", DEFAULT_MEMORY_BUDGET, environ
            ),
            merge_window_ms=_env_int(
                "MERGE_WINDOW_MS", DEFAULT_MERGE_WINDOW_MS, environ
            ),
            max_depth=_env_int("MAX_DEPTH", 0, environ),
            coalesce=env_flag("COALESCE", True, environ=environ),
        )


__all__ = [
    "ENV_PREFIX",
    "HistoryConfig",
    "env_flag",
    "env_value",
]
