"""Copy-on-write undo/redo history engine for scene editors."""

__all__ = [
    "actions",
    "adapters",
    "errors",
    "history",
    "runtime",
    "store",
]

__version__ = "0.1.0"
