from __future__ import annotations

TOTAL_LIMIT = "total_limit"
LEVEL_LIMIT = "level_limit"


class CapacityError(ValueError):
    """Add/move rejected by a node-count limit; the map is left unchanged."""

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class GraphValidationError(ValueError):
    """Dangling or self-referencing connection, bad node field, or invalid graph on persist."""


class PersistenceError(RuntimeError):
    """Local cache read/write failure."""


class SyncStateError(RuntimeError):
    """Intent issued in a state that cannot accept it (e.g. no project loaded)."""
