from __future__ import annotations

from typing import Any, Optional


class TaskboardError(Exception):
    """Base class for errors surfaced by the board core."""

    code = "error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFound(TaskboardError):
    code = "not_found"


class InvalidState(TaskboardError):
    code = "invalid_state"


class NotEmpty(InvalidState):
    """Raised when deleting a column that still holds tasks."""

    code = "column_not_empty"


class LastBoard(InvalidState):
    """Raised when deleting the only remaining board."""

    code = "last_board"


class PersistenceFailure(TaskboardError):
    """The authoritative store rejected or timed out on a confirm step."""

    code = "persistence_failure"
