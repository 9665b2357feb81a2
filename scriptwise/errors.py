"""Exception hierarchy for Scriptwise."""

from __future__ import annotations

from typing import Optional


class ScriptwiseError(Exception):
    """Base exception for all Scriptwise errors."""
    pass


class PersistenceError(ScriptwiseError):
    """Raised when the pattern store cannot write its data files."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class ConfirmationRequired(ScriptwiseError):
    """Raised when a destructive operation is invoked without explicit confirmation."""

    def __init__(self, operation: str, message: str = ""):
        self.operation = operation
        super().__init__(
            message or f"'{operation}' is destructive and requires explicit confirmation"
        )


class ExecutionError(ScriptwiseError):
    """Raised when the scripting engine cannot be launched at all."""
    pass
