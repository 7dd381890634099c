"""Error hierarchy for the brain store."""

from __future__ import annotations


class BrainError(Exception):
    """Base for all brain errors."""


class MemoryValidationError(BrainError, ValueError):
    """Raised when a candidate or update is malformed. Nothing is persisted."""


class MemoryNotFoundError(BrainError, KeyError):
    """Raised when an operation addresses a record id that does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} not found: {record_id}")
        self.kind = kind
        self.record_id = record_id

    def __str__(self) -> str:
        return str(self.args[0])


class PersistenceError(BrainError):
    """Raised when the primary store cannot be read or written."""
