from typing import Any, Dict, Optional


class RegionEngineError(Exception):
    """Base error for region aggregate operations. Carries the operation and entity for diagnosis."""

    retryable = False

    def __init__(self, message: str, operation: Optional[str] = None, entity_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.entity_id = entity_id

    def __str__(self) -> str:
        if self.operation and self.entity_id:
            return f"{self.operation}[{self.entity_id}]: {self.message}"
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "operation": self.operation,
            "entity_id": self.entity_id,
            "message": self.message,
            "retryable": self.retryable,
        }


class NotFound(RegionEngineError):
    """Raised when a referenced region, shipping option or country does not exist or is soft-deleted."""
    pass


class RegionNotFound(NotFound):
    pass


class RegionDisappeared(NotFound):
    """Raised when a region vanished between a committed update and its reload (concurrent delete)."""
    pass


class ValidationError(RegionEngineError):
    """Raised before any mutation when a change set is malformed or references unknown data."""
    pass


class ConflictError(RegionEngineError):
    """Raised on a unique-constraint violation that the upsert path could not absorb."""
    pass


class DuplicateGroupChanged(RegionEngineError):
    """Raised when a survivor or donor no longer shares the group's name and currency at merge time."""
    pass


class TransactionFailure(RegionEngineError):
    """Raised when the store rejects a statement or commit (deadlock, timeout). Never partially applied."""

    retryable = True
