"""
Error taxonomy for memo routing. Each error carries the hints the HTTP layer renders.
"""

from typing import Any, Dict, Optional


class MemoRoutingError(Exception):
    """Base class for all memo routing errors."""

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": str(self)}


class Locked(MemoRoutingError):
    """Resource is held by a live edit lock owned by another actor."""

    def __init__(self, resource_id: str, remaining: int, holder: Optional[str] = None):
        super().__init__(f"Resource {resource_id} is locked by {holder} for {remaining}s")
        self.resource_id = resource_id
        self.remaining = remaining
        self.holder = holder

    def to_dict(self) -> Dict[str, Any]:
        return {"locked": True, "remaining": self.remaining, "holder": self.holder}


class Expired(MemoRoutingError):
    """No live lock exists to refresh; the caller must acquire again."""

    def __init__(self, resource_id: str):
        super().__init__(f"Edit lock on {resource_id} has expired")
        self.resource_id = resource_id

    def to_dict(self) -> Dict[str, Any]:
        return {"expired": True}


class Conflict(MemoRoutingError):
    """Stored version is newer than the version the client edited."""

    def __init__(self, resource_id: str, current_version: str, current_holder: Optional[str] = None,
                 updated_by: Optional[str] = None):
        super().__init__(f"Resource {resource_id} was modified at {current_version}")
        self.resource_id = resource_id
        self.current_version = current_version
        self.current_holder = current_holder
        self.updated_by = updated_by

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflict": True,
            "updated_at": self.current_version,
            "updated_by": self.updated_by,
            "holder": self.current_holder,
        }


class InvalidTransition(MemoRoutingError):
    """State machine guard rejected the requested transition."""

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message)
        self.current = current
        self.target = target

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": str(self), "current": self.current, "target": self.target}


class PartialFailure(MemoRoutingError):
    """Multi-step operation failed midway; compensating rollback has been applied."""

    def __init__(self, message: str, entry_id: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.entry_id = entry_id
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": str(self), "rolled_back": True, "rollback_entry_id": self.entry_id}


class ManualInterventionRequired(PartialFailure):
    """Compensating rollback also failed; the ledger entry must be resolved by hand."""

    def __init__(self, message: str, entry_id: str, cause: Optional[BaseException] = None,
                 rollback_error: Optional[BaseException] = None):
        super().__init__(message, entry_id, cause)
        self.rollback_error = rollback_error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": str(self),
            "rolled_back": False,
            "manual_intervention_required": True,
            "rollback_entry_id": self.entry_id,
        }


class NotFound(MemoRoutingError):
    """Referenced record does not exist."""


class Unauthorized(MemoRoutingError):
    """Caller is not allowed to perform the operation."""


class ValidationFailed(MemoRoutingError):
    """Request is missing required fields or carries invalid values."""


class AlreadyRolledBack(MemoRoutingError):
    """Ledger entry was already reversed."""


class InvalidState(MemoRoutingError):
    """Ledger entry cannot be rolled back from its current state, or the inverse failed."""
