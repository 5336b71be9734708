"""
Error types for complio.

Every failure raised by the engine is scoped to one assessment and one
operation; nothing here is fatal to the process.  The HTTP layer maps
``code`` and ``http_status`` straight onto its JSON error responses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ComplioError(Exception):
    """Base class for all complio errors."""

    code = "ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(ComplioError):
    """Input rejected before anything was written."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(ComplioError):
    code = "NOT_FOUND"
    http_status = 404


class PermissionDeniedError(ComplioError):
    code = "FORBIDDEN"
    http_status = 403


class TransitionError(ComplioError):
    """A lifecycle action is not allowed from the record's current status."""

    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, action: str, status: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot {action.replace('_', ' ')} an assessment in status '{status}'",
            {"action": action, "status": status},
        )
        self.action = action
        self.status = status


class LinkedRecordExistsError(ComplioError):
    """The single-valued link for this record type is already populated."""

    code = "LINKED_RECORD_EXISTS"
    http_status = 409


class PersistenceError(ComplioError):
    """A store operation failed.  Safe to retry by re-invoking the action."""

    code = "PERSISTENCE_ERROR"
    http_status = 503


class CompletionError(PersistenceError):
    """Scoring or the status write failed after responses were saved."""

    code = "COMPLETION_FAILED"
