"""
Workflow Hub - Workflow Error Taxonomy

Every failure the workflow engine reports carries a stable machine-readable
code, a human-readable message and a context dict (item id, operation,
offending field or state pair) so the caller can render a precise message.

Caller errors (validation, authorization, invalid transition, not found) are
raised before any mutation. PersistenceError is raised after an aborted
write. NotificationError never leaves the notification dispatcher.
"""

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""

    default_code = "WORKFLOW_ERROR"
    http_status = 500

    def __init__(self, message: str, code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(WorkflowError):
    """Bad caller input: missing, malformed or out-of-range fields."""
    default_code = "VALIDATION_ERROR"
    http_status = 400


class AuthorizationError(WorkflowError):
    """Actor lacks permission for the operation."""
    default_code = "ACCESS_DENIED"
    http_status = 403


class InvalidTransitionError(WorkflowError):
    """Requested target state is not reachable from the current state."""
    default_code = "INVALID_STATE_TRANSITION"
    http_status = 409


class NotFoundError(WorkflowError):
    """Referenced item does not exist."""
    default_code = "ITEM_NOT_FOUND"
    http_status = 404


class PersistenceError(WorkflowError):
    """Repository collaborator failed; the operation was aborted."""
    default_code = "DATABASE_ERROR"
    http_status = 503


class NotificationError(WorkflowError):
    """Delivery to a single recipient failed. Logged, never surfaced."""
    default_code = "NOTIFICATION_SEND_FAILED"
    http_status = 502


class OperationCancelledError(WorkflowError):
    """Caller cancelled the operation before it became durable."""
    default_code = "OPERATION_CANCELLED"
    http_status = 499
