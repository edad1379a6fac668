"""
Workflow error taxonomy.

Every failure raised by the workflow engine carries a machine-readable
``code`` the client translates, a human-readable message naming the
violated precondition, the HTTP status the API layer answers with and
whether the caller may retry.
"""
from typing import Optional


class WorkflowError(Exception):
    """Base class for all workflow failures."""

    status_code = 400
    default_code = "workflow_error"
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }


class Unauthenticated(WorkflowError):
    status_code = 401
    default_code = "unauthenticated"


class Unauthorized(WorkflowError):
    """Actor's role or assignment scope does not permit the action."""
    status_code = 403
    default_code = "unauthorized"


class NotFound(WorkflowError):
    status_code = 404
    default_code = "not_found"


class InvalidStateTransition(WorkflowError):
    """Entity is not in a stage from which the action is legal."""
    status_code = 409
    default_code = "invalid_state_transition"


class WorkflowValidationError(WorkflowError):
    """Required input missing or malformed."""
    status_code = 422
    default_code = "validation_error"


class ConflictError(WorkflowError):
    """Optimistic-concurrency check failed or a uniqueness rule was hit."""
    status_code = 409
    default_code = "conflict"

    def __init__(self, message: str = "This item was already updated, please refresh", code: Optional[str] = None):
        super().__init__(message, code)


class DependencyFailure(WorkflowError):
    """A collaborator (database, storage, identity) failed or timed out."""
    default_code = "dependency_failure"

    def __init__(self, message: str, code: Optional[str] = None, retryable: bool = False):
        super().__init__(message, code)
        self.retryable = retryable
        self.status_code = 503 if retryable else 500
