# salesrecon/core/errors.py

"""
Import-level failures surfaced to callers.

Line-level outcomes (no match, inferred quantity, price drift) are data on
the line and never raise.
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for all reconciliation errors."""

    status_code: int = 500
    error_code: str = "RECONCILIATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(ReconciliationError):
    """Malformed staging input."""

    status_code = 422
    error_code = "VALIDATION_ERROR"


class NotFoundError(ReconciliationError):
    """Unknown import, line or catalog item."""

    status_code = 404
    error_code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} with identifier '{identifier}' not found")
        self.resource = resource
        self.identifier = identifier


class ConflictError(ReconciliationError):
    """Operation not allowed in the import's current status."""

    status_code = 409
    error_code = "RESOURCE_CONFLICT"

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class CommitFailure(ReconciliationError):
    """
    Approval could not be committed.

    The transaction was rolled back. When `retryable` is True the import is
    still `reviewing` and the caller may try again.
    """

    status_code = 503
    error_code = "COMMIT_FAILURE"

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
