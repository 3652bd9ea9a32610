"""
Error taxonomy for logbook operations.

Every failure surfaced to a caller is a LogbookError carrying one of the
ErrorCode kinds. The HTTP layer maps kinds to status codes; PERMISSION_DENIED
and NOT_FOUND never carry detail beyond the kind and a generic message.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Caller-visible error kinds."""
    UNAUTHENTICATED = 'UNAUTHENTICATED'
    PERMISSION_DENIED = 'PERMISSION_DENIED'
    NOT_FOUND = 'NOT_FOUND'
    VALIDATION = 'VALIDATION'
    CONFLICT = 'CONFLICT'
    RATE_LIMITED = 'RATE_LIMITED'
    PAYLOAD_TOO_LARGE = 'PAYLOAD_TOO_LARGE'
    INTERNAL = 'INTERNAL'


HTTP_STATUS = {
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.VALIDATION: 400,
    ErrorCode.CONFLICT: 409,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.PAYLOAD_TOO_LARGE: 413,
    ErrorCode.INTERNAL: 500,
}


class LogbookError(Exception):
    """Base exception for logbook errors."""

    code = ErrorCode.INTERNAL
    default_message = 'Internal server error'

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.code]

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            'code': self.code.value,
            'message': self.message,
            'data': {'httpStatus': self.http_status, **self.details},
        }


class UnauthenticatedError(LogbookError):
    code = ErrorCode.UNAUTHENTICATED
    default_message = 'Authentication required'


class PermissionDeniedError(LogbookError):
    code = ErrorCode.PERMISSION_DENIED
    default_message = 'Permission denied'


class NotFoundError(LogbookError):
    """Raised for absent resources and for resources owned by someone else."""
    code = ErrorCode.NOT_FOUND
    default_message = 'Not found or unauthorized'


class ValidationFailed(LogbookError):
    """
    Raised when input fails schema or invariant checks.

    field_errors maps each offending field (wire name) to its messages;
    form_errors holds problems not attributable to a single field.
    """
    code = ErrorCode.VALIDATION
    default_message = 'Invalid input'

    def __init__(
        self,
        field_errors: Optional[Dict[str, List[str]]] = None,
        form_errors: Optional[List[str]] = None,
        message: Optional[str] = None,
    ):
        self.field_errors = field_errors or {}
        self.form_errors = form_errors or []
        super().__init__(
            message,
            details={'fieldErrors': self.field_errors, 'formErrors': self.form_errors},
        )


class ConflictError(LogbookError):
    code = ErrorCode.CONFLICT
    default_message = 'Conflict'


class RateLimitedError(LogbookError):
    """Raised when a caller exceeds its quota; retry_after is in seconds."""
    code = ErrorCode.RATE_LIMITED
    default_message = 'Too many requests. Please try again later.'

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = max(0, int(retry_after))
        super().__init__(message, details={'retryAfter': self.retry_after})


class PayloadTooLargeError(LogbookError):
    code = ErrorCode.PAYLOAD_TOO_LARGE
    default_message = 'Request body too large'


class InternalError(LogbookError):
    """
    Unexpected store or provider failure.

    retryable marks transient conditions (timeouts, connection errors) and is
    reported as 503 so clients know a retry may succeed.
    """
    code = ErrorCode.INTERNAL

    def __init__(self, message: Optional[str] = None, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message, details={'retryable': retryable} if retryable else None)

    @property
    def http_status(self) -> int:
        return 503 if self.retryable else 500
