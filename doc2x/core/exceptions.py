"""Exception hierarchy for the Doc2X client.

All exceptions raised by the client inherit from BaseError and carry a stable
error code, a category for classification and an optional trace id reported
by the Doc2X API, so callers and the CLI failure log can correlate failures
with server-side requests.
"""

from typing import Any, Optional
from enum import Enum

from doc2x.core.config import UNKNOWN_TRACE_ID


class ErrorCategory(str, Enum):
    """Error categories for classification and logging."""

    VALIDATION = "validation"
    API_ERROR = "api_error"
    TRANSPORT = "transport"
    INVALID_RESPONSE = "invalid_response"
    TASK_FAILED = "task_failed"
    CANCELLED = "cancelled"


def normalize_trace_id(trace_id: Optional[str]) -> str:
    return trace_id or UNKNOWN_TRACE_ID


class BaseError(Exception):
    """Base exception for all Doc2X client errors.

    Attributes:
        message: Human-readable error message
        error_code: Application-specific error code
        category: Error category for classification
        details: Additional context (dict)
        retryable: Whether the failed call may succeed if repeated
        trace_id: Server trace id, when the API returned one
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        category: ErrorCategory,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
        trace_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.category = category
        self.details = details or {}
        self.retryable = retryable
        self.trace_id = trace_id

    def to_dict(self) -> dict[str, Any]:
        """Convert to a flat, JSON-serializable mapping.

        Returns:
            Dict containing standardized error information
        """
        return {
            "type": f"/errors/{self.error_code}",
            "title": self.message,
            "code": self.error_code,
            "detail": self.details.get("detail"),
            "category": self.category.value,
            "retryable": self.retryable,
            "trace_id": normalize_trace_id(self.trace_id),
        }


class ValidationError(BaseError):
    """Caller-supplied input is unusable (empty uid, empty payload, ...).

    Raised before any request is sent.

    Args:
        message: Validation error description
        field: Name of the argument that failed validation
    """

    def __init__(self, message: str, field: str, **kwargs):
        additional_details = kwargs.pop("details", {})
        additional_details["field"] = field
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            category=ErrorCategory.VALIDATION,
            details=additional_details,
            **kwargs,
        )
        self.field = field


class APIStatusError(BaseError):
    """The API answered with a non-2xx HTTP status.

    Args:
        operation: Operation label (e.g. "get status")
        status_code: HTTP status code
        reason: HTTP reason phrase
        trace_id: Server trace id
        body: Excerpt of the response body
    """

    def __init__(
        self,
        operation: str,
        status_code: int,
        reason: str = "",
        trace_id: Optional[str] = None,
        body: Optional[str] = None,
    ):
        super().__init__(
            message=(
                f"{operation} failed with status {status_code}: {reason} "
                f"(trace-id: {normalize_trace_id(trace_id)})"
            ),
            error_code="API_STATUS_ERROR",
            category=ErrorCategory.API_ERROR,
            details={"operation": operation, "status_code": status_code, "detail": body},
            trace_id=trace_id,
        )
        self.operation = operation
        self.status_code = status_code


class APICodeError(BaseError):
    """The API answered 2xx but reported a non-success response code.

    Args:
        operation: Operation label
        code: Response code from the body
        msg: Optional server message
        trace_id: Server trace id
    """

    def __init__(
        self,
        operation: str,
        code: str,
        msg: str = "",
        trace_id: Optional[str] = None,
    ):
        trace = normalize_trace_id(trace_id)
        if msg:
            message = f"{operation} failed with code {code}: {msg} (trace-id: {trace})"
        else:
            message = f"{operation} failed with code {code} (trace-id: {trace})"
        super().__init__(
            message=message,
            error_code="API_CODE_ERROR",
            category=ErrorCategory.API_ERROR,
            details={"operation": operation, "code": code, "detail": msg or None},
            trace_id=trace_id,
        )
        self.operation = operation
        self.code = code


class TransportError(BaseError):
    """The HTTP exchange itself failed (DNS, connect, timeout, reset, ...).

    The originating httpx exception is chained as ``__cause__``.

    Args:
        operation: Operation label
        reason: Description of the underlying failure
        retryable: Whether the underlying failure is transient
    """

    def __init__(self, operation: str, reason: str, retryable: bool = False):
        super().__init__(
            message=f"{operation} failed: {reason}",
            error_code="TRANSPORT_ERROR",
            category=ErrorCategory.TRANSPORT,
            details={"operation": operation, "detail": reason},
            retryable=retryable,
        )
        self.operation = operation


class InvalidResponseError(BaseError):
    """A response could not be decoded or lacks a required field."""

    def __init__(self, operation: str, reason: str, trace_id: Optional[str] = None):
        super().__init__(
            message=f"{operation}: {reason}",
            error_code="INVALID_RESPONSE",
            category=ErrorCategory.INVALID_RESPONSE,
            details={"operation": operation, "detail": reason},
            trace_id=trace_id,
        )
        self.operation = operation


class TaskFailedError(BaseError):
    """The remote task (parse, convert, image layout) reached the failed state.

    Args:
        operation: Task label used in the message ("parse", "conversion", ...)
        detail: Failure detail reported by the API
        uid: Task uid
        trace_id: Server trace id
    """

    def __init__(
        self,
        operation: str,
        detail: str,
        uid: Optional[str] = None,
        trace_id: Optional[str] = None,
    ):
        message = f"{operation} failed: {detail}"
        if trace_id:
            message = f"{message} (trace-id: {trace_id})"
        super().__init__(
            message=message,
            error_code="TASK_FAILED",
            category=ErrorCategory.TASK_FAILED,
            details={"operation": operation, "detail": detail, "uid": uid},
            trace_id=trace_id,
        )
        self.operation = operation
        self.detail = detail
        self.uid = uid


class CancellationError(BaseError):
    """Base for cancellation causes reported by a CancelToken."""

    def __init__(self, message: str, error_code: str):
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.CANCELLED,
        )


class OperationCancelledError(CancellationError):
    """The token was cancelled explicitly (signal, caller, parent token)."""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message, "CANCELLED")


class DeadlineExceededError(CancellationError):
    """The token deadline passed."""

    def __init__(self, message: str = "deadline exceeded"):
        super().__init__(message, "DEADLINE_EXCEEDED")


class WaitCancelledError(BaseError):
    """A polling wait was interrupted by cancellation or deadline expiry.

    Args:
        operation: Label of the operation being waited for
        cause: The CancellationError reported by the token
        uid: Task uid being waited on
    """

    def __init__(
        self, operation: str, cause: CancellationError, uid: Optional[str] = None
    ):
        details = {"operation": operation, "detail": str(cause)}
        if uid:
            details["uid"] = uid
        super().__init__(
            message=f"waiting for {operation} cancelled: {cause}",
            error_code="WAIT_CANCELLED",
            category=ErrorCategory.CANCELLED,
            details=details,
        )
        self.operation = operation
        self.uid = uid
        self.cause = cause

    @property
    def timed_out(self) -> bool:
        return isinstance(self.cause, DeadlineExceededError)


class BatchFailedError(BaseError):
    """One or more files of a batch failed; the first error is chained.

    Args:
        total: Number of files in the batch
        errors: Errors collected from the failed files, in completion order
    """

    def __init__(self, total: int, errors: list[BaseException]):
        super().__init__(
            message=f"batch completed with {len(errors)} errors, first: {errors[0]}",
            error_code="BATCH_FAILED",
            category=ErrorCategory.TASK_FAILED,
            details={"total": total, "failed": len(errors), "detail": str(errors[0])},
        )
        self.errors = errors
