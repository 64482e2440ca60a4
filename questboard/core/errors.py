"""Error taxonomy and classification for the daily task engine."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel


class ErrorCategory(Enum):
    """Categories of errors the engine distinguishes."""

    STALE_STATE = "stale_state"
    TRANSPORT = "transport"
    VALIDATION = "validation"
    INVARIANT_VIOLATION = "invariant_violation"
    INVALID_TRANSITION = "invalid_transition"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Remote store errors
    ERR_STALE_STATE = "ERR_STALE_STATE"
    ERR_REPEATED_STALE_STATE = "ERR_REPEATED_STALE_STATE"
    ERR_NETWORK_ERROR = "ERR_NETWORK_ERROR"
    ERR_TIMEOUT = "ERR_TIMEOUT"

    # Task errors
    ERR_INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    ERR_INVALID_RECURRENCE = "ERR_INVALID_RECURRENCE"
    ERR_INVALID_TASK = "ERR_INVALID_TASK"
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"

    # View errors
    ERR_INVARIANT_VIOLATION = "ERR_INVARIANT_VIOLATION"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class QuestboardError(Exception):
    """Base class for engine errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN


class StaleStateError(QuestboardError):
    """The remote store disagrees with the bucket a transition assumed."""

    category = ErrorCategory.STALE_STATE


class TransportError(QuestboardError):
    """A remote call failed to complete (network, server error or timeout)."""

    category = ErrorCategory.TRANSPORT


class RecurrenceValidationError(QuestboardError, ValueError):
    """A recurrence definition is malformed."""

    category = ErrorCategory.VALIDATION


class TaskValidationError(QuestboardError, ValueError):
    """A task draft or update is malformed."""

    category = ErrorCategory.VALIDATION


class InvariantViolationError(QuestboardError):
    """A view's internal state is inconsistent and must be rebuilt."""

    category = ErrorCategory.INVARIANT_VIOLATION


class InvalidTransitionError(QuestboardError, ValueError):
    """A transition was requested from a bucket the task is not in."""

    category = ErrorCategory.INVALID_TRANSITION


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity
    retryable: bool = False


_ERROR_PATTERNS: dict[
    Literal["timeout", "network"],
    dict[str, list[str] | set[str]],
] = {
    "timeout": {
        "phrases": ["timed out", "timeout"],
        "exception_types": {"TimeoutError", "TimeoutException", "ReadTimeout", "ConnectTimeout", "PoolTimeout"},
    },
    "network": {
        "phrases": [
            "connection",
            "network",
            "503",
            "502",
            "504",
            "unreachable",
        ],
        "exception_types": {"ConnectionError", "ConnectError", "NetworkError", "RemoteProtocolError"},
    },
}


def _match_error_pattern(
    *,
    error_str: str,
    exception_type: str,
    pattern_type: Literal["timeout", "network"],
) -> bool:
    """Return True if the error matches the configured pattern type."""
    patterns = _ERROR_PATTERNS[pattern_type]
    return any(phrase in error_str for phrase in patterns["phrases"]) or exception_type in patterns["exception_types"]


def _transport_response(exception: BaseException) -> ErrorResponse:
    error_str = str(exception).lower()
    exception_type = type(exception).__name__
    cause = exception.__cause__

    timed_out = _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type="timeout")
    if not timed_out and cause is not None:
        timed_out = _match_error_pattern(
            error_str=str(cause).lower(), exception_type=type(cause).__name__, pattern_type="timeout"
        )

    if timed_out:
        return ErrorResponse(
            code=ErrorCode.ERR_TIMEOUT,
            message="The server took too long to respond.",
            suggestion="Your board was restored. Try again in a moment.",
            severity=ErrorSeverity.MEDIUM,
            retryable=True,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_NETWORK_ERROR,
        message="Network error occurred.",
        suggestion="Please check your connection and try again.",
        severity=ErrorSeverity.MEDIUM,
        retryable=True,
    )


def classify_error_with_response(exception: BaseException) -> ErrorResponse:  # noqa: PLR0911
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, suggestion, severity and retryability
    """
    if isinstance(exception, StaleStateError):
        return ErrorResponse(
            code=ErrorCode.ERR_STALE_STATE,
            message="This task was changed somewhere else.",
            suggestion="The board will refresh it on the next sync.",
            severity=ErrorSeverity.LOW,
            retryable=True,
        )

    if isinstance(exception, RecurrenceValidationError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_RECURRENCE,
            message="Invalid recurrence pattern.",
            suggestion="Use an interval of at least 1 and an end date after the start date.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, TaskValidationError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_TASK,
            message=str(exception) or "Invalid task.",
            suggestion="Fix the highlighted fields and save again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, InvalidTransitionError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_TRANSITION,
            message="This action cannot be performed in the task's current state.",
            suggestion="Refresh the board and try again.",
            severity=ErrorSeverity.LOW,
        )

    if isinstance(exception, InvariantViolationError):
        return ErrorResponse(
            code=ErrorCode.ERR_INVARIANT_VIOLATION,
            message="The task board got out of sync.",
            suggestion="The board is being reloaded from the server.",
            severity=ErrorSeverity.HIGH,
            retryable=True,
        )

    if isinstance(exception, KeyError):
        return ErrorResponse(
            code=ErrorCode.ERR_TASK_NOT_FOUND,
            message="I couldn't find that task.",
            suggestion="Refresh the board to see your current tasks.",
            severity=ErrorSeverity.LOW,
        )

    error_str = str(exception).lower()
    exception_type = type(exception).__name__
    if isinstance(exception, TransportError) or any(
        _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type=pattern_type)
        for pattern_type in ("timeout", "network")
    ):
        return _transport_response(exception)

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
