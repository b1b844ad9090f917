"""
Error taxonomy for the TrainingPeaks request pipeline.

Every transport failure is classified into a closed set of kinds before it
leaves the pipeline. Callers never see raw requests exceptions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import requests

from trainingpeaks_mcp.sdk.diagnostics import RequestContext


class ErrorKind(Enum):
    """Closed set of failure kinds."""
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"
    AUTH_FLOW = "auth_flow"
    CANCELLED = "cancelled"


RETRYABLE_KINDS = frozenset({
    ErrorKind.SERVER_ERROR,
    ErrorKind.TIMEOUT,
    ErrorKind.RATE_LIMITED,
    ErrorKind.NETWORK_ERROR,
})

# status -> (kind, code, message prefix)
STATUS_TABLE = {
    400: (ErrorKind.CLIENT_ERROR, "VALIDATION_FAILED", "Bad Request"),
    401: (ErrorKind.CLIENT_ERROR, "AUTH_TOKEN_INVALID", "Authentication failed"),
    403: (ErrorKind.CLIENT_ERROR, "AUTH_FORBIDDEN", "Access forbidden"),
    404: (ErrorKind.CLIENT_ERROR, "NOT_FOUND", "Resource not found"),
    408: (ErrorKind.TIMEOUT, "NETWORK_TIMEOUT", "Request timeout"),
    409: (ErrorKind.CLIENT_ERROR, "CONFLICT", "Conflict"),
    422: (ErrorKind.CLIENT_ERROR, "VALIDATION_FAILED", "Validation error"),
    429: (ErrorKind.RATE_LIMITED, "NETWORK_RATE_LIMITED", "Rate limit exceeded"),
    500: (ErrorKind.SERVER_ERROR, "NETWORK_SERVER_ERROR", "Server error"),
    502: (ErrorKind.SERVER_ERROR, "NETWORK_BAD_GATEWAY", "Bad gateway"),
    503: (ErrorKind.SERVER_ERROR, "NETWORK_SERVICE_UNAVAILABLE", "Service unavailable"),
    504: (ErrorKind.TIMEOUT, "NETWORK_TIMEOUT", "Request timeout"),
}

MESSAGE_FIELDS = ("message", "error", "detail", "description")


@dataclass(frozen=True)
class ClassifiedError:
    """A classified, immutable transport or auth-flow failure."""
    kind: ErrorKind
    code: str
    message: str
    status: Optional[int] = None
    url: Optional[str] = None
    method: Optional[str] = None
    request_id: Optional[str] = None
    response_data: Any = None

    @property
    def is_retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dict, excluding None values."""
        result = {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "status": self.status,
            "url": self.url,
            "method": self.method,
            "request_id": self.request_id,
            "retryable": self.is_retryable,
        }
        return {k: v for k, v in result.items() if v is not None}


class TrainingPeaksError(Exception):
    """Raised inside the SDK to carry a ClassifiedError between layers."""

    def __init__(self, error: ClassifiedError):
        super().__init__(error.message)
        self.error = error


class AuthFlowError(TrainingPeaksError):
    """A web-login sequence step failed. Never retried automatically."""

    def __init__(self, message: str, step: str, context: Optional[RequestContext] = None):
        self.step = step
        super().__init__(ClassifiedError(
            kind=ErrorKind.AUTH_FLOW,
            code="AUTH_FLOW_FAILED",
            message=message,
            url=context.url if context else None,
            method=context.method if context else None,
            request_id=context.request_id if context else None,
        ))

    def __str__(self):
        return f"Login step '{self.step}' failed: {self.error.message}"


def extract_message(data: Any) -> Optional[str]:
    """Pull a human-readable message out of an error body, if it has one."""
    if not isinstance(data, dict):
        return None
    for key in MESSAGE_FIELDS:
        value = data.get(key)
        if value and isinstance(value, str):
            return value
    return None


def _decode_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def classify_status(
    status: int,
    data: Any = None,
    reason: str = "",
    context: Optional[RequestContext] = None,
) -> ClassifiedError:
    """Classify an HTTP error status using the fixed status table."""
    detail = extract_message(data) or reason or ""
    if status in STATUS_TABLE:
        kind, code, prefix = STATUS_TABLE[status]
        message = f"{prefix}: {detail}" if detail else prefix
    else:
        kind, code = ErrorKind.UNKNOWN, "NETWORK_REQUEST_FAILED"
        message = f"HTTP Error {status}: {detail}" if detail else f"HTTP Error {status}"

    return ClassifiedError(
        kind=kind,
        code=code,
        message=message,
        status=status,
        url=context.url if context else None,
        method=context.method if context else None,
        request_id=context.request_id if context else None,
        response_data=data,
    )


def classify(error: Any, context: Optional[RequestContext] = None) -> ClassifiedError:
    """
    Map a raw transport failure to a ClassifiedError.

    Args:
        error: A requests.Response with an error status, a requests exception,
            a TrainingPeaksError (returned as-is) or any other exception
        context: The request the failure belongs to

    Returns:
        ClassifiedError describing the failure
    """
    if isinstance(error, TrainingPeaksError):
        return error.error

    if isinstance(error, requests.Response):
        return classify_status(
            error.status_code,
            data=_decode_body(error),
            reason=error.reason or "",
            context=context,
        )

    url = context.url if context else None
    method = context.method if context else None
    request_id = context.request_id if context else None

    if isinstance(error, requests.Timeout):
        return ClassifiedError(
            kind=ErrorKind.TIMEOUT,
            code="NETWORK_TIMEOUT",
            message=f"Request timeout: {error}",
            url=url, method=method, request_id=request_id,
        )

    if isinstance(error, requests.RequestException):
        return ClassifiedError(
            kind=ErrorKind.NETWORK_ERROR,
            code="NETWORK_ERROR",
            message=f"Network Error: {error}",
            url=url, method=method, request_id=request_id,
        )

    return ClassifiedError(
        kind=ErrorKind.UNKNOWN,
        code="NETWORK_REQUEST_FAILED",
        message=f"Unknown Error: {error}",
        url=url, method=method, request_id=request_id,
    )


def cancelled_error(context: Optional[RequestContext] = None) -> ClassifiedError:
    return ClassifiedError(
        kind=ErrorKind.CANCELLED,
        code="REQUEST_CANCELLED",
        message="Request cancelled",
        url=context.url if context else None,
        method=context.method if context else None,
        request_id=context.request_id if context else None,
    )


def budget_exhausted_error(context: Optional[RequestContext] = None, attempts: int = 0) -> ClassifiedError:
    return ClassifiedError(
        kind=ErrorKind.TIMEOUT,
        code="REQUEST_TIMEOUT",
        message=f"Request timed out after {attempts} attempt(s)",
        url=context.url if context else None,
        method=context.method if context else None,
        request_id=context.request_id if context else None,
    )
