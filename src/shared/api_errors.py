"""
Error taxonomy for the bookshelf API client.

Every failure that crosses the network boundary is classified here, once, into a
closed set of kinds. Controllers branch on `ErrorKind` only; they never inspect
status codes or match on error text.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx
from pydantic import ValidationError


class ErrorKind(StrEnum):
    """Closed set of error kinds seen by business logic."""

    AUTHENTICATION_REQUIRED = "authentication_required"  # 401
    RATE_LIMITED = "rate_limited"                        # 429
    SERVICE_UNAVAILABLE = "service_unavailable"          # 5xx, unsuccessful envelope
    NETWORK_ERROR = "network_error"                      # no response at all
    VALIDATION_ERROR = "validation_error"                # 400/409/422, client-side checks
    PERMISSION_DENIED = "permission_denied"              # 403, non-owner mutation
    NOT_FOUND = "not_found"                              # 404


TRANSIENT_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.SERVICE_UNAVAILABLE,
    ErrorKind.NETWORK_ERROR,
})

DEFAULT_ERROR_MESSAGE = "An unexpected error occurred. Please try again."

_KIND_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.AUTHENTICATION_REQUIRED: "Authentication required. Please log in.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please try again later.",
    ErrorKind.SERVICE_UNAVAILABLE: "Service temporarily unavailable. Please try again later.",
    ErrorKind.NETWORK_ERROR: "Network error. Please check your connection and try again.",
    ErrorKind.VALIDATION_ERROR: "The request was invalid.",
    ErrorKind.PERMISSION_DENIED: "You do not have permission to do that.",
    ErrorKind.NOT_FOUND: "Not found",
}


@dataclass(frozen=True)
class ErrorDescriptor:
    """
    Classified error with a user-facing message.

    `payload_message` is the message embedded in the backend's error envelope, when
    there was one; `message` is always a friendly sentence for the kind.
    """

    kind: ErrorKind
    message: str
    code: str | None = None
    status_code: int | None = None
    payload_message: str | None = None

    @property
    def is_transient(self) -> bool:
        """Whether retrying the same request may succeed."""
        return self.kind in TRANSIENT_KINDS

    @property
    def is_session_invalid(self) -> bool:
        """Whether the server rejected the credentials."""
        return self.kind == ErrorKind.AUTHENTICATION_REQUIRED


class ApiError(Exception):
    """Raised for every classified API failure."""

    def __init__(self, descriptor: ErrorDescriptor) -> None:
        self.descriptor = descriptor
        super().__init__(descriptor.message)

    @classmethod
    def of(
        cls,
        kind: ErrorKind,
        message: str | None = None,
        code: str | None = None,
    ) -> "ApiError":
        """Build an error of the given kind without a response."""
        return cls(ErrorDescriptor(kind=kind, message=message or _KIND_MESSAGES[kind], code=code))

    @property
    def kind(self) -> ErrorKind:
        """Kind of the underlying descriptor."""
        return self.descriptor.kind


def parse_http_error(  # noqa: PLR0911
    response: httpx.Response,
    entity_type: str = "",
) -> ErrorDescriptor:
    """
    Classify a non-2xx response.

    Args:
        response: The HTTP response from httpx
        entity_type: Type of entity (e.g., "book", "review") for not-found messages

    Returns:
        ErrorDescriptor with kind, friendly message, sub-code and payload message
    """
    status = response.status_code
    error_body = _safe_get_error(response)
    payload_message = error_body.get("message") if error_body else None
    code = error_body.get("code") if error_body else None
    if not isinstance(payload_message, str) or not payload_message:
        payload_message = None
    if not isinstance(code, str) or not code:
        code = None

    def descriptor(kind: ErrorKind, message: str | None = None, sub_code: str | None = None) -> ErrorDescriptor:  # noqa: E501
        return ErrorDescriptor(
            kind=kind,
            message=message or _KIND_MESSAGES[kind],
            code=sub_code or code,
            status_code=status,
            payload_message=payload_message,
        )

    if status == 401:
        return descriptor(ErrorKind.AUTHENTICATION_REQUIRED)

    if status == 403:
        return descriptor(ErrorKind.PERMISSION_DENIED)

    if status == 404:
        msg = f"{entity_type.title()} not found" if entity_type else "Not found"
        return descriptor(ErrorKind.NOT_FOUND, msg)

    if status == 429:
        return descriptor(ErrorKind.RATE_LIMITED)

    if status >= 500:
        return descriptor(ErrorKind.SERVICE_UNAVAILABLE, sub_code=code or f"HTTP_{status}")

    # Remaining 4xx responses are caller-fixable
    return descriptor(ErrorKind.VALIDATION_ERROR, payload_message or _extract_validation_message(response))  # noqa: E501


def unsuccessful_envelope(error: dict[str, Any] | None, status_code: int) -> ErrorDescriptor:
    """Classify a 2xx response whose envelope reports `success: false`."""
    error = error or {}
    payload_message = error.get("message") or None
    return ErrorDescriptor(
        kind=ErrorKind.SERVICE_UNAVAILABLE,
        message=_KIND_MESSAGES[ErrorKind.SERVICE_UNAVAILABLE],
        code=error.get("code") or "UNSUCCESSFUL_RESPONSE",
        status_code=status_code,
        payload_message=payload_message,
    )


def parse_request_error(e: httpx.RequestError) -> ErrorDescriptor:
    """Classify a failure where no response arrived."""
    code = "TIMEOUT" if isinstance(e, httpx.TimeoutException) else "NETWORK_ERROR"
    return ErrorDescriptor(
        kind=ErrorKind.NETWORK_ERROR,
        message=_KIND_MESSAGES[ErrorKind.NETWORK_ERROR],
        code=code,
    )


def classify_exception(error: BaseException) -> ErrorDescriptor:
    """
    Map any exception raised below a controller into the taxonomy.

    ApiError passes through. Raw httpx errors only show up here when a fetcher
    bypassed the API client; anything else is treated as a service failure.
    """
    if isinstance(error, ApiError):
        return error.descriptor
    if isinstance(error, httpx.HTTPStatusError):
        return parse_http_error(error.response)
    if isinstance(error, httpx.RequestError):
        return parse_request_error(error)
    return ErrorDescriptor(
        kind=ErrorKind.SERVICE_UNAVAILABLE,
        message=DEFAULT_ERROR_MESSAGE,
        code="UNEXPECTED",
    )


def describe_error(
    error: BaseException | ErrorDescriptor | None,
    fallback: str = DEFAULT_ERROR_MESSAGE,
) -> str:
    """
    Derive the string shown to the user for an error.

    Priority: the backend's embedded error message, then the error's own message,
    then `fallback`.
    """
    if error is None:
        return fallback
    if isinstance(error, ApiError):
        error = error.descriptor
    if isinstance(error, ErrorDescriptor):
        return error.payload_message or error.message or fallback
    return str(error) or fallback


def _safe_get_error(response: httpx.Response) -> dict[str, Any]:
    """Safely extract the `error` object from an error envelope."""
    try:
        body = response.json()
    except ValueError:
        return {}
    if not isinstance(body, dict):
        return {}
    error = body.get("error")
    if isinstance(error, dict):
        return error
    # Some endpoints answer with a bare {"message": ...}
    if isinstance(body.get("message"), str):
        return {"message": body["message"]}
    return {}


def _extract_validation_message(response: httpx.Response) -> str:
    """Extract a validation message from a 4xx response without an envelope message."""
    try:
        body = response.json()
    except ValueError:
        return _KIND_MESSAGES[ErrorKind.VALIDATION_ERROR]
    if not isinstance(body, dict):
        return _KIND_MESSAGES[ErrorKind.VALIDATION_ERROR]
    details = (body.get("error") or {}).get("details") if isinstance(body.get("error"), dict) else None  # noqa: E501
    if isinstance(details, dict) and details:
        messages = [f"{field}: {msg}" for field, msg in details.items()]
        return "; ".join(messages)
    return _KIND_MESSAGES[ErrorKind.VALIDATION_ERROR]


def from_validation_error(e: ValidationError) -> ApiError:
    """Turn a failed client-side input check into a VALIDATION_ERROR."""
    messages = []
    for err in e.errors():
        loc = err.get("loc") or ("value",)
        msg = str(err.get("msg", "invalid")).removeprefix("Value error, ")
        messages.append(f"{loc[-1]}: {msg}")
    return ApiError.of(
        ErrorKind.VALIDATION_ERROR,
        message="; ".join(messages) or _KIND_MESSAGES[ErrorKind.VALIDATION_ERROR],
    )
