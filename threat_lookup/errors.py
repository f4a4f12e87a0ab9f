"""Error taxonomy for threat-lookup.

Every failure the gateway reports carries an `ErrorKind`. Callers branch on
`err.kind` (or the exception class), never on message text. Each kind also
knows the HTTP status the web layer answers with.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    QUOTA_EXCEEDED = "quota_exceeded"
    NOT_FOUND = "not_found"
    UPSTREAM_UNEXPECTED = "upstream_unexpected"
    STORE_UNAVAILABLE = "store_unavailable"
    CACHE_UNAVAILABLE = "cache_unavailable"
    NO_INDICATORS_FOUND = "no_indicators_found"
    OCR_FAILED = "ocr_failed"
    PAYLOAD_TOO_LARGE = "payload_too_large"


HTTP_STATUS = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.QUOTA_EXCEEDED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UPSTREAM_UNEXPECTED: 500,
    ErrorKind.STORE_UNAVAILABLE: 500,
    ErrorKind.CACHE_UNAVAILABLE: 500,
    ErrorKind.NO_INDICATORS_FOUND: 404,
    ErrorKind.OCR_FAILED: 500,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
}

# Client-facing messages. Internal detail stays in logs and `details`.
PUBLIC_MESSAGES = {
    ErrorKind.INVALID_INPUT: "Invalid input",
    ErrorKind.BAD_REQUEST: "Bad Request: Incorrect query.",
    ErrorKind.UNAUTHORIZED: "Unauthorized: Authentication failed.",
    ErrorKind.QUOTA_EXCEEDED: "Forbidden: Quota or request limit exceeded.",
    ErrorKind.NOT_FOUND: "Not Found: Lookup results not found.",
    ErrorKind.UPSTREAM_UNEXPECTED: "Internal Server Error",
    ErrorKind.STORE_UNAVAILABLE: "Internal Server Error",
    ErrorKind.CACHE_UNAVAILABLE: "Internal Server Error",
    ErrorKind.NO_INDICATORS_FOUND: "No IOCs found",
    ErrorKind.OCR_FAILED: "Internal Server Error: Unable to process the file.",
    ErrorKind.PAYLOAD_TOO_LARGE: "Payload Too Large: File size exceeds the 256 MB limit.",
}


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    kind: ErrorKind = ErrorKind.UPSTREAM_UNEXPECTED

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        *,
        kind: Optional[ErrorKind] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if kind is not None:
            self.kind = kind

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    @property
    def public_message(self) -> str:
        return PUBLIC_MESSAGES[self.kind]

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class InvalidInput(GatewayError):
    """Raised when user input is not an IP, domain or URL."""

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, value: str):
        super().__init__(f"Cannot classify indicator: {value!r}", {"input": value})
        self.value = value


class UpstreamClientError(GatewayError):
    """Upstream answered 400/401/403/404; mapped 1:1 to a client-visible status."""

    _BY_STATUS = {
        400: ErrorKind.BAD_REQUEST,
        401: ErrorKind.UNAUTHORIZED,
        403: ErrorKind.QUOTA_EXCEEDED,
        404: ErrorKind.NOT_FOUND,
    }

    def __init__(self, status: int, indicator: str = ""):
        super().__init__(
            f"Upstream rejected lookup with HTTP {status}",
            {"status": status, "indicator": indicator},
            kind=self._BY_STATUS[status],
        )
        self.status = status

    @classmethod
    def handles(cls, status: int) -> bool:
        return status in cls._BY_STATUS


class UpstreamUnexpected(GatewayError):
    """Any other upstream failure: odd status, transport error, bad body."""

    kind = ErrorKind.UPSTREAM_UNEXPECTED

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message, {"status": status} if status is not None else None)
        self.status = status


class StoreUnavailable(GatewayError):
    """Durable store I/O or transaction failure."""

    kind = ErrorKind.STORE_UNAVAILABLE


class CacheUnavailable(GatewayError):
    """Fast cache I/O failure."""

    kind = ErrorKind.CACHE_UNAVAILABLE


class NoIndicatorsFound(GatewayError):
    """Text extraction produced no candidate indicators."""

    kind = ErrorKind.NO_INDICATORS_FOUND

    def __init__(self, message: str = "couldn't find ioc"):
        super().__init__(message)


class OcrFailed(GatewayError):
    kind = ErrorKind.OCR_FAILED


class PayloadTooLarge(GatewayError):
    kind = ErrorKind.PAYLOAD_TOO_LARGE

    def __init__(self, size: int, limit: int):
        super().__init__(f"Upload of {size} bytes exceeds {limit} bytes", {"size": size, "limit": limit})
