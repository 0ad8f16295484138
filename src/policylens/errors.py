from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_REQUEST = "INVALID_REQUEST"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    INVALID_URL = "INVALID_URL"
    FORBIDDEN = "FORBIDDEN"
    RATE_LIMITED = "RATE_LIMITED"
    FETCH_FAILED = "FETCH_FAILED"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    INTERNAL = "INTERNAL"


_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.PAYLOAD_TOO_LARGE: 413,
    ErrorCode.INVALID_URL: 400,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.FETCH_FAILED: 502,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.METHOD_NOT_ALLOWED: 405,
    ErrorCode.INTERNAL: 500,
}


class PolicyLensError(Exception):
    """Raised by handlers and components for all expected failure conditions.

    Caught by server.py and serialised into the JSON error envelope.
    Never catch this inside business logic; let it propagate to the
    HTTP layer so the client receives a structured error with a suggestion.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str = "",
        recoverable: bool = False,
        *,
        status_code: int | None = None,
        upstream_status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable
        self.status_code = status_code or _STATUS_BY_CODE[code]
        self.upstream_status = upstream_status
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        body: dict = {
            "success": False,
            "error": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "recoverable": self.recoverable,
        }
        if self.upstream_status is not None:
            body["upstreamStatus"] = self.upstream_status
        if self.retry_after is not None:
            body["retryAfter"] = self.retry_after
        return body


class InferenceError(Exception):
    """An inference call failed or returned nothing usable.

    Internal only: the analyzer downgrades it to a placeholder finding and it
    never reaches the HTTP layer.
    """


class StorageError(Exception):
    """A cache storage backend failed to read or write."""
