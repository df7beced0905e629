"""Shared error types, helpers and codes."""

from __future__ import annotations

from typing import Any

from starlette.responses import JSONResponse


class SaccolinkError(Exception):
    """Base class for all saccolink errors."""


class ConfigurationError(SaccolinkError):
    """Required secret, client id or URL is missing.

    Fatal: raised before any network call is attempted.
    """


class NetworkError(SaccolinkError):
    """Transport-level failure (DNS, refused connection, timeout).

    ``outcome_unknown`` is set when the request may have reached the remote
    side (timeouts), so the caller must check state before sending again.
    """

    def __init__(self, message: str, outcome_unknown: bool = False) -> None:
        super().__init__(message)
        self.outcome_unknown = outcome_unknown


class ApiError(SaccolinkError):
    """Remote API answered with an error status."""

    def __init__(self, message: str, status_code: int, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AuthenticationRejected(ApiError):
    """Remote party rejected the signature or credentials (401/403)."""


class UnknownEndpoint(ApiError):
    """Remote party reports the resource does not exist (404)."""


class NonceCacheFull(SaccolinkError):
    """Replay cache is at capacity with nonces that are still live.

    Verifiers treat this as a rejection rather than forgetting live nonces.
    """


class ErrorCode:
    INVALID_JSON = "invalid_json"
    UNAUTHORIZED = "unauthorized"
    BAD_REQUEST = "bad_request"
    MISCONFIGURED = "misconfigured"


def error_response(
    code: str,
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(payload, status_code=status_code)
