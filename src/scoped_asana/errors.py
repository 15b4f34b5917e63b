"""
Error types raised by the scoping layer.

Every failure the core can produce is one of these. The dispatcher turns them
into a tagged payload for the MCP caller:

    {"error": "authorization_denied", "message": "Access to task 42 is denied. ..."}

The `error` tag is stable and machine-readable; the message is for humans.
"""

from enum import Enum


class ErrorKind(str, Enum):
    AUTHORIZATION_DENIED = "authorization_denied"
    NOT_SUPPORTED_IN_MODE = "not_supported_in_mode"
    UPSTREAM_FAILURE = "upstream_failure"
    INVALID_REQUEST = "invalid_request"


class AccessError(Exception):
    """
    Base class for all errors raised by the scoped client and the policy gate.

    Attributes:
        message: Human-readable description, safe to show to the caller
        kind: The ErrorKind tag used in the structured payload
    """

    kind: ErrorKind = ErrorKind.AUTHORIZATION_DENIED

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_payload(self) -> dict:
        return {"error": self.kind.value, "message": self.message}


class AuthorizationDenied(AccessError):
    """Requested or fetched data falls outside the allowed scope, or could not be verified."""

    kind = ErrorKind.AUTHORIZATION_DENIED


class NotSupportedInMode(AccessError):
    """The operation is hard-disabled or excluded by the active mode."""

    kind = ErrorKind.NOT_SUPPORTED_IN_MODE


class UpstreamFailure(AccessError):
    """
    The Asana API call itself failed (HTTP error status or transport error).

    Attributes:
        status_code: HTTP status returned by Asana, or None for transport errors
    """

    kind = ErrorKind.UPSTREAM_FAILURE

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        return payload


class InvalidRequest(AccessError, ValueError):
    """Caller input is malformed (too many ids, missing story text, bad pattern)."""

    kind = ErrorKind.INVALID_REQUEST
