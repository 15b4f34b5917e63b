"""
Caller authentication for the streamable-HTTP transport.

When the server is deployed over HTTP it is reachable by anything on the
network, so every tools/list and tools/call must carry a bearer JWT signed with
ASANA_JWT_SECRET_KEY. This module only answers "who is calling?"; *what* they
may touch is fixed by the configured AllowedScope and the PolicyGate, not by
token claims.

Token structure (JWT payload):
    {
        "sub": "ci-agent",        # Who is making the request (logged for audit)
        "exp": 1738800000         # When this token expires (Unix timestamp)
    }

Over stdio there is no HTTP request and authentication is skipped.
"""

from dataclasses import dataclass

import jwt


class AuthError(Exception):
    """
    Raised when token validation fails for any reason.

    A single exception type covers missing, malformed, forged and expired
    tokens. The detailed reason is logged server-side.

    Attributes:
        message: Human-readable error description
        status_code: HTTP status code to return (401 for auth failures)
    """

    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class CallerIdentity:
    subject: str


def validate_token(
    authorization_header: str | None,
    secret_key: str,
    algorithm: str = "HS256",
) -> CallerIdentity:
    """
    Validate a Bearer token from the Authorization header.

    Args:
        authorization_header: Raw header value, expected "Bearer <jwt>"
        secret_key: Key the token must be signed with
        algorithm: Expected JWT algorithm

    Returns:
        CallerIdentity with the token subject

    Raises:
        AuthError: If the header is missing or malformed, or the token is invalid
    """
    if not authorization_header:
        raise AuthError("Missing Authorization header")

    # Scheme match is case-insensitive (RFC 6750).
    parts = authorization_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthError("Invalid Authorization header format, expected 'Bearer <token>'")

    try:
        payload = jwt.decode(
            parts[1].strip(),
            secret_key,
            algorithms=[algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise AuthError(f"Invalid token: {e}")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise AuthError("Invalid token: 'sub' must be a non-empty string")

    return CallerIdentity(subject=subject)
