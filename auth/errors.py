"""
auth/errors.py -- Failure taxonomy for the authentication core.

Two families:

  AuthError -- what the four operations (signup, login, logout,
      refresh_token) raise. Each subclass carries a stable `code`; the API
      layer maps the class to an HTTP status. Message text is for logs and is
      not a contract.

  TokenError -- what the token codec raises. The orchestrator never lets
      these escape: validation failures become AuthenticationError, issuance
      failures become ConfigurationError or UnexpectedError.

Layer rule: no imports from api/ or core/. Pure stdlib.
"""

from __future__ import annotations

from datetime import datetime


class AuthError(Exception):
    """Base class for every failure the auth core reports."""

    code = "auth_error"


class InvalidInputError(AuthError):
    """Password violates the hashing primitive's restrictions (length, NUL)."""

    code = "invalid_input"


class ConflictError(AuthError):
    """A unique field (username) is already taken."""

    code = "conflict"


class AuthenticationError(AuthError):
    """Bad credentials, or an invalid / expired / unregistered token.

    Deliberately undifferentiated: callers must not be able to tell "no such
    user" from "wrong password", or "never issued" from "already logged out".
    """

    code = "authentication_failed"


class ConfigurationError(AuthError):
    """Deployment misconfiguration (signing key, hashing cost, missing DB handle).

    Not a user error. Should alert, not be retried.
    """

    code = "configuration_error"


class UnexpectedError(AuthError):
    """Store or primitive failure not otherwise classified."""

    code = "unexpected_error"


# ---------------------------------------------------------------------------
# Token codec failures
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """Base class for token codec failures."""


class TokenKeyError(TokenError):
    """Signing key absent, of the wrong type, or rejected by the primitive."""


class TokenInvalidError(TokenError):
    """Malformed token, bad signature, wrong issuer, or bad claim shape."""


class TokenSigningError(TokenError):
    """The signing primitive failed while issuing a token."""


class TokenParseError(TokenError):
    """Unverified claim read-back failed (malformed token or missing times)."""


class TokenExpiredError(TokenError):
    """Signature and issuer are valid but the token is past its `exp` claim.

    The claims are already authentic when this is raised, so the owning user
    id and both timestamps are attached for diagnostics.
    """

    def __init__(self, user_id: int | None, expires_at: datetime, now: datetime) -> None:
        super().__init__(f"token expired: user_id={user_id} expires_at={expires_at.isoformat()} now={now.isoformat()}")
        self.user_id = user_id
        self.expires_at = expires_at
        self.now = now
