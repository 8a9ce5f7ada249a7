"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the token
codec and the service do the work; these own the domain shape.

Request/response dataclasses are the transport-independent shapes the
AuthService accepts and returns. api/models.py holds the Pydantic models
that validate HTTP bodies; routes map between the two.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TokenKind(str, Enum):
    """Selects the signing key and lifetime used by the token codec."""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class User:
    """A registered identity.

    hashed_password is a bcrypt digest -- the plaintext is never stored.
    id, created_at and updated_at are None until the store writes the record.
    """

    username: str
    hashed_password: str
    id: int | None = None
    created_at: datetime | None = None  # UTC, set by store on insert
    updated_at: datetime | None = None  # UTC, set by store on insert/update


@dataclass
class RefreshToken:
    """Registry row for an issued refresh token.

    created_at / expires_at mirror the token's own iat / exp claims. The row's
    existence is what makes the token usable: deleting it revokes the token
    even though its signature stays valid until natural expiry.
    """

    token: str
    user_id: int
    created_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class UserAuthData:
    """Custom claims embedded in every access and refresh token."""

    user_id: int


# ---------------------------------------------------------------------------
# Service I/O
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SignupRequest:
    username: str
    password: str


@dataclass(frozen=True)
class SignupResponse:
    id: int
    username: str


@dataclass(frozen=True)
class LoginRequest:
    username: str
    password: str


@dataclass(frozen=True)
class LoginResponse:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class LogoutRequest:
    refresh_token: str


@dataclass(frozen=True)
class RefreshTokenRequest:
    refresh_token: str


@dataclass(frozen=True)
class RefreshTokenResponse:
    access_token: str
