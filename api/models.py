"""
API request and response models for the token authentication REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal representation the AuthService works with. Route handlers
map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup.

    The password length here is a transport sanity cap only. The 72-byte
    bcrypt limit is enforced by the hasher, which reports it as invalid_input.
    """

    username: str = Field(min_length=1, max_length=255, examples=["alice"])
    password: str = Field(min_length=1, max_length=255, examples=["Secret123!"])


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=255, examples=["alice"])
    password: str = Field(min_length=1, max_length=255, examples=["Secret123!"])


class RefreshTokenBody(BaseModel):
    """Request body for POST /api/v1/auth/logout and /api/v1/auth/refresh-token."""

    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SignupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: Literal["bearer"] = "bearer"


class RefreshTokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: Literal["bearer"] = "bearer"


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class MeResponse(BaseModel):
    """Identity behind the presented access token."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
