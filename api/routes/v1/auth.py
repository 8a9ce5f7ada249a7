"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup         -- create an account; 201 {id, username}
  POST /api/v1/auth/login          -- password login; access + refresh tokens
  POST /api/v1/auth/logout         -- revoke a refresh token
  POST /api/v1/auth/refresh-token  -- mint a new access token from a refresh token
  GET  /api/v1/auth/me             -- identity behind a Bearer access token

Each handler runs its AuthService call inside one `db.begin()` block and
builds the response only after that block exits, i.e. after COMMIT. A login
whose registry row fails to commit therefore never returns tokens.

AuthError subclasses raised by the service are not caught here; the
exception handler in api/main.py maps them to status codes.

Handlers are plain `def` so bcrypt and database calls run in the threadpool
instead of blocking the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RefreshTokenBody,
    RefreshTokenResponse,
    SignupRequest,
    SignupResponse,
)
from auth import models
from auth.dependencies import get_current_claims
from auth.service import AuthService
from auth.store import Database, UserStore

# Auth policy:
# - POST /api/v1/auth/signup:         public
# - POST /api/v1/auth/login:          public
# - POST /api/v1/auth/logout:         public -- possession of the refresh token is the credential
# - POST /api/v1/auth/refresh-token:  public -- same
# - GET  /api/v1/auth/me:             requires a valid access token (get_current_claims)
router = APIRouter()


def _no_store(content: dict, status_code: int = 200) -> JSONResponse:
    """Token-bearing responses must never be cached by browsers or proxies."""
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> SignupResponse:
    """Register a new account.

    400 invalid_input when bcrypt cannot take the password (over 72 bytes or
    containing NUL); 409 conflict when the username is taken.
    """
    service: AuthService = request.app.state.auth_service
    db: Database = request.app.state.db
    with db.begin() as conn:
        result = service.signup(conn, models.SignupRequest(username=body.username, password=body.password))
    return SignupResponse(id=result.id, username=result.username)


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    Returns the same generic 401 for unknown username and wrong password so
    username existence does not leak.
    """
    service: AuthService = request.app.state.auth_service
    db: Database = request.app.state.db
    with db.begin() as conn:
        result = service.login(conn, models.LoginRequest(username=body.username, password=body.password))
    return _no_store(
        LoginResponse(access_token=result.access_token, refresh_token=result.refresh_token).model_dump()
    )


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: RefreshTokenBody) -> MessageResponse:
    """Delete the refresh token from the registry. 401 if it is not registered."""
    service: AuthService = request.app.state.auth_service
    db: Database = request.app.state.db
    with db.begin() as conn:
        service.logout(conn, models.LogoutRequest(refresh_token=body.refresh_token))
    return MessageResponse(message="You have logged out.")


@router.post("/auth/refresh-token", response_model=RefreshTokenResponse)
def refresh_token(request: Request, body: RefreshTokenBody) -> JSONResponse:
    """Exchange a valid, registered refresh token for a new access token.

    The refresh token is not rotated; the client keeps using it until it
    expires or is logged out.
    """
    service: AuthService = request.app.state.auth_service
    db: Database = request.app.state.db
    with db.begin() as conn:
        result = service.refresh_token(conn, models.RefreshTokenRequest(refresh_token=body.refresh_token))
    return _no_store(RefreshTokenResponse(access_token=result.access_token).model_dump())


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, claims: models.UserAuthData = Depends(get_current_claims)) -> MeResponse:
    """Return the account behind the presented access token.

    A token for a since-deleted account is treated as unauthenticated.
    """
    db: Database = request.app.state.db
    users: UserStore = request.app.state.user_store
    with db.begin() as conn:
        user = users.find_by_id(conn, claims.user_id)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return MeResponse(id=user.id, username=user.username)
