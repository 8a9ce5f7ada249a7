"""
api/main.py -- FastAPI application entry point for the token auth service.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware  -- adds CORS headers for allowed browser origins
  2. log_requests    -- one access-log line per request with latency

Lifespan handles startup (database, hasher, token codec, stores, service,
registry purge task) and shutdown (cancel purge task, dispose engine)
symmetrically. Everything request handlers need lives on app.state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import (
    AuthenticationError,
    AuthError,
    ConfigurationError,
    ConflictError,
    InvalidInputError,
    UnexpectedError,
)
from auth.passwords import BcryptPasswordHasher
from auth.service import AuthService
from auth.store import Database, RefreshTokenStore, UserStore
from auth.tokens import JoseTokenCodec
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tokenauth.api")

# ---------------------------------------------------------------------------
# Background registry purge
# ---------------------------------------------------------------------------


def purge_expired_refresh_tokens(app: FastAPI) -> int:
    """Delete registry rows for refresh tokens past their natural expiry.

    Expired tokens already fail validation; this only keeps the table small.
    """
    with app.state.db.begin() as conn:
        return app.state.refresh_token_store.delete_expired(conn, datetime.now(timezone.utc))


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Purge expired refresh tokens every interval_seconds.

    The delete runs in a worker thread so the event loop is never blocked on
    the database. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await asyncio.to_thread(purge_expired_refresh_tokens, app)
        except Exception:
            # Keep the loop alive; nothing awaits this task's result.
            logger.exception("Refresh token purge failed")
            continue
        logger.info("Purged %d expired refresh tokens", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.

    Startup order matters:
      1. Database first -- creates the schema before any request arrives.
      2. Providers and stores -- stateless, order-independent.
      3. AuthService -- needs all of the above.
      4. Purge task last -- references the database and registry.
    """
    settings = get_settings()
    logger.info("Token auth API starting up")
    app.state.db = Database(settings.database_url)
    logger.info("Database initialized")
    app.state.codec = JoseTokenCodec.from_settings(settings)
    app.state.user_store = UserStore()
    app.state.refresh_token_store = RefreshTokenStore()
    app.state.auth_service = AuthService(
        BcryptPasswordHasher(settings.bcrypt_cost),
        app.state.codec,
        app.state.user_store,
        app.state.refresh_token_store,
    )
    logger.info(
        "Auth initialized (issuer=%s, access_ttl=%ds, refresh_ttl=%ds, bcrypt_cost=%d)",
        settings.issuer,
        settings.access_token.duration_seconds,
        settings.refresh_token.duration_seconds,
        settings.bcrypt_cost,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.purge_interval_seconds))

    yield

    # Shutdown
    app.state.purge_task.cancel()
    app.state.db.close()
    logger.info("Token auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Token Auth API",
    description="User signup, password login, and access/refresh token lifecycle.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Most specific first; the handler walks this list with isinstance().
_AUTH_ERROR_STATUS: list[tuple[type[AuthError], int]] = [
    (InvalidInputError, 400),
    (ConflictError, 409),
    (AuthenticationError, 401),
    (ConfigurationError, 500),
    (UnexpectedError, 500),
]


def _status_for(exc: AuthError) -> int:
    for cls, status in _AUTH_ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 500


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth failure kind to an HTTP status.

    5xx kinds are logged with their full chain and answered with a generic
    message; their text may name keys, tables or SQL.
    """
    status = _status_for(exc)
    if status >= 500:
        logger.error(
            "%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc, exc_info=exc
        )
        message = "An unexpected error occurred."
    else:
        message = str(exc)
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=message)).model_dump(),
    )
    if status == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    database = "ok" if request.app.state.db.ping() else "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
