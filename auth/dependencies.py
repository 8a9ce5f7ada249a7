"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as `Authorization: Bearer <token>`. They are checked
purely cryptographically and temporally -- there is no registry for access
tokens, so a logged-out user's access token keeps working until it expires.

try_get_current_claims() is the soft variant (returns None on failure).
get_current_claims() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from auth.errors import TokenError, TokenExpiredError, TokenKeyError
from auth.models import TokenKind, UserAuthData
from auth.ports import TokenCodec

logger = logging.getLogger("tokenauth.auth")


def try_get_current_claims(request: Request) -> UserAuthData | None:
    """Validate the Bearer access token on the request.

    Returns the token's UserAuthData on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_claims().
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    if not token:
        return None

    codec: TokenCodec = request.app.state.codec
    try:
        return codec.validate(TokenKind.ACCESS, token)
    except TokenExpiredError as exc:
        logger.info("Access token expired (user_id=%s, expires_at=%s)", exc.user_id, exc.expires_at.isoformat())
    except TokenKeyError:
        logger.error("Access token rejected: access signing key misconfigured")
    except TokenError:
        pass
    return None


def get_current_claims(request: Request) -> UserAuthData:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: UserAuthData = Depends(get_current_claims)): ...
    """
    claims = try_get_current_claims(request)
    if claims is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims
