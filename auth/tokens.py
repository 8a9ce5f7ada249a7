"""
auth/tokens.py -- JWT issuance, validation and claim read-back.

Security design decisions:
  JWT: python-jose with HS256. Two independent signing contexts -- access
       and refresh -- each with its own key and lifetime, selected by
       TokenKind. A refresh token never verifies as an access token because
       the keys differ (core.config rejects identical keys).

  Claims: one flat record {user_id, iat, exp, iss, jti}. jti is a random
       token id so that two tokens minted in the same second for the same
       user are still distinct strings (the registry keys on the string).

  Validation order: key check -> parse -> signature -> issuer -> expiry ->
       claim shape. python-jose checks `exp` before `iss`, so expiry is
       disabled in jwt.decode() and enforced here after the issuer check.
       An expired token with a foreign issuer is therefore "invalid", not
       "expired".

  peek_times(): reads iat/exp WITHOUT verifying the signature. Safe only for
       a token this process has just signed (registry bookkeeping during
       login). Never call it on client-supplied input.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from jose import jwt
from jose.exceptions import JOSEError, JWKError, JWTError

from auth.errors import (
    TokenExpiredError,
    TokenInvalidError,
    TokenKeyError,
    TokenParseError,
    TokenSigningError,
)
from auth.models import TokenKind, UserAuthData
from core.config import Settings, TokenSettings

logger = logging.getLogger("tokenauth.tokens")

ALGORITHM = "HS256"

# Decoding options: signature and issuer are verified by python-jose, expiry
# is checked manually so it runs after the issuer check.
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_iss": True,
    "verify_exp": False,
    "verify_aud": False,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class JoseTokenCodec:
    """Issue and validate HS256 JWTs for the two token kinds.

    Usage:
        codec = JoseTokenCodec.from_settings(get_settings())
        token = codec.issue(TokenKind.ACCESS, UserAuthData(user_id=7))
        codec.validate(TokenKind.ACCESS, token)  # UserAuthData(user_id=7)

    clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        access: TokenSettings,
        refresh: TokenSettings,
        issuer: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._contexts = {TokenKind.ACCESS: access, TokenKind.REFRESH: refresh}
        self._issuer = issuer
        self._clock = clock or _utc_now

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] | None = None) -> JoseTokenCodec:
        return cls(
            settings.token_settings(TokenKind.ACCESS.value),
            settings.token_settings(TokenKind.REFRESH.value),
            settings.issuer,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, kind: TokenKind, claims: UserAuthData) -> str:
        """Sign a new token of the given kind carrying claims.

        Raises TokenKeyError when the kind's key is not configured and
        TokenSigningError when the signing primitive fails.
        """
        context = self._contexts[kind]
        key = self._signing_key(kind)
        issued_at = int(self._clock().timestamp())
        payload = {
            "user_id": claims.user_id,
            "iat": issued_at,
            "exp": issued_at + context.duration_seconds,
            "iss": self._issuer,
            "jti": uuid.uuid4().hex,
        }
        try:
            return jwt.encode(payload, key, algorithm=ALGORITHM)
        except JOSEError as exc:
            raise TokenSigningError(f"failed to sign {kind.value} token: {exc}") from exc

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def validate(self, kind: TokenKind, token: str) -> UserAuthData:
        """Verify a token of the given kind and return its UserAuthData.

        Raises, in priority order:
          TokenKeyError      -- key missing or rejected by the primitive
          TokenExpiredError  -- authentic token, now >= exp
          TokenInvalidError  -- everything else
        """
        key = self._signing_key(kind)
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[ALGORITHM],
                issuer=self._issuer,
                options=_DECODE_OPTIONS,
            )
        except JWKError as exc:
            logger.error("Signing key for %s tokens rejected by the primitive: %s", kind.value, exc)
            raise TokenKeyError(f"{kind.value} signing key is unusable: {exc}") from exc
        except (JWTError, TypeError, ValueError) as exc:
            raise TokenInvalidError(f"invalid token: {exc}") from exc

        exp = claims.get("exp")
        if exp is None:
            raise TokenInvalidError("invalid token: missing required claim 'exp'")
        if not _is_number(exp):
            raise TokenInvalidError("invalid token: claim 'exp' must be numeric")

        user_id = claims.get("user_id")
        now = self._clock()
        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        if now >= expires_at:
            owner = user_id if isinstance(user_id, int) and not isinstance(user_id, bool) else None
            raise TokenExpiredError(owner, expires_at, now)

        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise TokenInvalidError("invalid token: claim 'user_id' missing or not an integer")
        return UserAuthData(user_id=user_id)

    # ------------------------------------------------------------------
    # Unverified read-back (internal use only)
    # ------------------------------------------------------------------

    def peek_times(self, token: str) -> tuple[datetime, datetime]:
        """Return (issued_at, expires_at) without verifying the signature."""
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenParseError(f"cannot read token claims: {exc}") from exc
        iat = claims.get("iat")
        exp = claims.get("exp")
        if not _is_number(iat) or not _is_number(exp):
            raise TokenParseError("token is missing numeric 'iat'/'exp' claims")
        return (
            datetime.fromtimestamp(iat, tz=timezone.utc),
            datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _signing_key(self, kind: TokenKind) -> str:
        key = self._contexts[kind].signing_key
        if not isinstance(key, str) or not key:
            logger.error("No usable signing key configured for %s tokens", kind.value)
            raise TokenKeyError(f"{kind.value} signing key is not configured")
        return key
