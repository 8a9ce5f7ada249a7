"""
auth/service.py -- AuthService: signup, login, logout, refresh_token.

The service holds no state of its own. Users live in the identity store,
issued refresh tokens in the registry; both are reached through the
execution handle (`conn`) the caller passes to every operation. The caller
owns the handle's scope -- in the API that is one transaction per request,
so a login either commits its registry row and returns tokens, or rolls
back and returns nothing.

Token lifecycle:
  login   -> issue refresh + access, register the refresh token
  refresh -> refresh token must verify AND be registered; mint a new access
             token. The refresh token is not rotated.
  logout  -> delete the registry row. The refresh token is dead from then on
             even though its signature and exp are still valid. Access tokens
             already handed out stay valid until they expire.

Failure policy:
  Every credential or token problem is AuthenticationError with one of two
  fixed messages, so the caller cannot enumerate usernames or probe the
  registry. Store/primitive failures keep their kind and gain a
  stage-identifying prefix.
"""

from __future__ import annotations

import logging
from typing import Any

from auth.errors import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    TokenError,
    TokenExpiredError,
    TokenKeyError,
    UnexpectedError,
)
from auth.models import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    RefreshToken,
    RefreshTokenRequest,
    RefreshTokenResponse,
    SignupRequest,
    SignupResponse,
    TokenKind,
    User,
    UserAuthData,
)
from auth.ports import PasswordHasher, RefreshTokenRepository, TokenCodec, UserRepository

logger = logging.getLogger("tokenauth.auth")

_BAD_CREDENTIALS = "invalid username or password"
_UNAUTHENTICATED = "unauthenticated user"

# Plaintext for the timing-equalization hash. Never a valid password for any
# account because it is only ever compared, never stored.
_DUMMY_PASSWORD = "tokenauth_timing_dummy"


class AuthService:
    """Coordinates the hasher, the token codec and the two stores.

    Usage:
        service = AuthService(hasher, codec, UserStore(), RefreshTokenStore())
        with db.begin() as conn:
            tokens = service.login(conn, LoginRequest("alice", "Secret123!"))
    """

    def __init__(
        self,
        hasher: PasswordHasher,
        codec: TokenCodec,
        users: UserRepository,
        refresh_tokens: RefreshTokenRepository,
    ) -> None:
        self._hasher = hasher
        self._codec = codec
        self._users = users
        self._refresh_tokens = refresh_tokens
        # Computed once so an unknown username costs the same bcrypt work as
        # a wrong password.
        self._dummy_hash = hasher.hash(_DUMMY_PASSWORD)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def signup(self, conn: Any, request: SignupRequest) -> SignupResponse:
        """Create an account.

        Raises InvalidInputError for a password bcrypt cannot take and
        ConflictError when the username is taken.
        """
        hashed = self._hasher.hash(request.password)
        user = self._users.create(conn, User(username=request.username, hashed_password=hashed))
        logger.info("User created (user_id=%s)", user.id)
        return SignupResponse(id=user.id, username=user.username)

    def login(self, conn: Any, request: LoginRequest) -> LoginResponse:
        """Check credentials and hand out a registered refresh token plus an access token."""
        user = self._users.find_by_username(conn, request.username)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt.
            self._hasher.verify(self._dummy_hash, request.password)
            logger.warning("Login failed: bad credentials")
            raise AuthenticationError(_BAD_CREDENTIALS)
        if not self._hasher.verify(user.hashed_password, request.password):
            logger.warning("Login failed: bad credentials")
            raise AuthenticationError(_BAD_CREDENTIALS)

        claims = UserAuthData(user_id=user.id)
        refresh_token = self._issue(TokenKind.REFRESH, claims, stage="login")
        access_token = self._issue(TokenKind.ACCESS, claims, stage="login")

        try:
            issued_at, expires_at = self._codec.peek_times(refresh_token)
        except TokenError as exc:
            raise UnexpectedError(f"login: read refresh token times: {exc}") from exc

        # If this raises, no token leaves the service: a refresh token without
        # a registry row could never be revoked by logout.
        try:
            self._refresh_tokens.create(
                conn,
                RefreshToken(token=refresh_token, user_id=user.id, created_at=issued_at, expires_at=expires_at),
            )
        except ConflictError as exc:
            # Duplicate token or the user vanished mid-login. Not a caller error.
            raise UnexpectedError(f"login: register refresh token: {exc}") from exc
        logger.info("Login succeeded (user_id=%s)", user.id)
        return LoginResponse(access_token=access_token, refresh_token=refresh_token)

    def logout(self, conn: Any, request: LogoutRequest) -> None:
        """Revoke a refresh token by deleting its registry row.

        No signature or expiry check: an expired but still registered token
        can be logged out, which simply cleans up its row.
        """
        registered = self._refresh_tokens.find_by_token(conn, request.refresh_token)
        if registered is None:
            raise AuthenticationError(_UNAUTHENTICATED)
        self._refresh_tokens.delete(conn, request.refresh_token)
        logger.info("Logout (user_id=%s)", registered.user_id)

    def refresh_token(self, conn: Any, request: RefreshTokenRequest) -> RefreshTokenResponse:
        """Mint a new access token from a valid, registered refresh token."""
        try:
            claims = self._codec.validate(TokenKind.REFRESH, request.refresh_token)
        except TokenExpiredError as exc:
            logger.info(
                "Refresh rejected: token expired (user_id=%s, expires_at=%s, now=%s)",
                exc.user_id,
                exc.expires_at.isoformat(),
                exc.now.isoformat(),
            )
            raise AuthenticationError(_UNAUTHENTICATED) from exc
        except TokenKeyError as exc:
            logger.error("Refresh rejected: refresh signing key misconfigured: %s", exc)
            raise AuthenticationError(_UNAUTHENTICATED) from exc
        except TokenError as exc:
            logger.info("Refresh rejected: %s", exc)
            raise AuthenticationError(_UNAUTHENTICATED) from exc

        # Covers logout-then-refresh: the token still verifies but is revoked.
        if self._refresh_tokens.find_by_token(conn, request.refresh_token) is None:
            logger.info("Refresh rejected: token not registered (user_id=%s)", claims.user_id)
            raise AuthenticationError(_UNAUTHENTICATED)

        access_token = self._issue(TokenKind.ACCESS, claims, stage="refresh")
        logger.info("Access token refreshed (user_id=%s)", claims.user_id)
        return RefreshTokenResponse(access_token=access_token)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue(self, kind: TokenKind, claims: UserAuthData, *, stage: str) -> str:
        try:
            return self._codec.issue(kind, claims)
        except TokenKeyError as exc:
            raise ConfigurationError(f"{stage}: issue {kind.value} token: {exc}") from exc
        except TokenError as exc:
            raise UnexpectedError(f"{stage}: issue {kind.value} token: {exc}") from exc


