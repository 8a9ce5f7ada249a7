"""
auth/ports.py -- Capability interfaces the AuthService depends on.

Each Protocol has exactly one production implementation:

  PasswordHasher          -> auth.passwords.BcryptPasswordHasher
  TokenCodec              -> auth.tokens.JoseTokenCodec
  UserRepository          -> auth.store.UserStore
  RefreshTokenRepository  -> auth.store.RefreshTokenStore

Tests substitute doubles without touching the service. Repository methods
take the execution handle (`conn`) as their first argument; the caller owns
its scope.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from auth.models import RefreshToken, TokenKind, User, UserAuthData


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, hashed: str, candidate: str) -> bool: ...


class TokenCodec(Protocol):
    def issue(self, kind: TokenKind, claims: UserAuthData) -> str: ...

    def validate(self, kind: TokenKind, token: str) -> UserAuthData: ...

    def peek_times(self, token: str) -> tuple[datetime, datetime]:
        """Read back (issued_at, expires_at) WITHOUT verifying the signature.

        Only for tokens this process has just signed.
        """
        ...


class UserRepository(Protocol):
    def create(self, conn: Any, user: User) -> User: ...

    def find_by_id(self, conn: Any, user_id: int) -> User | None: ...

    def find_by_username(self, conn: Any, username: str) -> User | None: ...

    def update(self, conn: Any, user_id: int, user: User) -> User | None: ...

    def delete(self, conn: Any, user_id: int) -> bool: ...


class RefreshTokenRepository(Protocol):
    def create(self, conn: Any, refresh_token: RefreshToken) -> RefreshToken: ...

    def find_by_token(self, conn: Any, token: str) -> RefreshToken | None: ...

    def update(self, conn: Any, token: str, refresh_token: RefreshToken) -> RefreshToken | None: ...

    def delete(self, conn: Any, token: str) -> bool: ...

    def delete_expired(self, conn: Any, now: datetime) -> int: ...
