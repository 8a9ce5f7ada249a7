"""
auth/passwords.py -- bcrypt credential hashing.

Using bcrypt directly rather than passlib[bcrypt]: passlib's internal
wrap-bug detection builds a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct usage has no compatibility shim.

bcrypt only reads the first 72 bytes of its input and treats NUL as a
terminator in most implementations. Rather than silently hashing a prefix,
both limits are enforced up front:
  hash()   raises InvalidInputError
  verify() returns False -- a malformed candidate is indistinguishable from a
           wrong password, so the error channel leaks nothing.

Comparison is delegated to bcrypt.checkpw, which is constant-time.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.errors import ConfigurationError, InvalidInputError, UnexpectedError

logger = logging.getLogger("tokenauth.auth")

MAX_PASSWORD_BYTES = 72
MIN_COST = 4
MAX_COST = 31


def _check_restrictions(password: str) -> None:
    size = len(password.encode("utf-8"))
    if size > MAX_PASSWORD_BYTES:
        raise InvalidInputError(f"invalid password: password is {size} bytes, exceeds {MAX_PASSWORD_BYTES} bytes")
    if "\x00" in password:
        raise InvalidInputError("invalid password: password contains null characters")


class BcryptPasswordHasher:
    """Hash and verify passwords with a fixed bcrypt cost factor.

    Usage:
        hasher = BcryptPasswordHasher(cost=12)
        digest = hasher.hash("Secret123!")
        hasher.verify(digest, "Secret123!")  # True
    """

    def __init__(self, cost: int = 12) -> None:
        if not MIN_COST <= cost <= MAX_COST:
            raise ConfigurationError(f"bcrypt cost must be between {MIN_COST} and {MAX_COST}, got {cost}")
        self.cost = cost

    def hash(self, password: str) -> str:
        """Return a salted bcrypt digest of password."""
        _check_restrictions(password)
        try:
            digest = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.cost))
        except ValueError as exc:
            raise UnexpectedError(f"password hashing error: {exc}") from exc
        return digest.decode("utf-8")

    def verify(self, hashed: str, candidate: str) -> bool:
        """Return True if candidate matches the bcrypt digest. Never raises."""
        try:
            _check_restrictions(candidate)
        except InvalidInputError:
            return False
        try:
            return bcrypt.checkpw(candidate.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            # Malformed digest (bad salt, truncated value)
            logger.warning("Password verification against a malformed hash")
            return False
