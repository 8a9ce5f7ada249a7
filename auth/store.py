"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and RefreshTokenStore are the repositories; _row_to_user /
_row_to_refresh_token are the mappers. Service and route code never touches
SQL directly.

Execution handle:
  The stores own no connection. Every method takes a SQLAlchemy Connection
  as its first argument and runs inside whatever transaction the caller
  opened (normally `with database.begin() as conn:` in the route). Passing
  None or anything that is not a Connection is a configuration error.

Error mapping:
  IntegrityError on a unique column -> ConflictError
  any other SQLAlchemyError         -> UnexpectedError
  The original exception is chained (raise ... from exc) for the logs.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are stored as ISO 8601 UTC strings (String(32)) and mapped back
to aware datetimes. Every time is written at second precision in one fixed
format, so they sort lexicographically in chronological order.
delete_expired() relies on that.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import ConfigurationError, ConflictError, UnexpectedError
from auth.models import RefreshToken, User
from core.config import get_settings

logger = logging.getLogger("tokenauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("token", Text, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    WAL lets readers proceed while a writer holds the lock. Both PRAGMAs are
    per-connection and are not inherited from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def _require_connection(conn: object) -> Connection:
    """Return conn if it is a usable execution handle, else raise ConfigurationError."""
    if conn is None:
        raise ConfigurationError("query executor was not set")
    if not isinstance(conn, Connection):
        raise ConfigurationError(f"query executor is of invalid type: {type(conn).__name__}")
    return conn


# ---------------------------------------------------------------------------
# Database handle factory
# ---------------------------------------------------------------------------


class Database:
    """Owns the engine and hands out transactional connections.

    Usage:
        db = Database("sqlite:///auth.db")
        with db.begin() as conn:
            users.create(conn, User(username="alice", hashed_password=digest))
        db.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = 30
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Yield a Connection inside a transaction.

        Commits when the block exits normally, rolls back if it raises.
        """
        with self.engine.begin() as conn:
            yield conn

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Identity store
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records. Username uniqueness is a UNIQUE constraint."""

    def create(self, conn: Connection, user: User) -> User:
        """Insert a new user and return it with id and timestamps filled in.

        Raises ConflictError if the username already exists. The constraint
        is the only guard: concurrent inserts of one username race at the
        database and exactly one wins.
        """
        conn = _require_connection(conn)
        now = _utc_now()
        try:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    hashed_password=user.hashed_password,
                    created_at=_to_iso(now),
                    updated_at=_to_iso(now),
                )
            )
        except IntegrityError as exc:
            raise ConflictError("a user with that username already exists") from exc
        except SQLAlchemyError as exc:
            raise UnexpectedError(f"user store: create failed: {exc}") from exc
        return User(
            id=result.inserted_primary_key[0],
            username=user.username,
            hashed_password=user.hashed_password,
            created_at=now,
            updated_at=now,
        )

    def find_by_id(self, conn: Connection, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        conn = _require_connection(conn)
        try:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        except SQLAlchemyError as exc:
            raise UnexpectedError(f"user store: find_by_id failed: {exc}") from exc
        return _row_to_user(row) if row is not None else None

    def find_by_username(self, conn: Connection, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        conn = _require_connection(conn)
        try:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        except SQLAlchemyError as exc:
            raise UnexpectedError(f"user store: find_by_username failed: {exc}") from exc
        return _row_to_user(row) if row is not None else None

    def update(self, conn: Connection, user_id: int, user: User) -> User | None:
        """Overwrite username and hashed_password of an existing user.

        Returns the updated record, or None if user_id was not found. Renaming
        onto a taken username raises ConflictError.
        """
        conn = _require_connection(conn)
        try:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    username=user.username,
                    hashed_password=user.hashed_password,
                    updated_at=_to_iso(_utc_now()),
                )
            )
        except IntegrityError as exc:
            raise ConflictError("a user with that username already exists") from exc
        except SQLAlchemyError as exc:
            raise UnexpectedError(f"user store: update failed: {exc}") from exc
        if result.rowcount == 0:
            return None
        return self.find_by_id(conn, user_id)

    def delete(self, conn: Connection, user_id: int) -> bool:
        """Permanently delete a user. Returns True if deleted, False if not found.

        Registered refresh tokens go with it (ON DELETE CASCADE).
        """
        conn = _require_connection(conn)
        try:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        except SQLAlchemyError as exc:
            raise UnexpectedError(f"user store: delete failed: {exc}") from exc
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Token registry
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Registry of issued refresh tokens, keyed by the token string itself.

    A refresh token is usable only while its row exists. delete() is the
    whole revocation mechanism.
    """

    def create(self, conn: Connection, refresh_token: RefreshToken) -> RefreshToken:
        """Register a freshly issued refresh token."""
        conn = _require_connection(conn)
        try:
            conn.execute(
                _refresh_tokens.insert().values(
                    token=refresh_token.token,
                    user_id=refresh_token.user_id,
                    created_at=_to_iso(refresh_token.created_at),
                    expires_at=_to_iso(refresh_token.expires_at),
                )
            )
        except IntegrityError as exc:
            raise ConflictError("refresh token is already registered or its user does not exist") from exc
        except SQLAlchemyError as exc:
            raise UnexpectedError(f"refresh token registry: create failed: {exc}") from exc
        return refresh_token

    def find_by_token(self, conn: Connection, token: str) -> RefreshToken | None:
        """Look up a registered token by exact string. Returns None if absent."""
        conn = _require_connection(conn)
        try:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        except SQLAlchemyError as exc:
            raise UnexpectedError(f"refresh token registry: find_by_token failed: {exc}") from exc
        return _row_to_refresh_token(row) if row is not None else None

    def update(self, conn: Connection, token: str, refresh_token: RefreshToken) -> RefreshToken | None:
        """Overwrite owner and timestamps of a registered token. None if not found."""
        conn = _require_connection(conn)
        try:
            result = conn.execute(
                _refresh_tokens.update()
                .where(_refresh_tokens.c.token == token)
                .values(
                    user_id=refresh_token.user_id,
                    created_at=_to_iso(refresh_token.created_at),
                    expires_at=_to_iso(refresh_token.expires_at),
                )
            )
        except SQLAlchemyError as exc:
            raise UnexpectedError(f"refresh token registry: update failed: {exc}") from exc
        if result.rowcount == 0:
            return None
        return RefreshToken(
            token=token,
            user_id=refresh_token.user_id,
            created_at=refresh_token.created_at,
            expires_at=refresh_token.expires_at,
        )

    def delete(self, conn: Connection, token: str) -> bool:
        """Remove a token from the registry. Returns True if a row was deleted."""
        conn = _require_connection(conn)
        try:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token == token))
        except SQLAlchemyError as exc:
            raise UnexpectedError(f"refresh token registry: delete failed: {exc}") from exc
        return result.rowcount > 0

    def delete_expired(self, conn: Connection, now: datetime) -> int:
        """Delete rows whose expires_at is at or before now. Returns the count."""
        conn = _require_connection(conn)
        try:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= _to_iso(now)))
        except SQLAlchemyError as exc:
            raise UnexpectedError(f"refresh token registry: delete_expired failed: {exc}") from exc
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        created_at=datetime.fromisoformat(row.created_at),
        updated_at=datetime.fromisoformat(row.updated_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        token=row.token,
        user_id=row.user_id,
        created_at=datetime.fromisoformat(row.created_at),
        expires_at=datetime.fromisoformat(row.expires_at),
    )
