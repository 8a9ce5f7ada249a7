"""Unit tests for auth/service.py -- AuthService orchestration.

Covers:
- signup / login / refresh / logout happy path, end to end on a real database
- duplicate and concurrent signup of one username (exactly one wins)
- unknown user and wrong password fail identically, and both run bcrypt
- refresh after logout, with an expired token, or with an access token fails
- logout of an unknown token fails; logout of an expired but registered one works
- registry failure during login hands out no tokens, and is never a conflict
- signing key misconfiguration surfaces as ConfigurationError
- passwords never reach the logs
"""

import logging
import threading
from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    InvalidInputError,
    UnexpectedError,
)
from auth.models import (
    LoginRequest,
    LogoutRequest,
    RefreshTokenRequest,
    SignupRequest,
    TokenKind,
    User,
)
from auth.service import AuthService
from auth.store import RefreshTokenStore
from auth.tokens import JoseTokenCodec
from core.config import RefreshTokenSettings

PASSWORD = "Secret123!"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _signup(db, service, username="alice", password=PASSWORD):
    with db.begin() as conn:
        return service.signup(conn, SignupRequest(username, password))


def _login(db, service, username="alice", password=PASSWORD):
    with db.begin() as conn:
        return service.login(conn, LoginRequest(username, password))


def _refresh(db, service, token):
    with db.begin() as conn:
        return service.refresh_token(conn, RefreshTokenRequest(token))


def _logout(db, service, token):
    with db.begin() as conn:
        return service.logout(conn, LogoutRequest(token))


class CountingHasher:
    """Wraps a real hasher and counts verify() calls."""

    def __init__(self, inner):
        self._inner = inner
        self.verify_calls = 0

    def hash(self, password):
        return self._inner.hash(password)

    def verify(self, hashed, candidate):
        self.verify_calls += 1
        return self._inner.verify(hashed, candidate)


class FailingRegistry(RefreshTokenStore):
    """Registry whose create() always fails, as if the database went away."""

    def create(self, conn, refresh_token):
        raise UnexpectedError("refresh token registry: create failed: disk I/O error")


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_signup_returns_id_and_username(self, db, service):
        response = _signup(db, service)
        assert response.id >= 1
        assert response.username == "alice"

    def test_signup_stores_digest_not_plaintext(self, db, service, users, hasher):
        _signup(db, service)
        with db.begin() as conn:
            stored = users.find_by_username(conn, "alice")
        assert stored.hashed_password != PASSWORD
        assert hasher.verify(stored.hashed_password, PASSWORD) is True

    def test_login_returns_tokens_for_the_user(self, db, service, codec):
        created = _signup(db, service)
        tokens = _login(db, service)
        assert codec.validate(TokenKind.ACCESS, tokens.access_token).user_id == created.id
        assert codec.validate(TokenKind.REFRESH, tokens.refresh_token).user_id == created.id

    def test_login_registers_refresh_token(self, db, service, refresh_tokens, codec):
        created = _signup(db, service)
        tokens = _login(db, service)
        with db.begin() as conn:
            row = refresh_tokens.find_by_token(conn, tokens.refresh_token)
        assert row is not None
        assert row.user_id == created.id
        assert (row.created_at, row.expires_at) == codec.peek_times(tokens.refresh_token)

    def test_each_login_gets_its_own_refresh_token(self, db, service):
        _signup(db, service)
        first = _login(db, service)
        second = _login(db, service)
        assert first.refresh_token != second.refresh_token

    def test_refresh_returns_new_access_token(self, db, service, codec, clock):
        created = _signup(db, service)
        tokens = _login(db, service)
        clock.advance(60)
        refreshed = _refresh(db, service, tokens.refresh_token)
        assert refreshed.access_token != tokens.access_token
        assert codec.validate(TokenKind.ACCESS, refreshed.access_token).user_id == created.id

    def test_refresh_does_not_rotate(self, db, service):
        _signup(db, service)
        tokens = _login(db, service)
        _refresh(db, service, tokens.refresh_token)
        # The same refresh token keeps working.
        assert _refresh(db, service, tokens.refresh_token).access_token

    def test_logout_revokes_refresh_token(self, db, service, codec):
        _signup(db, service)
        tokens = _login(db, service)
        assert _logout(db, service, tokens.refresh_token) is None
        # Still a cryptographically valid token ...
        assert codec.validate(TokenKind.REFRESH, tokens.refresh_token)
        # ... but no longer usable.
        with pytest.raises(AuthenticationError):
            _refresh(db, service, tokens.refresh_token)

    def test_logout_leaves_other_sessions(self, db, service):
        _signup(db, service)
        first = _login(db, service)
        second = _login(db, service)
        _logout(db, service, first.refresh_token)
        assert _refresh(db, service, second.refresh_token).access_token


# ---------------------------------------------------------------------------
# Signup failures
# ---------------------------------------------------------------------------


class TestSignupFailures:
    def test_duplicate_username(self, db, service, users):
        _signup(db, service)
        with pytest.raises(ConflictError):
            _signup(db, service, password="Another1!")
        with db.begin() as conn:
            stored = users.find_by_username(conn, "alice")
        assert stored.id == 1

    @pytest.mark.parametrize("password", ["x" * 73, "abc\x00def"])
    def test_unhashable_password(self, db, service, users, password):
        with pytest.raises(InvalidInputError):
            _signup(db, service, password=password)
        with db.begin() as conn:
            assert users.find_by_username(conn, "alice") is None

    def test_concurrent_signup_one_winner(self, db, service, users):
        """N racing signups for one username: one success, N-1 conflicts, one row."""
        n = 8
        barrier = threading.Barrier(n)
        results = []
        lock = threading.Lock()

        def worker(i):
            barrier.wait()
            try:
                response = _signup(db, service, password=f"Secret{i}!")
                outcome = ("ok", response.id)
            except ConflictError:
                outcome = ("conflict", None)
            except Exception as exc:  # surfaced by the assertion below
                outcome = ("error", repr(exc))
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        kinds = [kind for kind, _ in results]
        assert kinds.count("ok") == 1, results
        assert kinds.count("conflict") == n - 1, results
        winner_id = next(value for kind, value in results if kind == "ok")
        with db.begin() as conn:
            assert users.find_by_username(conn, "alice").id == winner_id
            assert users.find_by_id(conn, winner_id + 1) is None


# ---------------------------------------------------------------------------
# Login failures
# ---------------------------------------------------------------------------


class TestLoginFailures:
    def test_unknown_user_and_wrong_password_look_the_same(self, db, service):
        _signup(db, service)
        with pytest.raises(AuthenticationError) as unknown:
            _login(db, service, username="mallory")
        with pytest.raises(AuthenticationError) as wrong:
            _login(db, service, password="WrongPass")
        assert str(unknown.value) == str(wrong.value)
        assert unknown.value.code == wrong.value.code == "authentication_failed"

    def test_unknown_user_still_runs_bcrypt(self, db, hasher, codec, users, refresh_tokens):
        counting = CountingHasher(hasher)
        service = AuthService(counting, codec, users, refresh_tokens)
        with pytest.raises(AuthenticationError):
            _login(db, service, username="nobody")
        assert counting.verify_calls == 1

    def test_failed_login_registers_nothing(self, db, service, refresh_tokens, users):
        _signup(db, service)
        with db.begin() as conn:
            before = users.find_by_username(conn, "alice")
        with pytest.raises(AuthenticationError):
            _login(db, service, password="WrongPass")
        with db.begin() as conn:
            after = users.find_by_username(conn, "alice")
        assert after == before

    def test_registry_failure_returns_no_tokens(self, db, hasher, codec, users):
        service = AuthService(hasher, codec, users, FailingRegistry())
        _signup(db, service)
        with pytest.raises(UnexpectedError):
            _login(db, service)

    def test_user_vanishing_mid_login_is_not_a_conflict(self, db, hasher, codec, refresh_tokens):
        """A registry row for a user that no longer exists fails as unexpected, never as conflict."""
        digest = hasher.hash(PASSWORD)

        class GhostUsers:
            def find_by_username(self, conn, username):
                return User(id=999, username=username, hashed_password=digest)

        service = AuthService(hasher, codec, GhostUsers(), refresh_tokens)
        with pytest.raises(UnexpectedError) as excinfo:
            _login(db, service)
        assert not isinstance(excinfo.value, ConflictError)
        assert excinfo.value.code == "unexpected_error"
        assert isinstance(excinfo.value.__cause__, ConflictError)

    def test_missing_refresh_key_is_configuration_error(self, db, settings, clock, hasher, users, refresh_tokens):
        codec = JoseTokenCodec(
            settings.access_token,
            RefreshTokenSettings(signing_key=""),
            settings.issuer,
            clock=clock,
        )
        service = AuthService(hasher, codec, users, refresh_tokens)
        _signup(db, service)
        with pytest.raises(ConfigurationError):
            _login(db, service)


# ---------------------------------------------------------------------------
# Refresh / logout failures
# ---------------------------------------------------------------------------


class TestRefreshFailures:
    def test_never_issued_token(self, db, service):
        with pytest.raises(AuthenticationError):
            _refresh(db, service, "not-a-token")

    def test_access_token_is_not_a_refresh_token(self, db, service):
        _signup(db, service)
        tokens = _login(db, service)
        with pytest.raises(AuthenticationError):
            _refresh(db, service, tokens.access_token)

    def test_expired_refresh_token(self, db, service, clock, caplog):
        _signup(db, service)
        tokens = _login(db, service)
        clock.advance(timedelta(days=7).total_seconds())
        with caplog.at_level(logging.INFO, logger="tokenauth.auth"):
            with pytest.raises(AuthenticationError):
                _refresh(db, service, tokens.refresh_token)
        assert "expired" in caplog.text

    def test_valid_but_unregistered_token(self, db, service, codec, refresh_tokens):
        _signup(db, service)
        tokens = _login(db, service)
        with db.begin() as conn:
            refresh_tokens.delete(conn, tokens.refresh_token)
        with pytest.raises(AuthenticationError):
            _refresh(db, service, tokens.refresh_token)

    def test_logout_unknown_token(self, db, service):
        with pytest.raises(AuthenticationError):
            _logout(db, service, "never-issued")

    def test_logout_twice(self, db, service):
        _signup(db, service)
        tokens = _login(db, service)
        _logout(db, service, tokens.refresh_token)
        with pytest.raises(AuthenticationError):
            _logout(db, service, tokens.refresh_token)

    def test_logout_expired_but_registered_token(self, db, service, clock, refresh_tokens):
        _signup(db, service)
        tokens = _login(db, service)
        clock.advance(timedelta(days=30).total_seconds())
        _logout(db, service, tokens.refresh_token)
        with db.begin() as conn:
            assert refresh_tokens.find_by_token(conn, tokens.refresh_token) is None

    def test_refresh_keeps_user_id_claim(self, db, service):
        created = _signup(db, service)
        tokens = _login(db, service)
        refreshed = _refresh(db, service, tokens.refresh_token)
        assert jwt.get_unverified_claims(refreshed.access_token)["user_id"] == created.id


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def test_passwords_never_logged(db, service, caplog):
    with caplog.at_level(logging.DEBUG):
        _signup(db, service, password="Hunter2-plaintext")
        _login(db, service, password="Hunter2-plaintext")
        with pytest.raises(AuthenticationError):
            _login(db, service, password="Wrong-plaintext")
    assert "Hunter2-plaintext" not in caplog.text
    assert "Wrong-plaintext" not in caplog.text
