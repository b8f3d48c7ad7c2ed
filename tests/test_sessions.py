"""
tests/test_sessions.py -- Unit tests for auth/sessions.py (SessionIssuer).

Covers:
  - authorize() accepts the persisted token and returns the uid
  - logout makes a token fail authorize() while its signature is still valid
  - invalidate() is idempotent
  - current_token() reuses the persisted token and re-mints only when invalidated or expired
  - compare-and-swap re-read when another writer changed the token
  - tampered, expired and foreign tokens are rejected
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import Unauthorized
from auth.models import Account, ActiveSession, InvalidatedSession
from auth.sessions import SessionIssuer, session_state
from auth.tokens import decode_session_token, hash_password
from core.config import get_settings


@pytest.fixture
def issuer(store) -> SessionIssuer:
    return SessionIssuer(store, ttl_seconds=3 * 3600)


@pytest.fixture
def account(store, issuer) -> Account:
    token = issuer.mint("u1")
    return store.create_account(
        Account(uid="u1", email="a@x.com", name="Alice", hashed_password=hash_password("secret1"), session_token=token)
    )


def _expired_token(uid: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": uid, "iat": now - timedelta(hours=4), "exp": now - timedelta(hours=1), "jti": "x"}
    return jwt.encode(payload, get_settings().secret_key, algorithm="HS256")


class TestAuthorize:
    def test_persisted_token_authorizes(self, issuer, account) -> None:
        assert issuer.authorize(account.session_token) == "u1"

    def test_invalidated_token_fails_though_signature_valid(self, issuer, account) -> None:
        token = account.session_token
        issuer.invalidate("u1")
        assert decode_session_token(token) is not None
        with pytest.raises(Unauthorized):
            issuer.authorize(token)

    def test_invalidate_is_idempotent(self, issuer, account, store) -> None:
        issuer.invalidate("u1")
        issuer.invalidate("u1")
        assert store.find_by_uid("u1").session_token is None

    def test_invalidate_unknown_uid_is_noop(self, issuer) -> None:
        issuer.invalidate("ghost")

    def test_tampered_token_rejected(self, issuer, account) -> None:
        header, payload, signature = account.session_token.split(".")
        flipped = ("B" if signature[0] != "B" else "C") + signature[1:]
        tampered = ".".join((header, payload, flipped))
        with pytest.raises(Unauthorized):
            issuer.authorize(tampered)

    def test_expired_token_rejected_even_if_persisted(self, issuer, account, store) -> None:
        stale = _expired_token("u1")
        store.update_session_token("u1", stale)
        with pytest.raises(Unauthorized):
            issuer.authorize(stale)

    def test_valid_signature_but_not_persisted_rejected(self, issuer, account) -> None:
        other = issuer.mint("u1")
        with pytest.raises(Unauthorized):
            issuer.authorize(other)

    def test_token_for_unknown_account_rejected(self, issuer) -> None:
        with pytest.raises(Unauthorized):
            issuer.authorize(issuer.mint("ghost"))

    def test_empty_token_rejected(self, issuer) -> None:
        with pytest.raises(Unauthorized):
            issuer.authorize("")


class TestCurrentToken:
    def test_reuses_persisted_token(self, issuer, account) -> None:
        assert issuer.current_token(account) == account.session_token
        assert issuer.current_token(account) == account.session_token

    def test_mints_after_invalidation(self, issuer, account, store) -> None:
        old = account.session_token
        issuer.invalidate("u1")
        fresh = issuer.current_token(store.find_by_uid("u1"))
        assert fresh != old
        assert issuer.authorize(fresh) == "u1"
        with pytest.raises(Unauthorized):
            issuer.authorize(old)

    def test_mints_when_persisted_token_expired(self, issuer, account, store) -> None:
        stale = _expired_token("u1")
        store.update_session_token("u1", stale)
        fresh = issuer.current_token(store.find_by_uid("u1"))
        assert fresh != stale
        assert issuer.authorize(fresh) == "u1"

    def test_stale_read_does_not_overwrite_concurrent_change(self, issuer, account, store) -> None:
        # Caller read the account while logged out; a concurrent login installed a token since.
        issuer.invalidate("u1")
        stale_view = store.find_by_uid("u1")
        winner = issuer.current_token(store.find_by_uid("u1"))
        assert issuer.current_token(stale_view) == winner
        assert store.find_by_uid("u1").session_token == winner


def test_session_state_tagged_union(account) -> None:
    assert session_state(account) == ActiveSession(account.session_token)
    account.session_token = None
    assert session_state(account) == InvalidatedSession()
