"""
auth/sessions.py -- Session token minting, reuse, authorization and invalidation.

A session token is valid along two independent axes:

  cryptographic -- HS256 signature checks out and `exp` is in the future
                   (auth/tokens.py decides this);
  logical       -- the token equals the value persisted on the account.

authorize() requires both. Logout only has to clear the persisted copy for
the token to stop working immediately, even though its signature stays
well-formed until expiry.

Login does not mint on every call: current_token() hands back the persisted
token while the account's session is Active. Only when the session was
invalidated (or its token has expired) is a new one minted, installed with a
compare-and-swap so a concurrent logout is never overwritten.
"""

from __future__ import annotations

import hmac
import logging

from auth.errors import Unauthorized, Unavailable
from auth.models import Account, ActiveSession, InvalidatedSession, SessionState
from auth.store import AccountStore
from auth.tokens import create_session_token, decode_session_token

logger = logging.getLogger("campusauth.auth")

_MAX_SWAP_ATTEMPTS = 3


def session_state(account: Account) -> SessionState:
    if account.session_token:
        return ActiveSession(account.session_token)
    return InvalidatedSession()


class SessionIssuer:
    def __init__(self, store: AccountStore, ttl_seconds: int) -> None:
        self._store = store
        self._ttl = ttl_seconds

    def mint(self, uid: str, ttl: int | None = None) -> str:
        """Return a new signed token for uid. The caller persists it."""
        return create_session_token(uid, expire_seconds=ttl or self._ttl)

    def current_token(self, account: Account) -> str:
        """Return the account's live session token, minting one only if needed."""
        for _ in range(_MAX_SWAP_ATTEMPTS):
            state = session_state(account)
            if isinstance(state, ActiveSession) and decode_session_token(state.token) is not None:
                return state.token
            expected = state.token if isinstance(state, ActiveSession) else None
            fresh = self.mint(account.uid)
            if self._store.swap_session_token(account.uid, expected, fresh):
                logger.info("Minted replacement session token")
                return fresh
            # Someone else changed the token; re-read and decide again.
            reread = self._store.find_by_uid(account.uid)
            if reread is None:
                raise Unauthorized()
            account = reread
        raise Unavailable()

    def authorize(self, token: str) -> str:
        """Return the uid the token belongs to, or raise Unauthorized."""
        if not token:
            raise Unauthorized()
        payload = decode_session_token(token)
        if payload is None:
            raise Unauthorized()
        account = self._store.find_by_uid(payload["sub"])
        if account is None:
            raise Unauthorized()
        state = session_state(account)
        if not isinstance(state, ActiveSession) or not hmac.compare_digest(state.token, token):
            raise Unauthorized()
        return account.uid

    def invalidate(self, uid: str) -> None:
        """Clear the persisted token. Safe to call on an already logged-out account."""
        self._store.update_session_token(uid, None)
