"""
auth/reset.py -- Single-use, time-bound password reset links.

The raw code travels only in the emailed link. The store keeps
HMAC-SHA256(SECRET_KEY, code), so resolve() is a primary-key lookup and a
database dump does not contain usable links.

consume() hashes the new password with the same primitive signup uses and
deletes the code in the transaction that rewrites the password. A second
consume of the same code finds nothing and fails with NotFound.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable

from auth.errors import NotFound, ResetCodeExpired
from auth.mailer import MailKind
from auth.models import Account, ResetLinkToken
from auth.store import AccountStore
from auth.tokens import hash_password, keyed_digest

logger = logging.getLogger("campusauth.auth")


class ResetLinkManager:
    def __init__(
        self,
        store: AccountStore,
        mailer,
        ttl_seconds: int,
        base_url: str,
        reveal_unknown_email: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._mailer = mailer
        self._ttl = ttl_seconds
        self._base_url = base_url.rstrip("/")
        self._reveal_unknown = reveal_unknown_email
        self._clock = clock

    def link_for(self, code: str) -> str:
        return f"{self._base_url}/api/v1/auth/reset/{code}"

    def request_reset(self, email: str) -> str | None:
        """Create and mail a reset link. Returns the raw code, or None for an unknown email.

        Unknown emails are silent unless reveal_unknown_email is set, in which
        case NotFound is raised.
        """
        account = self._store.find_by_email(email)
        if account is None:
            if self._reveal_unknown:
                raise NotFound("No account is registered with that email.")
            logger.info("Password reset requested for unknown email")
            return None
        code = secrets.token_urlsafe(32)
        self._store.create_reset_code(
            ResetLinkToken(code_hash=keyed_digest(code), email=account.email, created_at=self._clock())
        )
        self._mailer.send(account.email, MailKind.PASSWORD_RESET, {"link": self.link_for(code), "ttl_seconds": self._ttl})
        logger.info("Issued password reset link")
        return code

    def resolve(self, code: str) -> str:
        """Return the email a live code belongs to. Read-only apart from dropping expired codes."""
        code_hash = keyed_digest(code)
        token = self._store.get_reset_code(code_hash)
        if token is None:
            raise NotFound("The reset link is not valid or has expired.")
        if self._clock() > token.created_at + self._ttl:
            self._store.delete_reset_code(code_hash)
            raise ResetCodeExpired()
        return token.email

    def consume(self, code: str, new_password: str) -> Account:
        email = self.resolve(code)
        account = self._store.find_by_email(email)
        if account is None:
            self._store.delete_reset_code(keyed_digest(code))
            raise NotFound("The reset link is not valid or has expired.")
        if not self._store.consume_reset_code(keyed_digest(code), account.uid, hash_password(new_password)):
            raise NotFound("The reset link is not valid or has expired.")
        logger.info("Password reset completed")
        updated = self._store.find_by_uid(account.uid)
        return updated if updated is not None else account

    def expired_before(self) -> float:
        return self._clock() - self._ttl
