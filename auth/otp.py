"""
auth/otp.py -- One-time passcodes that prove ownership of an email address.

Lifecycle of a challenge:
  issue()  -> passcode mailed, then the row for the email is replaced (any
              older passcode stops working); only the HMAC is kept.
  verify() -> NOT_FOUND if no unconsumed challenge exists,
              EXPIRED   if older than the TTL,
              INVALID   if the passcode does not match; after max_attempts
                        wrong guesses the challenge is burned,
              VALID     after an atomic consume; never twice for one challenge.

verify() does not raise for a bad passcode. It returns a VerificationResult
and the caller must stop on anything but VALID.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import time
from typing import Callable

from auth.mailer import MailKind
from auth.models import OtpChallenge, VerificationResult
from auth.store import AccountStore
from auth.tokens import keyed_digest

logger = logging.getLogger("campusauth.auth")


def generate_passcode(length: int) -> str:
    """Return a uniformly random zero-padded numeric passcode."""
    return f"{secrets.randbelow(10**length):0{length}d}"


class OtpChallengeManager:
    def __init__(
        self,
        store: AccountStore,
        mailer,
        ttl_seconds: int,
        length: int = 6,
        max_attempts: int = 5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._mailer = mailer
        self._ttl = ttl_seconds
        self._length = length
        self._max_attempts = max_attempts
        self._clock = clock

    def issue(self, email: str) -> str:
        """Create a fresh challenge for email, mail it, and return the passcode.

        The passcode is mailed before the challenge is stored. If delivery
        raises Unavailable the previous challenge for the email is untouched.
        If the store fails after mailing, the mailed passcode never verifies.
        """
        passcode = generate_passcode(self._length)
        issued_at = self._clock()
        self._mailer.send(email, MailKind.OTP, {"passcode": passcode, "ttl_seconds": self._ttl})
        self._store.replace_otp_challenge(
            OtpChallenge(email=email, code_hash=keyed_digest(passcode), issued_at=issued_at)
        )
        logger.info("Issued OTP challenge")
        return passcode

    def verify(self, email: str, candidate: str) -> VerificationResult:
        challenge = self._store.get_otp_challenge(email)
        if challenge is None or challenge.consumed:
            return VerificationResult.NOT_FOUND
        if self._clock() > challenge.issued_at + self._ttl:
            return VerificationResult.EXPIRED
        candidate_hash = keyed_digest(candidate or "")
        if not hmac.compare_digest(candidate_hash, challenge.code_hash):
            if self._store.record_otp_failure(email, challenge.code_hash, self._max_attempts):
                logger.info("OTP challenge burned after %d wrong guesses", self._max_attempts)
            return VerificationResult.INVALID
        if not self._store.consume_otp_challenge(email, candidate_hash):
            # Lost the race to a concurrent verify or a newer issue()
            return VerificationResult.NOT_FOUND
        return VerificationResult.VALID

    def expired_before(self) -> float:
        """Issue-time cutoff below which challenges are expired."""
        return self._clock() - self._ttl
