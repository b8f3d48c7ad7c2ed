"""
auth/service.py -- The user-facing auth flows, composed from the managers.

AuthService is constructed once per process (api/main.py lifespan) with an
explicit AccountStore and mailer, and stored on app.state. Tests build it
directly against an in-memory store and a recording mailer.

Every flow follows the same rule: input validation and the OTP gate run
before any write. A failed gate raises immediately, so no account, session
token or password is ever touched by a request that did not prove email
ownership.

  signup:   validate -> OTP gate -> hash -> mint -> INSERT (token included)
  login:    OTP gate -> password check -> current (or re-minted) token
  logout:   authorize -> invalidate
  reset:    request_password_reset -> resolve_reset_code -> complete_password_reset
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from auth.errors import InvalidCredentials, InvalidInput, NotFound, OtpExpired, OtpInvalid, OtpNotFound
from auth.models import Account, AuthResult, SignupForm, VerificationResult
from auth.otp import OtpChallengeManager
from auth.reset import ResetLinkManager
from auth.sessions import SessionIssuer
from auth.store import AccountStore
from auth.tokens import burn_password_check, hash_password, verify_password
from core.config import Settings

logger = logging.getLogger("campusauth.auth")

PASSWORD_MIN_LENGTH = 7
# bcrypt ignores everything past 72 bytes
PASSWORD_MAX_BYTES = 72
NAME_MAX_LENGTH = 16

_OTP_FAILURES = {
    VerificationResult.INVALID: OtpInvalid,
    VerificationResult.EXPIRED: OtpExpired,
    VerificationResult.NOT_FOUND: OtpNotFound,
}


def validate_password(password: str) -> None:
    if len(password) < PASSWORD_MIN_LENGTH:
        raise InvalidInput(f"Password must be at least {PASSWORD_MIN_LENGTH} characters.")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise InvalidInput(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.")


def _validate_signup(form: SignupForm) -> None:
    if not form.uid.strip():
        raise InvalidInput("uid is required.")
    if "@" not in form.email or form.email.strip() != form.email:
        raise InvalidInput("A valid email address is required.")
    if not form.name.strip() or len(form.name) > NAME_MAX_LENGTH:
        raise InvalidInput(f"Name must be 1 to {NAME_MAX_LENGTH} characters.")
    validate_password(form.password)


class AuthService:
    def __init__(
        self,
        store: AccountStore,
        mailer,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.otp = OtpChallengeManager(
            store,
            mailer,
            ttl_seconds=settings.otp_ttl_seconds,
            length=settings.otp_length,
            max_attempts=settings.otp_max_attempts,
            clock=clock,
        )
        self.sessions = SessionIssuer(store, ttl_seconds=settings.session_ttl_seconds)
        self.resets = ResetLinkManager(
            store,
            mailer,
            ttl_seconds=settings.reset_ttl_seconds,
            base_url=settings.public_base_url,
            reveal_unknown_email=settings.reset_reveals_unknown_email,
            clock=clock,
        )
        self._session_ttl = settings.session_ttl_seconds

    # ------------------------------------------------------------------
    # OTP gate
    # ------------------------------------------------------------------

    def request_otp(self, email: str) -> None:
        self.otp.issue(email)

    def _require_otp(self, email: str, otp: str) -> None:
        result = self.otp.verify(email, otp)
        if result is not VerificationResult.VALID:
            logger.info("OTP gate rejected request: %s", result.value)
            raise _OTP_FAILURES[result]()

    # ------------------------------------------------------------------
    # Signup / login / logout
    # ------------------------------------------------------------------

    def signup(self, form: SignupForm, otp: str) -> AuthResult:
        _validate_signup(form)
        self._require_otp(form.email, otp)
        token = self.sessions.mint(form.uid, self._session_ttl)
        account = self.store.create_account(
            Account(
                uid=form.uid,
                email=form.email,
                name=form.name,
                roll_no=form.roll_no,
                batch=form.batch,
                hashed_password=hash_password(form.password),
                session_token=token,
            )
        )
        logger.info("Account created")
        return AuthResult(account=account, token=token)

    def login(self, email: str, password: str, otp: str) -> AuthResult:
        self._require_otp(email, otp)
        account = self.store.find_by_email(email)
        if account is None:
            # Equalize timing so response time does not reveal registration
            burn_password_check(password)
            raise InvalidCredentials()
        if not verify_password(password, account.hashed_password):
            raise InvalidCredentials()
        token = self.sessions.current_token(account)
        account.session_token = token
        return AuthResult(account=account, token=token)

    def authorize(self, token: str) -> Account:
        uid = self.sessions.authorize(token)
        return self.get_account(uid)

    def logout(self, token: str) -> None:
        uid = self.sessions.authorize(token)
        self.sessions.invalidate(uid)
        logger.info("Session invalidated")

    def get_account(self, uid: str) -> Account:
        account = self.store.find_by_uid(uid)
        if account is None:
            raise NotFound("User not found.")
        return account

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> None:
        self.resets.request_reset(email)

    def resolve_reset_code(self, code: str) -> str:
        return self.resets.resolve(code)

    def complete_password_reset(self, code: str, new_password: str) -> Account:
        validate_password(new_password)
        return self.resets.consume(code, new_password)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        removed = self.store.purge_expired(self.otp.expired_before(), self.resets.expired_before())
        if removed:
            logger.info("Purged %d expired OTP challenges and reset codes", removed)
        return removed
