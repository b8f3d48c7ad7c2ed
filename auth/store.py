"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_challenge / _row_to_reset are the mappers.
Service code never touches SQL directly.

Invariants enforced by the schema rather than by check-then-act code:
  - accounts.uid and accounts.email are UNIQUE. A duplicate signup loses the
    INSERT race atomically and surfaces as Conflict.
  - otp_challenges is keyed by email, so at most one challenge per email can
    exist. Issuing replaces the row inside one transaction (last writer wins).
  - reset_codes.code_hash is the primary key; consuming a code deletes it,
    and every other code for the same account, in the same transaction that
    rewrites the password.

Session token updates are single-row UPDATEs. swap_session_token() is a
compare-and-swap so a re-mint can never resurrect a token a concurrent
logout just cleared.

Timeouts: every call is bounded by the connect/pool timeout passed to the
constructor. OperationalError (locked database, lost connection) and pool
TimeoutError are re-raised as Unavailable.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import Conflict, Unavailable
from auth.models import Account, OtpChallenge, ResetLinkToken

logger = logging.getLogger("campusauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("uid", String(64), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(64), nullable=False),
    Column("roll_no", String(64)),
    Column("batch", String(32)),
    Column("hashed_password", Text, nullable=False),
    Column("session_token", Text),  # NULL = logged out
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

_otp_challenges = Table(
    "otp_challenges",
    _metadata,
    Column("email", String(255), primary_key=True),
    Column("code_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("issued_at", Float, nullable=False),  # epoch seconds
    Column("consumed", Boolean, nullable=False, server_default="0"),
    Column("attempts", Integer, nullable=False, server_default="0"),  # wrong guesses so far
)

_reset_codes = Table(
    "reset_codes",
    _metadata,
    Column("code_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("email", String(255), nullable=False, index=True),
    Column("created_at", Float, nullable=False),  # epoch seconds
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on writers."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _norm(email: str) -> str:
    return email.strip().lower()


class _Abort(Exception):
    """Raised inside engine.begin() to roll the transaction back."""


def _bounded(method):
    """Translate driver timeouts and connection failures into Unavailable."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (OperationalError, PoolTimeoutError) as exc:
            logger.warning("Store call %s failed: %s", method.__name__, exc.__class__.__name__)
            raise Unavailable() from exc

    return wrapper


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account, OtpChallenge and ResetLinkToken records.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        store.create_account(Account(uid="u1", email="a@x.com", name="A", hashed_password=hash_password("pw")))
        account = store.find_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            # Seconds to wait on a locked database before OperationalError
            connect_args["timeout"] = timeout
        else:
            engine_kwargs["pool_timeout"] = timeout
            engine_kwargs["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @_bounded
    def create_account(self, account: Account) -> Account:
        """Insert a new account and return it as stored.

        Raises Conflict if the uid or email is already taken. The UNIQUE
        constraints decide, so two concurrent signups cannot both succeed.
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _accounts.insert().values(
                        uid=account.uid,
                        email=_norm(account.email),
                        name=account.name,
                        roll_no=account.roll_no,
                        batch=account.batch,
                        hashed_password=account.hashed_password,
                        session_token=account.session_token,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise Conflict() from exc
        created = self.find_by_uid(account.uid)
        if created is None:
            raise Unavailable()
        return created

    @_bounded
    def find_by_email(self, email: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == _norm(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    @_bounded
    def find_by_uid(self, uid: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.uid == uid)).fetchone()
        return _row_to_account(row) if row is not None else None

    @_bounded
    def update_password_hash(self, uid: str, hashed_password: str) -> bool:
        """Replace the stored password hash. Returns False if uid is unknown."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.uid == uid)
                .values(hashed_password=hashed_password, updated_at=_now_iso())
            )
        return result.rowcount > 0

    @_bounded
    def update_session_token(self, uid: str, token: str | None) -> bool:
        """Unconditionally set (or clear, with None) the persisted session token."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.uid == uid).values(session_token=token, updated_at=_now_iso())
            )
        return result.rowcount > 0

    @_bounded
    def swap_session_token(self, uid: str, expected: str | None, new: str | None) -> bool:
        """Set the session token only if it still equals `expected`.

        Returns False when another writer changed the token first.
        """
        if expected is None:
            matches = _accounts.c.session_token.is_(None)
        else:
            matches = _accounts.c.session_token == expected
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.uid == uid) & matches)
                .values(session_token=new, updated_at=_now_iso())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # OTP challenges
    # ------------------------------------------------------------------

    @_bounded
    def replace_otp_challenge(self, challenge: OtpChallenge) -> None:
        """Install `challenge` as the only challenge for its email."""
        email = _norm(challenge.email)
        with self.engine.begin() as conn:
            conn.execute(_otp_challenges.delete().where(_otp_challenges.c.email == email))
            conn.execute(
                _otp_challenges.insert().values(
                    email=email,
                    code_hash=challenge.code_hash,
                    issued_at=challenge.issued_at,
                    consumed=False,
                    attempts=0,
                )
            )

    @_bounded
    def get_otp_challenge(self, email: str) -> OtpChallenge | None:
        with self.engine.connect() as conn:
            row = conn.execute(_otp_challenges.select().where(_otp_challenges.c.email == _norm(email))).fetchone()
        return _row_to_challenge(row) if row is not None else None

    @_bounded
    def consume_otp_challenge(self, email: str, code_hash: str) -> bool:
        """Mark the challenge consumed if it is unconsumed and matches code_hash.

        Returns False if a concurrent verify or a newer issue got there first.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _otp_challenges.update()
                .where(
                    (_otp_challenges.c.email == _norm(email))
                    & (_otp_challenges.c.code_hash == code_hash)
                    & (_otp_challenges.c.consumed.is_(False))
                )
                .values(consumed=True)
            )
        return result.rowcount > 0

    @_bounded
    def record_otp_failure(self, email: str, code_hash: str, max_attempts: int) -> bool:
        """Count one wrong guess against the challenge identified by code_hash.

        The challenge is marked consumed once attempts reaches max_attempts.
        Returns True if this guess burned it. A challenge already replaced by a
        newer issue() is left alone.
        """
        email = _norm(email)
        c = _otp_challenges.c
        match = (c.email == email) & (c.code_hash == code_hash) & (c.consumed.is_(False))
        with self.engine.begin() as conn:
            result = conn.execute(
                _otp_challenges.update()
                .where(match)
                .values(
                    attempts=c.attempts + 1,
                    consumed=case((c.attempts + 1 >= max_attempts, True), else_=False),
                )
            )
            if result.rowcount == 0:
                return False
            burned = conn.execute(
                select(c.consumed).where((c.email == email) & (c.code_hash == code_hash))
            ).scalar_one()
        return bool(burned)

    # ------------------------------------------------------------------
    # Reset codes
    # ------------------------------------------------------------------

    @_bounded
    def create_reset_code(self, token: ResetLinkToken) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _reset_codes.insert().values(
                    code_hash=token.code_hash,
                    email=_norm(token.email),
                    created_at=token.created_at,
                )
            )

    @_bounded
    def get_reset_code(self, code_hash: str) -> ResetLinkToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_reset_codes.select().where(_reset_codes.c.code_hash == code_hash)).fetchone()
        return _row_to_reset(row) if row is not None else None

    @_bounded
    def delete_reset_code(self, code_hash: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_reset_codes.delete().where(_reset_codes.c.code_hash == code_hash))
        return result.rowcount > 0

    @_bounded
    def consume_reset_code(self, code_hash: str, uid: str, hashed_password: str) -> bool:
        """Delete the reset code and rewrite the password in one transaction.

        The session token is cleared and every other outstanding reset code
        for the account's email is revoked in the same transaction. Returns
        False (and changes nothing) if the code was already gone.
        """
        try:
            with self.engine.begin() as conn:
                deleted = conn.execute(_reset_codes.delete().where(_reset_codes.c.code_hash == code_hash))
                if deleted.rowcount != 1:
                    return False
                updated = conn.execute(
                    _accounts.update()
                    .where(_accounts.c.uid == uid)
                    .values(hashed_password=hashed_password, session_token=None, updated_at=_now_iso())
                )
                if updated.rowcount != 1:
                    # Account vanished between resolve and consume; keep the code.
                    raise _Abort()
                account_email = select(_accounts.c.email).where(_accounts.c.uid == uid).scalar_subquery()
                conn.execute(_reset_codes.delete().where(_reset_codes.c.email == account_email))
        except _Abort:
            return False
        return True

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @_bounded
    def purge_expired(self, otp_issued_before: float, reset_created_before: float) -> int:
        """Delete OTP challenges and reset codes older than the cutoffs. Returns rows removed."""
        with self.engine.begin() as conn:
            otp = conn.execute(_otp_challenges.delete().where(_otp_challenges.c.issued_at < otp_issued_before))
            reset = conn.execute(_reset_codes.delete().where(_reset_codes.c.created_at < reset_created_before))
        return otp.rowcount + reset.rowcount

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except (OperationalError, PoolTimeoutError):
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        uid=row.uid,
        email=row.email,
        name=row.name,
        roll_no=row.roll_no,
        batch=row.batch,
        hashed_password=row.hashed_password,
        session_token=row.session_token,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_challenge(row) -> OtpChallenge:
    return OtpChallenge(
        email=row.email,
        code_hash=row.code_hash,
        issued_at=row.issued_at,
        consumed=bool(row.consumed),
        attempts=row.attempts,
    )


def _row_to_reset(row) -> ResetLinkToken:
    return ResetLinkToken(
        code_hash=row.code_hash,
        email=row.email,
        created_at=row.created_at,
    )
