"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these classes own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


@dataclass
class Account:
    """A registered user.

    email is stored lower-cased; uid and email are each UNIQUE in the store.
    session_token is None while the account is logged out (see SessionState).
    """

    uid: str
    email: str
    name: str
    hashed_password: str
    roll_no: str | None = None
    batch: str | None = None
    session_token: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def public_dict(self) -> dict:
        """Account fields that are safe to return to clients (no hash, no token)."""
        return {
            "uid": self.uid,
            "email": self.email,
            "name": self.name,
            "roll_no": self.roll_no,
            "batch": self.batch,
            "created_at": self.created_at,
        }


@dataclass
class OtpChallenge:
    """The single active passcode challenge for an email.

    code_hash is HMAC-SHA256(SECRET_KEY, passcode); the raw passcode is only
    ever held in memory long enough to mail it.
    """

    email: str
    code_hash: str
    issued_at: float  # epoch seconds
    consumed: bool = False
    attempts: int = 0  # wrong guesses counted so far


@dataclass
class ResetLinkToken:
    """A pending password reset. Deleted when used."""

    code_hash: str
    email: str
    created_at: float  # epoch seconds


class VerificationResult(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ActiveSession:
    token: str


@dataclass(frozen=True)
class InvalidatedSession:
    pass


SessionState = Union[ActiveSession, InvalidatedSession]


@dataclass
class AuthResult:
    """What signup and login hand back to the transport layer."""

    account: Account
    token: str


@dataclass
class SignupForm:
    """Fields submitted at signup. password is plaintext and never persisted as-is."""

    uid: str
    email: str
    name: str
    password: str
    roll_no: str | None = None
    batch: str | None = None
