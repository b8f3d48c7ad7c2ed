"""
auth/errors.py -- Error taxonomy for the credential and session flows.

Every failure the core can report is an AuthError subclass carrying a stable
machine code, an HTTP status, and a user-facing message that never includes
internal details. api/main.py renders all of them through one exception
handler into the {"error": {"code", "message"}} envelope.

Layer rule: no imports from api/ or fastapi. Status codes are plain ints so
the core stays transport-agnostic.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all expected failures of the auth core."""

    code: str = "internal_error"
    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class Conflict(AuthError):
    code = "conflict"
    status_code = 409
    message = "An account with that uid or email already exists."


class InvalidInput(AuthError):
    code = "invalid_input"
    status_code = 422
    message = "The submitted fields are invalid."


class OtpInvalid(AuthError):
    code = "otp_invalid"
    status_code = 401
    message = "The one-time passcode is incorrect."


class OtpExpired(AuthError):
    code = "otp_expired"
    status_code = 401
    message = "The one-time passcode has expired. Request a new one."


class OtpNotFound(AuthError):
    code = "otp_not_found"
    status_code = 401
    message = "No active one-time passcode for this email. Request a new one."


class InvalidCredentials(AuthError):
    code = "bad_credentials"
    status_code = 401
    message = "Invalid email or password."


class Unauthorized(AuthError):
    code = "unauthorized"
    status_code = 401
    message = "Authentication required."


class NotFound(AuthError):
    code = "not_found"
    status_code = 404
    message = "Not found."


class ResetCodeExpired(NotFound):
    code = "reset_code_expired"
    message = "The reset link is not valid or has expired."


class Unavailable(AuthError):
    """A store or mail call timed out or failed. The caller may retry."""

    code = "unavailable"
    status_code = 503
    message = "Service temporarily unavailable. Please retry."


class Internal(AuthError):
    """Unexpected failure. Rendered by the catch-all handler in api/main.py."""
