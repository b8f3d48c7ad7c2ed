"""
API request and response models for the CampusAuth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Field constraints here are the first line of validation (422 on violation);
AuthService re-checks the rules that guard the store.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Account

# Deliberately loose: one "@", no whitespace. Deliverability is proven by the OTP.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"
OTP_PATTERN = r"^[0-9]{4,10}$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class OtpRequest(BaseModel):
    """Request body for POST /api/v1/auth/otp."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    model_config = ConfigDict(str_strip_whitespace=True)

    uid: str = Field(min_length=1, max_length=64)
    roll_no: Optional[str] = Field(default=None, max_length=64)
    name: str = Field(min_length=1, max_length=16)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    batch: Optional[str] = Field(default=None, max_length=32)
    password: str = Field(min_length=7, max_length=72)
    otp: str = Field(pattern=OTP_PATTERN)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    otp: str = Field(pattern=OTP_PATTERN)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/forgot-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class ResetPasswordRequest(BaseModel):
    """Request body for PATCH /api/v1/auth/reset/{code}."""

    password: str = Field(min_length=7, max_length=72)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Never carries the password hash or token."""

    model_config = ConfigDict(frozen=True)

    uid: str
    email: str
    name: str
    roll_no: Optional[str] = None
    batch: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(**account.public_dict())


class AuthResponse(BaseModel):
    """Response for signup and login."""

    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    token: str
    token_type: str = "bearer"
    expires_in: int


class ResetCodeResponse(BaseModel):
    """Response for GET /api/v1/auth/reset/{code}: which account the link resets."""

    model_config = ConfigDict(frozen=True)

    email: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
