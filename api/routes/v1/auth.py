"""
api/routes/v1/auth.py -- Account, session and password reset REST endpoints.

Routes:
  POST  /api/v1/auth/otp               -- mail a one-time passcode (202)
  POST  /api/v1/auth/signup            -- OTP-gated account creation; sets cookie (201)
  POST  /api/v1/auth/login             -- OTP-gated password login; sets cookie
  POST  /api/v1/auth/logout            -- invalidate the session; clears cookie
  GET   /api/v1/auth/me                -- current account (requires auth)
  GET   /api/v1/users/{uid}            -- account lookup (requires auth)
  POST  /api/v1/auth/forgot-password   -- mail a single-use reset link
  GET   /api/v1/auth/reset/{code}      -- which email a reset link belongs to
  PATCH /api/v1/auth/reset/{code}      -- set a new password, burning the link

Errors:
  Handlers do not catch AuthError. api/main.py renders every AuthError into
  the {"error": {"code", "message"}} envelope with its status code, so each
  failure kind has one stable response.

Security:
  Passcode, signup, login and forgot-password routes are rate-limited per IP.
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccountResponse,
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    OtpRequest,
    ResetCodeResponse,
    ResetPasswordRequest,
    SignupRequest,
)
from auth.dependencies import get_auth_service, get_bearer_token, get_current_account
from auth.models import Account, AuthResult, SignupForm
from auth.service import AuthService
from auth.tokens import clear_auth_cookie, set_auth_cookie
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST  /auth/otp, /auth/signup, /auth/login, /auth/forgot-password: public, rate-limited
# - GET   /auth/reset/{code}, PATCH /auth/reset/{code}: public, the code is the credential
# - POST  /auth/logout: requires a currently authorized token
# - GET   /auth/me, /users/{uid}: requires auth (get_current_account)
router = APIRouter()


def _token_response(result: AuthResult, status_code: int) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            account=AccountResponse.from_account(result.account),
            token=result.token,
            expires_in=_settings.session_ttl_seconds,
        ).model_dump(),
    )
    set_auth_cookie(resp, result.token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Passcodes, signup and login
# ---------------------------------------------------------------------------


@limiter.limit(_settings.rate_limit)
@router.post("/auth/otp", response_model=MessageResponse, status_code=202)
def request_otp(request: Request, body: OtpRequest) -> MessageResponse:
    """Mail a fresh one-time passcode. Any earlier passcode for the email stops working."""
    service: AuthService = get_auth_service(request)
    service.request_otp(body.email)
    return MessageResponse(message="A verification code has been sent.")


@limiter.limit(_settings.rate_limit)
@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an account. Nothing is written unless the OTP verifies."""
    service: AuthService = get_auth_service(request)
    form = SignupForm(
        uid=body.uid,
        email=body.email,
        name=body.name,
        password=body.password,
        roll_no=body.roll_no,
        batch=body.batch,
    )
    result = service.signup(form, body.otp)
    return _token_response(result, status_code=201)


@limiter.limit(_settings.rate_limit)
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email, password and OTP; return the account's session token.

    The same generic error is returned for an unknown email and a wrong
    password.
    """
    service: AuthService = get_auth_service(request)
    result = service.login(body.email, body.password, body.otp)
    return _token_response(result, status_code=200)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, token: str = Depends(get_bearer_token)) -> JSONResponse:
    """Invalidate the persisted session so the token stops authorizing immediately."""
    service: AuthService = get_auth_service(request)
    service.logout(token)
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully.").model_dump())
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated lookups
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountResponse)
def me(current: Account = Depends(get_current_account)) -> AccountResponse:
    return AccountResponse.from_account(current)


@router.get("/users/{uid}", response_model=AccountResponse)
def get_user(request: Request, uid: str, current: Account = Depends(get_current_account)) -> AccountResponse:
    """Return the public view of any account. 404 if uid is unknown."""
    service: AuthService = get_auth_service(request)
    return AccountResponse.from_account(service.get_account(uid))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(_settings.rate_limit)
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Mail a reset link. Unknown emails get the same answer unless configured otherwise."""
    service: AuthService = get_auth_service(request)
    service.request_password_reset(body.email)
    return MessageResponse(message="If an account exists for that email, a reset link has been sent.")


@router.get("/auth/reset/{code}", response_model=ResetCodeResponse)
def resolve_reset(request: Request, code: str) -> ResetCodeResponse:
    """Read-only check used to render the reset form."""
    service: AuthService = get_auth_service(request)
    return ResetCodeResponse(email=service.resolve_reset_code(code))


@router.patch("/auth/reset/{code}", response_model=MessageResponse)
def complete_reset(request: Request, code: str, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password. The link works exactly once."""
    service: AuthService = get_auth_service(request)
    service.complete_password_reset(code, body.password)
    return MessageResponse(message="Password updated successfully.")
