"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token carriers are checked in priority order:
  1. Session cookie ("auth_token") -- set by signup/login responses.
  2. Authorization: Bearer <token> header -- API clients.

Both converge on AuthService.authorize(), which checks the signature, the
expiry, AND that the token still matches the one persisted on the account.

get_bearer_token() returns the raw token (logout needs it).
get_current_account() raises HTTP 401 if the request is not authenticated.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system. Nothing else in auth/ does.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import Unauthorized
from auth.models import Account
from auth.service import AuthService
from auth.tokens import AUTH_COOKIE


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": Unauthorized.code, "message": Unauthorized.message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_bearer_token(request: Request) -> str:
    """Return the session token carried by the request, or raise 401."""
    token: str | None = request.cookies.get(AUTH_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    if not token:
        raise _unauthorized()
    return token


def get_current_account(request: Request) -> Account:
    """Require an authorized session.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    token = get_bearer_token(request)
    try:
        return get_auth_service(request).authorize(token)
    except Unauthorized:
        raise _unauthorized() from None
