"""
auth/dependencies.py -- FastAPI Depends() helpers for access-token authentication.

Clients authenticate with the opaque access token issued alongside their
local credential, sent as either:
  1. Authorization: Bearer <token>
  2. X-Access-Token: <token>

There is no cookie or session layer; every request carries its token.

try_get_current_account() is the soft variant (returns None on failure).
get_current_account() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: may import fastapi (this module is part of the FastAPI dependency
injection system) but not api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.lifecycle import CredentialLifecycle
from auth.models import Account


def get_lifecycle(request: Request) -> CredentialLifecycle:
    """Return the CredentialLifecycle wired into app.state at startup."""
    return request.app.state.lifecycle


def _extract_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    return request.headers.get("X-Access-Token", "").strip()


def try_get_current_account(request: Request) -> Account | None:
    """Authenticate the request by access token. Never raises."""
    token = _extract_token(request)
    if not token:
        return None
    return get_lifecycle(request).authenticate_token(token)


def get_current_account(request: Request) -> Account:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    account = try_get_current_account(request)
    if account is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account
