"""
api/routes/v1/auth.py -- Registration, login and credential management endpoints.

Routes:
  POST   /api/v1/auth/register                -- create account + local credential
  POST   /api/v1/auth/login                   -- verify password; return access token
  GET    /api/v1/auth/me                      -- current account (requires token)
  POST   /api/v1/auth/password                -- rotate local password (requires token)
  POST   /api/v1/auth/connect                 -- attach a local credential (requires token)
  GET    /api/v1/auth/credentials             -- list attached protocols (requires token)
  DELETE /api/v1/auth/credentials/{protocol}  -- detach a credential (requires token)

Handlers are plain `def` functions: FastAPI runs them in its worker
threadpool, so bcrypt never blocks the event loop.

Errors raised by the lifecycle (ValidationFailure, NotFound, FatalInternal)
are translated centrally by the exception handlers in api/main.py.

Security:
  Login returns one generic "bad_credentials" error for every LoginFailure
  reason, so callers cannot probe which usernames exist. The specific reason
  is logged by the lifecycle.
  Cache-Control: no-store on responses that carry an access token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import JSONResponse

from api.models import (
    AccountResponse,
    ConnectRequest,
    CredentialResponse,
    LoginRequest,
    LoginResponse,
    PasswordUpdate,
    RegisterRequest,
)
from auth.dependencies import get_current_account, get_lifecycle
from auth.lifecycle import CredentialLifecycle
from auth.models import Account, Credential, LoginSuccess

# Auth policy:
# - POST   /auth/register, /auth/login:   public
# - everything else:                      requires an access token (get_current_account)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AccountResponse, status_code=201)
def register(body: RegisterRequest, lifecycle: CredentialLifecycle = Depends(get_lifecycle)) -> AccountResponse:
    """Register a new account with a local password credential."""
    account = lifecycle.register(body.model_dump(exclude_none=True))
    return _account_to_response(account)


@router.post("/auth/login", response_model=LoginResponse)
def login(body: LoginRequest, lifecycle: CredentialLifecycle = Depends(get_lifecycle)) -> JSONResponse:
    """Authenticate with an email or username and a password.

    Returns the credential's access token for use as a Bearer token.
    """
    outcome = lifecycle.login(body.identifier, body.password)
    if not isinstance(outcome, LoginSuccess):
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid login or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=outcome.credential.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- token type, not a password
            account=_account_to_response(outcome.account),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountResponse)
def me(current: Account = Depends(get_current_account)) -> AccountResponse:
    return _account_to_response(current)


@router.post("/auth/password", response_model=AccountResponse)
def change_password(
    body: PasswordUpdate,
    current: Account = Depends(get_current_account),
    lifecycle: CredentialLifecycle = Depends(get_lifecycle),
) -> AccountResponse:
    """Rotate the current account's local password. The access token is kept."""
    account = lifecycle.update_credential({"id": current.id, "password": body.password})
    return _account_to_response(account)


@router.post("/auth/connect", response_model=CredentialResponse)
def connect(
    body: ConnectRequest,
    current: Account = Depends(get_current_account),
    lifecycle: CredentialLifecycle = Depends(get_lifecycle),
) -> CredentialResponse:
    """Attach a local password credential if the account lacks one.

    Idempotent: an existing local credential is returned unchanged.
    """
    credential = lifecycle.connect(current, body.password)
    return _credential_to_response(credential)


@router.get("/auth/credentials", response_model=list[CredentialResponse])
def list_credentials(
    current: Account = Depends(get_current_account),
    lifecycle: CredentialLifecycle = Depends(get_lifecycle),
) -> list[CredentialResponse]:
    return [_credential_to_response(c) for c in lifecycle.credentials(current.id)]


@router.delete("/auth/credentials/{protocol}", status_code=204)
def disconnect(
    protocol: str,
    current: Account = Depends(get_current_account),
    lifecycle: CredentialLifecycle = Depends(get_lifecycle),
) -> Response:
    """Detach one credential. Ownership is enforced by the store's WHERE clause."""
    if not lifecycle.disconnect(current.id, protocol):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "No credential for that protocol."},
        )
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _account_to_response(account: Account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        username=account.username,
        email=account.email,
        created_at=account.created_at or "",
    )


def _credential_to_response(credential: Credential) -> CredentialResponse:
    return CredentialResponse(id=credential.id, protocol=credential.protocol, provider=credential.provider)
