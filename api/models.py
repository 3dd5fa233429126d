"""
API request and response models for the localauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Password length policy lives here: at least 8 characters and at most 72
bytes once encoded as UTF-8 (bcrypt's input limit). The core enforces the
byte limit too, so the CLI gets the same rule.
"""

from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from auth.hashing import MAX_PASSWORD_BYTES, password_too_long

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = MAX_PASSWORD_BYTES


def _within_byte_limit(value: str) -> str:
    if password_too_long(value):
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes in UTF-8")
    return value


# Character bounds first, then the byte limit multi-byte characters can exceed.
_NewPassword = Annotated[
    str,
    Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH),
    AfterValidator(_within_byte_limit),
]

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    username is optional; the email is used when it is omitted.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    password: _NewPassword


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. identifier is an email or a username.

    No byte limit on password: an over-long candidate gets the same 401 as
    any other wrong password.
    """

    identifier: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class PasswordUpdate(BaseModel):
    password: _NewPassword


class ConnectRequest(BaseModel):
    password: _NewPassword


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Never carries credential material."""

    id: int
    username: str
    email: Optional[str] = None
    created_at: str


class CredentialResponse(BaseModel):
    """Public view of a credential: which protocols are attached, nothing secret."""

    id: int
    protocol: str
    provider: Optional[str] = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    account: AccountResponse


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
    components: dict[str, str] = Field(default_factory=dict)
