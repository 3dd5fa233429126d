"""
auth/models.py -- Domain dataclasses for accounts, credentials, and login outcomes.

Pattern: Data class (pure data container, zero logic). The store and the
lifecycle do the work; these types only carry shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

LOCAL_PROTOCOL = "local"


@dataclass
class Account:
    """An end-user identity, independent of how it authenticates.

    username is the case-sensitive login identifier. When an account is
    registered with only an email, the email doubles as the username.
    """

    username: str
    email: str | None = None
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Credential:
    """A protocol-tagged authenticator owned by exactly one Account.

    protocol is "local" for password credentials; anything else names a
    third-party provider. password is a bcrypt hash once persisted and is
    excluded from repr so it never lands in logs or tracebacks.

    provider / identifier / tokens are reserved for non-local protocols.
    """

    protocol: str
    account_id: int
    password: str | None = field(default=None, repr=False)
    access_token: str | None = field(default=None, repr=False)
    provider: str | None = None
    identifier: str | None = None
    tokens: dict[str, Any] | None = None
    id: int | None = None

    @property
    def is_local(self) -> bool:
        return self.protocol == LOCAL_PROTOCOL


# ---------------------------------------------------------------------------
# Login outcomes
# ---------------------------------------------------------------------------


class LoginFailureReason(str, Enum):
    EMAIL_NOT_FOUND = "email_not_found"
    USERNAME_NOT_FOUND = "username_not_found"
    NO_LOCAL_CREDENTIAL = "no_local_credential"
    WRONG_PASSWORD = "wrong_password"


@dataclass(frozen=True)
class LoginSuccess:
    account: Account
    credential: Credential
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class LoginFailure:
    """An expected login rejection, never an exception.

    not_found separates the lookup misses from authentication failures so
    callers can choose between specific and uniform messaging.
    """

    reason: LoginFailureReason
    ok: bool = field(default=False, init=False)

    @property
    def not_found(self) -> bool:
        return self.reason in (LoginFailureReason.EMAIL_NOT_FOUND, LoginFailureReason.USERNAME_NOT_FOUND)


LoginOutcome = Union[LoginSuccess, LoginFailure]
