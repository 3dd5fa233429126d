"""
auth/errors.py -- Exception taxonomy for the credential lifecycle.

Every error carries a stable machine-readable code so the HTTP layer can map
it to a response without string matching. Messages must never include a
plaintext password.

Hierarchy:
  AuthError
    ValidationFailure       uniqueness / format violations
      RegistrationRejected  credential step of register failed validation
    NotFound                account lookup missed
    FatalInternal           not retried, surfaced as a generic failure
      HashingError          bcrypt hash or compare failed
      InconsistentState     stored data contradicts a lifecycle invariant

Wrong passwords are not errors -- see LoginFailure in auth/models.py.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailure(AuthError):
    code = "validation_error"


class RegistrationRejected(ValidationFailure):
    """The local credential could not be created; the account was rolled back."""

    code = "registration_rejected"


class NotFound(AuthError):
    code = "not_found"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class FatalInternal(AuthError):
    code = "internal_error"


class HashingError(FatalInternal):
    code = "hashing_error"


class InconsistentState(FatalInternal):
    code = "inconsistent_state"
