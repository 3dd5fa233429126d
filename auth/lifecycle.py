"""
auth/lifecycle.py -- Local (username/email + password) authentication protocol.

CredentialLifecycle owns every write that touches a credential: registering a
new account with its local credential, rotating the password, attaching a
password to an account that signed up through a provider, and verifying a
login. It receives its collaborators explicitly:

    lifecycle = CredentialLifecycle(store, PasswordHasher(rounds=12), TokenIssuer())

Security design decisions:
  Plaintext passwords are popped out of every input mapping before anything
  is persisted and only ever reach the store through apply_password_hash().

  register() hashes the password first, then creates the account and its
  credential in one store transaction, so no write lock is held while
  bcrypt runs. If the store cannot offer one, a failed credential write is
  compensated by deleting the fresh account before the error propagates.

  login() returns a LoginOutcome instead of raising on bad credentials.
  Unknown identifiers still pay for a bcrypt comparison so timing does not
  reveal whether an account exists.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from auth.errors import InconsistentState, NotFound, RegistrationRejected, ValidationFailure
from auth.hashing import MAX_PASSWORD_BYTES, PasswordHasher, apply_password_hash, password_too_long
from auth.identifiers import IdentifierKind, classify, is_email
from auth.models import (
    LOCAL_PROTOCOL,
    Account,
    Credential,
    LoginFailure,
    LoginFailureReason,
    LoginOutcome,
    LoginSuccess,
)
from auth.store import CredentialStore
from auth.tokens import TokenIssuer

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection

logger = logging.getLogger("localauth.lifecycle")


class CredentialLifecycle:
    def __init__(self, store: CredentialStore, hasher: PasswordHasher, token_issuer: TokenIssuer) -> None:
        self._store = store
        self._hasher = hasher
        self._tokens = token_issuer

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, account_draft: Mapping[str, Any]) -> Account:
        """Create an account together with its local credential.

        account_draft needs a password and an email or username. When the
        username is missing the email is used in its place.

        Raises:
            ValidationFailure: bad input, or the username/email is taken.
            RegistrationRejected: the credential write failed validation;
                no account is left behind.
        """
        values = dict(account_draft)
        password = _require_password(values.pop("password", None))
        account = _build_account(values)
        fields = self._local_credential_fields(password, self._tokens.issue())

        if self._store.transactional:
            with self._store.transaction() as conn:
                account.id = self._store.create_account(account, conn=conn)
                self._create_registration_credential(account.id, fields, conn)
        else:
            account.id = self._store.create_account(account)
            try:
                self._create_registration_credential(account.id, fields, None)
            except Exception:
                logger.warning("Credential creation failed for account id=%d; deleting account", account.id)
                self._store.delete_account(account.id)
                raise

        logger.info("Registered account id=%d", account.id)
        created = self._store.get_account_by_id(account.id)
        if created is None:
            raise InconsistentState(f"Account id={account.id} vanished after registration.")
        return created

    def _create_registration_credential(
        self, account_id: int, fields: Mapping[str, Any], conn: Connection | None
    ) -> Credential:
        try:
            return self._create_local_credential(account_id, fields, conn)
        except ValidationFailure as exc:
            raise RegistrationRejected("The local credential could not be created.") from exc

    def _local_credential_fields(self, password: str, access_token: str) -> dict[str, Any]:
        # Runs bcrypt; keep it outside any store transaction.
        values = {"protocol": LOCAL_PROTOCOL, "password": password, "access_token": access_token}
        return dict(apply_password_hash(values, self._hasher))

    def _create_local_credential(
        self, account_id: int, fields: Mapping[str, Any], conn: Connection | None = None
    ) -> Credential:
        credential = Credential(account_id=account_id, **fields)
        credential.id = self._store.create_credential(credential, conn=conn)
        return credential

    # ------------------------------------------------------------------
    # Password rotation
    # ------------------------------------------------------------------

    def update_credential(self, account_partial: Mapping[str, Any]) -> Account:
        """Rotate the local password of an account identified by id or username.

        Only the password field of the credential is written. Without a new
        password the account is resolved and returned untouched.

        Raises:
            NotFound: no account matches the id/username.
            InconsistentState: a password was given but the account has no
                local credential.
        """
        values = dict(account_partial)
        password = values.pop("password", None)
        account = self._resolve_account(values)

        if password:
            _require_password(password)
            credential = self._store.get_credential(account.id, LOCAL_PROTOCOL)
            if credential is None:
                raise InconsistentState(f"Account id={account.id} has no local credential to update.")
            fields = apply_password_hash({"password": password}, self._hasher)
            self._store.update_credential(credential.id, **fields)
            logger.info("Rotated local password for account id=%d", account.id)
        return account

    def _resolve_account(self, values: Mapping[str, Any]) -> Account:
        if values.get("id") is not None:
            account = self._store.get_account_by_id(values["id"])
            if account is None:
                raise NotFound(f"No account with id={values['id']}.", field="id")
            return account
        if values.get("username"):
            account = self._store.get_account_by_username(values["username"])
            if account is None:
                raise NotFound("No account with that username.", field="username")
            return account
        raise NotFound("An account id or username is required.")

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    def connect(self, account: Account, password: str) -> Credential:
        """Return the account's local credential, creating it if missing.

        An existing credential is returned unchanged; its password is not
        overwritten (that is update_credential's job). Used to give a
        provider-registered account a password.
        """
        existing = self._store.get_credential(account.id, LOCAL_PROTOCOL)
        if existing is not None:
            return existing
        fields = self._local_credential_fields(_require_password(password), self._tokens.issue())
        try:
            credential = self._create_local_credential(account.id, fields)
        except ValidationFailure:
            # Lost a race against a concurrent connect; the winner's row stands.
            existing = self._store.get_credential(account.id, LOCAL_PROTOCOL)
            if existing is None:
                raise
            return existing
        logger.info("Connected local credential to account id=%d", account.id)
        return credential

    def disconnect(self, account_id: int, protocol: str) -> bool:
        """Remove one of the account's credentials. Returns False if it had none."""
        removed = self._store.delete_credential(account_id, protocol)
        if removed:
            logger.info("Disconnected %s credential from account id=%d", protocol, account_id)
        return removed

    def credentials(self, account_id: int) -> list[Credential]:
        return self._store.list_credentials(account_id)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, identifier: str, password: str) -> LoginOutcome:
        """Verify an identifier/password pair.

        The identifier is treated as an email when it matches the email
        grammar, otherwise as a username. Bad credentials produce a
        LoginFailure; only hashing faults raise (HashingError).
        """
        kind = classify(identifier)
        if kind is IdentifierKind.EMAIL:
            account = self._store.get_account_by_email(identifier)
            missing = LoginFailureReason.EMAIL_NOT_FOUND
        else:
            account = self._store.get_account_by_username(identifier)
            missing = LoginFailureReason.USERNAME_NOT_FOUND

        if account is None:
            self._hasher.equalize_timing(password)
            logger.info("Login failed: %s", missing.value)
            return LoginFailure(missing)

        credential = self._store.get_credential(account.id, LOCAL_PROTOCOL)
        if credential is None or not credential.password:
            self._hasher.equalize_timing(password)
            logger.info("Login failed for account id=%d: no local credential", account.id)
            return LoginFailure(LoginFailureReason.NO_LOCAL_CREDENTIAL)

        if password_too_long(password):
            # No stored hash can match; still pay for one comparison.
            self._hasher.equalize_timing(password)
            logger.info("Login failed for account id=%d: wrong password", account.id)
            return LoginFailure(LoginFailureReason.WRONG_PASSWORD)

        if not self._hasher.verify(password, credential.password):
            logger.info("Login failed for account id=%d: wrong password", account.id)
            return LoginFailure(LoginFailureReason.WRONG_PASSWORD)

        return LoginSuccess(account, credential)

    def authenticate_token(self, access_token: str) -> Account | None:
        """Resolve a bearer access token to its owning account, or None."""
        if not access_token:
            return None
        credential = self._store.get_credential_by_access_token(access_token)
        if credential is None:
            return None
        return self._store.get_account_by_id(credential.account_id)


def _require_password(password: str | None) -> str:
    if not password:
        raise ValidationFailure("A password is required.")
    if password_too_long(password):
        raise ValidationFailure(f"A password may be at most {MAX_PASSWORD_BYTES} bytes long in UTF-8.")
    return password


def _build_account(values: Mapping[str, Any]) -> Account:
    email = values.get("email") or None
    if email is not None and not is_email(email):
        raise ValidationFailure("The email address is not well-formed.")
    username = values.get("username") or email
    if not username:
        raise ValidationFailure("An email or username is required.")
    return Account(username=username, email=email)
