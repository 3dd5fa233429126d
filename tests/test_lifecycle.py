"""Unit tests for auth/lifecycle.py -- register, update_credential, connect, login.

Covers:
- Registration defaults, invariants (one account, one hashed local credential)
- Rollback when the credential write fails, both inside a store transaction
  and through the compensating delete of a non-transactional store
- Password rotation by id and by username; inconsistent state detection
- Idempotent connect, including a lost insert race
- Tagged login outcomes for every failure reason
- Access-token authentication and disconnect
- Passwords over the bcrypt byte limit, and registration not holding the
  database write lock while bcrypt runs
"""

import threading
from unittest.mock import patch

import pytest

from auth.errors import (
    HashingError,
    InconsistentState,
    NotFound,
    RegistrationRejected,
    ValidationFailure,
)
from auth.hashing import PasswordHasher
from auth.lifecycle import CredentialLifecycle
from auth.models import Account, Credential, LoginFailure, LoginFailureReason, LoginSuccess
from auth.store import CredentialStore
from auth.tokens import TokenIssuer

# 40 characters, 80 bytes in UTF-8.
OVER_LONG = "é" * 40

# ---------------------------------------------------------------------------
# register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_username_defaults_to_email(self, lifecycle: CredentialLifecycle) -> None:
        account = lifecycle.register({"email": "a@example.com", "password": "secret123"})
        assert account.id is not None
        assert account.username == "a@example.com"
        assert account.email == "a@example.com"

    def test_explicit_username_kept(self, lifecycle: CredentialLifecycle) -> None:
        account = lifecycle.register({"email": "b@example.com", "username": "bee", "password": "secret123"})
        assert account.username == "bee"

    def test_creates_exactly_one_hashed_local_credential(
        self, lifecycle: CredentialLifecycle, store: CredentialStore, hasher: PasswordHasher
    ) -> None:
        account = lifecycle.register({"email": "c@example.com", "password": "secret123"})
        assert store.count_accounts() == 1
        credentials = store.list_credentials(account.id)
        assert len(credentials) == 1
        credential = credentials[0]
        assert credential.protocol == "local"
        assert credential.password != "secret123"
        assert hasher.verify("secret123", credential.password)
        assert len(credential.access_token) == 64

    def test_draft_is_not_mutated(self, lifecycle: CredentialLifecycle) -> None:
        draft = {"email": "d@example.com", "password": "secret123"}
        lifecycle.register(draft)
        assert draft == {"email": "d@example.com", "password": "secret123"}

    def test_account_never_carries_password(self, lifecycle: CredentialLifecycle) -> None:
        account = lifecycle.register({"email": "e@example.com", "password": "secret123"})
        assert not hasattr(account, "password")
        assert "secret123" not in repr(account)

    def test_missing_password_rejected(self, lifecycle: CredentialLifecycle, store: CredentialStore) -> None:
        with pytest.raises(ValidationFailure, match="password"):
            lifecycle.register({"email": "f@example.com"})
        assert store.count_accounts() == 0

    def test_malformed_email_rejected(self, lifecycle: CredentialLifecycle) -> None:
        with pytest.raises(ValidationFailure, match="email"):
            lifecycle.register({"email": "not-an-email", "password": "secret123"})

    def test_needs_email_or_username(self, lifecycle: CredentialLifecycle) -> None:
        with pytest.raises(ValidationFailure):
            lifecycle.register({"password": "secret123"})

    def test_username_only_registration(self, lifecycle: CredentialLifecycle) -> None:
        account = lifecycle.register({"username": "solo", "password": "secret123"})
        assert account.username == "solo"
        assert account.email is None

    def test_duplicate_email_leaves_one_account(
        self, lifecycle: CredentialLifecycle, store: CredentialStore
    ) -> None:
        lifecycle.register({"email": "dup@example.com", "password": "secret123"})
        with pytest.raises(ValidationFailure):
            lifecycle.register({"email": "dup@example.com", "password": "other1234"})
        assert store.count_accounts() == 1
        assert store.get_account_by_email("dup@example.com") is not None

    def test_credential_failure_rolls_back_account(
        self, store: CredentialStore, hasher: PasswordHasher, fixed_token_issuer
    ) -> None:
        lifecycle = CredentialLifecycle(store, hasher, fixed_token_issuer)
        lifecycle.register({"email": "first@example.com", "password": "secret123"})

        with pytest.raises(RegistrationRejected) as excinfo:
            lifecycle.register({"email": "second@example.com", "password": "secret123"})

        assert excinfo.value.code == "registration_rejected"
        assert isinstance(excinfo.value.__cause__, ValidationFailure)
        assert store.get_account_by_email("second@example.com") is None
        assert store.count_accounts() == 1

    def test_compensating_delete_without_transactions(self, hasher: PasswordHasher, fixed_token_issuer) -> None:
        store = CredentialStore("sqlite:///:memory:", transactional=False)
        try:
            lifecycle = CredentialLifecycle(store, hasher, fixed_token_issuer)
            lifecycle.register({"email": "first@example.com", "password": "secret123"})

            with patch.object(store, "delete_account", wraps=store.delete_account) as spy:
                with pytest.raises(RegistrationRejected):
                    lifecycle.register({"email": "second@example.com", "password": "secret123"})

            spy.assert_called_once()
            assert store.get_account_by_email("second@example.com") is None
            assert store.count_accounts() == 1
        finally:
            store.close()

    def test_hashing_failure_propagates_and_rolls_back(
        self, lifecycle: CredentialLifecycle, store: CredentialStore, hasher: PasswordHasher
    ) -> None:
        with patch.object(hasher, "hash", side_effect=HashingError("Password hashing failed.")):
            with pytest.raises(HashingError):
                lifecycle.register({"email": "g@example.com", "password": "secret123"})
        assert store.count_accounts() == 0

    def test_over_long_password_rejected_before_any_write(
        self, lifecycle: CredentialLifecycle, store: CredentialStore, hasher: PasswordHasher
    ) -> None:
        with patch.object(hasher, "hash", wraps=hasher.hash) as spy:
            with pytest.raises(ValidationFailure, match="72 bytes"):
                lifecycle.register({"email": "long@example.com", "password": OVER_LONG})
        spy.assert_not_called()
        assert store.count_accounts() == 0

    def test_password_at_byte_limit_accepted(self, lifecycle: CredentialLifecycle) -> None:
        lifecycle.register({"email": "edge@example.com", "password": "é" * 36})
        assert isinstance(lifecycle.login("edge@example.com", "é" * 36), LoginSuccess)


# ---------------------------------------------------------------------------
# update_credential
# ---------------------------------------------------------------------------


class TestUpdateCredential:
    def test_rotate_by_id(self, lifecycle: CredentialLifecycle) -> None:
        account = lifecycle.register({"email": "h@example.com", "password": "oldpass1"})
        updated = lifecycle.update_credential({"id": account.id, "password": "newpass1"})
        assert updated.id == account.id

        assert isinstance(lifecycle.login(account.username, "newpass1"), LoginSuccess)
        failed = lifecycle.login(account.username, "oldpass1")
        assert isinstance(failed, LoginFailure)
        assert failed.reason is LoginFailureReason.WRONG_PASSWORD

    def test_rotate_by_username(self, lifecycle: CredentialLifecycle) -> None:
        lifecycle.register({"email": "i@example.com", "username": "ivan", "password": "oldpass1"})
        lifecycle.update_credential({"username": "ivan", "password": "newpass1"})
        assert isinstance(lifecycle.login("ivan", "newpass1"), LoginSuccess)

    def test_id_takes_precedence_over_username(self, lifecycle: CredentialLifecycle) -> None:
        first = lifecycle.register({"username": "one", "password": "oldpass1"})
        lifecycle.register({"username": "two", "password": "oldpass2"})
        lifecycle.update_credential({"id": first.id, "username": "two", "password": "newpass1"})
        assert isinstance(lifecycle.login("one", "newpass1"), LoginSuccess)
        assert isinstance(lifecycle.login("two", "oldpass2"), LoginSuccess)

    def test_rotation_keeps_access_token(self, lifecycle: CredentialLifecycle, store: CredentialStore) -> None:
        account = lifecycle.register({"email": "j@example.com", "password": "oldpass1"})
        before = store.get_credential(account.id, "local")
        lifecycle.update_credential({"id": account.id, "password": "newpass1"})
        after = store.get_credential(account.id, "local")
        assert after.access_token == before.access_token
        assert after.password != before.password
        assert after.password != "newpass1"

    def test_without_password_changes_nothing(self, lifecycle: CredentialLifecycle, store: CredentialStore) -> None:
        account = lifecycle.register({"email": "k@example.com", "password": "oldpass1"})
        before = store.get_credential(account.id, "local")
        with patch.object(store, "update_credential") as mock_update:
            result = lifecycle.update_credential({"id": account.id})
        mock_update.assert_not_called()
        assert result.id == account.id
        assert store.get_credential(account.id, "local").password == before.password

    def test_unknown_id_not_found(self, lifecycle: CredentialLifecycle) -> None:
        with pytest.raises(NotFound) as excinfo:
            lifecycle.update_credential({"id": 999, "password": "newpass1"})
        assert excinfo.value.field == "id"

    def test_unknown_username_not_found(self, lifecycle: CredentialLifecycle) -> None:
        with pytest.raises(NotFound) as excinfo:
            lifecycle.update_credential({"username": "ghost", "password": "newpass1"})
        assert excinfo.value.field == "username"

    def test_no_identifier_not_found(self, lifecycle: CredentialLifecycle) -> None:
        with pytest.raises(NotFound):
            lifecycle.update_credential({"password": "newpass1"})

    def test_over_long_password_keeps_old_one(self, lifecycle: CredentialLifecycle) -> None:
        account = lifecycle.register({"username": "erin", "password": "secret123"})
        with pytest.raises(ValidationFailure):
            lifecycle.update_credential({"id": account.id, "password": OVER_LONG})
        assert isinstance(lifecycle.login("erin", "secret123"), LoginSuccess)

    def test_missing_local_credential_is_inconsistent(
        self, lifecycle: CredentialLifecycle, store: CredentialStore
    ) -> None:
        account_id = store.create_account(Account(username="provider-only"))
        with pytest.raises(InconsistentState):
            lifecycle.update_credential({"id": account_id, "password": "newpass1"})


# ---------------------------------------------------------------------------
# connect / disconnect
# ---------------------------------------------------------------------------


class TestConnect:
    def _provider_account(self, store: CredentialStore) -> Account:
        account_id = store.create_account(Account(username="octo", email="octo@example.com"))
        store.create_credential(Credential(protocol="github", account_id=account_id, provider="github"))
        return store.get_account_by_id(account_id)

    def test_adds_local_credential_to_provider_account(
        self, lifecycle: CredentialLifecycle, store: CredentialStore
    ) -> None:
        account = self._provider_account(store)
        credential = lifecycle.connect(account, "secret123")
        assert credential.id is not None
        assert credential.protocol == "local"
        assert credential.access_token
        assert credential.password != "secret123"
        assert isinstance(lifecycle.login("octo", "secret123"), LoginSuccess)

    def test_existing_credential_returned_unchanged(
        self, lifecycle: CredentialLifecycle, store: CredentialStore
    ) -> None:
        account = lifecycle.register({"email": "l@example.com", "password": "secret123"})
        original = store.get_credential(account.id, "local")

        again = lifecycle.connect(account, "different1")

        assert again.id == original.id
        assert again.password == original.password
        assert isinstance(lifecycle.login("l@example.com", "secret123"), LoginSuccess)
        assert len(store.list_credentials(account.id)) == 1

    def test_requires_password_when_creating(self, lifecycle: CredentialLifecycle, store: CredentialStore) -> None:
        account = self._provider_account(store)
        with pytest.raises(ValidationFailure):
            lifecycle.connect(account, "")
        assert store.get_credential(account.id, "local") is None

    def test_over_long_password_rejected(self, lifecycle: CredentialLifecycle, store: CredentialStore) -> None:
        account = self._provider_account(store)
        with pytest.raises(ValidationFailure):
            lifecycle.connect(account, OVER_LONG)
        assert store.get_credential(account.id, "local") is None

    def test_lost_race_returns_winner(self, lifecycle: CredentialLifecycle, store: CredentialStore) -> None:
        account = self._provider_account(store)
        winner = lifecycle.connect(account, "secret123")

        # The first lookup misses as if the concurrent insert had not landed yet.
        with patch.object(store, "get_credential", side_effect=[None, winner]):
            result = lifecycle.connect(account, "other1234")

        assert result.id == winner.id

    def test_disconnect(self, lifecycle: CredentialLifecycle, store: CredentialStore) -> None:
        account = self._provider_account(store)
        assert lifecycle.disconnect(account.id, "github") is True
        assert lifecycle.disconnect(account.id, "github") is False
        assert lifecycle.credentials(account.id) == []


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_email_login(self, lifecycle: CredentialLifecycle) -> None:
        account = lifecycle.register({"email": "a@example.com", "password": "secret123"})
        outcome = lifecycle.login("a@example.com", "secret123")
        assert isinstance(outcome, LoginSuccess)
        assert outcome.ok is True
        assert outcome.account.id == account.id
        assert outcome.credential.protocol == "local"

    def test_wrong_password(self, lifecycle: CredentialLifecycle) -> None:
        lifecycle.register({"email": "a@example.com", "password": "secret123"})
        outcome = lifecycle.login("a@example.com", "wrong")
        assert isinstance(outcome, LoginFailure)
        assert outcome.ok is False
        assert outcome.reason is LoginFailureReason.WRONG_PASSWORD
        assert outcome.not_found is False

    def test_username_and_email_both_work(self, lifecycle: CredentialLifecycle) -> None:
        lifecycle.register({"email": "carol@example.com", "username": "carol", "password": "secret123"})
        assert isinstance(lifecycle.login("carol", "secret123"), LoginSuccess)
        assert isinstance(lifecycle.login("carol@example.com", "secret123"), LoginSuccess)

    def test_unknown_email(self, lifecycle: CredentialLifecycle) -> None:
        outcome = lifecycle.login("nobody@example.com", "secret123")
        assert outcome.reason is LoginFailureReason.EMAIL_NOT_FOUND
        assert outcome.not_found is True

    def test_unknown_username(self, lifecycle: CredentialLifecycle) -> None:
        outcome = lifecycle.login("nobody", "secret123")
        assert outcome.reason is LoginFailureReason.USERNAME_NOT_FOUND
        assert outcome.not_found is True

    def test_unknown_account_still_runs_bcrypt(self, lifecycle: CredentialLifecycle, hasher: PasswordHasher) -> None:
        with patch.object(hasher, "equalize_timing") as mock_equalize:
            lifecycle.login("nobody", "secret123")
        mock_equalize.assert_called_once_with("secret123")

    def test_no_local_credential(self, lifecycle: CredentialLifecycle, store: CredentialStore) -> None:
        account_id = store.create_account(Account(username="hub"))
        store.create_credential(Credential(protocol="github", account_id=account_id))
        outcome = lifecycle.login("hub", "secret123")
        assert outcome.reason is LoginFailureReason.NO_LOCAL_CREDENTIAL
        assert outcome.not_found is False

    def test_corrupt_hash_is_fatal(self, lifecycle: CredentialLifecycle, store: CredentialStore) -> None:
        account = lifecycle.register({"username": "broken", "password": "secret123"})
        credential = store.get_credential(account.id, "local")
        store.update_credential(credential.id, password="not-a-bcrypt-hash")
        with pytest.raises(HashingError):
            lifecycle.login("broken", "secret123")

    def test_login_is_case_sensitive_on_username(self, lifecycle: CredentialLifecycle) -> None:
        lifecycle.register({"username": "Dave", "password": "secret123"})
        assert isinstance(lifecycle.login("dave", "secret123"), LoginFailure)

    def test_over_long_candidate_is_wrong_password(
        self, lifecycle: CredentialLifecycle, hasher: PasswordHasher
    ) -> None:
        lifecycle.register({"email": "long@example.com", "password": "secret123"})
        with patch.object(hasher, "equalize_timing", wraps=hasher.equalize_timing) as spy:
            known = lifecycle.login("long@example.com", OVER_LONG)
        spy.assert_called_once_with(OVER_LONG)
        assert known.reason is LoginFailureReason.WRONG_PASSWORD

        unknown = lifecycle.login("ghost@example.com", OVER_LONG)
        assert unknown.reason is LoginFailureReason.EMAIL_NOT_FOUND


# ---------------------------------------------------------------------------
# authenticate_token
# ---------------------------------------------------------------------------


class TestAuthenticateToken:
    def test_resolves_login_token(self, lifecycle: CredentialLifecycle) -> None:
        account = lifecycle.register({"email": "t@example.com", "password": "secret123"})
        outcome = lifecycle.login("t@example.com", "secret123")
        resolved = lifecycle.authenticate_token(outcome.credential.access_token)
        assert resolved is not None
        assert resolved.id == account.id

    @pytest.mark.parametrize("token", ["", "not-a-real-token"])
    def test_unknown_token(self, lifecycle: CredentialLifecycle, token: str) -> None:
        assert lifecycle.authenticate_token(token) is None


# ---------------------------------------------------------------------------
# concurrency
# ---------------------------------------------------------------------------


class GatedHasher(PasswordHasher):
    """Blocks inside hash() until released, so a test can act mid-registration."""

    def __init__(self) -> None:
        super().__init__(rounds=4)
        self.hashing = threading.Event()
        self.release = threading.Event()

    def hash(self, plaintext: str) -> str:
        self.hashing.set()
        self.release.wait(timeout=10)
        return super().hash(plaintext)


def test_registration_holds_no_write_lock_while_hashing(tmp_path) -> None:
    db_url = f"sqlite:///{tmp_path / 'concurrent.db'}"
    slow_store = CredentialStore(db_url)
    fast_store = CredentialStore(db_url, timeout=0.2)
    gated = GatedHasher()
    slow = CredentialLifecycle(slow_store, gated, TokenIssuer())
    fast = CredentialLifecycle(fast_store, PasswordHasher(rounds=4), TokenIssuer())
    errors: list[Exception] = []

    def register_slowly() -> None:
        try:
            slow.register({"email": "slow@example.com", "password": "secret123"})
        except Exception as exc:
            errors.append(exc)

    worker = threading.Thread(target=register_slowly)
    worker.start()
    try:
        assert gated.hashing.wait(timeout=10)
        # Must not wait on the other registration's bcrypt call.
        fast.register({"email": "fast@example.com", "password": "secret123"})
    finally:
        gated.release.set()
        worker.join(timeout=10)

    try:
        assert errors == []
        assert fast_store.count_accounts() == 2
        assert isinstance(fast.login("slow@example.com", "secret123"), LoginSuccess)
    finally:
        slow_store.close()
        fast_store.close()
