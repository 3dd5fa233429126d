"""
bootstrap.py -- Wire configuration into the credential lifecycle.

This is the one place that reads Settings and constructs the store, hasher
and token issuer. api/main.py (lifespan) and main.py (CLI) both call it, so
the HTTP service and the admin CLI always agree on cost factor and database.
"""

from __future__ import annotations

from auth.hashing import PasswordHasher
from auth.lifecycle import CredentialLifecycle
from auth.store import CredentialStore
from auth.tokens import TokenIssuer
from core.config import Settings, get_settings


def build_lifecycle(settings: Settings | None = None) -> tuple[CredentialLifecycle, CredentialStore]:
    """Return (lifecycle, store). The caller owns the store and must close() it."""
    settings = settings or get_settings()
    store = CredentialStore(settings.database_url, timeout=settings.store_timeout_seconds)
    lifecycle = CredentialLifecycle(
        store,
        PasswordHasher(rounds=settings.bcrypt_rounds),
        TokenIssuer(nbytes=settings.access_token_bytes),
    )
    return lifecycle, store
