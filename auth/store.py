"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and credentials.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_account / _row_to_credential are the mappers. The lifecycle never
touches SQL directly.

Transactions:
  Every method takes an optional conn. Without one, the method opens its own
  engine.begin() block and commits on exit. With one (from transaction()),
  it joins the caller's transaction so several writes commit or roll back
  together. register() relies on this to create an account and its first
  credential atomically.

  transactional=False makes transaction() hand out autocommitting
  per-call connections instead. The lifecycle then falls back to a
  compensating delete when the second write of a registration fails.

Integrity:
  UNIQUE(username), UNIQUE(email), UNIQUE(access_token) and
  UNIQUE(account_id, protocol) live in the schema. Any IntegrityError is
  re-raised as ValidationFailure so callers never import sqlalchemy.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ValidationFailure
from auth.models import Account, Credential

logger = logging.getLogger("localauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), unique=True),  # NULLs are distinct, so many accounts may omit it
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_credentials = Table(
    "credentials",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("protocol", String(50), nullable=False),
    Column("password", Text),  # bcrypt hash, local protocol only
    Column("access_token", String(128), unique=True),
    Column("provider", String(50)),
    Column("identifier", Text),
    Column("tokens", Text),  # JSON object, provider protocols only
    Column("account_id", Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
    UniqueConstraint("account_id", "protocol", name="uq_account_protocol"),
)

_CREDENTIAL_FIELDS = {"protocol", "password", "access_token", "provider", "identifier", "tokens"}


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are per-connection and are not inherited from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Account and Credential records.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        with store.transaction() as conn:
            account_id = store.create_account(Account(username="alice"), conn=conn)
            store.create_credential(Credential(protocol="local", account_id=account_id), conn=conn)
        store.close()
    """

    def __init__(self, db_url: str, transactional: bool = True, timeout: float = 5.0) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)
        self.transactional = transactional

    @contextmanager
    def transaction(self) -> Iterator[Connection | None]:
        """Yield a connection whose writes commit together on clean exit.

        Any exception rolls every write back. A non-transactional store
        yields None, so each call inside the block commits on its own.
        """
        if not self.transactional:
            yield None
            return
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def _connect(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self.engine.begin() as own:
            yield own

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account, conn: Connection | None = None) -> int:
        """Insert an account and return its ID.

        Raises ValidationFailure if the username or email is already taken.
        """
        now = _now_iso()
        try:
            with self._connect(conn) as c:
                result = c.execute(
                    _accounts.insert().values(
                        username=account.username,
                        email=account.email,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise ValidationFailure("An account with that username or email already exists.") from exc
        return result.inserted_primary_key[0]

    def get_account_by_id(self, account_id: int, conn: Connection | None = None) -> Account | None:
        with self._connect(conn) as c:
            row = c.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_username(self, username: str, conn: Connection | None = None) -> Account | None:
        """Look up an account by exact username (case-sensitive)."""
        with self._connect(conn) as c:
            row = c.execute(_accounts.select().where(_accounts.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_email(self, email: str, conn: Connection | None = None) -> Account | None:
        with self._connect(conn) as c:
            row = c.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def delete_account(self, account_id: int, conn: Connection | None = None) -> bool:
        """Delete an account and every credential it owns.

        Credentials are removed explicitly in the same transaction, so the
        cascade holds even on backends without foreign key enforcement.
        Returns True if the account existed.
        """
        with self._connect(conn) as c:
            c.execute(_credentials.delete().where(_credentials.c.account_id == account_id))
            result = c.execute(_accounts.delete().where(_accounts.c.id == account_id))
        if result.rowcount:
            logger.info("Deleted account id=%d and its credentials", account_id)
        return result.rowcount > 0

    def count_accounts(self) -> int:
        with self._connect(None) as c:
            return c.execute(select(func.count()).select_from(_accounts)).scalar() or 0

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def create_credential(self, credential: Credential, conn: Connection | None = None) -> int:
        """Insert a credential and return its ID.

        The password must already be hashed; the store writes what it is given.
        Raises ValidationFailure on a duplicate (account, protocol) pair, a
        duplicate access token, or a missing owner account.
        """
        try:
            with self._connect(conn) as c:
                result = c.execute(
                    _credentials.insert().values(
                        protocol=credential.protocol,
                        password=credential.password,
                        access_token=credential.access_token,
                        provider=credential.provider,
                        identifier=credential.identifier,
                        tokens=json.dumps(credential.tokens) if credential.tokens is not None else None,
                        account_id=credential.account_id,
                    )
                )
        except IntegrityError as exc:
            raise ValidationFailure("Credential violates a uniqueness or ownership constraint.") from exc
        return result.inserted_primary_key[0]

    def get_credential(self, account_id: int, protocol: str, conn: Connection | None = None) -> Credential | None:
        """Return the account's credential for protocol, or None."""
        with self._connect(conn) as c:
            row = c.execute(
                _credentials.select().where(
                    (_credentials.c.account_id == account_id) & (_credentials.c.protocol == protocol)
                )
            ).fetchone()
        return _row_to_credential(row) if row is not None else None

    def get_credential_by_access_token(self, access_token: str) -> Credential | None:
        """Look up a credential by its access token. O(1) via the UNIQUE index."""
        with self._connect(None) as c:
            row = c.execute(_credentials.select().where(_credentials.c.access_token == access_token)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def list_credentials(self, account_id: int) -> list[Credential]:
        """Return all credentials owned by an account, oldest first."""
        with self._connect(None) as c:
            rows = c.execute(
                _credentials.select().where(_credentials.c.account_id == account_id).order_by(_credentials.c.id)
            ).fetchall()
        return [_row_to_credential(r) for r in rows]

    def update_credential(self, credential_id: int, conn: Connection | None = None, **fields: Any) -> bool:
        """Write only the given fields of a credential.

        Accepted fields: protocol, password, access_token, provider,
        identifier, tokens. Unknown keys raise ValueError before any SQL runs.
        Returns True if a row was updated, False if credential_id was not found.
        """
        unknown = set(fields) - _CREDENTIAL_FIELDS
        if unknown:
            raise ValueError(f"Unknown credential fields: {sorted(unknown)!r}")
        if "tokens" in fields and fields["tokens"] is not None:
            fields["tokens"] = json.dumps(fields["tokens"])
        try:
            with self._connect(conn) as c:
                result = c.execute(_credentials.update().where(_credentials.c.id == credential_id).values(**fields))
        except IntegrityError as exc:
            raise ValidationFailure("Credential update violates a uniqueness constraint.") from exc
        return result.rowcount > 0

    def delete_credential(self, account_id: int, protocol: str) -> bool:
        """Delete one credential. account_id is checked so callers can only
        remove credentials they own. Returns True if a row was deleted."""
        with self._connect(None) as c:
            result = c.execute(
                _credentials.delete().where(
                    (_credentials.c.account_id == account_id) & (_credentials.c.protocol == protocol)
                )
            )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        protocol=row.protocol,
        account_id=row.account_id,
        password=row.password,
        access_token=row.access_token,
        provider=row.provider,
        identifier=row.identifier,
        tokens=json.loads(row.tokens) if row.tokens else None,
    )
