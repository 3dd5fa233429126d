"""
auth/hashing.py -- bcrypt password hashing and the credential hashing hook.

Security design decisions:
  bcrypt is used directly (no passlib wrapper). Its cost factor makes
  brute-force expensive for low-entropy secrets; the cost comes from
  Settings.bcrypt_rounds and is embedded in every hash, so raising it later
  only affects new hashes while old ones keep verifying.

  verify() uses bcrypt.checkpw, which compares in constant time. Unlike a
  login helper that treats every problem as "no match", a malformed stored
  hash raises HashingError here: a corrupt credential is a fault, not a
  wrong password.

  bcrypt only reads the first 72 bytes of its input and newer releases
  reject anything longer. The limit is in UTF-8 bytes, not characters, so
  callers check password_too_long() before hashing; anything that still
  slips through fails as a HashingError rather than being silently
  truncated.

  equalize_timing() runs a throwaway verification so a login for an unknown
  account, or with an over-long candidate, costs the same as one with a
  wrong password.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from functools import cached_property
from typing import Any

import bcrypt

from auth.errors import HashingError

logger = logging.getLogger("localauth.hashing")

_DEFAULT_ROUNDS = 12

MAX_PASSWORD_BYTES = 72


def password_too_long(plaintext: str) -> bool:
    """True if plaintext exceeds bcrypt's input limit once encoded as UTF-8."""
    return len(plaintext.encode("utf-8")) > MAX_PASSWORD_BYTES


class PasswordHasher:
    """Stateless bcrypt wrapper, safe to share across threads."""

    def __init__(self, rounds: int = _DEFAULT_ROUNDS) -> None:
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt hash of plaintext. Raises HashingError on failure."""
        try:
            salt = bcrypt.gensalt(rounds=self.rounds)
            return bcrypt.hashpw(plaintext.encode("utf-8"), salt).decode("utf-8")
        except (ValueError, TypeError) as exc:
            raise HashingError("Password hashing failed.") from exc

    def verify(self, plaintext: str, hashed: str) -> bool:
        """Return True if plaintext matches hashed.

        A clean mismatch returns False. A malformed hash or an unusable input
        raises HashingError.
        """
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError) as exc:
            raise HashingError("Password comparison failed.") from exc

    @cached_property
    def _dummy_hash(self) -> str:
        return self.hash("localauth-timing-dummy")

    def equalize_timing(self, plaintext: str) -> None:
        """Spend one bcrypt comparison on plaintext and discard the result.

        Input past the byte limit is clipped so it costs a full comparison
        instead of failing fast.
        """
        candidate = plaintext.encode("utf-8")[:MAX_PASSWORD_BYTES].decode("utf-8", "ignore")
        try:
            self.verify(candidate, self._dummy_hash)
        except HashingError:
            logger.debug("Timing equalization comparison failed", exc_info=True)


def apply_password_hash(values: MutableMapping[str, Any], hasher: PasswordHasher) -> MutableMapping[str, Any]:
    """Hash values["password"] in place before a credential write.

    Runs on both the create and update paths so rotation and registration
    share one hashing route. An empty or absent password passes through
    unchanged (non-local credentials carry none). If hashing fails the
    plaintext is removed from values before the error propagates.
    """
    password = values.get("password")
    if not password:
        return values
    try:
        values["password"] = hasher.hash(password)
    except HashingError:
        values.pop("password", None)
        raise
    return values
