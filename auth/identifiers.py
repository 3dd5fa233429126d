"""
auth/identifiers.py -- Classify a login identifier as an email or a username.

The grammar is a practical RFC 5322 subset, matched case-insensitively:

  local-part  dot-atom (atext runs separated by single dots) or a
              double-quoted string with backslash escapes
  "@"
  domain      two or more dot-separated labels; labels start and end with a
              letter or digit; the last label starts and ends with a letter

Unicode letters above U+00A0 count as atext so internationalized addresses
classify as emails. No DNS or network checks -- classification is pure.
"""

from __future__ import annotations

import re
from enum import Enum

# Non-ASCII ranges accepted anywhere atext or a label character is allowed.
# Surrogates (U+D800-U+DFFF) and the U+FDD0-U+FDEF noncharacters are excluded.
_UCS = r"\u00a0-\ud7ff\uf900-\ufdcf\ufdf0-\uffef"

_ATEXT = r"[a-z\d!#$%&'*+\-/=?^_`{|}~" + _UCS + r"]"
_DOT_ATOM = _ATEXT + r"+(?:\." + _ATEXT + r"+)*"

_QTEXT = r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f\x21\x23-\x5b\x5d-\x7e" + _UCS + r"]"
_QUOTED_PAIR = r"\\[\x01-\x09\x0b\x0c\x0d-\x7f" + _UCS + r"]"
_QUOTED = r'"(?:[\x20\x09]|' + _QTEXT + r"|" + _QUOTED_PAIR + r')*"'

_ALNUM = r"[a-z\d" + _UCS + r"]"
_ALPHA = r"[a-z" + _UCS + r"]"
# No "." inside labels: overlapping the separator would make failed matches
# backtrack exponentially on long dotted input.
_LABEL_CHAR = r"[a-z\d\-_~" + _UCS + r"]"
_LABEL = r"(?:" + _ALNUM + r"|" + _ALNUM + _LABEL_CHAR + r"*" + _ALNUM + r")"
_TLD = r"(?:" + _ALPHA + r"|" + _ALPHA + _LABEL_CHAR + r"*" + _ALPHA + r")"

EMAIL_RE = re.compile(
    r"(?:" + _DOT_ATOM + r"|" + _QUOTED + r")@(?:" + _LABEL + r"\.)+" + _TLD,
    re.IGNORECASE,
)


class IdentifierKind(str, Enum):
    EMAIL = "email"
    USERNAME = "username"


def is_email(value: str) -> bool:
    """Return True if value is a well-formed email address."""
    return EMAIL_RE.fullmatch(value) is not None


def classify(identifier: str) -> IdentifierKind:
    """Return EMAIL when the identifier matches the email grammar, else USERNAME."""
    return IdentifierKind.EMAIL if is_email(identifier) else IdentifierKind.USERNAME
