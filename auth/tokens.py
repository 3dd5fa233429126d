"""
auth/tokens.py -- Opaque access tokens for stateless API authentication.

Tokens come from secrets.token_urlsafe(): the OS CSPRNG encoded as URL-safe
base64 with the "=" padding stripped, so they travel unchanged in headers
and query strings. 48 bytes (384 bits) is the floor; brute force is
computationally infeasible.

Tokens are unrelated to the password hash. One is issued per local
credential at creation and stored alongside it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import secrets

MIN_TOKEN_BYTES = 48


class TokenIssuer:
    """Issue opaque random tokens.

    Usage:
        issuer = TokenIssuer()
        token = issuer.issue()   # 64 URL-safe characters for 48 bytes
    """

    def __init__(self, nbytes: int = MIN_TOKEN_BYTES) -> None:
        if nbytes < MIN_TOKEN_BYTES:
            raise ValueError(f"Access tokens need at least {MIN_TOKEN_BYTES} bytes of entropy.")
        self.nbytes = nbytes

    def issue(self) -> str:
        return secrets.token_urlsafe(self.nbytes)
