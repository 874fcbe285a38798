"""
auth/tokens.py -- Password hashing and token redaction utilities.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). Bcrypt is the right
       choice for low-entropy secrets because its cost factor makes brute-force
       expensive. DUMMY_HASH enables timing equalization in AuthService.login()
       so response time does not reveal whether a username or email exists.

  Tokens: the bearer tokens are GitLab access tokens, so anyone holding one
       can act as the user on GitLab. They are never logged in full --
       redact_token() keeps only a short prefix for correlation.

Layer rule: no imports from api/ or gitlab_api/.
"""

from __future__ import annotations

import bcrypt

_VISIBLE_PREFIX = 4
_BCRYPT_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes and recent releases reject longer
    input outright, so both hashing and checking truncate explicitly.
    """
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a non-match, not an error: bcrypt raises
    ValueError for it.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
DUMMY_HASH: str = hash_password("mlreef_timing_dummy")


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def redact_token(token: str | None) -> str:
    """Mask a token for log output: 'glpat-abc...' -> 'glpa**********'.

    Short tokens are masked entirely; revealing four characters of an
    eight-character secret gives away half of it.
    """
    if not token:
        return "<empty>"
    if len(token) <= 2 * _VISIBLE_PREFIX:
        return "*" * len(token)
    return token[:_VISIBLE_PREFIX] + "*" * (len(token) - _VISIBLE_PREFIX)
