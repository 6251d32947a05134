"""
auth/passwords.py -- Password hashing and timing-equalized authentication.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). bcrypt embeds a random 16-byte
  salt and the cost factor in every hash ("$2b$12$..."), so two hashes of the
  same password never match and old hashes keep verifying after the cost
  factor is raised. The cost factor comes from Settings.bcrypt_rounds.

  bcrypt only looks at the first 72 bytes of input, and bcrypt>=5 raises on
  longer input instead of truncating. We truncate explicitly in both
  hash_password() and verify_password() so the two always agree.

  verify_password() never raises. A malformed stored hash is a mismatch, not
  an error -- callers cannot tell "wrong password" from "corrupt record".

  _DUMMY_HASH enables timing equalization in authenticate_user() so response
  time does not reveal whether a username exists.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = 0) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Args:
        plain:  Plaintext password. Must be non-empty.
        rounds: bcrypt cost factor. If 0 (default), uses Settings.bcrypt_rounds.

    Raises ValueError for an empty password. Any failure inside bcrypt
    propagates to the caller unchanged.
    """
    if not plain:
        raise ValueError("Password must not be empty.")
    salt = bcrypt.gensalt(rounds=rounds or get_settings().bcrypt_rounds)
    return bcrypt.hashpw(_encode(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. Any malformed input (bad salt,
    non-string hash, truncated record) returns False.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("connect_timing_dummy")


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Authenticate a username/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_by_username(username)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
