"""
auth/passwords.py -- bcrypt password hashing with timing equalization.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

bcrypt only reads the first 72 bytes of its input, and bcrypt 5 refuses
anything longer. New passwords are therefore capped at MAX_PASSWORD_BYTES of
UTF-8, both by the request models and here; hash_password raises
InvalidPassword (400) instead of letting bcrypt's ValueError escape.

The _DUMMY_HASH constant lets callers run a full bcrypt comparison even when
there is no real hash to compare against (unknown email, social-only account),
so response time does not reveal which case occurred [C1].

Layer rule: no imports from api/, cache/, mail/, or core/.
"""

from __future__ import annotations

import bcrypt

from auth.errors import InvalidPassword

MAX_PASSWORD_BYTES = 72


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises InvalidPassword if the password exceeds 72 bytes of UTF-8.
    """
    if password_too_long(plain):
        raise InvalidPassword()
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Over-long candidates never match: bcrypt 4 would compare only their first
    72 bytes, bcrypt 5 raises.
    """
    if password_too_long(plain):
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage -- treat as a mismatch.
        return False


# Computed once at module load so the first failed login is not measurably
# slower than later ones [C1].
_DUMMY_HASH: str = hash_password("coursegate_timing_dummy")


def burn_comparison(plain: str) -> None:
    """Run a throwaway bcrypt check so a miss costs the same as a real check [C1]."""
    verify_password(plain, _DUMMY_HASH)
