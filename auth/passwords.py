"""
auth/passwords.py -- Password hashing (bcrypt, direct usage, no passlib wrapper).

Bcrypt is the right choice for low-entropy secrets because its cost factor
makes brute force expensive, and it salts every hash automatically.
bcrypt.checkpw compares in constant time.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Passwords are only hashed on the registration path. Sign-in is email + OTP
and no route compares a password today. verify_password() is kept for a
future password sign-in; until then only the tests call it, to check that
what registration stores is a usable bcrypt hash.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt

# bcrypt only looks at the first 72 bytes of its input.
_BCRYPT_MAX_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Google-only accounts have no hash; they never match. No route calls this
    yet: it is kept for a future password sign-in.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
    except ValueError:
        return False
