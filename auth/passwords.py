"""
auth/passwords.py -- Password hashing and verification (salted scrypt).

Stored form: "<hex of 64-byte scrypt key>.<salt>", where salt is 16 random
bytes hex-encoded and fed to scrypt as its UTF-8 text. Cost parameters are
N=16384, r=8, p=1. Changing any of them invalidates every stored hash.

verify_password() compares with hmac.compare_digest so the comparison time
does not depend on how many leading bytes match. A malformed stored value is
a non-match, never an exception.

Layer rule: stdlib only.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

_SALT_BYTES = 16
_KEY_LEN = 64
_SCRYPT_N = 16384
_SCRYPT_R = 8
_SCRYPT_P = 1


def _derive(plain: str, salt: str) -> bytes:
    return hashlib.scrypt(
        plain.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        dklen=_KEY_LEN,
    )


def hash_password(plain: str) -> str:
    """Return the stored form for a plaintext password."""
    salt = secrets.token_hex(_SALT_BYTES)
    return f"{_derive(plain, salt).hex()}.{salt}"


def verify_password(plain: str, stored: str) -> bool:
    """Return True if the plaintext matches the stored form."""
    hashed, sep, salt = (stored or "").partition(".")
    if not sep or not hashed or not salt:
        return False
    try:
        expected = bytes.fromhex(hashed)
    except ValueError:
        return False
    if len(expected) != _KEY_LEN:
        return False
    return hmac.compare_digest(expected, _derive(plain, salt))


# Timing equalization. authenticate_user() verifies against this when the
# username does not exist, so both failure paths cost one scrypt run.
DUMMY_HASH: str = hash_password("devscripts_timing_dummy")
