"""Unit tests for auth/passwords.py -- salted scrypt hashing.

Covers:
- stored form is "<128 hex chars>.<32 hex chars>"
- correct password verifies; wrong password does not
- same password hashed twice yields different salts and digests
- malformed stored values are a non-match, never an exception
- a hash built by hand with the documented parameters verifies
"""

import hashlib

import pytest

from auth.passwords import DUMMY_HASH, hash_password, verify_password


class TestHashPassword:
    def test_stored_form(self) -> None:
        hashed, sep, salt = hash_password("secret1").partition(".")
        assert sep == "."
        assert len(hashed) == 128
        assert len(salt) == 32
        int(hashed, 16)
        int(salt, 16)

    def test_salt_is_random(self) -> None:
        assert hash_password("secret1") != hash_password("secret1")

    def test_never_contains_plaintext(self) -> None:
        assert "hunter22" not in hash_password("hunter22")


class TestVerifyPassword:
    def test_round_trip(self) -> None:
        assert verify_password("secret1", hash_password("secret1"))

    def test_wrong_password(self) -> None:
        assert not verify_password("secret2", hash_password("secret1"))

    def test_unicode_password(self) -> None:
        assert verify_password("pässwörd✓", hash_password("pässwörd✓"))

    def test_known_vector(self) -> None:
        """Salt is used as its UTF-8 text, with N=16384, r=8, p=1, 64-byte key."""
        salt = "00112233445566778899aabbccddeeff"
        digest = hashlib.scrypt(b"abcdef", salt=salt.encode("utf-8"), n=16384, r=8, p=1, dklen=64)
        assert verify_password("abcdef", f"{digest.hex()}.{salt}")

    @pytest.mark.parametrize(
        "stored",
        ["", "nodot", ".onlysalt", "onlyhash.", "zz-not-hex.abcd", "abcd.salt", None],
    )
    def test_malformed_stored_value(self, stored) -> None:
        assert verify_password("anything", stored) is False

    def test_dummy_hash_is_well_formed(self) -> None:
        assert not verify_password("secret1", DUMMY_HASH)
        assert verify_password("devscripts_timing_dummy", DUMMY_HASH)
