"""Unit tests for auth/hashing.py -- bcrypt secret hashing and verification.

Covers:
- hash/verify round trip and mismatch
- salt freshness (two hashes of one secret differ, both verify)
- fail-closed behaviour on malformed stored hashes
- compatibility with $2a$ hashes from other bcrypt implementations
"""

from __future__ import annotations

import bcrypt
import pytest

from auth.errors import BadCredential, CorruptCredential
from auth.hashing import check_secret, hash_secret, is_bcrypt_hash, secret_too_long, verify_secret

# From the original deployment's SQL seed script.
_LEGACY_HASH = "$2a$10$xn3LI/AjqicFYZFruSwve.681477XaVNaUQbr1gioaWPn4t1KsnmG"


@pytest.mark.parametrize("secret", ["password", "admin", "correct horse battery staple", "pässwörd-ü", " "])
def test_verify_accepts_own_hash(secret: str) -> None:
    assert verify_secret(secret, hash_secret(secret)) is True


def test_verify_rejects_different_secret() -> None:
    hashed = hash_secret("password")
    assert verify_secret("Password", hashed) is False
    assert verify_secret("password ", hashed) is False
    assert verify_secret("", hashed) is False


def test_hashes_are_salted() -> None:
    first = hash_secret("password")
    second = hash_secret("password")
    assert first != second
    assert verify_secret("password", first)
    assert verify_secret("password", second)


def test_hash_is_not_the_plaintext() -> None:
    hashed = hash_secret("s3cret")
    assert "s3cret" not in hashed
    assert is_bcrypt_hash(hashed)


def test_configured_cost_factor_is_embedded() -> None:
    """conftest sets BCRYPT_ROUNDS=4; an explicit rounds argument overrides it."""
    assert hash_secret("x").startswith("$2b$04$")
    assert hash_secret("x", rounds=5).startswith("$2b$05$")


def test_difference_in_last_allowed_byte_is_detected() -> None:
    hashed = hash_secret("a" * 71 + "Y")
    assert verify_secret("a" * 71 + "Z", hashed) is False
    assert check_secret("a" * 71 + "Y" + "X", hashed) is False
    assert verify_secret("a" * 71 + "Y", hashed) is True


def test_secret_at_the_byte_limit_round_trips() -> None:
    secret = "a" * 72
    assert verify_secret(secret, hash_secret(secret)) is True


@pytest.mark.parametrize("secret", ["a" * 73, "a" * 200, "ü" * 37])
def test_over_long_secret_is_refused(secret: str) -> None:
    assert secret_too_long(secret)
    with pytest.raises(ValueError, match="72 bytes"):
        hash_secret(secret)


def test_over_long_candidate_never_verifies() -> None:
    hashed = hash_secret("a" * 72)
    assert verify_secret("a" * 72 + "X", hashed) is False
    assert verify_secret("a" * 200, hashed) is False


@pytest.mark.parametrize(
    "stored",
    [
        "",
        "plaintext-password",
        "$1$abcdefgh$abcdefghijklmnopqrstuv",  # md5-crypt
        "$2b$04$tooshort",
        "$2b$99$" + "a" * 53,  # impossible cost
        "$2x$04$" + "a" * 53,  # unknown variant
    ],
)
def test_malformed_hash_fails_closed(stored: str) -> None:
    assert verify_secret("password", stored) is False
    with pytest.raises(CorruptCredential):
        check_secret("password", stored)


def test_corrupt_credential_is_a_bad_credential() -> None:
    """Callers that only handle BadCredential still reject corrupt hashes."""
    assert issubclass(CorruptCredential, BadCredential)


def test_legacy_2a_hashes_are_recognised() -> None:
    assert is_bcrypt_hash(_LEGACY_HASH)
    assert verify_secret("definitely-not-it", _LEGACY_HASH) is False


def test_2a_hash_verifies() -> None:
    hashed = bcrypt.hashpw(b"password", bcrypt.gensalt(rounds=4, prefix=b"2a")).decode("ascii")
    assert hashed.startswith("$2a$")
    assert verify_secret("password", hashed)
    assert not verify_secret("wrong", hashed)
