"""
auth/hashing.py -- Secret hashing and verification.

Security design decisions:
  bcrypt (direct usage, no passlib wrapper). Bcrypt is the right choice for
       low-entropy secrets because its cost factor makes brute-force
       expensive. The salt is generated fresh per hash_secret() call and
       embedded in the output, so two hashes of the same secret differ but
       both verify.

  Cost factor: sourced from core.config.get_settings().bcrypt_rounds, read
       once at module load. Existing hashes keep verifying after the cost is
       changed because bcrypt stores the cost inside the hash.

  72-byte limit: bcrypt only looks at the first 72 bytes of input. Secrets
       are never truncated: hash_secret() refuses a longer secret with
       ValueError, and a longer candidate never verifies. Two secrets that
       share their first 72 bytes therefore cannot stand in for each other.

  Compatibility: hashes produced by other bcrypt implementations ($2a$, $2y$)
       verify as well as the $2b$ hashes written here.

  Fail closed: a malformed stored hash never raises into the login path.
       verify_secret() returns False; check_secret() raises CorruptCredential
       so the resolver can log corruption separately from a wrong password.

All functions are pure and re-entrant.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import re

import bcrypt

from auth.errors import CorruptCredential
from core.config import get_settings

_settings = get_settings()

SECRET_MAX_BYTES = 72

# $2a$ / $2b$ / $2y$, two-digit cost, 22-char salt + 31-char digest.
_BCRYPT_RE = re.compile(r"^\$2[aby]\$(0[4-9]|[12]\d|3[01])\$[./A-Za-z0-9]{53}$")


def secret_too_long(plain: str) -> bool:
    """Return True if plain encodes to more bytes than bcrypt can hash."""
    return len(plain.encode("utf-8")) > SECRET_MAX_BYTES


def is_bcrypt_hash(value: object) -> bool:
    """Return True if value has the shape of a bcrypt hash."""
    return isinstance(value, str) and _BCRYPT_RE.match(value) is not None


def hash_secret(plain: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt hash of the given plaintext secret.

    Raises ValueError if the secret is longer than SECRET_MAX_BYTES in UTF-8.
    """
    if secret_too_long(plain):
        raise ValueError(f"Secret exceeds {SECRET_MAX_BYTES} bytes.")
    salt = bcrypt.gensalt(rounds=rounds or _settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("ascii")


def check_secret(plain: str, hashed: str) -> bool:
    """Return True if plain matches hashed.

    A secret longer than SECRET_MAX_BYTES never matches. It still costs one
    bcrypt check so the rejection takes as long as a wrong secret.

    Raises CorruptCredential if hashed is not a readable bcrypt hash.
    """
    if not is_bcrypt_hash(hashed):
        raise CorruptCredential("Stored credential is not a bcrypt hash")
    candidate = plain.encode("utf-8")
    too_long = len(candidate) > SECRET_MAX_BYTES
    try:
        matched = bcrypt.checkpw(candidate[:SECRET_MAX_BYTES], hashed.encode("ascii"))
    except ValueError as exc:
        raise CorruptCredential("Stored credential could not be read") from exc
    return matched and not too_long


def verify_secret(plain: str, hashed: str) -> bool:
    """Return True if plain matches hashed, False on mismatch or malformed hash."""
    try:
        return check_secret(plain, hashed)
    except CorruptCredential:
        return False
