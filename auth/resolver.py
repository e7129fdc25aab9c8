"""
auth/resolver.py -- Credential verification and principal resolution.

resolve() is the precise internal form: it raises the specific AuthError so
tests and logs can tell the failure kinds apart. authenticate() is the form
for anything facing a client: every failure collapses to None, so a caller
cannot learn whether the username exists, is disabled, or just had the wrong
secret.

Timing equalization:
  bcrypt runs on every attempt. An unknown username is checked against
  _DUMMY_HASH (same cost as a real check); a disabled account still has its
  secret checked before AccountDisabled is raised. Response time therefore
  does not reveal which branch was taken.

No caching: every call reads the store, so role changes and disabling take
effect on the next login attempt.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.errors import AccountDisabled, AuthError, BadCredential, CorruptCredential, NoSuchIdentity
from auth.hashing import check_secret, hash_secret, verify_secret
from auth.models import Principal
from auth.store import IdentityStore

logger = logging.getLogger("rolegate.auth")

# Computed once at module load so the first unknown-user attempt is not
# measurably slower than later ones.
_DUMMY_HASH: str = hash_secret("rolegate_timing_dummy")


class PrincipalResolver:
    """Turn (username, secret) into a Principal using an IdentityStore."""

    def __init__(self, store: IdentityStore) -> None:
        self._store = store

    def resolve(self, username: str, secret: str) -> Principal:
        """Verify the credentials and return the resolved Principal.

        Raises:
            NoSuchIdentity: no user called username.
            AccountDisabled: the user is disabled (secret correctness irrelevant).
            BadCredential: the secret does not match.
            CorruptCredential: the stored hash is unreadable (a BadCredential).
            StoreUnavailable: the store could not be reached.
        """
        user = self._store.find_user_by_username(username)
        if user is None:
            verify_secret(secret, _DUMMY_HASH)
            raise NoSuchIdentity(username)

        if not user.enabled:
            verify_secret(secret, user.secret_hash)
            raise AccountDisabled(username)

        if not check_secret(secret, user.secret_hash):
            raise BadCredential(username)

        return Principal(username=user.username, roles=frozenset(user.roles))

    def authenticate(self, username: str, secret: str) -> Principal | None:
        """Return the Principal on success, None on any authentication failure.

        StoreUnavailable is not an authentication failure and propagates.
        """
        try:
            return self.resolve(username, secret)
        except CorruptCredential:
            logger.warning("Stored credential for user %r is unreadable; rejecting login", username)
        except AuthError as exc:
            logger.info("Authentication failed for %r (%s)", username, exc.kind)
        return None
