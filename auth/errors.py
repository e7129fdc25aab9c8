"""
auth/errors.py -- Exception hierarchy for the authentication core.

Login-time failures (AuthError subclasses) are distinct internally so they can
be logged and tested precisely, but callers facing the outside world collapse
them into one opaque "authentication failed" result (see
PrincipalResolver.authenticate). Revealing which kind occurred would let an
attacker enumerate usernames.

Authorization outcomes (UNAUTHENTICATED / FORBIDDEN) are NOT errors. They are
Verdict values returned by auth.policy and are never raised.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for login-time failures."""

    #: Short machine-readable kind, used in log lines.
    kind = "auth_error"


class NoSuchIdentity(AuthError):
    """No user record exists for the presented username."""

    kind = "no_such_identity"


class AccountDisabled(AuthError):
    """The user exists but is disabled. Raised regardless of secret correctness."""

    kind = "account_disabled"


class BadCredential(AuthError):
    """The presented secret does not match the stored hash."""

    kind = "bad_credential"


class CorruptCredential(BadCredential):
    """The stored hash is unreadable (wrong format or version).

    Subclasses BadCredential so authentication fails closed, but it indicates
    data corruption rather than a wrong password and is logged at WARNING.
    """

    kind = "corrupt_credential"


class InvalidRoleName(ValueError):
    """A role name lacks the mandatory ROLE_ prefix (or is otherwise malformed).

    This is a configuration error. Seeding and policy construction raise it
    at startup so the process fails fast.
    """


class StoreUnavailable(RuntimeError):
    """The identity store could not be reached.

    Propagated unchanged to the caller, which owns any retry/backoff policy.
    """
