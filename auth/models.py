"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. User and Role mirror the flat users / roles tables in
auth/store.py; the store resolves the association table into User.roles so
no live object references cross the storage boundary.

Principal is deliberately NOT a User: it is the immutable value produced once
per successful login (username + role names) and carries no storage identity,
hash, or enabled flag.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from auth.errors import InvalidRoleName

ROLE_PREFIX = "ROLE_"

# Column widths from the users / roles schema.
USERNAME_MAX_LEN = 50
ROLE_NAME_MAX_LEN = 50


def validate_role_name(name: str) -> str:
    """Return name unchanged if it is a valid role name, else raise InvalidRoleName.

    The prefix is never added or stripped here: "USER" is a configuration bug,
    not something to auto-correct.
    """
    if not isinstance(name, str) or not name.startswith(ROLE_PREFIX):
        raise InvalidRoleName(f"Role name must start with {ROLE_PREFIX!r}: {name!r}")
    if len(name) == len(ROLE_PREFIX) or len(name) > ROLE_NAME_MAX_LEN:
        raise InvalidRoleName(f"Role name must be {len(ROLE_PREFIX) + 1}..{ROLE_NAME_MAX_LEN} characters: {name!r}")
    return name


@dataclass(frozen=True)
class Role:
    """A named permission grant. Immutable once created."""

    id: int
    name: str


@dataclass
class User:
    """A persisted account.

    roles holds role names resolved through user_roles at read time. It is a
    snapshot, not a live view: mutate roles through IdentityStore only.
    """

    username: str
    secret_hash: str = field(repr=False)
    id: int | None = None
    enabled: bool = True
    roles: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Principal:
    """The authenticated identity handed to the authorization engine."""

    username: str
    roles: frozenset[str] = frozenset()

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return not self.roles.isdisjoint(roles)
