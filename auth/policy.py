"""
auth/policy.py -- Per-resource authorization decisions.

An AccessPolicy is an ordered, read-only table of PolicyEntry rows evaluated
first-match-wins. A resource no entry matches falls through to the default:
any authenticated principal, whatever its roles.

required_roles semantics:
  frozenset()      public -- ALLOW, even with no principal
  {"ROLE_A", ...}  ANY-of -- the principal needs at least one of them
  None             authenticated -- any principal is enough

Role names are compared as exact strings. A table entry written "ADMIN"
instead of "ROLE_ADMIN" is a configuration bug, so construction rejects it
with InvalidRoleName rather than silently patching the prefix.

There is no role hierarchy: ROLE_ADMIN does not imply ROLE_USER. A resource
open to both lists both.

decide() is a pure function of (principal, resource, table). The table is
built once and never mutated, so concurrent readers need no locking.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path

from auth.models import Principal, validate_role_name


class Verdict(str, Enum):
    ALLOW = "allow"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


class MatchMode(str, Enum):
    EXACT = "exact"
    PREFIX = "prefix"  # path-segment prefix: /admin matches /admin and /admin/x
    GLOB = "glob"  # fnmatch, case-sensitive
    ANY = "any"


@dataclass(frozen=True)
class PolicyEntry:
    pattern: str
    required_roles: frozenset[str] | None = None
    match: MatchMode = MatchMode.EXACT

    def __post_init__(self) -> None:
        if self.required_roles is not None:
            for role in self.required_roles:
                validate_role_name(role)

    @property
    def is_public(self) -> bool:
        return self.required_roles is not None and not self.required_roles

    def matches(self, resource: str) -> bool:
        if self.match is MatchMode.ANY:
            return True
        if self.match is MatchMode.EXACT:
            return resource == self.pattern
        if self.match is MatchMode.PREFIX:
            prefix = self.pattern.rstrip("/")
            return resource == self.pattern or resource == prefix or resource.startswith(prefix + "/")
        return fnmatchcase(resource, self.pattern)


def entry(pattern: str, *roles: str, match: MatchMode | str = MatchMode.EXACT) -> PolicyEntry:
    """Shorthand for a role-restricted entry; no roles means public."""
    return PolicyEntry(pattern, frozenset(roles), MatchMode(match))


def authenticated(pattern: str, match: MatchMode | str = MatchMode.EXACT) -> PolicyEntry:
    """Shorthand for an entry any authenticated principal may access."""
    return PolicyEntry(pattern, None, MatchMode(match))


# Fallback for resources no entry matches.
DEFAULT_ENTRY = PolicyEntry("*", None, MatchMode.ANY)


class AccessPolicy:
    """Ordered first-match-wins policy table."""

    def __init__(self, entries: Iterable[PolicyEntry], default: PolicyEntry = DEFAULT_ENTRY) -> None:
        self._entries: tuple[PolicyEntry, ...] = tuple(entries)
        self._default = default

    @property
    def entries(self) -> tuple[PolicyEntry, ...]:
        return self._entries

    def match(self, resource: str) -> PolicyEntry:
        """Return the first entry matching resource, or the default entry."""
        for candidate in self._entries:
            if candidate.matches(resource):
                return candidate
        return self._default

    def decide(self, principal: Principal | None, resource: str) -> Verdict:
        rule = self.match(resource)
        if rule.is_public:
            return Verdict.ALLOW
        if principal is None:
            return Verdict.UNAUTHENTICATED
        if rule.required_roles is None or principal.has_any_role(rule.required_roles):
            return Verdict.ALLOW
        return Verdict.FORBIDDEN

    @classmethod
    def from_config(cls, items: list[dict]) -> AccessPolicy:
        """Build a policy from plain dicts (e.g. parsed JSON).

        Each item: {"pattern": str, "roles": [str, ...] | null, "match": str}.
        "roles" omitted or null means any authenticated principal; an empty
        list means public. "match" defaults to "exact".
        """
        entries = []
        for item in items:
            if not isinstance(item, dict) or not isinstance(item.get("pattern"), str):
                raise ValueError(f"Policy entry must be an object with a string 'pattern': {item!r}")
            roles = item.get("roles")
            if isinstance(roles, str):
                raise ValueError(f"Policy 'roles' must be a list, not a string: {item!r}")
            entries.append(
                PolicyEntry(
                    pattern=item["pattern"],
                    required_roles=None if roles is None else frozenset(roles),
                    match=MatchMode(item.get("match", MatchMode.EXACT.value)),
                )
            )
        return cls(entries)


def load_policy_file(path: str | Path) -> AccessPolicy:
    """Read a JSON policy table from path. Raises ValueError on bad structure."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Policy file {path} must contain a JSON list")
    return AccessPolicy.from_config(data)


DEFAULT_POLICY = AccessPolicy(
    [
        entry("/"),
        entry("/user", "ROLE_USER", "ROLE_ADMIN"),
        entry("/admin", "ROLE_ADMIN"),
    ]
)


def load_policy(policy_file: str = "") -> AccessPolicy:
    """Return the policy from policy_file, or DEFAULT_POLICY when none is configured."""
    if not policy_file:
        return DEFAULT_POLICY
    return load_policy_file(policy_file)
