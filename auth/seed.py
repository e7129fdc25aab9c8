"""
auth/seed.py -- Idempotent identity seeding.

Seeding is split in two:
  plan_seed()        pure: desired accounts + current state -> minimal writes
  seed_identities()  reads the current state, plans, and applies the plan

Rules (applied per username):
  - absent user:   create it with the seed secret, enabled flag and roles
  - present user:  add any seed role it lacks; never touch its secret,
                   enabled flag, or roles that are not in the seed
  - roles:         created once per distinct name

Running the seed again against the state it produced plans nothing. Running
it concurrently from several workers is safe because every store write is
itself create-or-fetch.

Secrets are hashed only for users that are actually created, so a no-op
re-seed costs no bcrypt work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from auth.hashing import SECRET_MAX_BYTES, hash_secret, secret_too_long
from auth.models import USERNAME_MAX_LEN, validate_role_name
from auth.store import IdentityStore

logger = logging.getLogger("rolegate.seed")


class SeedAccount(BaseModel):
    """One declarative seed entry: (username, secret, enabled, roles)."""

    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1, max_length=USERNAME_MAX_LEN)
    password: str = Field(min_length=1, repr=False)
    enabled: bool = True
    roles: tuple[str, ...] = ()

    @field_validator("password")
    @classmethod
    def validate_password_length(cls, value: str) -> str:
        if secret_too_long(value):
            raise ValueError(f"password exceeds {SECRET_MAX_BYTES} bytes")
        return value


@dataclass
class SeedPlan:
    """The writes needed to bring the store up to the seed."""

    roles_to_create: list[str] = field(default_factory=list)
    users_to_create: list[SeedAccount] = field(default_factory=list)
    # username -> roles it is missing
    grants: dict[str, list[str]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.roles_to_create or self.users_to_create or self.grants)


SAMPLE_ACCOUNTS: tuple[SeedAccount, ...] = (
    SeedAccount(username="user", password="password", roles=("ROLE_USER",)),
    SeedAccount(username="admin", password="admin", roles=("ROLE_ADMIN", "ROLE_USER")),
)


def _merge_accounts(accounts: Iterable[SeedAccount]) -> dict[str, SeedAccount]:
    """Collapse duplicate usernames: first secret/enabled wins, roles are unioned."""
    merged: dict[str, SeedAccount] = {}
    for account in accounts:
        previous = merged.get(account.username)
        if previous is None:
            merged[account.username] = account
        else:
            roles = tuple(dict.fromkeys(previous.roles + account.roles))
            merged[account.username] = previous.model_copy(update={"roles": roles})
    return merged


def plan_seed(
    accounts: Iterable[SeedAccount],
    existing_roles: Iterable[str],
    existing_user_roles: Mapping[str, Iterable[str]],
) -> SeedPlan:
    """Return the minimal SeedPlan taking the current state to the seed.

    existing_user_roles maps every existing username to the role names it
    holds. Raises InvalidRoleName before planning anything if any seed role
    is malformed.
    """
    desired = _merge_accounts(accounts)
    for account in desired.values():
        for role in account.roles:
            validate_role_name(role)

    known_roles = set(existing_roles)
    wanted_roles = {role for account in desired.values() for role in account.roles}

    plan = SeedPlan(roles_to_create=sorted(wanted_roles - known_roles))
    for username, account in desired.items():
        if username not in existing_user_roles:
            plan.users_to_create.append(account)
            continue
        held = set(existing_user_roles[username])
        missing = sorted(set(account.roles) - held)
        if missing:
            plan.grants[username] = missing
    return plan


def seed_identities(store: IdentityStore, accounts: Iterable[SeedAccount]) -> SeedPlan:
    """Bring store up to the declared accounts and return the plan that was applied."""
    existing = {user.username: user.roles for user in store.list_users()}
    plan = plan_seed(accounts, store.list_role_names(), existing)

    if plan.is_empty:
        logger.info("Identity seed already applied; nothing to do")
        return plan

    for name in plan.roles_to_create:
        store.create_role_if_absent(name)
    for account in plan.users_to_create:
        store.upsert_user_with_roles(
            account.username,
            hash_secret(account.password),
            account.enabled,
            account.roles,
        )
    for username, roles in plan.grants.items():
        store.grant_roles(username, roles)

    logger.info(
        "Identity seed applied: %d role(s), %d user(s) created, %d user(s) granted missing roles",
        len(plan.roles_to_create),
        len(plan.users_to_create),
        len(plan.grants),
    )
    return plan


_SEED_ADAPTER = TypeAdapter(list[SeedAccount])


def load_seed_file(path: str | Path) -> list[SeedAccount]:
    """Parse a JSON seed file. Raises pydantic.ValidationError on bad entries."""
    return _SEED_ADAPTER.validate_json(Path(path).read_bytes())


def configured_accounts(seed_file: str = "", include_samples: bool = False) -> list[SeedAccount]:
    """Collect the seed accounts named by configuration.

    Sample accounts come first so a seed file can add roles to them.
    """
    accounts: list[SeedAccount] = list(SAMPLE_ACCOUNTS) if include_samples else []
    if seed_file:
        accounts.extend(load_seed_file(seed_file))
    return accounts
