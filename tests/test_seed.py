"""Tests for auth/seed.py -- planning and applying idempotent identity seeds.

Covers:
- plan_seed() as a pure function of (desired, current) state
- seeding twice yields one user per username and the union of roles
- existing accounts keep their secret, enabled flag and extra roles
- invalid role names fail before any write
- secrets are only hashed for users actually created
- seed file parsing
"""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

import auth.seed as seed_module
from auth.errors import InvalidRoleName
from auth.hashing import hash_secret, verify_secret
from auth.seed import (
    SAMPLE_ACCOUNTS,
    SeedAccount,
    configured_accounts,
    load_seed_file,
    plan_seed,
    seed_identities,
)
from auth.store import IdentityStore

# ---------------------------------------------------------------------------
# plan_seed (pure)
# ---------------------------------------------------------------------------


class TestPlanSeed:
    def test_empty_state_plans_everything(self) -> None:
        plan = plan_seed(SAMPLE_ACCOUNTS, existing_roles=set(), existing_user_roles={})
        assert plan.roles_to_create == ["ROLE_ADMIN", "ROLE_USER"]
        assert [a.username for a in plan.users_to_create] == ["user", "admin"]
        assert plan.grants == {}

    def test_satisfied_state_plans_nothing(self) -> None:
        plan = plan_seed(
            SAMPLE_ACCOUNTS,
            existing_roles={"ROLE_USER", "ROLE_ADMIN"},
            existing_user_roles={"user": {"ROLE_USER"}, "admin": {"ROLE_USER", "ROLE_ADMIN", "ROLE_EXTRA"}},
        )
        assert plan.is_empty

    def test_missing_roles_become_grants(self) -> None:
        plan = plan_seed(
            SAMPLE_ACCOUNTS,
            existing_roles={"ROLE_USER"},
            existing_user_roles={"user": {"ROLE_USER"}, "admin": {"ROLE_USER"}},
        )
        assert plan.roles_to_create == ["ROLE_ADMIN"]
        assert plan.users_to_create == []
        assert plan.grants == {"admin": ["ROLE_ADMIN"]}

    def test_duplicate_usernames_are_merged(self) -> None:
        accounts = [
            SeedAccount(username="alice", password="first", roles=("ROLE_A",)),
            SeedAccount(username="alice", password="second", enabled=False, roles=("ROLE_B", "ROLE_A")),
        ]
        plan = plan_seed(accounts, existing_roles=set(), existing_user_roles={})
        assert len(plan.users_to_create) == 1
        merged = plan.users_to_create[0]
        assert merged.password == "first"
        assert merged.enabled is True
        assert merged.roles == ("ROLE_A", "ROLE_B")

    def test_invalid_role_rejected(self) -> None:
        with pytest.raises(InvalidRoleName):
            plan_seed([SeedAccount(username="x", password="y", roles=("ADMIN",))], set(), {})


# ---------------------------------------------------------------------------
# seed_identities (applies the plan)
# ---------------------------------------------------------------------------


class TestSeedIdentities:
    def test_seeding_twice_is_idempotent(self, store: IdentityStore) -> None:
        first = seed_identities(store, SAMPLE_ACCOUNTS)
        second = seed_identities(store, SAMPLE_ACCOUNTS)
        assert not first.is_empty
        assert second.is_empty
        assert store.count_users() == 2
        assert store.list_role_names() == {"ROLE_USER", "ROLE_ADMIN"}
        assert store.find_user_by_username("admin").roles == frozenset({"ROLE_ADMIN", "ROLE_USER"})
        assert store.find_user_by_username("user").roles == frozenset({"ROLE_USER"})

    def test_seeded_secrets_verify(self, store: IdentityStore) -> None:
        seed_identities(store, SAMPLE_ACCOUNTS)
        assert verify_secret("password", store.find_user_by_username("user").secret_hash)
        assert verify_secret("admin", store.find_user_by_username("admin").secret_hash)

    def test_reseed_with_more_roles_yields_union(self, store: IdentityStore) -> None:
        seed_identities(store, [SeedAccount(username="alice", password="pw", roles=("ROLE_A",))])
        seed_identities(store, [SeedAccount(username="alice", password="pw", roles=("ROLE_B",))])
        assert store.count_users() == 1
        assert store.find_user_by_username("alice").roles == frozenset({"ROLE_A", "ROLE_B"})

    def test_existing_account_is_not_clobbered(self, store: IdentityStore) -> None:
        """An admin whose password was changed keeps it, stays disabled, keeps extra roles."""
        store.upsert_user_with_roles("admin", hash_secret("changed-by-ops"), False, ["ROLE_AUDITOR"])
        plan = seed_identities(store, SAMPLE_ACCOUNTS)

        assert [a.username for a in plan.users_to_create] == ["user"]
        assert plan.grants == {"admin": ["ROLE_ADMIN", "ROLE_USER"]}

        admin = store.find_user_by_username("admin")
        assert verify_secret("changed-by-ops", admin.secret_hash)
        assert not verify_secret("admin", admin.secret_hash)
        assert admin.enabled is False
        assert admin.roles == frozenset({"ROLE_AUDITOR", "ROLE_ADMIN", "ROLE_USER"})

    def test_invalid_role_writes_nothing(self, store: IdentityStore) -> None:
        accounts = [*SAMPLE_ACCOUNTS, SeedAccount(username="bad", password="pw", roles=("USER",))]
        with pytest.raises(InvalidRoleName):
            seed_identities(store, accounts)
        assert store.count_users() == 0
        assert store.list_role_names() == set()

    def test_only_new_users_are_hashed(self, store: IdentityStore, monkeypatch) -> None:
        calls: list[str] = []

        def counting_hash(secret: str) -> str:
            calls.append(secret)
            return hash_secret(secret)

        monkeypatch.setattr(seed_module, "hash_secret", counting_hash)
        seed_identities(store, SAMPLE_ACCOUNTS)
        assert len(calls) == 2
        seed_identities(store, SAMPLE_ACCOUNTS)
        assert len(calls) == 2

    def test_disabled_seed_account(self, store: IdentityStore) -> None:
        seed_identities(store, [SeedAccount(username="svc", password="pw", enabled=False, roles=("ROLE_SVC",))])
        assert store.find_user_by_username("svc").enabled is False


# ---------------------------------------------------------------------------
# Seed sources
# ---------------------------------------------------------------------------


def test_load_seed_file(tmp_path) -> None:
    path = tmp_path / "seed.json"
    path.write_text(
        json.dumps(
            [
                {"username": "ops", "password": "opspass", "roles": ["ROLE_OPS"]},
                {"username": "svc", "password": "svcpass", "enabled": False},
            ]
        )
    )
    accounts = load_seed_file(path)
    assert accounts[0] == SeedAccount(username="ops", password="opspass", roles=("ROLE_OPS",))
    assert accounts[1].enabled is False
    assert accounts[1].roles == ()


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        json.dumps([{"password": "x"}]),
        json.dumps([{"username": "", "password": "x"}]),
        json.dumps([{"username": "u" * 51, "password": "x"}]),
        json.dumps([{"username": "u", "password": ""}]),
        json.dumps([{"username": "u", "password": "a" * 73}]),
    ],
)
def test_load_seed_file_rejects_bad_entries(tmp_path, payload: str) -> None:
    path = tmp_path / "seed.json"
    path.write_text(payload)
    with pytest.raises(ValidationError):
        load_seed_file(path)


def test_seed_account_repr_hides_password() -> None:
    assert "hunter2" not in repr(SeedAccount(username="u", password="hunter2"))


def test_configured_accounts(tmp_path) -> None:
    assert configured_accounts() == []
    assert configured_accounts(include_samples=True) == list(SAMPLE_ACCOUNTS)

    path = tmp_path / "seed.json"
    path.write_text(json.dumps([{"username": "admin", "password": "x", "roles": ["ROLE_OPS"]}]))
    accounts = configured_accounts(str(path), include_samples=True)
    assert [a.username for a in accounts] == ["user", "admin", "admin"]
