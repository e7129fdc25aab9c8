#!/usr/bin/env python3
"""
RoleGate -- Operator CLI for the identity store and access policy.

Usage:
  python main.py seed --sample
  python main.py seed --file seed.json
  python main.py users
  python main.py hash-secret
  python main.py check admin /admin
  python main.py check --anonymous /user

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the identity store (default: SQLite beside the package)
  SEED_FILE      JSON seed used by `seed` when --file is not given
  POLICY_FILE    JSON policy used by `check` (default: built-in table)
  DEBUG          Must be true for --sample (well-known passwords)
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from pydantic import ValidationError

from auth.errors import InvalidRoleName, StoreUnavailable
from auth.hashing import SECRET_MAX_BYTES, hash_secret, secret_too_long
from auth.policy import Verdict, load_policy
from auth.resolver import PrincipalResolver
from auth.seed import configured_accounts, seed_identities
from auth.store import IdentityStore
from core.config import LOG_DATEFMT, LOG_FORMAT, get_settings

logger = logging.getLogger("rolegate.cli")


def _cmd_seed(store: IdentityStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    if args.sample and not settings.debug:
        print("  [!] --sample seeds well-known passwords and requires DEBUG=true.")
        return 2
    seed_file = args.file or settings.seed_file
    accounts = configured_accounts(seed_file, args.sample or settings.seed_sample_users)
    if not accounts:
        print("  Nothing to seed. Pass --file PATH or --sample.")
        return 0
    plan = seed_identities(store, accounts)
    if plan.is_empty:
        print("  Seed already applied. No changes.")
        return 0
    for name in plan.roles_to_create:
        print(f"  + role {name}")
    for account in plan.users_to_create:
        print(f"  + user {account.username} {sorted(account.roles)}")
    for username, roles in plan.grants.items():
        print(f"  ~ user {username} granted {roles}")
    return 0


def _cmd_users(store: IdentityStore, args: argparse.Namespace) -> int:
    users = store.list_users()
    if not users:
        print("  No users.")
        return 0
    width = max(len(u.username) for u in users)
    for user in users:
        state = "enabled " if user.enabled else "disabled"
        print(f"  {user.username:<{width}}  {state}  {', '.join(sorted(user.roles)) or '-'}")
    return 0


def _cmd_hash_secret(store: Optional[IdentityStore], args: argparse.Namespace) -> int:
    secret = sys.stdin.readline().rstrip("\n") if args.stdin else getpass.getpass("Secret: ")
    if not secret:
        print("  [!] Empty secret.")
        return 2
    if secret_too_long(secret):
        print(f"  [!] Secret exceeds {SECRET_MAX_BYTES} bytes and cannot be hashed.")
        return 2
    print(hash_secret(secret))
    return 0


def _cmd_check(store: IdentityStore, args: argparse.Namespace) -> int:
    """Authenticate (unless --anonymous) and print the verdict for RESOURCE.

    Exit status: 0 for ALLOW, 1 otherwise. A failed login prints the same
    message whatever the reason.
    """
    policy = load_policy(get_settings().policy_file)
    principal = None
    if not args.anonymous:
        if not args.username:
            print("  [!] USERNAME is required unless --anonymous is given.")
            return 2
        secret = getpass.getpass(f"Secret for {args.username}: ")
        principal = PrincipalResolver(store).authenticate(args.username, secret)
        if principal is None:
            print("  Authentication failed.")
            return 1
    verdict = policy.decide(principal, args.resource)
    who = principal.username if principal else "anonymous"
    print(f"  {who} -> {args.resource}: {verdict.value.upper()}")
    return 0 if verdict is Verdict.ALLOW else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rolegate",
        description="Manage RoleGate identities and evaluate the access policy.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  DEBUG=true python main.py seed --sample
  python main.py seed --file seed.json
  python main.py check user /admin
  python main.py check --anonymous /
        """,
    )
    parser.add_argument(
        "--db",
        metavar="URL",
        help="SQLAlchemy URL of the identity store (overrides DATABASE_URL)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    seed = sub.add_parser("seed", help="Idempotently create seed users and roles")
    seed.add_argument("--file", metavar="PATH", help="JSON seed file (overrides SEED_FILE)")
    seed.add_argument("--sample", action="store_true", help="Include the sample user/admin accounts")
    seed.set_defaults(handler=_cmd_seed)

    users = sub.add_parser("users", help="List users with their roles")
    users.set_defaults(handler=_cmd_users)

    hashing = sub.add_parser("hash-secret", help="Print a bcrypt hash for a secret")
    hashing.add_argument("--stdin", action="store_true", help="Read the secret from stdin instead of prompting")
    hashing.set_defaults(handler=_cmd_hash_secret, needs_store=False)

    check = sub.add_parser("check", help="Evaluate the access policy for a user and resource")
    check.add_argument("username", nargs="?", metavar="USERNAME")
    check.add_argument("resource", metavar="RESOURCE")
    check.add_argument("--anonymous", action="store_true", help="Decide without credentials")
    check.set_defaults(handler=_cmd_check)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 0

    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if not getattr(args, "needs_store", True):
        return args.handler(None, args)

    store: Optional[IdentityStore] = None
    try:
        store = IdentityStore(args.db or settings.database_url)
        return args.handler(store, args)
    except (InvalidRoleName, ValidationError) as exc:
        print(f"  [!] Invalid configuration: {exc}")
        return 2
    except OSError as exc:
        print(f"  [!] Could not read file: {exc}")
        return 2
    except StoreUnavailable as exc:
        logger.error("%s", exc)
        print("  [!] Identity store unavailable.")
        return 3
    finally:
        if store is not None:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
