"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper. IdentityStore is the repository;
_row_to_user / _row_to_role are the mappers. Route, resolver and seeding code
never touch SQL directly.

Schema: three flat tables. users and roles are keyed by integer ids;
user_roles is the association table with a composite (user_id, role_id)
primary key, so a role can be attached to a user at most once. Both foreign
keys cascade on delete. Association rows are only ever built from ids read
back from the database, never from in-memory objects that might not have
been persisted yet.

Concurrency:
  create-or-fetch is atomic per unique key. Inserts rely on the UNIQUE
  constraints (users.username, roles.name, the user_roles primary key); an
  IntegrityError means a concurrent writer won, and the canonical row is read
  back instead. Writes to different keys never block each other beyond what
  the database itself serializes.

Errors:
  Connectivity failures surface as auth.errors.StoreUnavailable. Nothing here
  retries them -- the caller owns retry/backoff. The only re-run is the
  single fetch-on-conflict pass described above, which resolves a lost
  uniqueness race and is not a connectivity retry.

Security:
  All queries use bound parameters. No f-strings in SQL. Secret hashes are
  never logged.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

from auth.errors import StoreUnavailable
from auth.models import ROLE_NAME_MAX_LEN, USERNAME_MAX_LEN, Role, User, validate_role_name

logger = logging.getLogger("rolegate.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(USERNAME_MAX_LEN), nullable=False, unique=True),
    Column("password", String(255), nullable=False),  # bcrypt hash, never plaintext
    Column("enabled", Integer, nullable=False, server_default="1"),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(ROLE_NAME_MAX_LEN), nullable=False, unique=True),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is off by default in SQLite, and
    ON DELETE CASCADE on user_roles depends on it.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _store_errors() -> Iterator[None]:
    """Translate connectivity failures into StoreUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        raise StoreUnavailable(f"Identity store unavailable: {exc.orig!r}") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise StoreUnavailable(f"Identity store connection lost: {exc.orig!r}") from exc
        raise


def _validate_username(username: str) -> str:
    if not isinstance(username, str) or not username:
        raise ValueError("Username must be a non-empty string.")
    if len(username) > USERNAME_MAX_LEN:
        raise ValueError(f"Username must be at most {USERNAME_MAX_LEN} characters.")
    return username


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for User and Role entities and their association.

    Usage:
        store = IdentityStore("sqlite:///rolegate.db")
        store.create_role_if_absent("ROLE_USER")
        store.upsert_user_with_roles("alice", hash_secret("s3cret"), True, ["ROLE_USER"])
        user = store.find_user_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        with _store_errors():
            _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_user_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with _store_errors(), self.engine.connect() as conn:
            return self._load_user(conn, username)

    def find_role_by_name(self, name: str) -> Role | None:
        """Look up a role by exact name. Returns None if not found."""
        with _store_errors(), self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_role_names(self) -> set[str]:
        with _store_errors(), self.engine.connect() as conn:
            rows = conn.execute(select(_roles.c.name)).fetchall()
        return {row.name for row in rows}

    def list_users(self) -> list[User]:
        """Return all users with their role sets, ordered by username."""
        with _store_errors(), self.engine.connect() as conn:
            user_rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
            grant_rows = conn.execute(
                select(_user_roles.c.user_id, _roles.c.name).join(_roles, _roles.c.id == _user_roles.c.role_id)
            ).fetchall()
        grants: dict[int, set[str]] = {}
        for row in grant_rows:
            grants.setdefault(row.user_id, set()).add(row.name)
        return [_row_to_user(row, grants.get(row.id, ())) for row in user_rows]

    def count_users(self) -> int:
        with _store_errors(), self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_role_if_absent(self, name: str) -> Role:
        """Return the role called name, creating it if it does not exist yet.

        Raises InvalidRoleName if name lacks the ROLE_ prefix. Idempotent:
        repeated and concurrent calls with the same name all return the same
        canonical row.
        """
        validate_role_name(name)
        existing = self.find_role_by_name(name)
        if existing is not None:
            return existing
        try:
            with _store_errors(), self.engine.begin() as conn:
                result = conn.execute(_roles.insert().values(name=name))
                role_id = result.inserted_primary_key[0]
        except IntegrityError:
            # Lost the race: another writer committed the same name first.
            existing = self.find_role_by_name(name)
            if existing is None:
                raise
            return existing
        logger.info("Created role %s", name)
        return Role(id=role_id, name=name)

    def upsert_user_with_roles(
        self,
        username: str,
        hashed_secret: str,
        enabled: bool,
        roles: Iterable[str],
    ) -> User:
        """Ensure username exists and holds at least the given roles.

        Creates the user if absent. An existing user's secret and enabled flag
        are never overwritten -- seeding must not reset a password changed by
        an administrator. Missing roles are added; roles already held (or held
        but not listed) are left untouched.

        Every role is created-if-absent and committed before any association
        row references it. The user row and its association rows are then
        written in one transaction: either all of them apply or none do.

        Raises InvalidRoleName before any write if a role name is invalid, and
        KeyError if another writer deletes the user before it is read back.
        """
        _validate_username(username)
        if not hashed_secret:
            raise ValueError("hashed_secret must not be empty.")
        return self._write_user_roles(username, roles, create=(hashed_secret, enabled))

    def grant_roles(self, username: str, roles: Iterable[str]) -> User:
        """Attach roles to an existing user (add-only).

        Raises KeyError if the user does not exist. Attaching a role the user
        already holds is a no-op.
        """
        _validate_username(username)
        return self._write_user_roles(username, roles, create=None)

    def _write_user_roles(
        self,
        username: str,
        roles: Iterable[str],
        create: tuple[str, bool] | None,
    ) -> User:
        role_names = sorted({validate_role_name(r) for r in roles})
        # Roles commit one by one, ahead of the user transaction. If that
        # transaction then fails the roles stay behind unattached; a later
        # write fetches and reuses them.
        role_ids = [self.create_role_if_absent(name).id for name in role_names]

        for attempt in (1, 2):
            try:
                with _store_errors(), self.engine.begin() as conn:
                    user_id, created = self._ensure_user_row(conn, username, create)
                    added = self._attach_missing_roles(conn, user_id, role_ids)
                break
            except IntegrityError:
                # A concurrent writer created the same user or association
                # row. The transaction was rolled back; run it once more
                # against the now-committed rows.
                if attempt == 2:
                    raise
                logger.debug("Write conflict on user %s, re-reading committed state", username)

        if created:
            logger.info("Created user %s with roles %s", username, role_names)
        elif added:
            logger.info("Granted %d missing role(s) to user %s", added, username)
        user = self.find_user_by_username(username)
        if user is None:
            # Deleted by another writer after our commit.
            raise KeyError(username)
        return user

    def _ensure_user_row(
        self,
        conn: Connection,
        username: str,
        create: tuple[str, bool] | None,
    ) -> tuple[int, bool]:
        row = conn.execute(select(_users.c.id).where(_users.c.username == username)).fetchone()
        if row is not None:
            return row.id, False
        if create is None:
            raise KeyError(username)
        hashed_secret, enabled = create
        result = conn.execute(
            _users.insert().values(
                username=username,
                password=hashed_secret,
                enabled=1 if enabled else 0,
            )
        )
        return result.inserted_primary_key[0], True

    def _attach_missing_roles(self, conn: Connection, user_id: int, role_ids: list[int]) -> int:
        held = {
            row.role_id
            for row in conn.execute(select(_user_roles.c.role_id).where(_user_roles.c.user_id == user_id))
        }
        missing = [role_id for role_id in role_ids if role_id not in held]
        if missing:
            conn.execute(_user_roles.insert(), [{"user_id": user_id, "role_id": role_id} for role_id in missing])
        return len(missing)

    def _load_user(self, conn: Connection, username: str) -> User | None:
        row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        if row is None:
            return None
        role_rows = conn.execute(
            select(_roles.c.name)
            .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
            .where(_user_roles.c.user_id == row.id)
        ).fetchall()
        return _row_to_user(row, (r.name for r in role_rows))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, role_names: Iterable[str]) -> User:
    return User(
        id=row.id,
        username=row.username,
        secret_hash=row.password,
        enabled=bool(row.enabled),
        roles=frozenset(role_names),
    )


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name)
