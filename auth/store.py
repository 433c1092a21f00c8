"""
auth/store.py -- SQLAlchemy Core persistence layer for principals and roles.

Pattern: Repository + Data Mapper.
UserStore is the repository for both collaborator interfaces the engine
consumes (principal lookup and role lookup); _row_to_principal and
_row_to_role are the mappers. Route, resolver and engine code never touches
SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Integrity:
  users.email and roles.name carry UNIQUE constraints. Both are lower-cased
  before every write and lookup so uniqueness is case-insensitive. Violations
  surface as sqlalchemy.exc.IntegrityError; the API maps them to 409.

  users.role_id has no foreign key. Deleting a role leaves dangling role_id
  values in place on purpose: the engine reports them as role_not_found
  rather than silently demoting the principal.

Failure policy:
  Store methods never catch SQLAlchemy errors. An unreachable or broken
  database propagates to the caller so it can never be mistaken for an
  authorization denial.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine

from auth.models import Principal, Role

logger = logging.getLogger("devguild.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("full_name", String(255), nullable=False),
    Column("hashed_password", Text),
    Column("role_id", String(36)),  # no FK -- see module docstring
    Column("experience_level", String(30)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
)

# Columns callers may change through update_user(). id and created_at are
# immutable; role_id goes through update_role() so role changes are logged.
_MUTABLE_USER_FIELDS = frozenset({"email", "full_name", "hashed_password", "experience_level", "is_active"})


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for Principal and Role entities.

    Usage:
        store = UserStore("sqlite:///devguild_access.db")
        store.seed_roles(DEFAULT_ROLES)
        role = store.get_role_by_name("developer")
        uid = store.create_user(Principal(email="ada@example.com", full_name="Ada", role_id=role.id))
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///devguild_access.db") -> None:
        connect_args: dict = {}
        is_sqlite = db_url.startswith("sqlite")
        if is_sqlite:
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if is_sqlite and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Principal queries
    # ------------------------------------------------------------------

    def create_user(self, principal: Principal) -> str:
        """Insert a new principal and return its generated UUID.

        Raises sqlalchemy.exc.IntegrityError if the email is already taken.
        """
        user_id = _new_id()
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=principal.email.strip().lower(),
                    full_name=principal.full_name,
                    hashed_password=principal.hashed_password,
                    role_id=principal.role_id,
                    experience_level=principal.experience_level,
                    is_active=1 if principal.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def get_by_id(self, user_id: str) -> Principal | None:
        """Look up a principal by UUID. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_email(self, email: str) -> Principal | None:
        """Look up a principal by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_principal(row) if row is not None else None

    def list_users(self) -> list[Principal]:
        """Return all principals ordered by email."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_principal(r) for r in rows]

    def list_by_experience(self, levels: Iterable[str]) -> list[Principal]:
        """Return active principals whose experience_level is one of levels."""
        wanted = [str(level) for level in levels]
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .where(_users.c.experience_level.in_(wanted) & (_users.c.is_active == 1))
                .order_by(_users.c.email)
            ).fetchall()
        return [_row_to_principal(r) for r in rows]

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable profile fields on an existing principal.

        Accepted fields: email, full_name, hashed_password, experience_level,
        is_active. Unknown fields raise ValueError.

        Returns True if a row was updated, False if user_id was not found.
        Raises IntegrityError if a new email collides with another principal.
        """
        unknown = set(fields) - _MUTABLE_USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if "email" in fields:
            fields["email"] = fields["email"].strip().lower()
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_role(self, user_id: str, role_id: str | None) -> bool:
        """Assign (or clear, with None) the role of a principal.

        Takes effect on the principal's next request: the engine re-fetches
        the principal every time, so no token re-issue is needed.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(role_id=role_id, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a principal. Returns True if deleted, False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Role queries
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> str:
        """Insert a new role and return its generated UUID.

        Raises sqlalchemy.exc.IntegrityError if the name already exists.
        """
        role_id = _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _roles.insert().values(
                    id=role_id,
                    name=role.name.strip().lower(),
                    description=role.description or "",
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return role_id

    def get_role_by_id(self, role_id: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        """Look up a role by name, case-insensitively."""
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name.strip().lower())).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def delete_role(self, role_id: str) -> bool:
        """Delete a role. Principals that held it keep the dangling role_id."""
        with self.engine.connect() as conn:
            result = conn.execute(_roles.delete().where(_roles.c.id == role_id))
            conn.commit()
        return result.rowcount > 0

    def seed_roles(self, defaults: Iterable[tuple[str, str]]) -> int:
        """Insert any of the (name, description) pairs that do not exist yet.

        Idempotent -- safe to call on every startup. Returns the number of
        roles created.
        """
        existing = {role.name for role in self.list_roles()}
        created = 0
        for name, description in defaults:
            if name.strip().lower() in existing:
                continue
            self.create_role(Role(name=name, description=description))
            created += 1
        if created:
            logger.info("Seeded %d role(s)", created)
        return created

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def ping(self) -> bool:
        """Round-trip a trivial query. Raises if the database is unreachable."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        hashed_password=row.hashed_password,
        role_id=row.role_id,
        experience_level=row.experience_level,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description or "",
        created_at=row.created_at,
    )
