"""
auth/store.py -- SQLAlchemy Core persistence for permissions, roles, users and audits.

Pattern: Repository + Data Mapper. Each Collection is a small repository over
one table; the _row_to_* / _*_values functions are the mappers. The directory
and audit trail never touch SQL directly.

Document shape: every row is self-contained. List-valued references
(Role.permissions, User.roles) live in JSON columns, so a single-row write is
the unit of atomicity and no join tables exist. Referential integrity is the
directory's job, checked on write and tolerated on read.

Security:
  All queries use bound parameters. No f-strings in SQL. Search terms go
  through ColumnOperators.contains(autoescape=True) so % and _ match literally.

Failure classification:
  IntegrityError                       -> ConflictError (unique constraint)
  OperationalError / pool TimeoutError -> TransientError (lock wait, connect
                                          timeout, database unavailable)

DB URL: any SQLAlchemy URL. SQLite gets WAL mode and a busy timeout of
DB_TIMEOUT_SECONDS; other drivers get the same value as pool timeout.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    cast,
    create_engine,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.models import (
    AuditAction,
    AuditEntry,
    AuditOutcome,
    Permission,
    ResourceType,
    Role,
    User,
)
from core.errors import ConflictError, InternalError, TransientError
from core.pagination import Page

logger = logging.getLogger("gatehouse.store")

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def _build_tables(
    metadata: MetaData,
    permission_table: str,
    role_table: str,
    user_table: str,
    audit_table: str,
) -> tuple[Table, Table, Table, Table]:
    """Build the four tables under the configured names.

    seq is a storage-internal insertion counter that gives listings a stable
    order. id is the opaque key callers see.
    """
    permissions = Table(
        permission_table,
        metadata,
        Column("seq", Integer, primary_key=True, autoincrement=True),
        Column("id", String(32), nullable=False, unique=True),
        Column("name", String(255), nullable=False, unique=True),
        Column("description", Text, nullable=False, server_default=""),
        Column("created_at", String(40), nullable=False),
        Column("updated_at", String(40), nullable=False),
    )
    roles = Table(
        role_table,
        metadata,
        Column("seq", Integer, primary_key=True, autoincrement=True),
        Column("id", String(32), nullable=False, unique=True),
        Column("name", String(255), nullable=False, unique=True),
        Column("description", Text, nullable=False, server_default=""),
        Column("permissions", JSON, nullable=False),
        Column("created_at", String(40), nullable=False),
        Column("updated_at", String(40), nullable=False),
    )
    users = Table(
        user_table,
        metadata,
        Column("seq", Integer, primary_key=True, autoincrement=True),
        Column("id", String(32), nullable=False, unique=True),
        Column("username", String(255), nullable=False, unique=True),
        Column("email", String(320), nullable=False, unique=True),
        Column("password", Text, nullable=False),
        Column("first_name", String(255), nullable=False, server_default=""),
        Column("last_name", String(255), nullable=False, server_default=""),
        Column("roles", JSON, nullable=False),
        Column("enabled", Boolean, nullable=False),
        Column("created_at", String(40), nullable=False),
        Column("updated_at", String(40), nullable=False),
    )
    audits = Table(
        audit_table,
        metadata,
        Column("seq", Integer, primary_key=True, autoincrement=True),
        Column("id", String(32), nullable=False, unique=True),
        Column("actor_id", String(64), nullable=False),
        Column("action", String(16), nullable=False),
        Column("resource_type", String(16), nullable=False),
        Column("resource_id", String(64), nullable=False),
        Column("outcome", String(16), nullable=False),
        Column("created_at", String(40), nullable=False),
        Column("expires_at", String(40), index=True),
    )
    return permissions, roles, users, audits


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore it.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _register_unicode_lower(dbapi_conn, connection_record) -> None:
    """Replace SQLite's ASCII-only lower() with Python's str.lower.

    text_search lower-cases the needle in Python, so both sides must fold
    the same way for accented names to match.
    """
    dbapi_conn.create_function("lower", 1, _unicode_lower, deterministic=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_iso() -> str:
    # Fixed precision keeps ISO strings lexicographically ordered (TTL comparisons).
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return uuid.uuid4().hex


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError("A record with the same unique key already exists.") from exc
    except (OperationalError, PoolTimeoutError) as exc:
        logger.warning("Storage unavailable: %s", type(exc).__name__)
        raise TransientError("Storage is unavailable. Retry later.") from exc


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


class Collection(Generic[T]):
    """Document-style repository over one table.

    Offers the operations the directory needs: insert, find by id, find by
    field, paged find, case-insensitive text search, partial update, delete.
    Rows whose ttl_column is at or before `now` are invisible to reads when
    a `now` is passed.
    """

    def __init__(
        self,
        engine: Engine,
        table: Table,
        to_entity: Callable[[Any], T],
        to_values: Callable[[T], dict],
        search_fields: tuple[str, ...],
        ttl_column: str | None = None,
    ) -> None:
        self.engine = engine
        self.table = table
        self._to_entity = to_entity
        self._to_values = to_values
        self._search_columns = [table.c[name] for name in search_fields]
        self._ttl = table.c[ttl_column] if ttl_column else None

    def _live(self, now: str | None) -> list:
        if self._ttl is None or now is None:
            return []
        return [or_(self._ttl.is_(None), self._ttl > now)]

    def _equals(self, filters: dict[str, Any]) -> list:
        return [self.table.c[k] == v for k, v in filters.items()]

    def insert(self, entity: T) -> T:
        """Assign id and timestamps, write the row, and return the stored entity."""
        values = self._to_values(entity)
        values["id"] = values.get("id") or new_id()
        stamp = now_iso()
        values["created_at"] = values.get("created_at") or stamp
        if "updated_at" in self.table.c:
            values["updated_at"] = stamp
        with _translate_errors(), self.engine.connect() as conn:
            conn.execute(self.table.insert().values(**values))
            conn.commit()
        found = self.find_by_id(values["id"])
        if found is None:
            raise InternalError("Record not found after write.")
        return found

    def find_by_id(self, entity_id: str, now: str | None = None) -> T | None:
        return self.find_one(now=now, id=entity_id)

    def find_one(self, now: str | None = None, **filters: Any) -> T | None:
        """Return the first row matching all equality filters, or None."""
        stmt = select(self.table).where(*self._equals(filters), *self._live(now)).limit(1)
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return self._to_entity(row) if row is not None else None

    def find_many_by_ids(self, ids: list[str]) -> list[T]:
        """Return the rows whose id is in ids, in insertion order. Unknown ids are skipped."""
        if not ids:
            return []
        stmt = select(self.table).where(self.table.c.id.in_(ids)).order_by(self.table.c.seq)
        with _translate_errors(), self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [self._to_entity(r) for r in rows]

    def find_paged(
        self,
        filters: dict[str, Any] | None,
        skip: int,
        limit: int,
        now: str | None = None,
    ) -> Page[T]:
        clauses = self._equals(filters or {}) + self._live(now)
        return self._page(clauses, skip, limit)

    def text_search(self, query: str, skip: int, limit: int, now: str | None = None) -> Page[T]:
        """Case-insensitive substring match over the collection's search fields."""
        needle = query.lower()
        match = or_(*[func.lower(col).contains(needle, autoescape=True) for col in self._search_columns])
        return self._page([match, *self._live(now)], skip, limit)

    def _page(self, clauses: list, skip: int, limit: int) -> Page[T]:
        count_stmt = select(func.count()).select_from(self.table).where(*clauses)
        stmt = select(self.table).where(*clauses).order_by(self.table.c.seq).offset(skip).limit(limit)
        with _translate_errors(), self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            rows = conn.execute(stmt).fetchall() if limit > 0 else []
        return Page(items=[self._to_entity(r) for r in rows], total=total, skip=skip, limit=limit)

    def update(self, entity_id: str, **fields: Any) -> bool:
        """Apply a partial update. Returns True if a row was updated."""
        if "updated_at" in self.table.c:
            fields["updated_at"] = now_iso()
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(self.table.update().where(self.table.c.id == entity_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete(self, entity_id: str) -> bool:
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(self.table.delete().where(self.table.c.id == entity_id))
            conn.commit()
        return result.rowcount > 0

    def pull(self, field: str, value: str) -> int:
        """Remove value from the JSON list column `field` on every row holding it.

        Rows are pre-filtered with a text match on the serialized list, then
        rewritten one by one. Each row write is atomic on its own; the pull as
        a whole is not.
        """
        column = self.table.c[field]
        stmt = select(self.table.c.id, column).where(cast(column, String).contains(f'"{value}"'))
        changed = 0
        with _translate_errors(), self.engine.connect() as conn:
            for row_id, items in conn.execute(stmt).fetchall():
                kept = [i for i in (items or []) if i != value]
                if len(kept) != len(items or []):
                    conn.execute(
                        self.table.update().where(self.table.c.id == row_id).values(**{field: kept})
                    )
                    changed += 1
            conn.commit()
        return changed

    def delete_expired(self, now: str) -> int:
        """Delete rows whose ttl_column is at or before now. Returns rows removed."""
        if self._ttl is None:
            return 0
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(self.table.delete().where(self._ttl.is_not(None), self._ttl <= now))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class DirectoryStore:
    """Owns the engine and one Collection per entity kind.

    Usage:
        store = DirectoryStore("sqlite:///gatehouse.db")
        store.permissions.insert(Permission(name="CAN_READ_USER"))
        store.close()
    """

    def __init__(
        self,
        db_url: str = "sqlite:///gatehouse.db",
        timeout_seconds: float = 5.0,
        permission_table: str = "permissions",
        role_table: str = "roles",
        user_table: str = "users",
        audit_table: str = "audits",
    ) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        is_sqlite = db_url.startswith("sqlite")
        if is_sqlite:
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout_seconds
        else:
            engine_kwargs["pool_timeout"] = timeout_seconds
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _set_wal_mode)
            event.listen(self.engine, "connect", _register_unicode_lower)

        metadata = MetaData()
        p, r, u, a = _build_tables(metadata, permission_table, role_table, user_table, audit_table)
        with _translate_errors():
            metadata.create_all(self.engine)

        self.permissions: Collection[Permission] = Collection(
            self.engine, p, _row_to_permission, _permission_values, ("id", "name")
        )
        self.roles: Collection[Role] = Collection(self.engine, r, _row_to_role, _role_values, ("id", "name"))
        self.users: Collection[User] = Collection(
            self.engine,
            u,
            _row_to_user,
            _user_values,
            ("id", "username", "email", "first_name", "last_name"),
        )
        self.audits: Collection[AuditEntry] = Collection(
            self.engine,
            a,
            _row_to_audit,
            _audit_values,
            ("id", "actor_id", "resource_id", "resource_type", "action"),
            ttl_column="expires_at",
        )

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        description=row.description or "",
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _permission_values(p: Permission) -> dict:
    return {"id": p.id, "name": p.name, "description": p.description or ""}


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description or "",
        permissions=list(row.permissions or []),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _role_values(r: Role) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "description": r.description or "",
        "permissions": list(r.permissions),
    }


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password=row.password,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        roles=list(row.roles or []),
        enabled=bool(row.enabled),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _user_values(u: User) -> dict:
    return {
        "id": u.id,
        "username": u.username,
        "email": u.email,
        "password": u.password,
        "first_name": u.first_name or "",
        "last_name": u.last_name or "",
        "roles": list(u.roles),
        "enabled": u.enabled,
    }


def _row_to_audit(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        actor_id=row.actor_id,
        action=AuditAction(row.action),
        resource_type=ResourceType(row.resource_type),
        resource_id=row.resource_id,
        outcome=AuditOutcome(row.outcome),
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


def _audit_values(a: AuditEntry) -> dict:
    return {
        "id": a.id,
        "actor_id": a.actor_id,
        "action": a.action.value,
        "resource_type": a.resource_type.value,
        "resource_id": a.resource_id,
        "outcome": a.outcome.value,
        "created_at": a.created_at,
        "expires_at": a.expires_at,
    }
