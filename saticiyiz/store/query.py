"""
saticiyiz.store.query — Table Query Builder
============================================

A chainable builder over one table, executed on a worker thread via
:func:`run_db`::

    result = await (
        client.table("notifications")
        .select("*")
        .eq("user_id", uid)
        .order("created_at", desc=True)
        .range(0, 19)
        .execute()
    )
    rows = result.data

Supported verbs: ``select`` (with ``count="exact"`` and ``head``),
``insert``, ``update``, ``upsert``, ``delete``.  Filters: ``eq``, ``neq``,
``gt``, ``gte``, ``lt``, ``lte``, ``is_``, ``in_``, ``ilike``,
``or_ilike``.  Modifiers: ``order``, ``limit``, ``range``, ``single``,
``maybe_single``.

Row-level security from :mod:`saticiyiz.store.policies` is applied to
every statement, after-insert hooks from :mod:`saticiyiz.store.triggers`
run in the same transaction, and inserted rows are published to the
realtime hub once the transaction commits.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    ColumnElement,
    Table,
    and_,
    delete,
    false,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from saticiyiz.database.engine import get_session, run_db
from saticiyiz.database.models import Base
from saticiyiz.store.errors import (
    INSUFFICIENT_PRIVILEGE,
    SINGLE_ROW_MISMATCH,
    UNDEFINED_COLUMN,
    UNIQUE_VIOLATION,
    StoreError,
)
from saticiyiz.store.policies import POLICIES, Access, Principal, allows, is_moderator
from saticiyiz.store.triggers import run_after_insert

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from saticiyiz.store.realtime import RealtimeHub

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueryResult:
    """``data`` is a list of row dicts, one row dict (``single``), or None."""

    data: Any
    count: int | None = None


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------
def _normalize(value: Any) -> Any:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def row_to_dict(mapping: Any) -> dict[str, Any]:
    """Convert a result mapping into a plain dict with tz-aware datetimes."""
    return {key: _normalize(value) for key, value in dict(mapping).items()}


def integrity_to_store_error(exc: IntegrityError) -> StoreError:
    message = str(exc.orig) if exc.orig is not None else str(exc)
    code = UNIQUE_VIOLATION if "unique" in message.lower() else "23000"
    return StoreError(message, code=code, details=exc.statement)


def get_table(name: str) -> Table:
    table = Base.metadata.tables.get(name)
    if table is None or name not in POLICIES:
        raise StoreError(
            f'relation "public.{name}" does not exist', code="42P01",
        )
    return table


class TableQuery:
    """Chainable query against one table.  Not reusable after ``execute``."""

    def __init__(
        self,
        engine: Engine,
        table_name: str,
        principal: Callable[[], Principal],
        hub: RealtimeHub | None = None,
    ) -> None:
        self._engine = engine
        self._hub = hub
        self._principal_fn = principal
        self._table_name = table_name
        self._table = get_table(table_name)
        self._policy = POLICIES[table_name]

        self._verb = "select"
        self._columns: list[str] | None = None
        self._count: str | None = None
        self._head = False
        self._values: list[dict[str, Any]] | dict[str, Any] | None = None
        self._on_conflict: list[str] | None = None
        self._filters: list[ColumnElement[bool]] = []
        self._order: list[ColumnElement[Any]] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._single: str | None = None

    # -------------------------------------------------------------------
    # Verbs
    # -------------------------------------------------------------------
    def select(self, columns: str = "*", *, count: str | None = None, head: bool = False) -> TableQuery:
        if columns.strip() != "*":
            self._columns = [c.strip() for c in columns.split(",") if c.strip()]
            for name in self._columns:
                self._col(name)
        self._count = count
        self._head = head
        return self

    def insert(self, values: dict[str, Any] | list[dict[str, Any]]) -> TableQuery:
        self._verb = "insert"
        self._values = values
        return self

    def update(self, values: dict[str, Any]) -> TableQuery:
        self._verb = "update"
        self._values = values
        return self

    def upsert(
        self,
        values: dict[str, Any] | list[dict[str, Any]],
        *,
        on_conflict: str | None = None,
    ) -> TableQuery:
        self._verb = "upsert"
        self._values = values
        if on_conflict:
            self._on_conflict = [c.strip() for c in on_conflict.split(",")]
        else:
            self._on_conflict = [c.name for c in self._table.primary_key.columns]
        return self

    def delete(self) -> TableQuery:
        self._verb = "delete"
        return self

    # -------------------------------------------------------------------
    # Filters
    # -------------------------------------------------------------------
    def _col(self, name: str):
        try:
            return self._table.c[name]
        except KeyError:
            raise StoreError(
                f"column {self._table_name}.{name} does not exist", code=UNDEFINED_COLUMN,
            ) from None

    def eq(self, column: str, value: Any) -> TableQuery:
        self._filters.append(self._col(column) == value)
        return self

    def neq(self, column: str, value: Any) -> TableQuery:
        self._filters.append(self._col(column) != value)
        return self

    def gt(self, column: str, value: Any) -> TableQuery:
        self._filters.append(self._col(column) > value)
        return self

    def gte(self, column: str, value: Any) -> TableQuery:
        self._filters.append(self._col(column) >= value)
        return self

    def lt(self, column: str, value: Any) -> TableQuery:
        self._filters.append(self._col(column) < value)
        return self

    def lte(self, column: str, value: Any) -> TableQuery:
        self._filters.append(self._col(column) <= value)
        return self

    def is_(self, column: str, value: bool | None) -> TableQuery:
        self._filters.append(self._col(column).is_(value))
        return self

    def in_(self, column: str, values: list[Any]) -> TableQuery:
        self._filters.append(self._col(column).in_(list(values)))
        return self

    def ilike(self, column: str, pattern: str) -> TableQuery:
        self._filters.append(self._col(column).ilike(pattern))
        return self

    def or_ilike(self, columns: list[str], pattern: str) -> TableQuery:
        """Match rows where any of *columns* case-insensitively matches."""
        self._filters.append(or_(*(self._col(c).ilike(pattern) for c in columns)))
        return self

    # -------------------------------------------------------------------
    # Modifiers
    # -------------------------------------------------------------------
    def order(self, column: str, *, desc: bool = False) -> TableQuery:
        col = self._col(column)
        self._order.append(col.desc() if desc else col.asc())
        return self

    def limit(self, count: int) -> TableQuery:
        self._limit = count
        return self

    def range(self, start: int, end: int) -> TableQuery:
        """Inclusive row window, ``range(0, 19)`` → first 20 rows."""
        self._offset = start
        self._limit = end - start + 1
        return self

    def single(self) -> TableQuery:
        self._single = "single"
        return self

    def maybe_single(self) -> TableQuery:
        self._single = "maybe"
        return self

    # -------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------
    async def execute(self) -> QueryResult:
        return await run_db(self._execute_sync)

    def _execute_sync(self) -> QueryResult:
        principal = self._principal_fn()
        inserted: list[dict[str, Any]] = []
        with get_session(self._engine) as session:
            if self._verb == "select":
                result = self._run_select(session, principal)
            elif self._verb == "insert":
                rows = self._run_insert(session, principal, self._rows())
                inserted.extend(rows)
                result = QueryResult(data=rows)
            elif self._verb == "upsert":
                rows, created = self._run_upsert(session, principal)
                inserted.extend(created)
                result = QueryResult(data=rows)
            elif self._verb == "update":
                result = QueryResult(data=self._run_update(session, principal))
            else:
                result = QueryResult(data=self._run_delete(session, principal))
            if self._hub is not None:
                for row in inserted:
                    self._hub.notify_before_commit(session, self._table_name, row)

        if self._hub is not None:
            for row in inserted:
                self._hub.publish_local(self._table_name, row)
        return self._shape(result)

    def _rows(self) -> list[dict[str, Any]]:
        if isinstance(self._values, dict):
            return [self._values]
        return list(self._values or [])

    def _shape(self, result: QueryResult) -> QueryResult:
        if self._single is None or self._head:
            return result
        rows = result.data or []
        if len(rows) == 1:
            result.data = rows[0]
            return result
        if not rows and self._single == "maybe":
            result.data = None
            return result
        raise StoreError(
            "JSON object requested, multiple (or no) rows returned",
            code=SINGLE_ROW_MISMATCH,
            details=f"The result contains {len(rows)} rows",
        )

    # -------------------------------------------------------------------
    # Row-level security
    # -------------------------------------------------------------------
    def _scope(self, session: Session, principal: Principal, access: Access) -> list[ColumnElement[bool]]:
        """Extra WHERE clauses for a read/update/delete under the policy."""
        if principal.service_role:
            return []
        if not allows(session, principal, access):
            return [false()]
        if access is Access.OWNER and self._policy.owner_column:
            if self._verb != "select" and self._policy.staff_override and is_moderator(
                session, principal.uid,
            ):
                return []
            return [self._col(self._policy.owner_column) == principal.uid]
        return []

    def _check_insert(self, session: Session, principal: Principal, row: dict[str, Any]) -> None:
        if principal.service_role:
            return
        access = self._policy.insert
        permitted = allows(session, principal, access)
        if permitted and access is Access.OWNER and self._policy.owner_column:
            permitted = row.get(self._policy.owner_column) == principal.uid
        if not permitted:
            raise StoreError(
                f'new row violates row-level security policy for table "{self._table_name}"',
                code=INSUFFICIENT_PRIVILEGE,
            )

    # -------------------------------------------------------------------
    # Statement runners
    # -------------------------------------------------------------------
    def _returning(self):
        if self._columns:
            return [self._col(c) for c in self._columns]
        return list(self._table.c)

    def _run_select(self, session: Session, principal: Principal) -> QueryResult:
        where = and_(*self._filters, *self._scope(session, principal, self._policy.read))

        count = None
        if self._count:
            count = session.scalar(select(func.count()).select_from(self._table).where(where))
        if self._head:
            return QueryResult(data=None, count=count)

        stmt = select(*self._returning()).where(where)
        if self._order:
            stmt = stmt.order_by(*self._order)
        if self._offset:
            stmt = stmt.offset(self._offset)
        if self._limit is not None:
            stmt = stmt.limit(self._limit)
        rows = [row_to_dict(m) for m in session.execute(stmt).mappings().all()]
        return QueryResult(data=rows, count=count)

    def _insert_one(self, session: Session, row: dict[str, Any]) -> dict[str, Any]:
        for key in row:
            self._col(key)
        try:
            created = session.execute(
                insert(self._table).values(**row).returning(*self._table.c)
            ).mappings().one()
        except IntegrityError as exc:
            raise integrity_to_store_error(exc) from exc
        full = row_to_dict(created)
        run_after_insert(session, self._table_name, full)
        return full

    def _project(self, row: dict[str, Any]) -> dict[str, Any]:
        if not self._columns:
            return row
        return {c: row[c] for c in self._columns}

    def _run_insert(self, session: Session, principal: Principal, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        created = []
        for row in rows:
            self._check_insert(session, principal, row)
            created.append(self._insert_one(session, row))
        return [self._project(r) for r in created]

    def _run_upsert(self, session: Session, principal: Principal) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        out: list[dict[str, Any]] = []
        created: list[dict[str, Any]] = []
        conflict_cols = self._on_conflict or []
        for row in self._rows():
            missing = [c for c in conflict_cols if c not in row]
            existing = None
            if not missing:
                match = and_(*(self._col(c) == row[c] for c in conflict_cols))
                existing = session.execute(
                    select(*self._table.c).where(match).with_for_update()
                ).mappings().first()
            if existing is None:
                self._check_insert(session, principal, row)
                new_row = self._insert_one(session, row)
                created.append(new_row)
                out.append(self._project(new_row))
                continue
            scope = self._scope(session, principal, self._policy.write)
            changes = {k: v for k, v in row.items() if k not in conflict_cols}
            for key in changes:
                self._col(key)
            stmt = (
                update(self._table)
                .where(match, *scope)
                .values(**changes)
                .returning(*self._table.c)
            ) if changes else select(*self._table.c).where(match, *scope)
            updated = session.execute(stmt).mappings().first()
            if updated is None:
                raise StoreError(
                    f'new row violates row-level security policy for table "{self._table_name}"',
                    code=INSUFFICIENT_PRIVILEGE,
                )
            out.append(self._project(row_to_dict(updated)))
        return out, created

    def _run_update(self, session: Session, principal: Principal) -> list[dict[str, Any]]:
        values = dict(self._values or {})
        for key in values:
            self._col(key)
        stmt = (
            update(self._table)
            .where(*self._filters, *self._scope(session, principal, self._policy.write))
            .values(**values)
            .returning(*self._returning())
        )
        try:
            rows = session.execute(stmt).mappings().all()
        except IntegrityError as exc:
            raise integrity_to_store_error(exc) from exc
        return [row_to_dict(m) for m in rows]

    def _run_delete(self, session: Session, principal: Principal) -> list[dict[str, Any]]:
        stmt = (
            delete(self._table)
            .where(*self._filters, *self._scope(session, principal, self._policy.write))
            .returning(*self._returning())
        )
        return [row_to_dict(m) for m in session.execute(stmt).mappings().all()]
