"""Relational store used by the ingestion pipeline."""

import logging
from typing import Any, Protocol, Sequence

from sqlalchemy import Table, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import StoreError, StoreForbiddenError
from app.core.security import Principal
from app.models.base import utcnow
from app.models.course import Course
from app.models.grade import Grade
from app.models.student import Student

logger = logging.getLogger(__name__)

STUDENTS = "students"
COURSES = "courses"
GRADES = "grades"

TABLES: dict[str, Table] = {
    STUDENTS: Student.__table__,
    COURSES: Course.__table__,
    GRADES: Grade.__table__,
}


class Store(Protocol):
    """Minimal select/upsert contract the pipeline needs from a store.

    ``filters`` maps a column to a scalar (equality) or a list (membership).
    ``upsert`` is idempotent under identical conflict keys: existing rows are
    merged in place, or left untouched when ``ignore_duplicates`` is set.
    """

    def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        columns: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]: ...

    def upsert(
        self,
        table: str,
        rows: list[dict[str, Any]],
        conflict_key: str | Sequence[str],
        ignore_duplicates: bool = False,
    ) -> None: ...


def column_length(table: str, column: str) -> int | None:
    """Declared VARCHAR length of a store column, None when unbounded."""
    return getattr(TABLES[table].c[column].type, "length", None)


def clip_to_columns(table: str, row: dict[str, Any]) -> dict[str, Any]:
    """Cut string values down to their column length."""
    clipped = dict(row)
    for column, value in row.items():
        limit = column_length(table, column) if column in TABLES[table].c else None
        if isinstance(value, str) and limit is not None and len(value) > limit:
            logger.debug(f"[STORE] Clipping {table}.{column} from {len(value)} to {limit} characters")
            clipped[column] = value[:limit]
    return clipped


def conflict_columns(conflict_key: str | Sequence[str]) -> list[str]:
    """Accept "a,b" or ["a", "b"]."""
    if isinstance(conflict_key, str):
        return [c.strip() for c in conflict_key.split(",") if c.strip()]
    return list(conflict_key)


class SqlAlchemyStore:
    """Store over the ORM tables using INSERT .. ON CONFLICT.

    Each upsert commits on its own so that chunks written before a failure
    stay committed. Every call is checked against the institutional domain
    policy for the principal it runs as.
    """

    def __init__(self, db: Session, principal: Principal):
        self.db = db
        self.principal = principal

    def _table(self, table: str) -> Table:
        try:
            return TABLES[table]
        except KeyError:
            raise StoreError(f"Unknown table: {table}", table=table)

    def _authorize(self, table: str, operation: str) -> None:
        if not self.principal.is_institutional:
            logger.warning(
                f"[STORE] Denied {operation} on {table} for principal {self.principal.email!r}"
            )
            raise StoreForbiddenError(
                f"Permission denied: {operation} on {table} requires an institutional account",
                table=table,
                operation=operation,
            )

    def _insert(self, table: Table):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise StoreError(f"Upsert is not supported on {dialect}", table=table.name, operation="upsert")
        return insert(table)

    def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        columns: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch rows as dicts, filtered by equality or membership."""
        self._authorize(table, "select")
        source = self._table(table)

        query = select(*[source.c[c] for c in columns]) if columns else select(source)
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)):
                if not value:
                    return []
                query = query.where(source.c[column].in_(list(value)))
            else:
                query = query.where(source.c[column] == value)

        try:
            result = self.db.execute(query)
            return [dict(row._mapping) for row in result.all()]
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[STORE] select on {table} failed: {e}")
            raise StoreError(f"Error reading {table}: {_describe(e)}", table=table, operation="select")

    def upsert(
        self,
        table: str,
        rows: list[dict[str, Any]],
        conflict_key: str | Sequence[str],
        ignore_duplicates: bool = False,
    ) -> None:
        """Insert rows, merging or ignoring those whose conflict key exists."""
        self._authorize(table, "upsert")
        if not rows:
            return
        source = self._table(table)
        keys = conflict_columns(conflict_key)

        stmt = self._insert(source).values(rows)
        update_columns = [c for c in rows[0] if c not in keys]
        if ignore_duplicates or not update_columns:
            stmt = stmt.on_conflict_do_nothing(index_elements=keys)
        else:
            set_ = {c: stmt.excluded[c] for c in update_columns}
            if "updated_at" in source.c:
                set_["updated_at"] = utcnow()
            stmt = stmt.on_conflict_do_update(index_elements=keys, set_=set_)

        try:
            self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[STORE] upsert of {len(rows)} rows into {table} failed: {e}")
            raise StoreError(f"Error writing {table}: {_describe(e)}", table=table, operation="upsert")

        logger.debug(f"[STORE] Upserted {len(rows)} rows into {table} on ({', '.join(keys)})")


def _describe(error: SQLAlchemyError) -> str:
    """Driver message without SQLAlchemy's statement dump."""
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)
