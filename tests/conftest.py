"""Shared fixtures: an in-memory store, workbook builders and a SQLite database."""

import os

# Must be set before the app modules read their settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from collections import Counter
from io import BytesIO
from itertools import count
from typing import Any, Sequence

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.database import Base, check_connection, create_db_engine, get_db, session_factory
from app.core.exceptions import StoreError
from app.core.security import Principal, create_access_token
from app.services.sheet import EXPECTED_HEADERS
from app.services.store import COURSES, GRADES, STUDENTS, conflict_columns

INSTITUTIONAL_EMAIL = "staff@srmist.edu.in"


class FakeStore:
    """In-memory Store with insert-or-merge semantics and failure injection.

    ``fail_on`` maps a table to the 1-based upsert call numbers (per table)
    that raise ``StoreError`` instead of writing.
    """

    def __init__(self, fail_on: dict[str, Sequence[int]] | None = None):
        self.tables: dict[str, list[dict[str, Any]]] = {STUDENTS: [], COURSES: [], GRADES: []}
        self.calls: list[tuple[str, str, int]] = []
        self.fail_on = {table: set(numbers) for table, numbers in (fail_on or {}).items()}
        self._upserts: Counter[str] = Counter()
        self._ids = count(1)

    def select(self, table, filters=None, columns=None):
        rows = self.tables[table]
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)):
                rows = [r for r in rows if r.get(column) in value]
            else:
                rows = [r for r in rows if r.get(column) == value]
        self.calls.append(("select", table, len(rows)))
        if columns:
            return [{c: r.get(c) for c in columns} for r in rows]
        return [dict(r) for r in rows]

    def upsert(self, table, rows, conflict_key, ignore_duplicates=False):
        self._upserts[table] += 1
        self.calls.append(("upsert", table, len(rows)))
        if self._upserts[table] in self.fail_on.get(table, ()):
            raise StoreError(f"Simulated failure writing {table}", table=table, operation="upsert")

        keys = conflict_columns(conflict_key)
        for row in rows:
            existing = next(
                (r for r in self.tables[table] if all(r.get(k) == row.get(k) for k in keys)),
                None,
            )
            if existing is None:
                self.tables[table].append({"id": next(self._ids), **row})
            elif not ignore_duplicates:
                existing.update(row)

    def upsert_sizes(self, table: str) -> list[int]:
        return [size for op, name, size in self.calls if op == "upsert" and name == table]


def grade_row(register_no="R1", name="Alice", course_code="21CSC204J", grade="A+", **fields) -> dict[str, Any]:
    """Canonical-label keyed row; unspecified columns stay empty."""
    row = {
        "Register No": register_no,
        "Student Name": name,
        "Course Code": course_code,
        "Grade": grade,
    }
    labels = {label.lower().replace(" ", "_").replace(".", ""): label for label in EXPECTED_HEADERS}
    for key, value in fields.items():
        row[labels[key]] = value
    return row


def build_workbook(
    rows: list[dict[str, Any]],
    headers: Sequence[str] = EXPECTED_HEADERS,
    title_rows: Sequence[Sequence[Any]] = (),
) -> bytes:
    wb = Workbook()
    ws = wb.active
    for title in title_rows:
        ws.append(list(title))
    ws.append(list(headers))
    for row in rows:
        ws.append([row.get(header) for header in headers])
    output = BytesIO()
    wb.save(output)
    return output.getvalue()


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def principal() -> Principal:
    return Principal(subject="user-1", email=INSTITUTIONAL_EMAIL)


@pytest.fixture
def outsider() -> Principal:
    return Principal(subject="user-2", email="someone@gmail.com")


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    assert check_connection(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = session_factory(engine)()
    yield session
    session.close()


@pytest.fixture
def client(db_session):
    from app.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    token = create_access_token(subject="user-1", email=INSTITUTIONAL_EMAIL)
    return {"Authorization": f"Bearer {token}"}
