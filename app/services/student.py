"""Student upsert for ingestion, and student queries for the API."""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.models.student import Student
from app.schemas.student import PaginatedStudentResponse, StudentFilter, StudentResponse
from app.services.batching import run_in_chunks
from app.services.context import IngestionContext, SkipReason
from app.services.sheet import (
    BATCH,
    BRANCH_OF_STUDY,
    DEGREE,
    GRADUATION_TYPE,
    OFFICE_NAME,
    REGISTER_NO,
    SEMESTER,
    STUDENT_NAME,
    ColumnMap,
    SheetRow,
)
from app.services.store import STUDENTS, clip_to_columns

logger = logging.getLogger(__name__)


def normalize_register_number(raw: Any) -> str:
    """Register numbers are compared trimmed; numeric cells lose their '.0'."""
    if raw is None:
        return ""
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    return str(raw).strip()


MAX_SEMESTER = 20


def parse_semester(raw: Any) -> int | None:
    """Semester as 1..MAX_SEMESTER, None when blank, non-numeric or out of range."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        logger.debug(f"[STUDENTS] Ignoring non-numeric semester {raw!r}")
        return None
    if not value.is_finite() or not 1 <= value <= MAX_SEMESTER:
        logger.debug(f"[STUDENTS] Ignoring out-of-range semester {raw!r}")
        return None
    return int(value)


def screen_rows(ctx: IngestionContext, rows: Iterable[SheetRow], columns: ColumnMap) -> list[SheetRow]:
    """Drop rows without a register number or name, counting them as skipped."""
    accepted = []
    for row in rows:
        register_number = normalize_register_number(columns.resolve(row.values, REGISTER_NO))
        name = columns.text(row.values, STUDENT_NAME)
        if not register_number or not name:
            column = REGISTER_NO if not register_number else STUDENT_NAME
            ctx.stats.skip(SkipReason.MISSING_STUDENT_KEY, row.row_number, column, register_number or None)
            logger.debug(f"[STUDENTS] Row {row.row_number} skipped: missing {column}")
            continue
        accepted.append(row)
    return accepted


def collect_students(rows: Iterable[SheetRow], columns: ColumnMap) -> list[dict[str, Any]]:
    """One student payload per register number, first occurrence in file order wins."""
    students: dict[str, dict[str, Any]] = {}
    for row in rows:
        register_number = normalize_register_number(columns.resolve(row.values, REGISTER_NO))
        if register_number in students:
            continue
        students[register_number] = clip_to_columns(STUDENTS, {
            "register_number": register_number,
            "name": columns.text(row.values, STUDENT_NAME),
            "semester": parse_semester(columns.resolve(row.values, SEMESTER)),
            "batch": columns.text(row.values, BATCH) or None,
            "degree": columns.text(row.values, DEGREE) or None,
            "office_name": columns.text(row.values, OFFICE_NAME) or None,
            "branch_of_study": columns.text(row.values, BRANCH_OF_STUDY) or None,
            "graduation_type": columns.text(row.values, GRADUATION_TYPE) or None,
        })
    return list(students.values())


def upsert_students(ctx: IngestionContext, students: list[dict[str, Any]]) -> dict[str, int]:
    """Merge students on register number, then map register number -> id."""
    ctx.report(50, f"Upserting {len(students)} students...")

    def on_upserted(index: int, done: int, total: int) -> None:
        ctx.stats.students_processed = done

    run_in_chunks(
        students,
        ctx.write_batch_size,
        lambda chunk: ctx.store.upsert(STUDENTS, chunk, "register_number"),
        label="upserting students",
        cancel_token=ctx.cancel_token,
        on_chunk=on_upserted,
    )

    ctx.report(60, "Mapping student IDs...")
    register_numbers = [s["register_number"] for s in students]

    def fetch(chunk: list[str]) -> None:
        for row in ctx.store.select(STUDENTS, {"register_number": chunk}, ["id", "register_number"]):
            ctx.student_ids[normalize_register_number(row["register_number"])] = row["id"]

    def on_chunk(index: int, done: int, total: int) -> None:
        ctx.report(60 + (done / total) * 5, f"Mapping student IDs... {done}/{total}")

    run_in_chunks(
        register_numbers,
        ctx.lookup_batch_size,
        fetch,
        label="getting students",
        cancel_token=ctx.cancel_token,
        on_chunk=on_chunk,
    )
    logger.info(f"[STUDENTS] Upserted {len(students)} students, mapped {len(ctx.student_ids)} ids")
    return ctx.student_ids


class StudentService:
    """Student queries."""

    def __init__(self, db: Session):
        self.db = db

    def get_student(self, student_id: int) -> Student:
        """Get student by ID."""
        result = self.db.execute(select(Student).where(Student.id == student_id))
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student", str(student_id))
        return student

    def list_students(
        self,
        filters: StudentFilter | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> PaginatedStudentResponse:
        """List students with filtering and pagination."""
        query = select(Student)

        if filters:
            if filters.semester is not None:
                query = query.where(Student.semester == filters.semester)
            if filters.batch:
                query = query.where(Student.batch == filters.batch)
            if filters.search:
                search_term = f"%{filters.search}%"
                query = query.where(
                    or_(
                        Student.register_number.ilike(search_term),
                        Student.name.ilike(search_term),
                    )
                )

        # Get total count
        count_query = select(func.count()).select_from(query.subquery())
        total = self.db.execute(count_query).scalar() or 0

        # Apply pagination
        offset = (page - 1) * page_size
        query = query.order_by(Student.name, Student.register_number).offset(offset).limit(page_size)
        students = self.db.execute(query).scalars().all()

        return PaginatedStudentResponse.paginate(
            [StudentResponse.model_validate(s) for s in students], total, page, page_size
        )
