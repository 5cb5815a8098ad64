"""Course reconciliation against the store."""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.models.course import Course
from app.models.grade import Grade
from app.schemas.course import CourseDetail, CourseGradeEntry, CourseResponse
from app.services.analytics import rounded_percentage
from app.services.context import IngestionContext
from app.services.grading import ARREAR_MODE_OF_ATTEMPT
from app.services.sheet import COURSE_CODE, COURSE_TITLE, CREDITS, ColumnMap, SheetRow
from app.services.store import COURSES, clip_to_columns

logger = logging.getLogger(__name__)

_NOT_CODE_CHARS = re.compile(r"[^A-Z0-9]")

COURSE_COLUMNS = ["id", "code", "name", "title", "credits"]


def normalize_course_code(raw: Any) -> str:
    """Upper-case the code and keep only A-Z and 0-9."""
    if raw is None:
        return ""
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    return _NOT_CODE_CHARS.sub("", str(raw).upper())


MAX_CREDITS = 99


def parse_credits(raw: Any) -> int | None:
    """Credits as 0..MAX_CREDITS, None when blank, unparseable or out of range."""
    if raw is None or isinstance(raw, bool):
        return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        logger.debug(f"[COURSES] Ignoring unparseable credits value {raw!r}")
        return None
    if not value.is_finite() or not 0 <= value <= MAX_CREDITS:
        logger.debug(f"[COURSES] Ignoring out-of-range credits value {raw!r}")
        return None
    return int(value)


@dataclass
class CourseInfo:
    """What the sheet says about one course code."""

    code: str
    title: str | None = None
    credits: int | None = None

    def backfill(self, title: str | None, credits: int | None) -> None:
        # First non-empty value wins; later rows only fill gaps
        if not self.title and title:
            self.title = title
        if self.credits is None and credits is not None:
            self.credits = credits


def collect_courses(rows: Iterable[SheetRow], columns: ColumnMap) -> dict[str, CourseInfo]:
    """Distinct normalized course codes of the batch, in first-seen order."""
    courses: dict[str, CourseInfo] = {}
    for row in rows:
        code = normalize_course_code(columns.resolve(row.values, COURSE_CODE))
        if not code:
            continue
        title = columns.text(row.values, COURSE_TITLE) or None
        credits = parse_credits(columns.resolve(row.values, CREDITS))
        info = courses.get(code)
        if info is None:
            courses[code] = CourseInfo(code=code, title=title, credits=credits)
        else:
            info.backfill(title, credits)
    return courses


def _new_course_row(info: CourseInfo) -> dict[str, Any]:
    return clip_to_columns(COURSES, {
        "code": info.code,
        "name": info.title or info.code,
        "title": info.title,
        "credits": info.credits,
    })


def _backfill_row(existing: dict[str, Any], info: CourseInfo) -> dict[str, Any] | None:
    """Row filling missing title/credits of a stored course, or None if nothing changes."""
    title = existing.get("title") or info.title
    credits = existing["credits"] if existing.get("credits") is not None else info.credits
    name = existing.get("name")
    # A name equal to the code is the placeholder used when no title was known
    if (not name or name == existing["code"]) and title:
        name = title
    if title == existing.get("title") and credits == existing.get("credits") and name == existing.get("name"):
        return None
    return clip_to_columns(
        COURSES, {"code": existing["code"], "name": name or existing["code"], "title": title, "credits": credits}
    )


def reconcile_courses(ctx: IngestionContext, courses: dict[str, CourseInfo]) -> dict[str, int]:
    """Make sure every course of the batch exists and map code -> id.

    Creation is insert-or-ignore on the normalized code, so concurrent runs
    inserting the same course neither duplicate it nor fail.
    """
    codes = list(courses)
    ctx.report(30, "Validating courses...")
    if not codes:
        logger.info("[COURSES] No course codes in batch")
        ctx.course_ids = {}
        return ctx.course_ids

    existing = {row["code"]: row for row in ctx.store.select(COURSES, {"code": codes}, COURSE_COLUMNS)}
    logger.info(f"[COURSES] {len(codes)} distinct codes in batch, {len(existing)} already stored")

    backfills = [row for row in (_backfill_row(existing[c], courses[c]) for c in existing) if row]
    if backfills:
        logger.info(f"[COURSES] Backfilling title/credits for {len(backfills)} courses")
        ctx.store.upsert(COURSES, backfills, "code")

    new_codes = [code for code in codes if code not in existing]
    if new_codes:
        ctx.report(35, f"Creating {len(new_codes)} new courses...")
        ctx.store.upsert(
            COURSES,
            [_new_course_row(courses[code]) for code in new_codes],
            "code",
            ignore_duplicates=True,
        )
        ctx.stats.courses_created = len(new_codes)

    ctx.report(38, "Mapping course IDs...")
    fetched = ctx.store.select(COURSES, {"code": codes}, ["id", "code"])
    if not fetched:
        # Eventual consistency or a lost race: force the inserts once and look again
        logger.warning(f"[COURSES] Re-fetch returned nothing for {len(codes)} codes, retrying inserts")
        ctx.store.upsert(
            COURSES,
            [_new_course_row(courses[code]) for code in codes],
            "code",
            ignore_duplicates=True,
        )
        fetched = ctx.store.select(COURSES, {"code": codes}, ["id", "code"])

    ctx.course_ids = {row["code"]: row["id"] for row in fetched}
    missing = len(codes) - len(ctx.course_ids)
    if missing:
        logger.warning(f"[COURSES] {missing} course codes still unresolved after reconciliation")
    ctx.report(40, f"{len(ctx.course_ids)} courses ready")
    return ctx.course_ids


class CourseService:
    """Course listing and per-course grade details."""

    def __init__(self, db: Session):
        self.db = db

    def list_courses(self, search: str | None = None) -> list[CourseResponse]:
        """List courses ordered by code, with graded-student counts."""
        query = (
            select(Course, func.count(Grade.id))
            .outerjoin(Grade, Grade.course_id == Course.id)
            .group_by(Course.id)
            .order_by(Course.code)
        )
        if search:
            term = f"%{search.strip()}%"
            query = query.where(Course.code.ilike(term) | Course.name.ilike(term))

        result = self.db.execute(query)
        return [
            CourseResponse.model_validate(course).model_copy(update={"graded_students": count})
            for course, count in result.all()
        ]

    def get_course(self, course_id: int) -> Course:
        """Get course by ID."""
        course = self.db.execute(select(Course).where(Course.id == course_id)).scalar_one_or_none()
        if not course:
            raise NotFoundError("Course", str(course_id))
        return course

    def get_course_grades(self, course_id: int) -> CourseDetail:
        """One course with pass/fail and arrear/regular counts and its graded students.

        Students are listed by name, then register number.
        """
        course = self.get_course(course_id)
        entries = [
            CourseGradeEntry(
                student_id=grade.student.id,
                register_number=grade.student.register_number,
                name=grade.student.name,
                semester=grade.student.semester,
                batch=grade.student.batch,
                degree=grade.student.degree,
                office_name=grade.student.office_name,
                branch_of_study=grade.student.branch_of_study,
                graduation_type=grade.student.graduation_type,
                grade=grade.grade,
                is_passed=grade.is_passed,
                mode_of_attempt=grade.mode_of_attempt,
            )
            for grade in course.grades
        ]
        entries.sort(key=lambda e: (e.name, e.register_number))

        total = len(entries)
        passed = sum(1 for e in entries if e.is_passed)
        arrears = sum(1 for e in entries if e.mode_of_attempt == ARREAR_MODE_OF_ATTEMPT)
        return CourseDetail(
            **CourseResponse.model_validate(course).model_dump(exclude={"graded_students"}),
            graded_students=total,
            total_students=total,
            passed=passed,
            failed=total - passed,
            pass_rate=rounded_percentage(passed, total),
            arrear_count=arrears,
            regular_count=total - arrears,
            grades=entries,
        )
