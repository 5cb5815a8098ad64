"""Grade spreadsheet ingestion and upload tracking."""

import logging
import threading
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Sequence

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    ChunkWriteError,
    ConflictError,
    IngestionCancelled,
    IngestionError,
    NotFoundError,
)
from app.core.security import Principal
from app.models.base import utcnow
from app.models.upload import Upload, UploadError, UploadStatus
from app.schemas.common import PaginatedResponse
from app.schemas.upload import UploadResult, UploadWithDetails
from app.services.batching import CancellationToken, run_in_chunks
from app.services.context import UNRECOGNIZED_GRADE, IngestionContext, ProgressCallback, SkipReason
from app.services.course import collect_courses, normalize_course_code, reconcile_courses
from app.services.grading import is_passed, is_recognized, normalize_grade_token, normalize_mode_of_attempt
from app.services.sheet import (
    COURSE_CODE,
    EXPECTED_HEADERS,
    GRADE,
    MODE_OF_ATTEMPT,
    REGISTER_NO,
    REQUIRED_HEADERS,
    ColumnMap,
    SheetRow,
    load_grid,
    parse_grid,
)
from app.services.store import COURSES, GRADES, STUDENTS, SqlAlchemyStore, Store, clip_to_columns, column_length
from app.services.student import collect_students, normalize_register_number, screen_rows, upsert_students

# Setup debug logger
logger = logging.getLogger(__name__)

GRADE_CONFLICT_KEY = "student_id,course_id"


def screen_key_lengths(ctx: IngestionContext, rows: Sequence[SheetRow], columns: ColumnMap) -> list[SheetRow]:
    """Drop rows whose register number, course code or grade cannot fit its column.

    Key values are never truncated: a clipped key would merge unrelated
    students, courses or grades.
    """
    limits = (
        (REGISTER_NO, normalize_register_number, column_length(STUDENTS, "register_number")),
        (COURSE_CODE, normalize_course_code, column_length(COURSES, "code")),
        (GRADE, normalize_grade_token, column_length(GRADES, "grade")),
    )
    accepted = []
    for row in rows:
        for label, normalize, limit in limits:
            value = normalize(columns.resolve(row.values, label))
            if limit is not None and len(value) > limit:
                ctx.stats.skip(SkipReason.VALUE_TOO_LONG, row.row_number, label, value)
                logger.debug(f"[GRADE UPLOAD] Row {row.row_number} skipped: {label} longer than {limit}")
                break
        else:
            accepted.append(row)
    return accepted


def build_grades(ctx: IngestionContext, rows: Sequence[SheetRow], columns: ColumnMap) -> list[dict[str, Any]]:
    """Turn accepted rows into grade payloads, skipping rows with unresolved keys.

    Payloads are unique per (student, course); a later row for the same pair
    replaces the earlier one, which is counted as a duplicate.
    """
    ctx.report(70, "Processing grades...")
    grades: dict[tuple[int, int], dict[str, Any]] = {}
    grade_rows: dict[tuple[int, int], int] = {}
    total = len(rows)

    for index, row in enumerate(rows):
        if index and index % 100 == 0:
            ctx.report(70 + (index / total) * 20, f"Processing grades... {index}/{total}")

        raw_code = columns.resolve(row.values, COURSE_CODE)
        code = normalize_course_code(raw_code)
        if not code:
            ctx.stats.skip(SkipReason.MISSING_COURSE_CODE, row.row_number, COURSE_CODE, raw_code)
            continue

        register_number = normalize_register_number(columns.resolve(row.values, REGISTER_NO))
        student_id = ctx.student_ids.get(register_number)
        if student_id is None:
            ctx.stats.skip(SkipReason.UNRESOLVED_STUDENT, row.row_number, REGISTER_NO, register_number)
            continue

        course_id = ctx.course_ids.get(code)
        if course_id is None:
            ctx.stats.skip(SkipReason.UNRESOLVED_COURSE, row.row_number, COURSE_CODE, code)
            continue

        token = normalize_grade_token(columns.resolve(row.values, GRADE))
        if not token:
            ctx.stats.skip(SkipReason.EMPTY_GRADE, row.row_number, GRADE, None)
            continue
        if not is_recognized(token):
            ctx.stats.flag(UNRECOGNIZED_GRADE, row.row_number, GRADE, token)

        key = (student_id, course_id)
        if key in grades:
            ctx.stats.skip(SkipReason.DUPLICATE_GRADE, grade_rows[key], COURSE_CODE, code)
        grades[key] = clip_to_columns(GRADES, {
            "student_id": student_id,
            "course_id": course_id,
            "grade": token,
            "is_passed": is_passed(token),
            "mode_of_attempt": normalize_mode_of_attempt(columns.resolve(row.values, MODE_OF_ATTEMPT)),
        })
        grade_rows[key] = row.row_number
        logger.debug(f"[GRADE UPLOAD] Row {row.row_number}: {register_number}/{code} -> {token}")

    return list(grades.values())


def write_grades(ctx: IngestionContext, grades: list[dict[str, Any]]) -> int:
    """Upsert grades in bounded chunks, one chunk at a time."""
    if not grades:
        return 0
    ctx.report(90, f"Saving {len(grades)} grades...")

    def on_chunk(index: int, done: int, total: int) -> None:
        ctx.stats.grades_processed = done
        ctx.report(90 + (done / total) * 10, f"Saving grades... {done}/{total}")

    return run_in_chunks(
        grades,
        ctx.write_batch_size,
        lambda chunk: ctx.store.upsert(GRADES, chunk, GRADE_CONFLICT_KEY),
        label="upserting grades",
        cancel_token=ctx.cancel_token,
        on_chunk=on_chunk,
    )


@dataclass
class IngestionOutcome:
    """Terminal state of one run."""

    context: IngestionContext
    status: UploadStatus
    message: str
    header_row_index: int | None = None
    failed_chunk: int | None = None
    error: IngestionError | None = None

    def to_result(self, upload_id: int | None = None, run_id: str | None = None) -> UploadResult:
        stats = self.context.stats
        return UploadResult(
            upload_id=upload_id,
            run_id=run_id,
            status=self.status,
            header_row_index=self.header_row_index,
            total_rows=stats.total_rows,
            students_processed=stats.students_processed,
            courses_created=stats.courses_created,
            grades_processed=stats.grades_processed,
            skipped_rows=stats.skipped_rows,
            skipped_by_reason=dict(stats.skipped),
            samples=stats.samples(),
            failed_chunk=self.failed_chunk,
            progress=list(self.context.progress_log),
            message=self.message,
        )


class GradeIngestion:
    """One spreadsheet -> courses, students and grades in the store.

    Store calls are issued sequentially. A fatal error stops the run but
    never rolls back what earlier calls committed; the outcome reports the
    totals reached so far.
    """

    def __init__(
        self,
        store: Store,
        progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
        expected_headers: Sequence[str] = EXPECTED_HEADERS,
        required_headers: Sequence[str] = REQUIRED_HEADERS,
        header_scan_rows: int | None = None,
        header_match_threshold: int | None = None,
        lookup_batch_size: int | None = None,
        write_batch_size: int | None = None,
        sample_size: int | None = None,
    ):
        self.store = store
        self.progress = progress
        self.cancel_token = cancel_token
        self.expected_headers = expected_headers
        self.required_headers = required_headers
        self.header_scan_rows = header_scan_rows or settings.HEADER_SCAN_ROWS
        self.header_match_threshold = header_match_threshold or settings.HEADER_MATCH_THRESHOLD
        self.lookup_batch_size = lookup_batch_size or settings.STUDENT_LOOKUP_BATCH_SIZE
        self.write_batch_size = write_batch_size or settings.GRADE_WRITE_BATCH_SIZE
        self.sample_size = sample_size or settings.DIAGNOSTIC_SAMPLE_SIZE

    def run(self, file_content: bytes) -> IngestionOutcome:
        ctx = IngestionContext(
            self.store,
            progress=self.progress,
            cancel_token=self.cancel_token,
            lookup_batch_size=self.lookup_batch_size,
            write_batch_size=self.write_batch_size,
            sample_size=self.sample_size,
        )
        outcome = IngestionOutcome(context=ctx, status=UploadStatus.PROCESSING, message="")

        try:
            self._run(ctx, outcome, file_content)
        except IngestionCancelled as e:
            outcome.error = e
            outcome.status = UploadStatus.PARTIAL if ctx.stats.grades_processed else UploadStatus.FAILED
        except ChunkWriteError as e:
            outcome.error = e
            outcome.failed_chunk = e.chunk_index
            outcome.status = UploadStatus.FAILED
        except IngestionError as e:
            outcome.error = e
            outcome.status = UploadStatus.FAILED

        if outcome.error is not None:
            outcome.message = f"Error: {outcome.error.message}"
            logger.error(f"[GRADE UPLOAD] Run stopped: {outcome.error.message}")
            ctx.report(ctx.percent_complete, outcome.message)
        else:
            outcome.status = UploadStatus.SUCCESS
            outcome.message = (
                f"Successfully processed {ctx.stats.students_processed} students "
                f"and {ctx.stats.grades_processed} grades"
            )
            ctx.report(100, outcome.message)

        if ctx.stats.skipped_rows:
            logger.warning(f"[GRADE UPLOAD] Skipped {ctx.stats.skipped_rows} rows: {dict(ctx.stats.skipped)}")
        if ctx.stats.flagged:
            logger.warning(f"[GRADE UPLOAD] Grades needing review: {dict(ctx.stats.flagged)}")
        return outcome

    def _run(self, ctx: IngestionContext, outcome: IngestionOutcome, file_content: bytes) -> None:
        ctx.report(0, "Reading Excel file...")
        grid = load_grid(file_content)
        ctx.report(10, "Reading Excel file...")

        parsed = parse_grid(
            grid,
            self.expected_headers,
            self.required_headers,
            self.header_scan_rows,
            self.header_match_threshold,
        )
        outcome.header_row_index = parsed.header_row_index
        ctx.stats.total_rows = len(parsed.rows)
        ctx.report(20, f"Processing {len(parsed.rows)} records...")

        rows = screen_rows(ctx, parsed.rows, parsed.columns)
        rows = screen_key_lengths(ctx, rows, parsed.columns)

        reconcile_courses(ctx, collect_courses(rows, parsed.columns))

        upsert_students(ctx, collect_students(rows, parsed.columns))

        grades = build_grades(ctx, rows, parsed.columns)
        write_grades(ctx, grades)


class UploadRunRegistry:
    """Cancellation tokens of in-flight runs, keyed by client run id.

    A run id belongs to one run at a time; registering an id that is still
    in flight is refused so that neither run loses its token.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[str, CancellationToken] = {}

    def register(self, run_id: str) -> CancellationToken:
        with self._lock:
            if run_id in self._tokens:
                raise ConflictError(f"Upload run {run_id} is already in progress")
            token = CancellationToken()
            self._tokens[run_id] = token
            return token

    def cancel(self, run_id: str) -> bool:
        with self._lock:
            token = self._tokens.get(run_id)
        if token is None:
            return False
        token.cancel()
        return True

    def release(self, run_id: str, token: CancellationToken | None = None) -> None:
        """Forget a run id; with ``token`` given, only if it is still that run's."""
        with self._lock:
            if token is None or self._tokens.get(run_id) is token:
                self._tokens.pop(run_id, None)

    def __contains__(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._tokens


class UploadService:
    """Runs grade uploads and keeps their history."""

    def __init__(self, db: Session):
        self.db = db

    def process_grade_upload(
        self,
        principal: Principal,
        file_content: bytes,
        file_name: str,
        run_id: str | None = None,
        progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
        store: Store | None = None,
    ) -> UploadResult:
        """
        Process a grade spreadsheet upload.
        Rows with missing keys are skipped and reported; fatal errors stop
        the run without rolling back committed chunks.
        """
        logger.info(f"[GRADE UPLOAD] Starting upload for file: {file_name}, principal: {principal.email}")
        logger.debug(f"[GRADE UPLOAD] File size: {len(file_content)} bytes")

        upload = Upload(
            run_id=run_id,
            file_name=file_name,
            file_size=len(file_content),
            status=UploadStatus.PROCESSING,
            uploaded_by_email=principal.email,
            processing_started_at=utcnow(),
        )
        self.db.add(upload)
        # Committed up front: store writes commit on their own and may roll back on failure
        self.db.commit()
        logger.debug(f"[GRADE UPLOAD] Created upload record with ID: {upload.id}")

        ingestion = GradeIngestion(
            store or SqlAlchemyStore(self.db, principal),
            progress=progress,
            cancel_token=cancel_token,
        )
        try:
            outcome = ingestion.run(file_content)
        except Exception as e:
            # The tracking row must not stay PROCESSING
            logger.exception(f"[GRADE UPLOAD] Unexpected failure in upload {upload.id}")
            self.db.rollback()
            upload.status = UploadStatus.FAILED
            upload.error_message = f"Unexpected error: {e}"
            upload.processing_completed_at = utcnow()
            self.db.commit()
            raise
        stats = outcome.context.stats

        upload.status = outcome.status
        upload.header_row_index = outcome.header_row_index
        upload.total_rows = stats.total_rows
        upload.students_processed = stats.students_processed
        upload.courses_created = stats.courses_created
        upload.grades_processed = stats.grades_processed
        upload.skipped_rows = stats.skipped_rows
        upload.failed_chunk = outcome.failed_chunk
        upload.error_message = outcome.error.message if outcome.error else None
        upload.processing_completed_at = utcnow()

        for sample in stats.samples():
            upload.errors.append(
                UploadError(
                    row_number=sample.row_number,
                    column_name=sample.column,
                    error_type=sample.reason,
                    error_message=self._describe_reason(sample.reason),
                    raw_value=sample.value,
                )
            )
        self.db.commit()

        logger.info(
            f"[GRADE UPLOAD] Upload complete - Status: {upload.status.value}, "
            f"Students: {upload.students_processed}, Grades: {upload.grades_processed}, "
            f"Skipped: {upload.skipped_rows}, Total: {upload.total_rows}"
        )
        return outcome.to_result(upload_id=upload.id, run_id=run_id)

    def _describe_reason(self, reason: str) -> str:
        """Human readable text for a skip/review reason."""
        return {
            SkipReason.MISSING_STUDENT_KEY.value: "Register number or student name is empty",
            SkipReason.MISSING_COURSE_CODE.value: "Course code is empty",
            SkipReason.UNRESOLVED_STUDENT.value: "Student could not be resolved after upsert",
            SkipReason.UNRESOLVED_COURSE.value: "Course could not be resolved after reconciliation",
            SkipReason.EMPTY_GRADE.value: "Grade is empty",
            SkipReason.DUPLICATE_GRADE.value: "Replaced by a later row for the same student and course",
            SkipReason.VALUE_TOO_LONG.value: "Register number, course code or grade is too long to store",
            UNRECOGNIZED_GRADE: "Grade token classified by substring fallback; review manually",
        }.get(reason, reason)

    def list_uploads(
        self,
        status: UploadStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> PaginatedResponse[UploadWithDetails]:
        """List upload history, newest first."""
        query = select(Upload)
        if status:
            query = query.where(Upload.status == status)

        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar() or 0

        query = query.order_by(Upload.created_at.desc(), Upload.id.desc()).offset((page - 1) * page_size).limit(page_size)
        uploads = self.db.execute(query).scalars().all()

        return PaginatedResponse[UploadWithDetails].paginate(
            [UploadWithDetails.model_validate(u) for u in uploads], total, page, page_size
        )

    def get_upload(self, upload_id: int) -> UploadWithDetails:
        """Get upload details by ID with diagnostic samples."""
        upload = self.db.execute(select(Upload).where(Upload.id == upload_id)).scalar_one_or_none()
        if not upload:
            raise NotFoundError("Upload", str(upload_id))
        return UploadWithDetails.model_validate(upload)

    def generate_template(self) -> bytes:
        """Generate an Excel template with the expected grade export headers."""
        wb = Workbook()
        ws = wb.active
        ws.title = "Grades"

        for col_idx, header in enumerate(EXPECTED_HEADERS, start=1):
            cell = ws.cell(row=1, column=col_idx, value=header)
            cell.font = Font(bold=True)

        sample_data = [
            1, "Kattankulathur", "RA2111003010001", "Jane Doe", 5, "2021", "B.Tech",
            "Computer Science and Engineering", "UG", "21CSC204J",
            "Design and Analysis of Algorithms", 4, "A+", "Regular",
        ]
        for col_idx, value in enumerate(sample_data, start=1):
            ws.cell(row=2, column=col_idx, value=value)

        for col_idx, header in enumerate(EXPECTED_HEADERS, start=1):
            ws.column_dimensions[get_column_letter(col_idx)].width = max(12, len(header) + 4)

        output = BytesIO()
        wb.save(output)
        output.seek(0)
        return output.getvalue()
