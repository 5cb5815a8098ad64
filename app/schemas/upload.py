"""Upload schemas."""

from datetime import datetime

from pydantic import Field

from app.models.upload import UploadStatus
from app.schemas.common import BaseSchema


class UploadResponse(BaseSchema):
    """Upload record response schema."""

    id: int
    run_id: str | None
    file_name: str
    file_size: int
    status: UploadStatus
    header_row_index: int | None
    total_rows: int
    students_processed: int
    courses_created: int
    grades_processed: int
    skipped_rows: int
    failed_chunk: int | None
    error_message: str | None
    uploaded_by_email: str | None
    processing_started_at: datetime | None
    processing_completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class UploadErrorResponse(BaseSchema):
    """Upload error response schema."""

    id: int
    upload_id: int
    row_number: int | None
    column_name: str | None
    error_type: str
    error_message: str
    raw_value: str | None


class UploadWithDetails(UploadResponse):
    """Upload response with its diagnostic samples."""

    errors: list[UploadErrorResponse] = []


class ProgressEvent(BaseSchema):
    """Checkpoint emitted while an upload runs."""

    percent_complete: float = Field(..., ge=0, le=100)
    status_message: str


class SkipSample(BaseSchema):
    """One offending row kept for troubleshooting."""

    reason: str
    row_number: int | None = None
    column: str | None = None
    value: str | None = None


class UploadResult(BaseSchema):
    """Result of a grade upload run."""

    upload_id: int | None = None
    run_id: str | None = None
    status: UploadStatus
    header_row_index: int | None = None
    total_rows: int = 0
    students_processed: int = 0
    courses_created: int = 0
    grades_processed: int = 0
    skipped_rows: int = 0
    skipped_by_reason: dict[str, int] = {}
    samples: list[SkipSample] = []
    failed_chunk: int | None = None
    progress: list[ProgressEvent] = []
    message: str
