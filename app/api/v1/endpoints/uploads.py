"""Upload endpoints for grade spreadsheet processing."""

from io import BytesIO
from typing import Annotated

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import StreamingResponse

from app.core.config import settings
from app.core.database import DbSession
from app.core.dependencies import CurrentPrincipal, get_upload_registry
from app.core.exceptions import NotFoundError, UploadError
from app.models.upload import UploadStatus
from app.schemas.common import MessageResponse, PaginatedResponse
from app.schemas.upload import UploadResult, UploadWithDetails
from app.services.upload import UploadRunRegistry, UploadService

router = APIRouter()


@router.post("/grades", response_model=UploadResult)
def upload_grades(
    principal: CurrentPrincipal,
    db: DbSession,
    registry: Annotated[UploadRunRegistry, Depends(get_upload_registry)],
    file: UploadFile = File(...),
    run_id: str | None = Query(None, max_length=64, description="Client id used to cancel the run"),
):
    """
    Upload student grades from an Excel export.

    - Header row is detected within the first rows of the first sheet
    - Courses and students are created or merged, grades are upserted
    - Rows with missing keys are skipped and reported, not fatal
    - A fatal error stops the run; committed chunks are kept

    Expected columns: S.No, Office Name, Register No, Student Name, Semester,
    Batch, Degree, Branch of Study, Graduation Type, Course Code,
    Course Title, Credits, Grade, Mode Of Attempt
    """
    # Validate file
    if not file.filename:
        raise UploadError("No file provided")

    if not any(file.filename.lower().endswith(ext) for ext in settings.ALLOWED_EXTENSIONS):
        raise UploadError(f"Only {', '.join(settings.ALLOWED_EXTENSIONS)} files are allowed")

    content = file.file.read()
    if len(content) > settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024:
        raise UploadError(f"File size exceeds {settings.MAX_UPLOAD_SIZE_MB}MB limit")

    cancel_token = registry.register(run_id) if run_id else None
    try:
        service = UploadService(db)
        return service.process_grade_upload(
            principal=principal,
            file_content=content,
            file_name=file.filename,
            run_id=run_id,
            cancel_token=cancel_token,
        )
    finally:
        if run_id:
            registry.release(run_id, cancel_token)


@router.post("/runs/{run_id}/cancel", response_model=MessageResponse)
def cancel_upload(
    run_id: str,
    principal: CurrentPrincipal,
    registry: Annotated[UploadRunRegistry, Depends(get_upload_registry)],
):
    """
    Cancel an in-flight upload between chunks.
    Chunks already written stay committed.
    """
    if not registry.cancel(run_id):
        raise NotFoundError("Upload run", run_id)
    return MessageResponse(message=f"Cancellation requested for run {run_id}")


@router.get("/template")
def download_template(
    principal: CurrentPrincipal,
    db: DbSession,
):
    """Download an Excel template with the expected headers."""
    content = UploadService(db).generate_template()
    return StreamingResponse(
        BytesIO(content),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": "attachment; filename=grade_upload_template.xlsx"},
    )


@router.get("", response_model=PaginatedResponse[UploadWithDetails])
def list_uploads(
    principal: CurrentPrincipal,
    db: DbSession,
    status: UploadStatus | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    """
    List upload history with filtering and pagination.
    """
    return UploadService(db).list_uploads(status=status, page=page, page_size=page_size)


@router.get("/{upload_id}", response_model=UploadWithDetails)
def get_upload(
    upload_id: int,
    principal: CurrentPrincipal,
    db: DbSession,
):
    """
    Get upload details by ID with diagnostic samples.
    """
    return UploadService(db).get_upload(upload_id)
