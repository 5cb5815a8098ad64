"""Student endpoints."""

from fastapi import APIRouter, Query

from app.core.database import DbSession
from app.core.dependencies import CurrentPrincipal
from app.schemas.student import PaginatedStudentResponse, StudentDetail, StudentFilter
from app.services.analytics import AnalyticsService
from app.services.student import StudentService

router = APIRouter()


@router.get("", response_model=PaginatedStudentResponse)
def list_students(
    principal: CurrentPrincipal,
    db: DbSession,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    semester: int | None = None,
    batch: str | None = None,
    search: str | None = None,
):
    """List students with filtering and pagination.

    search matches register number or name.
    """
    service = StudentService(db)
    filters = StudentFilter(semester=semester, batch=batch, search=search)
    return service.list_students(filters, page, page_size)


@router.get("/{student_id}", response_model=StudentDetail)
def get_student(
    student_id: int,
    principal: CurrentPrincipal,
    db: DbSession,
):
    """Get a student with stats (credits, GPA) and every course result."""
    return AnalyticsService(db).get_student_detail(student_id)
