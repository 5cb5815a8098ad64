"""Course endpoints."""

from fastapi import APIRouter

from app.core.database import DbSession
from app.core.dependencies import CurrentPrincipal
from app.schemas.course import CourseDetail, CourseResponse
from app.services.course import CourseService

router = APIRouter()


@router.get("", response_model=list[CourseResponse])
def list_courses(
    principal: CurrentPrincipal,
    db: DbSession,
    search: str | None = None,
):
    """List courses ordered by code."""
    return CourseService(db).list_courses(search)


@router.get("/{course_id}/grades", response_model=CourseDetail)
def get_course_grades(
    course_id: int,
    principal: CurrentPrincipal,
    db: DbSession,
):
    """One course with its result summary and every graded student."""
    return CourseService(db).get_course_grades(course_id)
