"""Analytics endpoints feeding the dashboard charts."""

from fastapi import APIRouter

from app.core.database import DbSession
from app.core.dependencies import CurrentPrincipal
from app.schemas.analytics import (
    AnalyticsFilter,
    AnalyticsOverview,
    CoursePerformance,
    FilterOptions,
    GradeRecord,
)
from app.services.analytics import AnalyticsService

router = APIRouter()


@router.get("/overview", response_model=AnalyticsOverview)
def get_overview(
    principal: CurrentPrincipal,
    db: DbSession,
    semester: int | None = None,
    batch: str | None = None,
    course_id: int | None = None,
    register_number: str | None = None,
):
    """
    Pass/fail totals and per-course stats, sorted by pass rate.
    """
    filters = AnalyticsFilter(
        semester=semester,
        batch=batch,
        course_id=course_id,
        register_number=register_number,
    )
    return AnalyticsService(db).get_overview(filters)


@router.get("/courses", response_model=list[CoursePerformance])
def get_course_performance(
    principal: CurrentPrincipal,
    db: DbSession,
    semester: int | None = None,
    batch: str | None = None,
    course_id: int | None = None,
):
    """Per-course pass percentage and average grade points."""
    filters = AnalyticsFilter(semester=semester, batch=batch, course_id=course_id)
    return AnalyticsService(db).get_course_performance(filters)


@router.get("/grades", response_model=list[GradeRecord])
def get_filtered_grades(
    principal: CurrentPrincipal,
    db: DbSession,
    semester: int | None = None,
    batch: str | None = None,
    course_id: int | None = None,
    register_number: str | None = None,
):
    """Grade records with student and course columns, for tables and exports."""
    filters = AnalyticsFilter(
        semester=semester,
        batch=batch,
        course_id=course_id,
        register_number=register_number,
    )
    return AnalyticsService(db).get_filtered_grades(filters)


@router.get("/filters", response_model=FilterOptions)
def get_filter_options(
    principal: CurrentPrincipal,
    db: DbSession,
):
    """Distinct batches and semesters for the filter dropdowns."""
    return AnalyticsService(db).get_filter_options()
