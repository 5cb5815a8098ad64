"""Analytics schemas consumed by the dashboard charts."""

from decimal import Decimal

from pydantic import Field

from app.schemas.common import BaseSchema


class AnalyticsFilter(BaseSchema):
    """Filters shared by the analytics queries."""

    semester: int | None = None
    batch: str | None = None
    course_id: int | None = None
    register_number: str | None = None


class CourseStat(BaseSchema):
    """Pass/fail counts of one course."""

    course: str = Field(..., description="'CODE - Name', truncated to 50 characters")
    passed: int = 0
    failed: int = 0
    total: int = 0
    pass_rate: int = Field(default=0, description="Rounded percentage of passed grades (0-100)")


class AnalyticsOverview(BaseSchema):
    """Headline numbers and per-course stats."""

    total_students: int = 0
    total_passed: int = 0
    total_failed: int = 0
    course_stats: list[CourseStat] = []


class CoursePerformance(BaseSchema):
    """Per-course performance row."""

    course_id: int
    course_code: str
    course_name: str
    course_title: str | None
    credits: int | None
    total_students: int = 0
    passed_students: int = 0
    failed_students: int = 0
    pass_percentage: Decimal | None = None
    average_grade_points: Decimal | None = None


class FilterOptions(BaseSchema):
    """Distinct values for the filter dropdowns."""

    batches: list[str] = []
    semesters: list[int] = []


class GradeRecord(BaseSchema):
    """One grade joined with its student and course, for tables and exports."""

    grade_id: int
    student_id: int
    course_id: int
    grade: str
    is_passed: bool
    mode_of_attempt: str
    register_number: str
    student_name: str
    batch: str | None
    semester: int | None
    office_name: str | None
    degree: str | None
    branch_of_study: str | None
    graduation_type: str | None
    course_code: str
    course_name: str
    course_title: str | None
    credits: int | None
