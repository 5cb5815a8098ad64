"""Student schemas."""

from datetime import datetime
from decimal import Decimal

from app.schemas.common import BaseSchema, PaginatedResponse


class StudentResponse(BaseSchema):
    """Student response schema."""

    id: int
    register_number: str
    name: str
    semester: int | None
    batch: str | None
    degree: str | None
    office_name: str | None
    branch_of_study: str | None
    graduation_type: str | None
    created_at: datetime
    updated_at: datetime


class StudentStats(BaseSchema):
    """Aggregate results of one student."""

    total_courses: int = 0
    passed_courses: int = 0
    failed_courses: int = 0
    total_credits: int = 0
    earned_credits: int = 0
    gpa: Decimal = Decimal("0.00")
    current_semester: int | None = None


class StudentGradeEntry(BaseSchema):
    """One course result of a student."""

    course_id: int
    course_code: str
    course_name: str
    credits: int | None
    grade: str
    is_passed: bool
    mode_of_attempt: str


class StudentDetail(StudentResponse):
    """Student with stats and all course results."""

    stats: StudentStats
    grades: list[StudentGradeEntry] = []


class StudentFilter(BaseSchema):
    """Student filter options."""

    semester: int | None = None
    batch: str | None = None
    search: str | None = None  # Register number or name


class PaginatedStudentResponse(PaginatedResponse):
    """Paginated student list."""

    items: list[StudentResponse]
