"""Course schemas."""

from datetime import datetime

from pydantic import Field

from app.schemas.common import BaseSchema


class CourseResponse(BaseSchema):
    """Course response schema."""

    id: int
    code: str
    name: str
    title: str | None
    credits: int | None
    graded_students: int = 0
    created_at: datetime
    updated_at: datetime


class CourseGradeEntry(BaseSchema):
    """A graded student of one course."""

    student_id: int
    register_number: str
    name: str
    semester: int | None
    batch: str | None
    degree: str | None
    office_name: str | None
    branch_of_study: str | None
    graduation_type: str | None
    grade: str
    is_passed: bool
    mode_of_attempt: str


class CourseDetail(CourseResponse):
    """One course with its result summary and graded students."""

    total_students: int = 0
    passed: int = 0
    failed: int = 0
    pass_rate: int = Field(default=0, description="Rounded percentage of passed grades (0-100)")
    arrear_count: int = 0
    regular_count: int = 0
    grades: list[CourseGradeEntry] = []
