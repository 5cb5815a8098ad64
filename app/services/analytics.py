"""Pass/fail analytics for the dashboard."""

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Select, case, func, select
from sqlalchemy.orm import Session

from app.models.course import Course
from app.models.grade import Grade
from app.models.student import Student
from app.schemas.analytics import (
    AnalyticsFilter,
    AnalyticsOverview,
    CoursePerformance,
    CourseStat,
    FilterOptions,
    GradeRecord,
)
from app.schemas.student import StudentDetail, StudentGradeEntry, StudentResponse, StudentStats
from app.services.grading import GRADE_POINTS, grade_points
from app.services.student import StudentService

COURSE_LABEL_MAX = 50
TWO_PLACES = Decimal("0.01")


def course_label(code: str, name: str) -> str:
    """'CODE - Name', shortened to fit chart axes."""
    label = f"{code} - {name}"
    if len(label) > COURSE_LABEL_MAX:
        return label[:COURSE_LABEL_MAX - 3] + "..."
    return label


def percentage(part: int, whole: int) -> Decimal | None:
    if not whole:
        return None
    return (Decimal(part) * 100 / Decimal(whole)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def rounded_percentage(part: int, whole: int) -> int:
    """Whole-number percentage rounded half up, 0 when there is nothing to count."""
    if not whole:
        return 0
    return int((Decimal(part) * 100 / Decimal(whole)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def compute_gpa(results: list[tuple[str, int | None]]) -> Decimal:
    """Credit-weighted grade points over (grade, credits) pairs.

    Grades outside the point scale and courses without credits are left out;
    0.00 when nothing is left.
    """
    total_points = Decimal(0)
    total_credits = 0
    for grade, credits in results:
        points = grade_points(grade)
        if points is None or not credits:
            continue
        total_points += points * credits
        total_credits += credits
    if total_credits == 0:
        return Decimal("0.00")
    return (total_points / total_credits).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


class AnalyticsService:
    """Aggregations over grades, students and courses."""

    def __init__(self, db: Session):
        self.db = db

    def _apply_student_filters(self, query: Select, filters: AnalyticsFilter) -> Select:
        if filters.semester is not None:
            query = query.where(Student.semester == filters.semester)
        if filters.batch:
            query = query.where(Student.batch == filters.batch)
        if filters.register_number:
            query = query.where(Student.register_number.ilike(f"%{filters.register_number}%"))
        return query

    def get_overview(self, filters: AnalyticsFilter | None = None) -> AnalyticsOverview:
        """
        Pass/fail totals and per-course stats.

        total_students counts the students table under the same student
        filters, not only students that have grades.
        """
        filters = filters or AnalyticsFilter()
        passed_expr = func.sum(case((Grade.is_passed.is_(True), 1), else_=0))

        query = (
            select(
                Course.code,
                Course.name,
                func.count(Grade.id).label("total"),
                passed_expr.label("passed"),
            )
            .select_from(Grade)
            .join(Student, Grade.student_id == Student.id)
            .join(Course, Grade.course_id == Course.id)
            .group_by(Course.id, Course.code, Course.name)
            .order_by(Course.code)
        )
        query = self._apply_student_filters(query, filters)
        if filters.course_id is not None:
            query = query.where(Course.id == filters.course_id)

        course_stats = []
        total_passed = 0
        total_failed = 0
        for code, name, total, passed in self.db.execute(query).all():
            passed = int(passed or 0)
            failed = total - passed
            total_passed += passed
            total_failed += failed
            course_stats.append(
                CourseStat(
                    course=course_label(code, name),
                    passed=passed,
                    failed=failed,
                    total=total,
                    pass_rate=rounded_percentage(passed, total),
                )
            )
        course_stats.sort(key=lambda s: s.pass_rate, reverse=True)

        count_query = self._apply_student_filters(select(func.count(Student.id)), filters)
        total_students = self.db.execute(count_query).scalar() or 0

        return AnalyticsOverview(
            total_students=total_students,
            total_passed=total_passed,
            total_failed=total_failed,
            course_stats=course_stats,
        )

    def get_course_performance(self, filters: AnalyticsFilter | None = None) -> list[CoursePerformance]:
        """Per-course totals, pass percentage and average grade points."""
        filters = filters or AnalyticsFilter()
        points_expr = case(
            *[(Grade.grade == token, float(points)) for token, points in GRADE_POINTS.items()],
            else_=None,
        )
        query = (
            select(
                Course,
                func.count(Grade.id).label("total"),
                func.sum(case((Grade.is_passed.is_(True), 1), else_=0)).label("passed"),
                func.avg(points_expr).label("avg_points"),
            )
            .outerjoin(Grade, Grade.course_id == Course.id)
            .outerjoin(Student, Grade.student_id == Student.id)
            .group_by(Course.id)
            .order_by(Course.code)
        )
        query = self._apply_student_filters(query, filters)
        if filters.course_id is not None:
            query = query.where(Course.id == filters.course_id)

        rows = []
        for course, total, passed, avg_points in self.db.execute(query).all():
            passed = int(passed or 0)
            rows.append(
                CoursePerformance(
                    course_id=course.id,
                    course_code=course.code,
                    course_name=course.name,
                    course_title=course.title,
                    credits=course.credits,
                    total_students=total,
                    passed_students=passed,
                    failed_students=total - passed,
                    pass_percentage=percentage(passed, total),
                    average_grade_points=(
                        Decimal(str(avg_points)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
                        if avg_points is not None
                        else None
                    ),
                )
            )
        return rows

    def get_filtered_grades(self, filters: AnalyticsFilter | None = None) -> list[GradeRecord]:
        """Grades joined with student and course, ordered by student name then course code."""
        filters = filters or AnalyticsFilter()
        query = (
            select(Grade, Student, Course)
            .join(Student, Grade.student_id == Student.id)
            .join(Course, Grade.course_id == Course.id)
            .order_by(Student.name, Course.code)
        )
        query = self._apply_student_filters(query, filters)
        if filters.course_id is not None:
            query = query.where(Course.id == filters.course_id)

        return [
            GradeRecord(
                grade_id=grade.id,
                student_id=student.id,
                course_id=course.id,
                grade=grade.grade,
                is_passed=grade.is_passed,
                mode_of_attempt=grade.mode_of_attempt,
                register_number=student.register_number,
                student_name=student.name,
                batch=student.batch,
                semester=student.semester,
                office_name=student.office_name,
                degree=student.degree,
                branch_of_study=student.branch_of_study,
                graduation_type=student.graduation_type,
                course_code=course.code,
                course_name=course.name,
                course_title=course.title,
                credits=course.credits,
            )
            for grade, student, course in self.db.execute(query).all()
        ]

    def get_student_stats(self, student_id: int) -> StudentStats:
        """Course counts, credits and GPA of one student."""
        student = StudentService(self.db).get_student(student_id)
        results = self.db.execute(
            select(Grade.grade, Grade.is_passed, Course.credits)
            .join(Course, Grade.course_id == Course.id)
            .where(Grade.student_id == student.id)
        ).all()

        passed = [r for r in results if r.is_passed]
        return StudentStats(
            total_courses=len(results),
            passed_courses=len(passed),
            failed_courses=len(results) - len(passed),
            total_credits=sum(r.credits or 0 for r in results),
            earned_credits=sum(r.credits or 0 for r in passed),
            gpa=compute_gpa([(r.grade, r.credits) for r in results]),
            current_semester=student.semester,
        )

    def get_student_detail(self, student_id: int) -> StudentDetail:
        """Student profile with stats and every course result."""
        student = StudentService(self.db).get_student(student_id)
        grades = sorted(student.grades, key=lambda g: g.course.code)
        return StudentDetail(
            **StudentResponse.model_validate(student).model_dump(),
            stats=self.get_student_stats(student_id),
            grades=[
                StudentGradeEntry(
                    course_id=g.course.id,
                    course_code=g.course.code,
                    course_name=g.course.name,
                    credits=g.course.credits,
                    grade=g.grade,
                    is_passed=g.is_passed,
                    mode_of_attempt=g.mode_of_attempt,
                )
                for g in grades
            ],
        )

    def get_filter_options(self) -> FilterOptions:
        """Distinct batches and semesters present in the students table."""
        batches = self.db.execute(
            select(Student.batch).where(Student.batch.is_not(None)).distinct().order_by(Student.batch)
        ).scalars().all()
        semesters = self.db.execute(
            select(Student.semester).where(Student.semester.is_not(None)).distinct().order_by(Student.semester)
        ).scalars().all()
        return FilterOptions(batches=list(batches), semesters=list(semesters))
