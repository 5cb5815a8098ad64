import pytest
from sqlalchemy import func, select

from app.core.exceptions import StoreError, StoreForbiddenError
from app.models.course import Course
from app.models.grade import Grade
from app.models.student import Student
from app.models.upload import Upload, UploadStatus
from app.services.store import (
    COURSES,
    GRADES,
    STUDENTS,
    SqlAlchemyStore,
    clip_to_columns,
    column_length,
    conflict_columns,
)
from app.services.upload import UploadService
from conftest import FakeStore, build_workbook, grade_row


def _count(db, model) -> int:
    return db.execute(select(func.count()).select_from(model)).scalar()


def test_conflict_columns():
    assert conflict_columns("student_id, course_id") == ["student_id", "course_id"]
    assert conflict_columns(["code"]) == ["code"]


def test_upsert_merges_on_conflict_key(db_session, principal):
    store = SqlAlchemyStore(db_session, principal)
    store.upsert(STUDENTS, [{"register_number": "R1", "name": "Alice", "semester": 3}], "register_number")
    store.upsert(STUDENTS, [{"register_number": "R1", "name": "Alice B", "semester": 4}], "register_number")

    rows = store.select(STUDENTS, {"register_number": "R1"}, ["register_number", "name", "semester"])
    assert rows == [{"register_number": "R1", "name": "Alice B", "semester": 4}]


def test_upsert_ignore_duplicates_keeps_existing(db_session, principal):
    store = SqlAlchemyStore(db_session, principal)
    store.upsert(COURSES, [{"code": "21CSC204J", "name": "DAA"}], "code", ignore_duplicates=True)
    store.upsert(COURSES, [{"code": "21CSC204J", "name": "Other"}], "code", ignore_duplicates=True)

    assert store.select(COURSES, columns=["code", "name"]) == [{"code": "21CSC204J", "name": "DAA"}]


def test_select_membership_filter(db_session, principal):
    store = SqlAlchemyStore(db_session, principal)
    store.upsert(
        STUDENTS,
        [{"register_number": f"R{i}", "name": f"S{i}"} for i in range(5)],
        "register_number",
    )

    rows = store.select(STUDENTS, {"register_number": ["R1", "R3", "R9"]}, ["register_number"])
    assert sorted(r["register_number"] for r in rows) == ["R1", "R3"]
    assert store.select(STUDENTS, {"register_number": []}) == []


def test_composite_conflict_key(db_session, principal):
    store = SqlAlchemyStore(db_session, principal)
    store.upsert(STUDENTS, [{"register_number": "R1", "name": "Alice"}], "register_number")
    store.upsert(COURSES, [{"code": "C1", "name": "C1"}], "code")
    student_id = store.select(STUDENTS, columns=["id"])[0]["id"]
    course_id = store.select(COURSES, columns=["id"])[0]["id"]

    for grade in ("F", "A"):
        store.upsert(
            GRADES,
            [{"student_id": student_id, "course_id": course_id, "grade": grade, "is_passed": grade == "A"}],
            "student_id,course_id",
        )

    assert store.select(GRADES, columns=["grade", "is_passed"]) == [{"grade": "A", "is_passed": True}]


def test_non_institutional_principal_is_denied(db_session, outsider):
    store = SqlAlchemyStore(db_session, outsider)
    with pytest.raises(StoreForbiddenError) as exc:
        store.select(COURSES)
    assert exc.value.operation == "select"

    with pytest.raises(StoreForbiddenError):
        store.upsert(COURSES, [{"code": "C1", "name": "C1"}], "code")


def test_unknown_table(db_session, principal):
    with pytest.raises(StoreError, match="Unknown table"):
        SqlAlchemyStore(db_session, principal).select("users")


def test_constraint_violation_becomes_store_error(db_session, principal):
    store = SqlAlchemyStore(db_session, principal)
    with pytest.raises(StoreError, match="Error writing courses"):
        store.upsert(COURSES, [{"code": "C1", "name": None}], "code")
    # Session is usable after the rollback
    assert store.select(COURSES) == []


def test_upload_service_records_run(db_session, principal):
    content = build_workbook([
        grade_row("R1", "Alice", "21CSC204J", "A+", course_title="DAA", credits=4),
        grade_row("R1", "Alice", "21CSC205P", "F"),
        grade_row("", "", "21CSC206T", "O"),
    ])

    result = UploadService(db_session).process_grade_upload(
        principal=principal,
        file_content=content,
        file_name="grades.xlsx",
        run_id="run-1",
    )

    assert result.status == UploadStatus.SUCCESS
    assert (_count(db_session, Student), _count(db_session, Course), _count(db_session, Grade)) == (1, 2, 2)

    upload = db_session.get(Upload, result.upload_id)
    assert upload.status == UploadStatus.SUCCESS
    assert upload.run_id == "run-1"
    assert upload.grades_processed == 2
    assert upload.skipped_rows == 1
    assert upload.uploaded_by_email == principal.email
    assert [e.error_type for e in upload.errors] == ["missing_student_key"]
    assert upload.errors[0].row_number == 4

    details = UploadService(db_session).get_upload(result.upload_id)
    assert details.errors[0].error_message == "Register number or student name is empty"


def test_upload_service_reingest_is_idempotent(db_session, principal):
    content = build_workbook([
        grade_row("R1", "Alice", "21CSC204J", "A+"),
        grade_row("R1", "Alice", "21CSC205P", "F"),
    ])
    service = UploadService(db_session)

    service.process_grade_upload(principal=principal, file_content=content, file_name="a.xlsx")
    second = service.process_grade_upload(principal=principal, file_content=content, file_name="a.xlsx")

    assert second.status == UploadStatus.SUCCESS
    assert second.courses_created == 0
    assert (_count(db_session, Student), _count(db_session, Course), _count(db_session, Grade)) == (1, 2, 2)
    assert service.list_uploads().total == 2


def test_upload_service_denies_outsider(db_session, outsider):
    content = build_workbook([grade_row()])

    result = UploadService(db_session).process_grade_upload(
        principal=outsider,
        file_content=content,
        file_name="grades.xlsx",
    )

    assert result.status == UploadStatus.FAILED
    assert result.message.startswith("Error: Permission denied")
    assert _count(db_session, Course) == 0
    assert db_session.get(Upload, result.upload_id).status == UploadStatus.FAILED


class ExplodingStore(FakeStore):
    def select(self, table, filters=None, columns=None):
        raise RuntimeError("connection reset")


def test_upload_service_marks_run_failed_on_unexpected_error(db_session, principal):
    content = build_workbook([grade_row()])

    with pytest.raises(RuntimeError, match="connection reset"):
        UploadService(db_session).process_grade_upload(
            principal=principal,
            file_content=content,
            file_name="grades.xlsx",
            store=ExplodingStore(),
        )

    [upload] = db_session.execute(select(Upload)).scalars().all()
    assert upload.status == UploadStatus.FAILED
    assert upload.processing_completed_at is not None
    assert upload.error_message == "Unexpected error: connection reset"


def test_upload_service_stores_out_of_range_credits_as_null(db_session, principal):
    content = build_workbook([grade_row("R1", "Alice", "C1", "A", credits="1e30", semester="Infinity")])

    result = UploadService(db_session).process_grade_upload(
        principal=principal,
        file_content=content,
        file_name="grades.xlsx",
    )

    assert result.status == UploadStatus.SUCCESS
    assert db_session.execute(select(Course.credits)).scalar_one() is None
    assert db_session.execute(select(Student.semester)).scalar_one() is None


def test_upload_service_skips_overlong_grade_and_clips_batch(db_session, principal):
    content = build_workbook([
        grade_row("R1", "Alice", "C1", "X" * 25),
        grade_row("R2", "Bob", "C1", "A", batch="B" * 80),
    ])

    result = UploadService(db_session).process_grade_upload(
        principal=principal,
        file_content=content,
        file_name="grades.xlsx",
    )

    assert result.status == UploadStatus.SUCCESS
    assert result.skipped_by_reason == {"value_too_long": 1}
    assert db_session.execute(select(Student.batch)).scalar_one() == "B" * 50
    upload = db_session.get(Upload, result.upload_id)
    assert upload.errors[0].error_message == "Register number, course code or grade is too long to store"


def test_column_length():
    assert column_length(GRADES, "grade") == 20
    assert column_length(STUDENTS, "semester") is None
    assert clip_to_columns(STUDENTS, {"batch": "x" * 60, "semester": 3}) == {"batch": "x" * 50, "semester": 3}
