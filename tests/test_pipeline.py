import pytest

from app.core.exceptions import ConflictError
from app.models.upload import UploadStatus
from app.services.batching import CancellationToken
from app.services.store import COURSES, GRADES, STUDENTS
from app.services.upload import GradeIngestion, UploadRunRegistry
from conftest import FakeStore, build_workbook, grade_row


def _three_row_file() -> bytes:
    return build_workbook([
        grade_row("R1", "Alice", "21CSC204J", "A+"),
        grade_row("R1", "Alice", "21CSC205P", "F"),
        grade_row("", "", "21CSC206T", "O"),
    ])


def _counts(store: FakeStore) -> tuple[int, int, int]:
    return len(store.tables[STUDENTS]), len(store.tables[COURSES]), len(store.tables[GRADES])


def test_end_to_end_three_rows():
    store = FakeStore()

    outcome = GradeIngestion(store).run(_three_row_file())
    result = outcome.to_result()

    assert result.status == UploadStatus.SUCCESS
    assert _counts(store) == (1, 2, 2)
    assert [g["is_passed"] for g in store.tables[GRADES]] == [True, False]
    assert [c["code"] for c in store.tables[COURSES]] == ["21CSC204J", "21CSC205P"]
    assert result.skipped_rows == 1
    assert result.skipped_by_reason == {"missing_student_key": 1}
    assert result.samples[0].row_number == 4
    assert result.total_rows == 3
    assert result.students_processed == 1
    assert result.courses_created == 2
    assert result.grades_processed == 2
    assert result.header_row_index == 0
    assert result.message == "Successfully processed 1 students and 2 grades"


def test_grade_records_carry_attempt_mode():
    store = FakeStore()
    content = build_workbook([
        grade_row("R1", "Alice", "21CSC204J", "A", mode_of_attempt="Arrear"),
        grade_row("R2", "Bob", "21CSC204J", "B"),
    ])

    GradeIngestion(store).run(content)

    assert [g["mode_of_attempt"] for g in store.tables[GRADES]] == ["Arrear", "Regular"]


def test_student_attributes_are_parsed():
    store = FakeStore()
    content = build_workbook([
        grade_row("RA2111003010001", " Alice ", "21CSC204J", "A", semester=5, batch=2021, degree="B.Tech"),
    ])

    GradeIngestion(store).run(content)

    [student] = store.tables[STUDENTS]
    assert student["register_number"] == "RA2111003010001"
    assert student["name"] == "Alice"
    assert student["semester"] == 5
    assert student["batch"] == "2021"
    assert student["degree"] == "B.Tech"


def test_reingesting_same_file_creates_no_duplicates():
    store = FakeStore()
    content = _three_row_file()

    first = GradeIngestion(store).run(content)
    counts = _counts(store)
    second = GradeIngestion(store).run(content)

    assert _counts(store) == counts == (1, 2, 2)
    assert first.context.stats.courses_created == 2
    assert second.context.stats.courses_created == 0
    assert second.status == UploadStatus.SUCCESS


def test_progress_is_monotonic_and_finishes_at_100():
    events = []
    GradeIngestion(FakeStore(), progress=events.append).run(_three_row_file())

    percents = [e.percent_complete for e in events]
    assert percents == sorted(percents)
    assert percents[0] == 0
    assert percents[-1] == 100
    assert events[-1].status_message == "Successfully processed 1 students and 2 grades"


def test_duplicate_rows_keep_last_grade():
    store = FakeStore()
    content = build_workbook([
        grade_row("R1", "Alice", "21CSC204J", "F"),
        grade_row("R1", "Alice", "21csc204j", "A"),
    ])

    result = GradeIngestion(store).run(content).to_result()

    [grade] = store.tables[GRADES]
    assert grade["grade"] == "A"
    assert grade["is_passed"] is True
    assert result.skipped_by_reason == {"duplicate_grade": 1}
    assert result.samples[0].row_number == 2
    assert result.grades_processed == 1


def test_empty_grade_and_missing_course_are_skipped():
    store = FakeStore()
    content = build_workbook([
        grade_row("R1", "Alice", "21CSC204J", None),
        grade_row("R1", "Alice", None, "A"),
        grade_row("R1", "Alice", "21CSC205P", "B"),
    ])

    result = GradeIngestion(store).run(content).to_result()

    assert result.status == UploadStatus.SUCCESS
    assert result.skipped_by_reason == {"empty_grade": 1, "missing_course_code": 1}
    assert result.grades_processed == 1


def test_unrecognized_grade_is_written_and_flagged():
    store = FakeStore()
    content = build_workbook([grade_row("R1", "Alice", "21CSC204J", "P")])

    result = GradeIngestion(store).run(content).to_result()

    [grade] = store.tables[GRADES]
    assert grade["grade"] == "P"
    assert grade["is_passed"] is True
    assert result.skipped_rows == 0
    assert [s.reason for s in result.samples] == ["unrecognized_grade"]


def test_missing_required_column_stops_before_any_write():
    store = FakeStore()
    headers = [h for h in grade_row() if h != "Grade"] + ["Semester", "Batch", "Degree"]
    content = build_workbook([grade_row()], headers=headers)

    outcome = GradeIngestion(store, header_match_threshold=3).run(content)

    assert outcome.status == UploadStatus.FAILED
    assert outcome.message.startswith("Error: Missing required columns: Grade")
    assert store.calls == []


def test_unreadable_file_fails():
    outcome = GradeIngestion(FakeStore()).run(b"garbage")
    assert outcome.status == UploadStatus.FAILED
    assert outcome.message.startswith("Error: Failed to read Excel file")


def _bulk_file(n: int) -> bytes:
    return build_workbook([grade_row(f"R{i:05d}", f"Student {i}", "21CSC204J", "A") for i in range(n)])


def test_bulk_grades_are_written_in_three_chunks():
    store = FakeStore()

    result = GradeIngestion(store).run(_bulk_file(1203)).to_result()

    assert result.status == UploadStatus.SUCCESS
    assert store.upsert_sizes(GRADES) == [500, 500, 203]
    assert store.upsert_sizes(STUDENTS) == [500, 500, 203]
    # Student ids are looked up 100 at a time
    assert len([c for c in store.calls if c[:2] == ("select", STUDENTS)]) == 13
    assert result.grades_processed == 1203


def test_failed_grade_chunk_reports_index_and_keeps_committed_chunk():
    store = FakeStore(fail_on={GRADES: [2]})

    outcome = GradeIngestion(store).run(_bulk_file(1203))
    result = outcome.to_result()

    assert result.status == UploadStatus.FAILED
    assert result.failed_chunk == 2
    assert result.grades_processed == 500
    assert result.students_processed == 1203
    assert result.message == "Error: Error upserting grades batch 2: Simulated failure writing grades"
    assert store.upsert_sizes(GRADES) == [500, 500]
    assert len(store.tables[GRADES]) == 500


def test_cancel_after_first_grade_chunk_is_partial():
    token = CancellationToken()

    def on_progress(event):
        if event.status_message.startswith("Saving grades... "):
            token.cancel()

    store = FakeStore()
    result = GradeIngestion(store, progress=on_progress, cancel_token=token).run(_bulk_file(1203)).to_result()

    assert result.status == UploadStatus.PARTIAL
    assert result.grades_processed == 500
    assert len(store.tables[GRADES]) == 500
    assert result.message == "Error: Upload cancelled after chunk 1"


def test_runs_do_not_share_lookups():
    store = FakeStore()
    first = GradeIngestion(store).run(build_workbook([grade_row("R1", "Alice", "21CSC204J", "A")]))
    second = GradeIngestion(store).run(build_workbook([grade_row("R2", "Bob", "21CSC205P", "B")]))

    assert set(first.context.student_ids) == {"R1"}
    assert set(second.context.student_ids) == {"R2"}
    assert set(second.context.course_ids) == {"21CSC205P"}


def test_out_of_range_semester_and_credits_are_stored_empty():
    store = FakeStore()
    content = build_workbook([
        grade_row("R1", "Alice", "C1", "A", semester="Infinity", credits="1e30"),
        grade_row("R2", "Bob", "C2", "A", semester=99999999999, credits=100),
        grade_row("R3", "Cara", "C3", "A", semester=0, credits="NaN"),
        grade_row("R4", "Dev", "C4", "A", semester=8, credits=4),
    ])

    result = GradeIngestion(store).run(content).to_result()

    assert result.status == UploadStatus.SUCCESS
    assert [s["semester"] for s in store.tables[STUDENTS]] == [None, None, None, 8]
    assert [c["credits"] for c in store.tables[COURSES]] == [None, None, None, 4]
    assert result.grades_processed == 4


def test_overlong_keys_are_skipped():
    store = FakeStore()
    content = build_workbook([
        grade_row("R" * 51, "Alice", "C1", "A"),
        grade_row("R2", "Bob", "C" * 51, "A"),
        grade_row("R3", "Cara", "C1", "X" * 21),
        grade_row("R4", "Dev", "C1", "A"),
    ])

    result = GradeIngestion(store).run(content).to_result()

    assert result.status == UploadStatus.SUCCESS
    assert result.skipped_by_reason == {"value_too_long": 3}
    assert [(s.row_number, s.column) for s in result.samples] == [
        (2, "Register No"),
        (3, "Course Code"),
        (4, "Grade"),
    ]
    assert [s["register_number"] for s in store.tables[STUDENTS]] == ["R4"]
    assert [c["code"] for c in store.tables[COURSES]] == ["C1"]
    assert result.grades_processed == 1


def test_long_descriptive_text_is_clipped_to_column_size():
    store = FakeStore()
    content = build_workbook([
        grade_row("R1", "N" * 300, "C1", "A", batch="B" * 60, course_title="T" * 300, mode_of_attempt="M" * 60),
    ])

    result = GradeIngestion(store).run(content).to_result()

    assert result.status == UploadStatus.SUCCESS
    [student] = store.tables[STUDENTS]
    assert (len(student["name"]), len(student["batch"])) == (255, 50)
    [course] = store.tables[COURSES]
    assert (len(course["name"]), len(course["title"])) == (255, 255)
    [grade] = store.tables[GRADES]
    assert grade["mode_of_attempt"] == "M" * 50


def test_registry_keeps_run_ids_exclusive():
    registry = UploadRunRegistry()
    token = registry.register("run-1")

    with pytest.raises(ConflictError):
        registry.register("run-1")

    # A stale token cannot release the live run
    registry.release("run-1", CancellationToken())
    assert registry.cancel("run-1")
    assert token.cancelled

    registry.release("run-1", token)
    assert not registry.cancel("run-1")
    assert registry.register("run-1") is not token
