import pytest

from app.core.exceptions import ChunkWriteError, IngestionCancelled, StoreError
from app.services.batching import CancellationToken, chunked, run_in_chunks
from app.services.store import GRADES
from conftest import FakeStore


def _grades(n: int) -> list[dict]:
    return [{"student_id": i, "course_id": 1, "grade": "A", "is_passed": True} for i in range(n)]


def test_chunked_preserves_order():
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_writes_are_issued_in_order_with_bounded_chunks():
    store = FakeStore()
    grades = _grades(1203)

    written = run_in_chunks(grades, 500, lambda chunk: store.upsert(GRADES, chunk, "student_id,course_id"))

    assert written == 1203
    assert store.upsert_sizes(GRADES) == [500, 500, 203]
    assert [g["student_id"] for g in store.tables[GRADES]] == list(range(1203))


def test_failure_stops_at_failing_chunk_and_keeps_earlier_chunks():
    store = FakeStore(fail_on={GRADES: [2]})
    progress = []

    with pytest.raises(ChunkWriteError) as exc:
        run_in_chunks(
            _grades(1203),
            500,
            lambda chunk: store.upsert(GRADES, chunk, "student_id,course_id"),
            label="upserting grades",
            on_chunk=lambda index, done, total: progress.append((index, done, total)),
        )

    assert exc.value.chunk_index == 2
    assert exc.value.chunk_size == 500
    assert exc.value.message == "Error upserting grades batch 2: Simulated failure writing grades"
    assert isinstance(exc.value.cause, StoreError)
    # Chunk 3 was never attempted, chunk 1 stays written
    assert store.upsert_sizes(GRADES) == [500, 500]
    assert len(store.tables[GRADES]) == 500
    assert progress == [(1, 500, 1203)]


def test_cancellation_between_chunks():
    token = CancellationToken()
    handled = []

    def handle(chunk):
        handled.append(len(chunk))
        token.cancel()

    with pytest.raises(IngestionCancelled) as exc:
        run_in_chunks(_grades(1203), 500, handle, cancel_token=token)

    assert handled == [500]
    assert exc.value.completed_chunks == 1
    assert exc.value.message == "Upload cancelled after chunk 1"


def test_cancelled_before_start_writes_nothing():
    token = CancellationToken()
    token.cancel()
    store = FakeStore()

    with pytest.raises(IngestionCancelled):
        run_in_chunks(_grades(10), 5, lambda chunk: store.upsert(GRADES, chunk, "student_id,course_id"), cancel_token=token)

    assert store.calls == []


def test_non_store_errors_propagate_unchanged():
    def handle(chunk):
        raise KeyError("boom")

    with pytest.raises(KeyError):
        run_in_chunks([1, 2], 1, handle)
