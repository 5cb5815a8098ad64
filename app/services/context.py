"""Run-scoped state shared by the ingestion stages."""

import enum
import logging
from collections import Counter
from typing import Any, Callable

from app.schemas.upload import ProgressEvent, SkipSample
from app.services.batching import CancellationToken
from app.services.store import Store

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class SkipReason(str, enum.Enum):
    """Why a row did not produce a grade record."""

    MISSING_STUDENT_KEY = "missing_student_key"
    MISSING_COURSE_CODE = "missing_course_code"
    UNRESOLVED_STUDENT = "unresolved_student"
    UNRESOLVED_COURSE = "unresolved_course"
    EMPTY_GRADE = "empty_grade"
    DUPLICATE_GRADE = "duplicate_grade"
    VALUE_TOO_LONG = "value_too_long"


# Rows carrying this flag are still written
UNRECOGNIZED_GRADE = "unrecognized_grade"


class IngestionStats:
    """Running totals and per-reason diagnostics for one run."""

    def __init__(self, sample_size: int = 5):
        self.sample_size = sample_size
        self.total_rows = 0
        self.students_processed = 0
        self.courses_created = 0
        self.grades_processed = 0
        self.skipped: Counter[str] = Counter()
        self.flagged: Counter[str] = Counter()
        self._samples: dict[str, list[SkipSample]] = {}

    @property
    def skipped_rows(self) -> int:
        return sum(self.skipped.values())

    def _sample(self, reason: str, row_number: int | None, column: str | None, value: Any) -> None:
        bucket = self._samples.setdefault(reason, [])
        if len(bucket) < self.sample_size:
            bucket.append(
                SkipSample(
                    reason=reason,
                    row_number=row_number,
                    column=column,
                    value=None if value is None else str(value),
                )
            )

    def skip(
        self,
        reason: SkipReason,
        row_number: int | None = None,
        column: str | None = None,
        value: Any = None,
    ) -> None:
        """Count a skipped row and keep a small sample of offending values."""
        self.skipped[reason.value] += 1
        self._sample(reason.value, row_number, column, value)

    def flag(self, reason: str, row_number: int | None = None, column: str | None = None, value: Any = None) -> None:
        """Note a row that was kept but needs manual review."""
        self.flagged[reason] += 1
        self._sample(reason, row_number, column, value)

    def samples(self) -> list[SkipSample]:
        return [sample for bucket in self._samples.values() for sample in bucket]


class IngestionContext:
    """Everything one upload run owns: store handle, lookups, totals, progress.

    A fresh context is built per run and passed explicitly between stages,
    so repeated or concurrent runs never share lookup tables.
    """

    def __init__(
        self,
        store: Store,
        progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
        lookup_batch_size: int = 100,
        write_batch_size: int = 500,
        sample_size: int = 5,
    ):
        self.store = store
        self.cancel_token = cancel_token
        self.lookup_batch_size = lookup_batch_size
        self.write_batch_size = write_batch_size
        self.stats = IngestionStats(sample_size)
        self.course_ids: dict[str, int] = {}
        self.student_ids: dict[str, int] = {}
        self.progress_log: list[ProgressEvent] = []
        self._progress = progress
        self._percent = 0.0

    @property
    def percent_complete(self) -> float:
        return self._percent

    def report(self, percent: float, message: str) -> None:
        """Emit a progress checkpoint; percentages never move backwards."""
        self._percent = min(100.0, max(self._percent, float(percent)))
        event = ProgressEvent(percent_complete=round(self._percent, 1), status_message=message)
        self.progress_log.append(event)
        logger.info(f"[GRADE UPLOAD] {event.percent_complete:.0f}% {message}")
        if self._progress is not None:
            self._progress(event)
