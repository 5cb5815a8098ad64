"""Spreadsheet reading, header detection and column resolution."""

import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Sequence

from openpyxl import load_workbook

from app.core.exceptions import MissingColumnsError, SheetFormatError

logger = logging.getLogger(__name__)


# Canonical column labels of the grade export
SERIAL_NO = "S.No"
OFFICE_NAME = "Office Name"
REGISTER_NO = "Register No"
STUDENT_NAME = "Student Name"
SEMESTER = "Semester"
BATCH = "Batch"
DEGREE = "Degree"
BRANCH_OF_STUDY = "Branch of Study"
GRADUATION_TYPE = "Graduation Type"
COURSE_CODE = "Course Code"
COURSE_TITLE = "Course Title"
CREDITS = "Credits"
GRADE = "Grade"
MODE_OF_ATTEMPT = "Mode Of Attempt"

EXPECTED_HEADERS: tuple[str, ...] = (
    SERIAL_NO,
    OFFICE_NAME,
    REGISTER_NO,
    STUDENT_NAME,
    SEMESTER,
    BATCH,
    DEGREE,
    BRANCH_OF_STUDY,
    GRADUATION_TYPE,
    COURSE_CODE,
    COURSE_TITLE,
    CREDITS,
    GRADE,
    MODE_OF_ATTEMPT,
)

REQUIRED_HEADERS: tuple[str, ...] = (REGISTER_NO, STUDENT_NAME, COURSE_CODE, GRADE)

DEFAULT_SCAN_ROWS = 10
DEFAULT_MATCH_THRESHOLD = 6


def normalize_label(value: Any) -> str:
    """Trim and lower-case a header label; None becomes ''."""
    if value is None:
        return ""
    return str(value).strip().lower()


def header_matches(raw: Any, canonical: str) -> bool:
    """A raw header matches a canonical label after trimming and lower-casing."""
    normalized = normalize_label(raw)
    return bool(normalized) and normalized == normalize_label(canonical)


def resolve_field(record: dict[str, Any], canonical: str) -> Any | None:
    """Look up a value by canonical label in a header-keyed record.

    The first key matching the label (case and surrounding whitespace
    ignored) wins. Returns None when no key matches.
    """
    for key, value in record.items():
        if header_matches(key, canonical):
            return value
    return None


def score_header_row(row: Sequence[Any], expected: Sequence[str]) -> int:
    """Count how many expected labels appear among the row's non-empty cells."""
    present = {normalize_label(cell) for cell in row if normalize_label(cell)}
    return sum(1 for label in {normalize_label(e) for e in expected} if label in present)


def resolve_header_row(
    grid: Sequence[Sequence[Any]],
    expected: Sequence[str] = EXPECTED_HEADERS,
    scan_rows: int = DEFAULT_SCAN_ROWS,
    threshold: int = DEFAULT_MATCH_THRESHOLD,
) -> int:
    """Find the header row among the first ``scan_rows`` rows of the grid.

    The first row whose score reaches ``threshold`` wins; when none does,
    row 0 is assumed so that title-less sheets still work.
    """
    last_row = min(scan_rows, len(grid))
    for index in range(last_row):
        score = score_header_row(grid[index], expected)
        logger.debug(f"[SHEET PARSE] Row {index} header score: {score}")
        if score >= threshold:
            return index
    logger.info(f"[SHEET PARSE] No row scored {threshold}+ in first {last_row} rows, using row 0")
    return 0


class ColumnMap:
    """Canonical label -> column index, built once per run from the header row."""

    def __init__(self, headers: Sequence[Any], canonical: Sequence[str] = EXPECTED_HEADERS):
        self.headers = [str(h).strip() if h is not None else "" for h in headers]
        positions: dict[Any, int] = {}
        for position, raw in enumerate(headers):
            if raw is not None:
                positions.setdefault(raw, position)
        self._index: dict[str, int] = {}
        for label in canonical:
            position = resolve_field(positions, label)
            if position is not None:
                self._index[label] = position

    def __contains__(self, canonical: str) -> bool:
        return canonical in self._index

    @property
    def resolved(self) -> dict[str, int]:
        return dict(self._index)

    def missing(self, required: Sequence[str] = REQUIRED_HEADERS) -> list[str]:
        return [label for label in required if label not in self._index]

    def validate(self, required: Sequence[str] = REQUIRED_HEADERS) -> None:
        """Fail fast, before any row is processed, when a required column is absent."""
        missing = self.missing(required)
        if missing:
            raise MissingColumnsError(missing, [h for h in self.headers if h])

    def resolve(self, row: Sequence[Any], canonical: str) -> Any | None:
        position = self._index.get(canonical)
        if position is None or position >= len(row):
            return None
        return row[position]

    def text(self, row: Sequence[Any], canonical: str) -> str:
        """Resolved cell as trimmed text ('' when empty)."""
        value = self.resolve(row, canonical)
        if value is None:
            return ""
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value).strip()


@dataclass
class SheetRow:
    """A data row with its 1-based spreadsheet row number."""

    row_number: int
    values: tuple[Any, ...]


@dataclass
class ParsedSheet:
    header_row_index: int
    columns: ColumnMap
    rows: list[SheetRow] = field(default_factory=list)
    empty_rows: int = 0


def load_grid(file_content: bytes) -> list[tuple[Any, ...]]:
    """Read the first worksheet into a list of value tuples."""
    try:
        workbook = load_workbook(filename=BytesIO(file_content), read_only=True, data_only=True)
    except Exception as e:
        raise SheetFormatError(f"Failed to read Excel file: {str(e)}")

    try:
        if not workbook.worksheets:
            raise SheetFormatError("Excel file has no worksheets")
        sheet = workbook.worksheets[0]
        # The stored <dimension> may be stale or truncated
        sheet.reset_dimensions()
        grid = [tuple(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()

    logger.debug(f"[SHEET PARSE] Total raw rows in first sheet: {len(grid)}")
    return grid


def parse_grid(
    grid: Sequence[Sequence[Any]],
    expected: Sequence[str] = EXPECTED_HEADERS,
    required: Sequence[str] = REQUIRED_HEADERS,
    scan_rows: int = DEFAULT_SCAN_ROWS,
    threshold: int = DEFAULT_MATCH_THRESHOLD,
) -> ParsedSheet:
    """Detect the header, validate columns and collect the non-empty data rows."""
    if len(grid) < 2:
        raise SheetFormatError("Excel file must have a header row and at least one data row")

    header_index = resolve_header_row(grid, expected, scan_rows, threshold)
    columns = ColumnMap(grid[header_index], expected)
    logger.info(f"[SHEET PARSE] Header row {header_index}, resolved columns: {columns.resolved}")
    columns.validate(required)

    parsed = ParsedSheet(header_row_index=header_index, columns=columns)
    for offset, row in enumerate(grid[header_index + 1:], start=header_index + 2):
        if any(cell is not None and str(cell).strip() for cell in row):
            parsed.rows.append(SheetRow(row_number=offset, values=tuple(row)))
        else:
            parsed.empty_rows += 1

    if not parsed.rows:
        raise SheetFormatError("Excel file is empty")

    logger.info(
        f"[SHEET PARSE] Summary: {len(parsed.rows)} data rows extracted, "
        f"{parsed.empty_rows} empty rows skipped"
    )
    return parsed
