"""Ingest a grade spreadsheet from the command line.

Usage:
    python -m scripts.ingest_grades grades.xlsx --email someone@srmist.edu.in
"""
import argparse
import logging
import sys
from pathlib import Path

from app.core.database import SessionLocal
from app.core.security import Principal
from app.models.upload import UploadStatus
from app.schemas.upload import ProgressEvent
from app.services.upload import UploadService


def print_progress(event: ProgressEvent) -> None:
    print(f"[{event.percent_complete:5.1f}%] {event.status_message}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ingest a grade export into the database")
    parser.add_argument("file", type=Path, help="Excel file (.xlsx)")
    parser.add_argument("--email", required=True, help="Institutional email the run is attributed to")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not args.file.is_file():
        print(f"File not found: {args.file}")
        return 1

    principal = Principal(subject=f"cli:{args.email}", email=args.email)
    db = SessionLocal()
    try:
        result = UploadService(db).process_grade_upload(
            principal=principal,
            file_content=args.file.read_bytes(),
            file_name=args.file.name,
            progress=print_progress,
        )
    finally:
        db.close()

    print(result.message)
    print(
        f"Rows: {result.total_rows}, students: {result.students_processed}, "
        f"courses created: {result.courses_created}, grades: {result.grades_processed}, "
        f"skipped: {result.skipped_rows}"
    )
    for reason, count in result.skipped_by_reason.items():
        print(f"  {reason}: {count}")
    for sample in result.samples:
        print(f"  row {sample.row_number} {sample.reason} {sample.column}={sample.value!r}")

    return 0 if result.status == UploadStatus.SUCCESS else 1


if __name__ == "__main__":
    sys.exit(main())
