"""create grade tables

Revision ID: 0001_create_grade_tables
Revises:
Create Date: 2026-10-17

Creates the students, courses and grades tables keyed by their natural
keys (register number, normalized course code, student+course pair), and
the upload tracking tables.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_create_grade_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "students",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("register_number", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("semester", sa.Integer(), nullable=True),
        sa.Column("batch", sa.String(50), nullable=True),
        sa.Column("degree", sa.String(100), nullable=True),
        sa.Column("office_name", sa.String(255), nullable=True),
        sa.Column("branch_of_study", sa.String(255), nullable=True),
        sa.Column("graduation_type", sa.String(50), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_students_register_number", "students", ["register_number"], unique=True)
    op.create_index("ix_students_name", "students", ["name"])
    op.create_index("ix_students_semester", "students", ["semester"])
    op.create_index("ix_students_batch", "students", ["batch"])

    op.create_table(
        "courses",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("credits", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_courses_code", "courses", ["code"], unique=True)

    op.create_table(
        "grades",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("student_id", sa.BigInteger(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("course_id", sa.BigInteger(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("grade", sa.String(20), nullable=False),
        sa.Column("is_passed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("mode_of_attempt", sa.String(50), nullable=False, server_default="Regular"),
        *_timestamps(),
        sa.UniqueConstraint("student_id", "course_id", name="uq_grade_student_course"),
    )
    op.create_index("ix_grades_student_id", "grades", ["student_id"])
    op.create_index("ix_grades_course_id", "grades", ["course_id"])
    op.create_index("ix_grades_grade", "grades", ["grade"])
    op.create_index("ix_grades_is_passed", "grades", ["is_passed"])

    upload_status = sa.Enum("SUCCESS", "FAILED", "PARTIAL", "PROCESSING", name="uploadstatus")
    op.create_table(
        "uploads",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.String(64), nullable=True),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("status", upload_status, nullable=False),
        sa.Column("header_row_index", sa.Integer(), nullable=True),
        sa.Column("total_rows", sa.Integer(), nullable=True),
        sa.Column("students_processed", sa.Integer(), nullable=True),
        sa.Column("courses_created", sa.Integer(), nullable=True),
        sa.Column("grades_processed", sa.Integer(), nullable=True),
        sa.Column("skipped_rows", sa.Integer(), nullable=True),
        sa.Column("failed_chunk", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("uploaded_by_email", sa.String(255), nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_uploads_run_id", "uploads", ["run_id"])

    op.create_table(
        "upload_errors",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("upload_id", sa.BigInteger(), sa.ForeignKey("uploads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("row_number", sa.Integer(), nullable=True),
        sa.Column("column_name", sa.String(100), nullable=True),
        sa.Column("error_type", sa.String(100), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("raw_value", sa.Text(), nullable=True),
    )
    op.create_index("ix_upload_errors_upload_id", "upload_errors", ["upload_id"])


def downgrade() -> None:
    op.drop_table("upload_errors")
    op.drop_table("uploads")
    sa.Enum(name="uploadstatus").drop(op.get_bind(), checkfirst=True)
    op.drop_table("grades")
    op.drop_table("courses")
    op.drop_table("students")
