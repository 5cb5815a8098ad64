"""Upload tracking models."""

import enum
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.base import IDMixin, TimestampMixin


class UploadStatus(str, enum.Enum):
    """Upload status enumeration."""

    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"
    PROCESSING = "processing"


class Upload(Base, IDMixin, TimestampMixin):
    """One grade spreadsheet ingestion run."""

    __tablename__ = "uploads"

    run_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[UploadStatus] = mapped_column(
        Enum(UploadStatus),
        default=UploadStatus.PROCESSING,
        nullable=False,
    )
    header_row_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_rows: Mapped[int] = mapped_column(Integer, default=0)
    students_processed: Mapped[int] = mapped_column(Integer, default=0)
    courses_created: Mapped[int] = mapped_column(Integer, default=0)
    grades_processed: Mapped[int] = mapped_column(Integer, default=0)
    skipped_rows: Mapped[int] = mapped_column(Integer, default=0)
    failed_chunk: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Principal who uploaded, as asserted by the identity provider
    uploaded_by_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Processing timestamps
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    processing_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    errors: Mapped[list["UploadError"]] = relationship(
        "UploadError",
        back_populates="upload",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Upload(id={self.id}, file={self.file_name}, status={self.status})>"


class UploadError(Base, IDMixin):
    """Sample of a skipped or flagged row, kept for operator troubleshooting."""

    __tablename__ = "upload_errors"

    upload_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("uploads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    row_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    column_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_type: Mapped[str] = mapped_column(String(100), nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    raw_value: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    upload: Mapped["Upload"] = relationship("Upload", back_populates="errors")

    def __repr__(self) -> str:
        return f"<UploadError(upload_id={self.upload_id}, row={self.row_number}, type={self.error_type})>"
