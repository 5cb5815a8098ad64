"""Grade record model."""

from sqlalchemy import BigInteger, Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.base import IDMixin, TimestampMixin


class Grade(Base, IDMixin, TimestampMixin):
    """One student's result in one course."""

    __tablename__ = "grades"

    student_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    course_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    grade: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    is_passed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    mode_of_attempt: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="Regular",
        server_default="Regular",
    )

    # Relationships
    student: Mapped["Student"] = relationship(
        "Student",
        back_populates="grades",
        lazy="selectin",
    )
    course: Mapped["Course"] = relationship(
        "Course",
        back_populates="grades",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_grade_student_course"),
    )

    def __repr__(self) -> str:
        return f"<Grade(student_id={self.student_id}, course_id={self.course_id}, grade={self.grade})>"
