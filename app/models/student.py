"""Student model."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.base import IDMixin, TimestampMixin


class Student(Base, IDMixin, TimestampMixin):
    """Student identified by its register number."""

    __tablename__ = "students"

    register_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    semester: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    batch: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    degree: Mapped[str | None] = mapped_column(String(100), nullable=True)
    office_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    branch_of_study: Mapped[str | None] = mapped_column(String(255), nullable=True)
    graduation_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Relationships
    grades: Mapped[list["Grade"]] = relationship(
        "Grade",
        back_populates="student",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, register_number={self.register_number}, name={self.name})>"
