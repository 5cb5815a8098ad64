"""Course model."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.base import IDMixin, TimestampMixin


class Course(Base, IDMixin, TimestampMixin):
    """Course identified by its normalized code (upper-case alphanumerics)."""

    __tablename__ = "courses"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    # Display name; falls back to the code when the sheet carried no title
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    credits: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Relationships
    grades: Mapped[list["Grade"]] = relationship(
        "Grade",
        back_populates="course",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Course(id={self.id}, code={self.code})>"
