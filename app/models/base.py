"""Key and timestamp mixins shared by the ORM models."""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntegerPK = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IDMixin:
    """Surrogate key; natural keys (register number, course code) get their own unique index."""

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)


class TimestampMixin:
    """created_at/updated_at, filled by Python on ORM and Core inserts alike."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )
