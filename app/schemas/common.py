"""Schema base class, pagination and the error envelope."""

from typing import Any, Generic, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Reads ORM objects; strips surrounding whitespace from strings."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


T = TypeVar("T")


class PaginatedResponse(BaseSchema, Generic[T]):
    """One page of a listing plus the totals needed to page through it."""

    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def paginate(cls, items: Sequence[Any], total: int, page: int, page_size: int):
        return cls(
            items=list(items),
            total=total,
            page=page,
            page_size=page_size,
            total_pages=(total + page_size - 1) // page_size,
        )


class ErrorDetail(BaseSchema):
    code: str
    message: str
    details: dict[str, Any] = {}


class ErrorResponse(BaseSchema):
    """Body of every non-2xx response."""

    success: bool = False
    error: ErrorDetail


class MessageResponse(BaseSchema):
    message: str
