import math
from typing import Any, List, Optional
from pydantic import BaseModel


class FieldError(BaseModel):
    field: str
    message: str


class ApiResponse(BaseModel):
    """Envelope shared by every endpoint."""
    success: bool
    message: str
    data: Optional[Any] = None
    error: Optional[str] = None
    errors: Optional[List[FieldError]] = None


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class Page(BaseModel):
    items: List[Any]
    pagination: PaginationMeta


def build_page(items: List[Any], total: int, page: int, limit: int) -> Page:
    total_pages = math.ceil(total / limit) if limit else 0
    return Page(
        items=items,
        pagination=PaginationMeta(page=page, limit=limit, total=total, total_pages=total_pages),
    )


def to_float(value: Any) -> Optional[float]:
    """Convert Numeric columns (Decimal) to float, keeping None."""
    if value is None:
        return None
    return float(value)


def reject_null(value: Any) -> Any:
    """Partial updates may omit a required column but never send it as null."""
    if value is None:
        raise ValueError("must not be null")
    return value
