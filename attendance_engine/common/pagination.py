"""Page/limit handling shared by the request, punch and notification lists."""

import math
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.common.constants import DEFAULT_PAGE_SIZE
from attendance_engine.common.filters import apply_sorting
from attendance_engine.config import settings

T = TypeVar("T")


class PaginationParams:
    """Query parameters ``page``, ``page_size`` and ``sort``; use with ``Depends()``."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1),
        page_size: int = Query(
            default=DEFAULT_PAGE_SIZE, ge=1, le=settings.HISTORY_PAGE_SIZE_MAX,
        ),
        sort: Optional[str] = Query(
            default=None, description='Comma-separated columns, "-" for descending',
        ),
    ) -> None:
        self.page = page
        self.page_size = page_size
        self.sort = sort

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class PaginatedResponse(BaseModel, Generic[T]):
    data: Sequence[T]
    meta: PaginationMeta


def build_meta(page: int, page_size: int, total: int) -> PaginationMeta:
    total_pages = math.ceil(total / page_size) if total else 0
    return PaginationMeta(
        page=page,
        page_size=page_size,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


async def paginate(
    session: AsyncSession,
    query: Select,
    params: PaginationParams,
    *,
    model: Any = None,
    transform: Optional[Callable[[Any], Any]] = None,
) -> PaginatedResponse:
    """Run *query* for one page and wrap the rows with a ``PaginationMeta``.

    ``params.sort`` is applied only when *model* is given. *transform* maps
    each ORM row to its response schema; rows are counted before it runs.
    """
    if model is not None:
        query = apply_sorting(query, model, params.sort)

    total = (
        await session.execute(select(func.count()).select_from(query.order_by(None).subquery()))
    ).scalar_one()
    rows = (
        await session.execute(query.offset(params.offset).limit(params.page_size))
    ).scalars().all()

    return PaginatedResponse(
        data=[transform(row) for row in rows] if transform else list(rows),
        meta=build_meta(params.page, params.page_size, total),
    )
