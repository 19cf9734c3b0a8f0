import math
from typing import Any

from fastapi import HTTPException, Query
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session


MAX_PAGE_SIZE = 100


class PageParams:
    def __init__(
        self,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
    ) -> None:
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def resolve_sort(columns: dict[str, Any], sort_by: str, sort_order: str):
    column = columns.get(sort_by)
    if column is None:
        raise HTTPException(status_code=400, detail=f"Cannot sort by '{sort_by}'")
    return column.asc() if sort_order.lower() == "asc" else column.desc()


def paginate(db: Session, statement: Select, params: PageParams) -> tuple[list, dict]:
    total = db.scalar(select(func.count()).select_from(statement.order_by(None).subquery())) or 0
    rows = db.execute(statement.limit(params.limit).offset(params.offset)).all()
    total_pages = math.ceil(total / params.limit) if total else 0
    return rows, {
        "page": params.page,
        "limit": params.limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": params.page < total_pages,
        "has_prev": params.page > 1,
    }
