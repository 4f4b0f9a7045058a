from math import ceil
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from ledger.interfaces.api.v1.schemas.pagination import PaginationMeta, PaginationParams


def apply_search_filter(query: Select, search: str | None, search_columns: list[Any]) -> Select:
    if search is None or not search_columns:
        return query
    pattern = f"%{search}%"
    return query.where(or_(*(column.ilike(pattern) for column in search_columns)))


def _count(db: Session, query: Select) -> int:
    return db.execute(select(func.count()).select_from(query.order_by(None).subquery())).scalar_one()


def paginate_scalars(
    db: Session,
    base_query: Select,
    *,
    params: PaginationParams,
    search_columns: list[Any] | None = None,
) -> tuple[list[Any], PaginationMeta]:
    """Run ``base_query`` as one page of ORM rows plus the list envelope metadata."""
    filtered_query = apply_search_filter(base_query, params.search, search_columns or [])
    total = _count(db, base_query)
    filtered_total = _count(db, filtered_query) if filtered_query is not base_query else total

    items = list(db.execute(filtered_query.offset(params.offset).limit(params.limit)).scalars().unique().all())

    meta = PaginationMeta(
        offset=params.offset,
        limit=params.limit,
        total=total,
        filtered_total=filtered_total,
        total_pages=ceil(total / params.limit) if total > 0 else 0,
        filtered_total_pages=ceil(filtered_total / params.limit) if filtered_total > 0 else 0,
        current_page=(params.offset // params.limit) + 1 if filtered_total > 0 else 0,
        has_next=(params.offset + params.limit) < filtered_total,
        has_prev=params.offset > 0,
    )
    return items, meta
