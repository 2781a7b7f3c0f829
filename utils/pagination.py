# utils/pagination.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from fastapi import Query

from errors import BadInput

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass
class PageParams:
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def page_params(
    page: int = Query(1),
    page_size: Optional[int] = Query(None),
    limit: Optional[int] = Query(None, description="alias of page_size"),
) -> PageParams:
    size = page_size if page_size is not None else limit
    if size is None:
        size = DEFAULT_PAGE_SIZE
    if page < 1:
        raise BadInput("page must be >= 1")
    if size < 1 or size > MAX_PAGE_SIZE:
        raise BadInput(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
    return PageParams(page=page, page_size=size)


def paginate(query, params: PageParams, to_dict: Callable[[Any], Dict[str, Any]]) -> Dict[str, Any]:
    """Run an ORM query page and wrap it as {data, pagination{...}}."""
    total = query.order_by(None).count()
    rows: List[Any] = query.offset(params.offset).limit(params.page_size).all()
    total_pages = math.ceil(total / params.page_size) if total else 0
    return {
        "data": [to_dict(r) for r in rows],
        "pagination": {
            "current_page": params.page,
            "page_size": params.page_size,
            "total_records": total,
            "total_pages": total_pages,
            "has_next": params.page < total_pages,
            "has_prev": params.page > 1,
        },
    }
