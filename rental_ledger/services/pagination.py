from __future__ import annotations

import math
from typing import Any, Callable

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session


DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def normalize_page(page: Any, limit: Any) -> tuple[int, int, int]:
    try:
        validated_page = max(1, int(page or 1))
    except (TypeError, ValueError):
        validated_page = 1
    try:
        validated_limit = max(1, min(MAX_PAGE_SIZE, int(limit or DEFAULT_PAGE_SIZE)))
    except (TypeError, ValueError):
        validated_limit = DEFAULT_PAGE_SIZE
    return validated_page, validated_limit, (validated_page - 1) * validated_limit


def paginate(
    db: Session,
    stmt: Select,
    serializer: Callable[[Any], dict],
    page: Any = 1,
    limit: Any = DEFAULT_PAGE_SIZE,
) -> dict:
    validated_page, validated_limit, offset = normalize_page(page, limit)
    total_items = db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    rows = db.execute(stmt.limit(validated_limit).offset(offset)).scalars().all()
    return {
        "data": [serializer(row) for row in rows],
        "pagination": {
            "page": validated_page,
            "limit": validated_limit,
            "totalItems": total_items,
            "totalPages": math.ceil(total_items / validated_limit),
        },
    }
