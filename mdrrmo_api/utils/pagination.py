"""Offset pagination for SQLAlchemy async queries."""

from typing import Any, List, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select


async def paginate(
    db: AsyncSession,
    query: Select,
    page: int,
    page_size: int,
) -> Tuple[List[Any], int]:
    """Run ``query`` for one page and count the full result set.

    The query must already carry its ORDER BY.
    """
    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = (await db.execute(count_query)).scalar() or 0

    offset = (page - 1) * page_size
    result = await db.execute(query.offset(offset).limit(page_size))
    return list(result.unique().scalars().all()), total
