from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.utils import get_logger

log = get_logger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def within_bounds(query: sa.sql.Select, latitude: Any, longitude: Any, bounds: Any) -> sa.sql.Select:
    """Restrict the query to rows whose (latitude, longitude) columns fall inside the given map bounds."""
    return query.where(
        latitude.isnot(None),
        longitude.isnot(None),
        latitude.between(bounds.south, bounds.north),
        longitude.between(bounds.west, bounds.east),
    )


async def try_read(session_factory: SessionFactory, label: str, query: sa.sql.Select) -> list[Any] | None:
    """
    Run a read query in its own session.

    Each read gets its own session so several reads can be awaited together. Returns None if the query failed, the
    error is logged.
    """
    try:
        async with session_factory() as db:
            result = await db.execute(query)
            return list(result.all())
    except SQLAlchemyError:
        log.warning("Failed to read %s", label, exc_info=True)
        return None


async def read(session_factory: SessionFactory, label: str, query: sa.sql.Select) -> list[Any]:
    """Like try_read(), but a failed read counts as an empty result."""
    rows = await try_read(session_factory, label, query)
    return rows if rows is not None else []
