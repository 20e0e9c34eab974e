"""
Read-only access to the retreat catalogue.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_booking.core.exceptions import InvalidArgument, NotFound
from retreat_booking.db.base import to_utc
from retreat_booking.models.retreat import Retreat, RetreatSession


def parse_id(value: str, kind: str = "retreat") -> str:
    """Canonical string form of a UUID identifier, or InvalidArgument."""
    try:
        return str(UUID(str(value)))
    except (ValueError, AttributeError, TypeError):
        raise InvalidArgument(f"Invalid {kind} id: {value!r}")


async def get_retreat(db: AsyncSession, retreat_id: str) -> Retreat:
    """Get a retreat with its sessions eagerly loaded."""
    retreat_id = parse_id(retreat_id)
    result = await db.execute(select(Retreat).where(Retreat.id == retreat_id))
    retreat = result.scalar_one_or_none()

    if not retreat:
        raise NotFound(f"Retreat {retreat_id} not found")
    return retreat


def find_session(
    retreat: Retreat,
    session_start: datetime,
    session_end: Optional[datetime] = None,
) -> RetreatSession:
    """
    Exact match on the session start (and end, when given).
    No range or nearest-date matching.
    """
    start = to_utc(session_start)
    end = to_utc(session_end) if session_end is not None else None
    for session in retreat.sessions:
        if session.start_at != start:
            continue
        if end is not None and session.end_at != end:
            continue
        return session
    raise NotFound(f"Retreat session starting {start.isoformat()} not found")


async def get_session_row(db: AsyncSession, retreat_id: str, session_start: datetime) -> RetreatSession:
    """
    Fresh read of a single session row, bypassing the identity map so the
    version counter is current.
    """
    result = await db.execute(
        select(RetreatSession)
        .where(
            RetreatSession.retreat_id == retreat_id,
            RetreatSession.start_at == to_utc(session_start),
        )
        .execution_options(populate_existing=True)
    )
    session = result.scalar_one_or_none()
    if not session:
        raise NotFound(f"Retreat session starting {to_utc(session_start).isoformat()} not found")
    return session
