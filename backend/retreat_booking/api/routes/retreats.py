"""
Public seat availability. Always computed from the database, never cached.
"""

from datetime import datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_booking.db.base import to_utc
from retreat_booking.db.session import get_db
from retreat_booking.schemas.booking import AvailabilityResponse, RetreatAvailabilityResponse
from retreat_booking.services.availability_service import get_availability_overview, get_available_seats
from retreat_booking.services.catalog_service import parse_id

router = APIRouter(prefix="/retreats", tags=["Retreats"])


@router.get(
    "/{retreat_id}/availability",
    response_model=Union[AvailabilityResponse, RetreatAvailabilityResponse],
)
async def retreat_availability(
    retreat_id: str,
    session_start: Optional[datetime] = Query(None, description="Exact session start; omit for every session"),
    db: AsyncSession = Depends(get_db),
):
    retreat_id = parse_id(retreat_id)
    if session_start is None:
        sessions = await get_availability_overview(db, retreat_id)
        return RetreatAvailabilityResponse(retreat_id=retreat_id, sessions=sessions)

    session_start = to_utc(session_start)
    available = await get_available_seats(db, retreat_id, session_start)
    return AvailabilityResponse(retreat_id=retreat_id, session_start=session_start, available_seats=available)
