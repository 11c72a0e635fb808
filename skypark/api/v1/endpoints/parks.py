"""
Park and availability endpoints
"""

from typing import Any, List
from datetime import date
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from skypark.config import settings
from skypark.core.database import get_session
from skypark.models.park import Park
from skypark.schemas.park import AvailabilityResponse, ParkResponse
from skypark.services.availability_service import availability_service

router = APIRouter()


def _park_response(park: Park) -> ParkResponse:
    return ParkResponse(
        id=park.id,
        name=park.name,
        city=park.city,
        country_code=park.country_code,
        opening_time=park.opening_time,
        closing_time=park.closing_time,
        slot_duration_minutes=park.slot_duration_minutes,
        slot_capacity=park.slot_capacity,
        adult_price=park.adult_price,
        child_price=park.effective_child_price(settings.CHILD_DISCOUNT_PERCENT),
        currency=park.currency,
    )


@router.get("/", response_model=List[ParkResponse])
async def list_parks(db: AsyncSession = Depends(get_session)) -> Any:
    """
    List active parks
    """
    result = await db.execute(select(Park).where(Park.is_active.is_(True)).order_by(Park.name))
    return [_park_response(park) for park in result.scalars()]


@router.get("/{park_id}", response_model=ParkResponse)
async def get_park(park_id: UUID, db: AsyncSession = Depends(get_session)) -> Any:
    park = await availability_service.get_park(db, park_id)
    return _park_response(park)


@router.get("/{park_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    park_id: UUID,
    visit_date: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Time slots of a park day with remaining capacity
    """
    park = await availability_service.get_park(db, park_id)
    slots = await availability_service.get_availability(db, park_id, visit_date)
    return AvailabilityResponse(
        park_id=park.id,
        visit_date=visit_date,
        adult_price=park.adult_price,
        child_price=park.effective_child_price(settings.CHILD_DISCOUNT_PERCENT),
        currency=park.currency,
        slots=slots,
    )
