"""
Booking lifecycle endpoints
"""

from typing import Any, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from skypark.core.database import get_session
from skypark.core.security import Principal, get_current_user, require_admin
from skypark.models.booking import BookingStatus
from skypark.schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingReject,
    BookingResponse,
    BookingUpdate,
)
from skypark.schemas.response import MessageResponse
from skypark.services.booking_service import booking_service

router = APIRouter()


def _owner_scope(current_user: Principal) -> Optional[UUID]:
    """Staff act on any booking, customers only on their own"""
    return None if current_user.is_staff else current_user.user_id


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Reserve slot capacity and create a pending booking
    """
    return await booking_service.create_booking(db, current_user.user_id, booking_data)


@router.get("/", response_model=List[BookingResponse])
async def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    return await booking_service.list_user_bookings(db, current_user.user_id, status_filter)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    return await booking_service.get_booking(db, booking_id, _owner_scope(current_user))


@router.patch("/{booking_id}", response_model=BookingResponse)
async def modify_booking(
    booking_id: UUID,
    changes: BookingUpdate,
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Change the date, slot or contact details of a pending booking
    """
    return await booking_service.modify_booking(db, booking_id, changes, _owner_scope(current_user))


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    cancel_data: Optional[BookingCancel] = None,
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    reason = cancel_data.reason if cancel_data else None
    return await booking_service.cancel_booking(db, booking_id, reason, _owner_scope(current_user))


# Admin operations

@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: UUID,
    current_user: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session)
) -> Any:
    return await booking_service.confirm_booking(db, booking_id)


@router.post("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: UUID,
    reject_data: BookingReject,
    current_user: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session)
) -> Any:
    return await booking_service.reject_booking(db, booking_id, reject_data.reason)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    current_user: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Close out a visit after its slot has ended; loyalty accrues in the background
    """
    return await booking_service.complete_booking(db, booking_id)


@router.post("/maintenance/expire-stale", response_model=MessageResponse)
async def expire_stale_bookings(
    older_than_minutes: int = Query(60, ge=1),
    current_user: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session)
) -> Any:
    expired = await booking_service.expire_stale_bookings(db, older_than_minutes)
    return MessageResponse(message=f"Expired {expired} pending bookings")
