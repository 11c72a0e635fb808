"""
Ticket endpoints
"""

from typing import Any, List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from skypark.core.database import get_session
from skypark.core.security import Principal, get_current_user, require_admin
from skypark.models.ticket import TicketStatus
from skypark.schemas.response import MessageResponse
from skypark.schemas.ticket import TicketResponse
from skypark.services.booking_service import booking_service
from skypark.services.ticket_service import ticket_service

router = APIRouter()


def _owner_scope(current_user: Principal) -> Optional[UUID]:
    return None if current_user.is_staff else current_user.user_id


@router.get("/", response_model=List[TicketResponse])
async def list_my_tickets(
    status_filter: Optional[TicketStatus] = Query(None, alias="status"),
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    return await ticket_service.list_user_tickets(db, current_user.user_id, status_filter)


@router.get("/booking/{booking_id}", response_model=List[TicketResponse])
async def list_booking_tickets(
    booking_id: UUID,
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    booking = await booking_service.get_booking(db, booking_id, _owner_scope(current_user))
    return await ticket_service.get_booking_tickets(db, booking.id)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: UUID,
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    return await ticket_service.get_ticket(db, ticket_id, _owner_scope(current_user))


@router.get("/{ticket_id}/qr")
async def get_ticket_qr(
    ticket_id: UUID,
    size: int = Query(300, ge=100, le=1000),
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Response:
    """
    QR code image of the ticket payload
    """
    ticket = await ticket_service.get_ticket(db, ticket_id, _owner_scope(current_user))
    return Response(
        content=ticket_service.render_qr_png(ticket, size=size),
        media_type="image/png",
        headers={"Content-Disposition": f'inline; filename="{ticket.ticket_number}.png"'},
    )


@router.post("/maintenance/expire", response_model=MessageResponse)
async def expire_tickets(
    current_user: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session)
) -> Any:
    expired = await ticket_service.expire_tickets(db)
    return MessageResponse(message=f"Expired {expired} tickets")
