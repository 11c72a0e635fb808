"""
Payment API Endpoints
Payment initiation, provider webhooks and refunds
"""

from typing import Any, List, Optional
from uuid import UUID
import logging
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from skypark.config import settings
from skypark.core.database import get_session
from skypark.core.security import Principal, get_current_user, require_admin, security_manager
from skypark.schemas.payment import PaymentCreate, PaymentRefund, PaymentResponse, PaymentWebhook
from skypark.services.booking_service import booking_service
from skypark.services.payment_service import payment_service

logger = logging.getLogger(__name__)
router = APIRouter()

SIGNATURE_HEADER = "X-SkyPark-Signature"


def _owner_scope(current_user: Principal) -> Optional[UUID]:
    return None if current_user.is_staff else current_user.user_id


@router.post("/", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def initiate_payment(
    payment_data: PaymentCreate,
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Start a payment attempt for the full booking total
    """
    return await payment_service.initiate_payment(
        db,
        booking_id=payment_data.booking_id,
        method=payment_data.method,
        amount=payment_data.amount,
        details=payment_data.details,
        user_id=_owner_scope(current_user),
    )


@router.post("/webhook", response_model=PaymentResponse)
async def payment_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Provider callback carrying the final outcome of a payment.
    The raw body must be signed with the shared webhook secret.
    """
    body = await request.body()
    if not security_manager.verify_signature(settings.PAYMENT_WEBHOOK_SECRET, body.decode(), signature or ""):
        logger.warning("Rejected payment webhook with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature"
        )

    try:
        event = PaymentWebhook.model_validate_json(body)
    except PydanticValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False)
        )

    return await payment_service.reconcile_by_transaction(db, event.transaction_id, event)


@router.get("/booking/{booking_id}", response_model=List[PaymentResponse])
async def list_booking_payments(
    booking_id: UUID,
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    booking = await booking_service.get_booking(db, booking_id, _owner_scope(current_user))
    return await payment_service.list_booking_payments(db, booking.id)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: UUID,
    current_user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
) -> Any:
    return await payment_service.get_payment(db, payment_id, _owner_scope(current_user))


@router.post("/{payment_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    payment_id: UUID,
    refund_data: PaymentRefund,
    current_user: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session)
) -> Any:
    """
    Refund a completed payment in full or in part
    """
    return await payment_service.refund(db, payment_id, refund_data.amount, refund_data.reason)
