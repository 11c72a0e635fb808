"""
Payment schemas
"""

from pydantic import Field
from typing import Any, Dict, Optional
from uuid import UUID
from datetime import datetime
from enum import Enum

from skypark.schemas.base import BaseSchema, IDSchema, TimestampSchema
from skypark.models.payment import PaymentMethod, PaymentStatus


class PaymentCreate(BaseSchema):
    """Payment initiation schema"""
    booking_id: UUID
    method: PaymentMethod
    amount: int = Field(..., gt=0)
    details: Dict[str, Any] = Field(default_factory=dict)


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentOutcome(BaseSchema):
    """Asynchronous result reported by a payment provider"""
    status: OutcomeStatus
    reason: Optional[str] = None


class PaymentWebhook(PaymentOutcome):
    transaction_id: str = Field(..., min_length=1)


class PaymentRefund(BaseSchema):
    amount: Optional[int] = Field(None, gt=0)
    reason: str = Field(..., min_length=1, max_length=500)


class PaymentResponse(IDSchema, TimestampSchema):
    """Payment response schema"""
    booking_id: UUID
    method: PaymentMethod
    provider: str
    amount: int
    fee_amount: int
    net_amount: int
    currency: str
    status: PaymentStatus
    provider_transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_amount: Optional[int] = None
    refund_reason: Optional[str] = None
    initiated_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
