"""
Payment provider collaborators

Providers are opaque: they accept a charge and report the outcome either
synchronously or later through the webhook.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

import stripe

from skypark.config import settings
from skypark.models.payment import PaymentMethod

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """The provider refused or could not process the request"""


@dataclass(frozen=True)
class ChargeResult:
    transaction_id: str
    status: str  # "processing", "succeeded" or "failed"
    reason: Optional[str] = None


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str


class PaymentProvider(ABC):
    name: str = "provider"

    @abstractmethod
    async def charge(
        self,
        amount: int,
        currency: str,
        method: PaymentMethod,
        details: Dict[str, Any],
        metadata: Dict[str, str]
    ) -> ChargeResult:
        ...

    @abstractmethod
    async def refund(self, transaction_id: str, amount: int) -> RefundResult:
        ...


class StripeProvider(PaymentProvider):
    """Card and wallet payments through Stripe PaymentIntents"""

    name = "stripe"

    # PaymentIntent statuses that are already final
    _FINAL_STATUSES = {"succeeded": "succeeded", "canceled": "failed", "requires_payment_method": "failed"}

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.PAYMENT_API_KEY

    async def charge(self, amount, currency, method, details, metadata) -> ChargeResult:
        params = {
            "amount": amount,
            "currency": currency.lower(),
            "metadata": metadata,
            "api_key": self.api_key,
        }
        if details.get("payment_method_id"):
            params.update(payment_method=details["payment_method_id"], confirm=True)

        try:
            intent = await asyncio.to_thread(stripe.PaymentIntent.create, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe charge error: {e}")
            raise ProviderError(e.user_message or str(e))

        return ChargeResult(
            transaction_id=intent.id,
            status=self._FINAL_STATUSES.get(intent.status, "processing"),
        )

    async def refund(self, transaction_id: str, amount: int) -> RefundResult:
        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                payment_intent=transaction_id,
                amount=amount,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe refund error: {e}")
            raise ProviderError(e.user_message or str(e))
        return RefundResult(refund_id=refund.id, status=refund.status)


class InternalProvider(PaymentProvider):
    """Cash desk and loyalty point payments, settled on the spot"""

    name = "internal"

    async def charge(self, amount, currency, method, details, metadata) -> ChargeResult:
        return ChargeResult(transaction_id=f"int_{uuid.uuid4().hex}", status="succeeded")

    async def refund(self, transaction_id: str, amount: int) -> RefundResult:
        return RefundResult(refund_id=f"intre_{uuid.uuid4().hex}", status="succeeded")


INTERNAL_METHODS = (PaymentMethod.CASH, PaymentMethod.LOYALTY_POINTS)


class ProviderRegistry:
    """Maps payment methods to the provider that settles them"""

    def __init__(self, card: Optional[PaymentProvider] = None, internal: Optional[PaymentProvider] = None):
        self.card = card or StripeProvider()
        self.internal = internal or InternalProvider()

    def for_method(self, method: PaymentMethod) -> PaymentProvider:
        if PaymentMethod(method) in INTERNAL_METHODS:
            return self.internal
        return self.card


provider_registry = ProviderRegistry()
