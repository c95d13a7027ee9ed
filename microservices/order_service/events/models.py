"""
Order Service Event Models

Pydantic models for events published by the order service and for the
payment events it consumes.
"""

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from typing import Optional, Dict, Any, List, Literal, Union
from datetime import datetime
from decimal import Decimal

from ..models import Order, PaymentStatus


# ============================================================================
# Published events
# ============================================================================

class OrderItemSnapshot(BaseModel):
    """Line item as carried in order events"""
    item_id: str
    product_id: str
    quantity: int
    price: Optional[Decimal] = None
    name: Optional[str] = None
    order_id: str


class OrderSnapshotEvent(BaseModel):
    """Full order snapshot published on order.created / order.updated / order.cancelled"""
    model_config = ConfigDict(frozen=True)

    order_id: str
    user_id: str
    items: List[OrderItemSnapshot]
    total_amount: Decimal
    status: str
    payment_status: str
    shipping_address: Optional[str] = None
    payment_method: str
    payment_intent_id: Optional[str] = None
    tracking_number: Optional[str] = None
    currency: str = "USD"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderSnapshotEvent":
        return cls(
            order_id=order.order_id,
            user_id=order.user_id,
            items=[OrderItemSnapshot(**item.model_dump()) for item in order.items],
            total_amount=order.total_amount,
            status=order.status.value,
            payment_status=order.payment_status.value,
            shipping_address=order.shipping_address,
            payment_method=order.payment_method,
            payment_intent_id=order.payment_intent_id,
            tracking_number=order.tracking_number,
            currency=order.currency,
            metadata=dict(order.metadata or {}),
            expires_at=order.expires_at,
            created_at=order.created_at,
            updated_at=order.updated_at
        )


# ============================================================================
# Consumed payment events
# ============================================================================

class MalformedPaymentEventError(ValueError):
    """Inbound payment event could not be interpreted"""
    pass


class PaymentProcessedPayload(BaseModel):
    """payment.processed wire payload ({orderId, status, paymentIntentId})"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    order_id: str = Field(..., alias="orderId", min_length=1)
    status: Optional[str] = None
    payment_intent_id: Optional[str] = Field(None, alias="paymentIntentId")


class PaymentFailedPayload(BaseModel):
    """payment.failed wire payload ({orderId, paymentIntentId})"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    order_id: str = Field(..., alias="orderId", min_length=1)
    payment_intent_id: Optional[str] = Field(None, alias="paymentIntentId")
    reason: Optional[str] = None


class PaymentSucceeded(BaseModel):
    """Payment captured"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["succeeded"] = "succeeded"
    order_id: str
    payment_intent_id: Optional[str] = None

    @property
    def target_payment_status(self) -> PaymentStatus:
        return PaymentStatus.COMPLETED


class PaymentNotSucceeded(BaseModel):
    """Payment processed with a non-final outcome (e.g. requires action)"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["not_succeeded"] = "not_succeeded"
    order_id: str
    payment_intent_id: Optional[str] = None
    reported_status: Optional[str] = None

    @property
    def target_payment_status(self) -> PaymentStatus:
        return PaymentStatus.PENDING


class PaymentFailed(BaseModel):
    """Payment failed"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    order_id: str
    payment_intent_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def target_payment_status(self) -> PaymentStatus:
        return PaymentStatus.FAILED


PaymentOutcome = Union[PaymentSucceeded, PaymentNotSucceeded, PaymentFailed]

PAYMENT_SUCCEEDED_STATUS = "SUCCEEDED"


def parse_payment_event(event_type: str, data: Optional[Dict[str, Any]]) -> PaymentOutcome:
    """
    Validate an inbound payment event and map it to a closed outcome.

    Raises:
        MalformedPaymentEventError: unknown event type or invalid payload
    """
    if not isinstance(data, dict):
        raise MalformedPaymentEventError(f"{event_type} payload is not an object")

    try:
        if event_type == "payment.processed":
            payload = PaymentProcessedPayload.model_validate(data)
            if (payload.status or "").upper() == PAYMENT_SUCCEEDED_STATUS:
                return PaymentSucceeded(
                    order_id=payload.order_id,
                    payment_intent_id=payload.payment_intent_id
                )
            return PaymentNotSucceeded(
                order_id=payload.order_id,
                payment_intent_id=payload.payment_intent_id,
                reported_status=payload.status
            )

        if event_type == "payment.failed":
            payload = PaymentFailedPayload.model_validate(data)
            return PaymentFailed(
                order_id=payload.order_id,
                payment_intent_id=payload.payment_intent_id,
                reason=payload.reason
            )
    except ValidationError as e:
        raise MalformedPaymentEventError(f"Invalid {event_type} payload: {e.errors()}") from e

    raise MalformedPaymentEventError(f"Unsupported payment event type: {event_type}")
