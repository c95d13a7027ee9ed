"""
Order Service Events Module

Exports all event-related functionality for order service
"""

from .models import (
    OrderItemSnapshot,
    OrderSnapshotEvent,
    MalformedPaymentEventError,
    PaymentSucceeded,
    PaymentNotSucceeded,
    PaymentFailed,
    PaymentOutcome,
    parse_payment_event
)

from .publishers import (
    publish_order_created,
    publish_order_updated,
    publish_order_cancelled
)

from .handlers import (
    PaymentEventHandler,
    get_event_handlers,
    register_event_handlers
)

__all__ = [
    # Event Models
    "OrderItemSnapshot",
    "OrderSnapshotEvent",
    "MalformedPaymentEventError",
    "PaymentSucceeded",
    "PaymentNotSucceeded",
    "PaymentFailed",
    "PaymentOutcome",
    "parse_payment_event",
    # Publishers
    "publish_order_created",
    "publish_order_updated",
    "publish_order_cancelled",
    # Handlers
    "PaymentEventHandler",
    "get_event_handlers",
    "register_event_handlers"
]
