"""
Order Service Event Handlers

Handlers for payment events from the payment service.
"""

import logging
from collections import deque
from typing import Any, Dict, Optional

from core.nats_client import Event, EventType

from ..protocols import OrderServiceError, OrderNotFoundError, InfrastructureError
from .models import MalformedPaymentEventError, PaymentOutcome, parse_payment_event

logger = logging.getLogger(__name__)

PAYMENT_PROCESSED = EventType.PAYMENT_PROCESSED.value
PAYMENT_FAILED = EventType.PAYMENT_FAILED.value

DEFAULT_DEDUP_WINDOW = 10000


class PaymentEventHandler:
    """
    Translates payment events into payment-status transitions.

    Handlers never raise: malformed events, unknown orders and rejected
    transitions are logged and dropped so the consumer can always ack.
    """

    def __init__(self, order_service, dedup_window: int = DEFAULT_DEDUP_WINDOW):
        self.order_service = order_service
        self.dedup_window = dedup_window
        self._processed_ids = set()
        self._processed_order = deque()

    # Idempotency tracking

    def is_event_processed(self, event_id: Optional[str]) -> bool:
        """Check if event has already been processed (idempotency)"""
        return bool(event_id) and event_id in self._processed_ids

    def mark_event_processed(self, event_id: Optional[str]) -> None:
        if not event_id or event_id in self._processed_ids:
            return
        self._processed_ids.add(event_id)
        self._processed_order.append(event_id)
        # Oldest ids fall out of the window first
        while len(self._processed_order) > self.dedup_window:
            self._processed_ids.discard(self._processed_order.popleft())

    # Handlers

    async def handle_payment_processed(self, event: Event) -> None:
        """payment.processed: SUCCEEDED completes the payment, anything else keeps it pending"""
        await self._handle(PAYMENT_PROCESSED, event.data, event.id)

    async def handle_payment_failed(self, event: Event) -> None:
        """payment.failed: marks the payment failed (cancels pending orders)"""
        await self._handle(PAYMENT_FAILED, event.data, event.id)

    async def handle_event(self, event: Event) -> None:
        """Dispatch on event type; unrelated events are ignored"""
        event_type = event.type
        if event_type not in (PAYMENT_PROCESSED, PAYMENT_FAILED):
            logger.debug(f"Ignoring unsupported event type: {event_type}")
            return
        await self._handle(event_type, event.data, event.id)

    async def _handle(self, event_type: str, data: Optional[Dict[str, Any]], event_id: Optional[str]) -> None:
        if self.is_event_processed(event_id):
            logger.debug(f"Event {event_id} already processed, skipping")
            return

        try:
            outcome = parse_payment_event(event_type, data)
        except MalformedPaymentEventError as e:
            logger.warning(f"Dropping malformed {event_type} event {event_id}: {e}")
            self.mark_event_processed(event_id)
            return

        try:
            await self._apply(outcome)
        except OrderNotFoundError:
            logger.warning(f"{event_type} event {event_id} refers to unknown order {outcome.order_id}")
        except InfrastructureError as e:
            # Message is still acked; leaving the id unmarked lets a republished copy apply
            logger.error(f"❌ Failed to handle {event_type} event {event_id}: {e}")
            return
        except OrderServiceError as e:
            logger.warning(f"{event_type} event {event_id} rejected for order {outcome.order_id}: {e}")
        except Exception as e:
            logger.error(f"❌ Failed to handle {event_type} event {event_id}: {e}", exc_info=True)
            return

        self.mark_event_processed(event_id)

    async def _apply(self, outcome: PaymentOutcome) -> None:
        order = await self.order_service.update_payment_status(
            outcome.order_id,
            outcome.target_payment_status,
            payment_intent_id=outcome.payment_intent_id
        )
        logger.info(
            f"✅ Order {order.order_id} payment {outcome.kind}: "
            f"payment_status={order.payment_status.value}, status={order.status.value}"
        )


def get_event_handlers(handler: PaymentEventHandler):
    """
    Get all event handlers for order service.

    Returns:
        Dict[str, callable]: Event pattern -> handler function mapping
    """
    return {
        PAYMENT_PROCESSED: handler.handle_payment_processed,
        PAYMENT_FAILED: handler.handle_payment_failed,
    }


async def register_event_handlers(event_bus, handler: PaymentEventHandler) -> None:
    """Subscribe the payment handlers on the event bus"""
    for pattern, callback in get_event_handlers(handler).items():
        durable = "order-service-" + pattern.replace(".", "-")
        await event_bus.subscribe_to_events(pattern, callback, durable=durable)
        logger.info(f"✅ Subscribed to {pattern} events")
