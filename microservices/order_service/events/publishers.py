"""
Order Service Event Publishers

Functions to publish order snapshots from the order service.

Publishing is attempted only after the order write returned. Failures are
logged and reported as False; they never fail the triggering operation.
"""

import logging

from core.nats_client import Event, EventType, ServiceSource, make_json_safe
from ..models import Order
from .models import OrderSnapshotEvent

logger = logging.getLogger(__name__)


async def _publish_order_event(event_bus, event_type: EventType, order: Order) -> bool:
    if not event_bus:
        logger.warning(f"Event bus not available, skipping {event_type.value} event")
        return False

    try:
        snapshot = OrderSnapshotEvent.from_order(order)

        event = Event(
            event_type=event_type,
            source=ServiceSource.ORDER_SERVICE,
            data=make_json_safe(snapshot.model_dump(mode='json')),
            subject=order.order_id
        )

        published = await event_bus.publish_event(event)
        if published is False:
            logger.error(f"❌ Event bus rejected {event_type.value} event for order {order.order_id}")
            return False

        logger.info(f"✅ Published {event_type.value} event for order {order.order_id}")
        return True

    except Exception as e:
        logger.error(f"❌ Failed to publish {event_type.value} event for order {order.order_id}: {e}")
        return False


async def publish_order_created(event_bus, order: Order) -> bool:
    """Publish order.created event"""
    return await _publish_order_event(event_bus, EventType.ORDER_CREATED, order)


async def publish_order_updated(event_bus, order: Order) -> bool:
    """Publish order.updated event"""
    return await _publish_order_event(event_bus, EventType.ORDER_UPDATED, order)


async def publish_order_cancelled(event_bus, order: Order) -> bool:
    """Publish order.cancelled event"""
    return await _publish_order_event(event_bus, EventType.ORDER_CANCELLED, order)
