"""
NATS JetStream Client for Python Microservices
Provides event-driven communication between the order, payment and
inventory services.

This module wraps the nats-py JetStream API:
- Event envelope shared by every service
- Durable, at-least-once publishing to per-domain streams
- Durable pull consumers with manual acknowledgement
"""

import asyncio
import json
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import nats
from nats.errors import TimeoutError as NATSTimeoutError
from nats.js.errors import NotFoundError

from core.config import InfraConfig

logger = logging.getLogger(__name__)

# Largest integer a JSON consumer using IEEE-754 doubles can represent exactly
MAX_SAFE_INTEGER = 2 ** 53 - 1


def make_json_safe(value: Any) -> Any:
    """
    Convert a value into something json.dumps accepts without loss.

    Decimals and integers outside the safe double range are stringified,
    datetimes become ISO-8601 strings and enums their values.
    """
    if isinstance(value, dict):
        return {str(k): make_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [make_json_safe(v) for v in value]
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, int):
        return value if abs(value) <= MAX_SAFE_INTEGER else str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return make_json_safe(value.value)
    return value


class EventType(Enum):
    """Event types exchanged by the order service"""

    # Order Events (published)
    ORDER_CREATED = "order.created"
    ORDER_UPDATED = "order.updated"
    ORDER_CANCELLED = "order.cancelled"

    # Payment Events (consumed)
    PAYMENT_PROCESSED = "payment.processed"
    PAYMENT_FAILED = "payment.failed"


class ServiceSource(Enum):
    """Service sources"""

    ORDER_SERVICE = "order_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: EventType,
        source: ServiceSource,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value
        self.source = source.value
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event

    @classmethod
    def from_raw(cls, subject: str, data: Dict[str, Any], event_id: Optional[str] = None) -> "Event":
        """Wrap a raw payload (published without the envelope) in an Event"""
        event = cls.__new__(cls)
        event.id = event_id or str(uuid.uuid4())
        event.type = subject
        event.source = "unknown"
        event.subject = subject
        event.timestamp = data.get("timestamp", datetime.now(timezone.utc).isoformat())
        event.data = data
        event.metadata = {}
        event.version = "1.0.0"
        return event


def decode_message(subject: str, payload: bytes, sequence: Optional[int] = None) -> Event:
    """
    Decode a JetStream message body into an Event.

    Handles both the Event envelope format (id, type, source, data, ...) and
    raw event data published by services that do not use the envelope.

    Raises:
        ValueError: payload is not a JSON object
    """
    data = json.loads(payload.decode()) if payload else {}
    if not isinstance(data, dict):
        raise ValueError(f"Event payload on {subject} is not a JSON object")

    if 'type' in data and 'source' in data and 'data' in data:
        return Event.from_dict(data)

    event_id = f"{subject}:{sequence}" if sequence is not None else None
    return Event.from_raw(subject, data, event_id=event_id)


EventHandler = Callable[[Event], Awaitable[None]]


class NATSEventBus:
    """
    NATS JetStream event bus.

    Publishing is at-least-once (JetStream persists before acking the
    publish); consumers are durable pull consumers that acknowledge each
    message after its handler returns.
    """

    # Stream per domain, subjects "<prefix>.>"
    STREAM_MAPPINGS = {
        "order": "order-stream",
        "payment": "payment-stream",
        "inventory": "inventory-stream",
    }

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
        fetch_batch_size: int = 10,
        fetch_timeout: float = 1.0,
    ):
        """
        Initialize NATS Event Bus.

        Args:
            service_name: Name of the service (used as connection name)
            config: Infrastructure config (defaults to InfraConfig.from_env())
            fetch_batch_size: Messages pulled per fetch
            fetch_timeout: Seconds a fetch waits for messages
        """
        self.service_name = service_name
        config = config or InfraConfig.from_env()
        self.servers = config.nats_servers

        self.fetch_batch_size = fetch_batch_size
        self.fetch_timeout = fetch_timeout

        self._nc = None
        self._js = None
        self._subscriptions: Dict[str, bool] = {}  # pattern -> active
        self._subscription_tasks: List[asyncio.Task] = []
        self._ensured_streams: set = set()
        self._is_connected = False

        logger.info(f"NATS EventBus initialized: {self.servers}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(servers=self.servers, name=self.service_name)
            self._js = self._nc.jetstream()
            self._is_connected = True
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    def _get_stream_name_for_event(self, event_type: str) -> str:
        """
        Determine the JetStream stream name based on event type.

        - order.* -> order-stream
        - payment.* -> payment-stream
        - anything else -> <prefix>-stream
        """
        prefix = event_type.split('.')[0]
        return self.STREAM_MAPPINGS.get(prefix, f"{prefix}-stream")

    async def _ensure_stream(self, stream_name: str, prefix: str) -> None:
        """Create the stream if it does not exist yet (idempotent)"""
        if stream_name in self._ensured_streams:
            return
        try:
            await self._js.stream_info(stream_name)
        except NotFoundError:
            await self._js.add_stream(
                name=stream_name,
                subjects=[f"{prefix}.>"],
                max_msgs=100000,
            )
            logger.info(f"Created stream {stream_name} for {prefix}.>")
        self._ensured_streams.add(stream_name)

    async def publish_event(self, event: Event) -> bool:
        """
        Publish an event to its JetStream stream.

        The event type is used as subject (e.g. "order.created"). Returns
        True once JetStream acknowledged the message, False on any failure.
        """
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return False

        try:
            subject = event.type
            data = json.dumps(make_json_safe(event.to_dict())).encode()

            stream_name = self._get_stream_name_for_event(event.type)
            await self._ensure_stream(stream_name, event.type.split('.')[0])

            ack = await self._js.publish(subject, data, stream=stream_name)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True

        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def subscribe_to_events(
        self, pattern: str, handler: EventHandler, durable: Optional[str] = None
    ) -> Optional[str]:
        """
        Subscribe to events with a durable JetStream pull consumer.

        Args:
            pattern: Subject to subscribe to (e.g. "payment.processed")
            handler: Async callback receiving each decoded Event
            durable: Durable consumer name (defaults to
                "<service>-<subject with dots replaced>")
        """
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return None

        consumer_name = durable or f"{self.service_name}-{pattern.replace('.', '-').replace('*', 'all').replace('>', 'all')}"
        self._subscriptions[pattern] = True

        task = asyncio.create_task(
            self._jetstream_consumer_loop(pattern, handler, consumer_name)
        )
        self._subscription_tasks.append(task)

        logger.info(f"Subscribed to {pattern} (JetStream consumer {consumer_name})")
        return consumer_name

    async def _jetstream_consumer_loop(self, pattern: str, handler: EventHandler, consumer_name: str):
        """
        JetStream pull consumer loop.

        1. Ensure stream exists
        2. Bind durable pull subscription
        3. Fetch messages in batches, handle sequentially
        4. Acknowledge every message once its handler returned
        """
        prefix = pattern.split('.')[0]
        stream_name = self._get_stream_name_for_event(pattern)

        logger.info(f"Starting JetStream consumer: stream={stream_name}, consumer={consumer_name}, pattern={pattern}")

        try:
            await self._ensure_stream(stream_name, prefix)
            psub = await self._js.pull_subscribe(pattern, durable=consumer_name, stream=stream_name)

            while self._subscriptions.get(pattern, False):
                try:
                    messages = await psub.fetch(batch=self.fetch_batch_size, timeout=self.fetch_timeout)
                except NATSTimeoutError:
                    continue
                except Exception as pull_e:
                    logger.warning(f"Pull error (will retry): {pull_e}")
                    await asyncio.sleep(5)
                    continue

                logger.debug(f"Pulled {len(messages)} messages from {stream_name}/{consumer_name}")
                for msg in messages:
                    await self._dispatch(msg, handler)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"JetStream consumer loop error for {pattern}: {e}")
        finally:
            self._subscriptions[pattern] = False
            logger.info(f"JetStream consumer stopped: {consumer_name}")

    async def _dispatch(self, msg, handler: EventHandler) -> None:
        """Decode, handle and acknowledge a single message"""
        try:
            sequence = msg.metadata.sequence.stream if msg.metadata else None
            event = decode_message(msg.subject, msg.data, sequence)
            await handler(event)
        except Exception as msg_e:
            logger.error(f"Error processing message on {msg.subject}: {msg_e}")
        finally:
            # Ack regardless of outcome so a poison message is not redelivered forever
            try:
                await msg.ack()
            except Exception as ack_e:
                logger.error(f"Failed to ack message on {msg.subject}: {ack_e}")

    async def unsubscribe(self, pattern: str) -> bool:
        """Stop the consumer loop for a pattern"""
        if pattern in self._subscriptions:
            self._subscriptions[pattern] = False
            logger.info(f"Unsubscribed from {pattern}")
            return True
        return False

    async def close(self):
        """Stop consumers and drain the NATS connection"""
        for pattern in list(self._subscriptions.keys()):
            self._subscriptions[pattern] = False

        for task in self._subscription_tasks:
            if not task.done():
                task.cancel()
        if self._subscription_tasks:
            await asyncio.gather(*self._subscription_tasks, return_exceptions=True)
        self._subscription_tasks.clear()

        if self._nc:
            await self._nc.drain()
            self._nc = None
            self._js = None

        self._is_connected = False
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(
    service_name: str,
    config: Optional[InfraConfig] = None,
) -> Optional[NATSEventBus]:
    """
    Get or create event bus instance.

    Args:
        service_name: Name of the service using the event bus
        config: Optional infrastructure config

    Returns:
        Connected NATSEventBus instance, or None when NATS_ENABLED is false
    """
    global _event_bus

    config = config or InfraConfig.from_env()
    if not config.nats_enabled:
        logger.info(f"NATS disabled, {service_name} runs without event publishing")
        return None

    if _event_bus is None:
        _event_bus = NATSEventBus(service_name=service_name, config=config)
        await _event_bus.connect()

    return _event_bus
