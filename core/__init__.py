#!/usr/bin/env python3
"""
Core Module for the Order Service

Shared infrastructure components used by the order service.

COMPONENTS:
    - config/: dataclass configuration loaded from the environment
    - logger.py: service logger setup
    - nats_client.py: NATS JetStream event bus for event-driven communication

USAGE:
    from core.config import get_settings
    from core.nats_client import get_event_bus

    settings = get_settings()
    event_bus = await get_event_bus("order_service", settings.infrastructure)
"""

__version__ = "2.0.0"
