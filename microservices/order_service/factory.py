"""
Order Service Factory

Factory functions for creating service instances with real dependencies.
This is the ONLY place that imports I/O-dependent modules.

Usage:
    from .factory import create_order_service
    service = create_order_service(settings, event_bus)
"""
from typing import Optional

from core.config import OrderServiceSettings, get_settings
from core.logger import setup_service_logger

from .order_service import OrderService
from .events.handlers import PaymentEventHandler


def create_order_service(
    settings: Optional[OrderServiceSettings] = None,
    event_bus=None,
    inventory_client=None,
    repository=None,
) -> OrderService:
    """
    Create OrderService with real dependencies.

    This function imports the real repository (which has I/O dependencies).
    Use this in production, NOT in tests.

    Args:
        settings: Order service settings (defaults to the global settings)
        event_bus: Event bus for publishing events
        inventory_client: Inventory service client
        repository: Order store (defaults to the PostgreSQL repository)

    Returns:
        Configured OrderService instance
    """
    settings = settings or get_settings()
    setup_service_logger(settings.logging.service_name, config=settings.logging)

    if repository is None:
        # Import real repository here (not at module level)
        from .order_repository import OrderRepository
        repository = OrderRepository(config=settings.infrastructure)

    if inventory_client is None:
        from .clients.inventory_client import InventoryClient
        inventory_client = InventoryClient(config=settings.services)

    return OrderService(
        repository=repository,
        inventory_client=inventory_client,
        event_bus=event_bus,
        draft_ttl_minutes=settings.services.draft_order_ttl_minutes,
    )


def create_payment_event_handler(
    order_service: OrderService,
    settings: Optional[OrderServiceSettings] = None,
) -> PaymentEventHandler:
    """Create the payment event handler for an order service"""
    settings = settings or get_settings()
    return PaymentEventHandler(
        order_service,
        dedup_window=settings.services.event_dedup_window,
    )
