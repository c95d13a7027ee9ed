#!/usr/bin/env python3
"""Service configuration for the order service and its peer services

Peer service endpoints the order service calls synchronously (inventory)
and tunables of the order lifecycle itself.
"""
import os
from dataclasses import dataclass

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class ServiceConfig:
    """Order service settings and peer service endpoints"""

    service_name: str = "order_service"

    # ===========================================
    # Peer Services
    # ===========================================
    # Inventory / product service (price, name, stock)
    inventory_service_url: str = "http://localhost:8220"
    inventory_timeout_seconds: float = 30.0

    # ===========================================
    # Order Lifecycle
    # ===========================================
    draft_order_ttl_minutes: int = 30

    # Number of inbound event ids remembered for duplicate suppression
    event_dedup_window: int = 10000

    @classmethod
    def from_env(cls) -> 'ServiceConfig':
        """Load service configuration from environment variables"""
        return cls(
            service_name=os.getenv("SERVICE_NAME", "order_service"),
            inventory_service_url=(
                os.getenv("INVENTORY_SERVICE_URL")
                or os.getenv("PRODUCT_SERVICE_URL", "http://localhost:8220")
            ),
            inventory_timeout_seconds=_float(os.getenv("INVENTORY_TIMEOUT_SECONDS", "30"), 30.0),
            draft_order_ttl_minutes=_int(os.getenv("DRAFT_ORDER_TTL_MINUTES", "30"), 30),
            event_dedup_window=_int(os.getenv("EVENT_DEDUP_WINDOW", "10000"), 10000),
        )
