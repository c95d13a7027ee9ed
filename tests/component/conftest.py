"""
Component Test Layer Configuration

Structure:
    tests/component/
    ├── order_service/   OrderService and PaymentEventHandler tests
    └── mocks/           Shared mock implementations

Usage:
    pytest tests/component -v
    pytest tests/component/order_service -v
"""
import os
import sys

import pytest

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["NATS_ENABLED"] = "false"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from tests.component.mocks import MockEventBus
from tests.component.order_service.mocks import MockOrderRepository, MockInventoryClient


# =============================================================================
# Event Bus Mocks
# =============================================================================

@pytest.fixture
def mock_event_bus() -> MockEventBus:
    """Mock NATS event bus"""
    return MockEventBus()


# =============================================================================
# Order Service Mocks
# =============================================================================

@pytest.fixture
def mock_repo() -> MockOrderRepository:
    """Fresh in-memory order repository"""
    return MockOrderRepository()


@pytest.fixture
def mock_inventory() -> MockInventoryClient:
    """Inventory with two active products in stock"""
    inventory = MockInventoryClient()
    inventory.set_product("prod_a", name="Widget", price="10.99", stock=10)
    inventory.set_product("prod_b", name="Gadget", price="24.99", stock=5)
    return inventory


@pytest.fixture
def order_service(mock_repo, mock_inventory, mock_event_bus):
    """OrderService wired to the mocks"""
    from microservices.order_service.order_service import OrderService

    return OrderService(
        repository=mock_repo,
        inventory_client=mock_inventory,
        event_bus=mock_event_bus
    )
