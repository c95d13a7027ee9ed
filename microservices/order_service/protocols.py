"""
Order Service Protocols (Interfaces)

These interfaces define contracts for dependency injection.
NO import-time I/O dependencies - safe to import anywhere.
"""
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, runtime_checkable

# Import only models (no I/O dependencies)
from .models import Order, OrderStatus, OrderItem, ProductSnapshot


# ============================================================================
# Custom Exceptions - defined here to avoid importing repository
# ============================================================================

class OrderServiceError(Exception):
    """Base exception for order service errors"""
    pass


class OrderValidationError(OrderServiceError):
    """Malformed request: empty items, bad quantity, bad payment method, empty address"""
    pass


class InvalidQuantityError(OrderValidationError):
    """Line item quantity is not a positive integer"""
    pass


class ProductUnavailableError(OrderValidationError):
    """Product does not exist or is inactive"""

    def __init__(self, product_id: str, message: Optional[str] = None):
        self.product_id = product_id
        super().__init__(message or f"Product with ID {product_id} is not available")


class InsufficientStockError(OrderValidationError):
    """Requested quantity exceeds available stock"""

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}"
        )


class ItemsImmutableError(OrderValidationError):
    """Order items cannot change after creation"""
    pass


class OrderNotFoundError(OrderServiceError):
    """Order not found error"""
    pass


class OrderForbiddenError(OrderServiceError):
    """Caller does not own the order"""
    pass


class InvalidOrderStateError(OrderServiceError):
    """Operation not allowed in the order's current state"""
    pass


class InvalidTransitionError(InvalidOrderStateError):
    """Transition outside the order/payment state machine"""

    def __init__(self, kind: str, current: Any, attempted: Any, allowed: Iterable[Any]):
        self.kind = kind
        self.current = current
        self.attempted = attempted
        self.allowed = sorted(getattr(a, "value", a) for a in allowed)
        current_value = getattr(current, "value", current)
        attempted_value = getattr(attempted, "value", attempted)
        super().__init__(
            f"Invalid {kind} transition from {current_value} to {attempted_value}; "
            f"allowed: {self.allowed or 'none (terminal)'}"
        )


class PaymentRequiredError(OrderServiceError):
    """Payment required to ship order"""
    pass


class InfrastructureError(OrderServiceError):
    """Remote collaborator (inventory, store, queue) failed"""
    pass


class InventoryServiceError(InfrastructureError):
    """Inventory service call failed"""
    pass


class OrderPersistenceError(InfrastructureError):
    """Order store call failed"""
    pass


# ============================================================================
# Repository Protocol
# ============================================================================

OrderMutator = Callable[[Order], Awaitable[Order]]


@runtime_checkable
class OrderRepositoryProtocol(Protocol):
    """
    Interface for Order Repository.

    update_order must give read-modify-write atomicity per order id: the
    mutator sees the latest committed order and no other update of the same
    order interleaves until its result is written. If the mutator raises,
    nothing is written.
    """

    async def create_order(self, order: Order) -> Order:
        """Persist a new order"""
        ...

    async def get_order(self, order_id: str) -> Optional[Order]:
        """Get order by ID"""
        ...

    async def update_order(self, order_id: str, mutator: OrderMutator) -> Optional[Order]:
        """Atomically apply mutator to the stored order; None if not found"""
        ...

    async def list_orders(
        self,
        limit: int = 50,
        offset: int = 0,
        user_id: Optional[str] = None,
        status: Optional[OrderStatus] = None
    ) -> List[Order]:
        """List orders with filtering, newest first"""
        ...

    async def get_user_orders(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0
    ) -> List[Order]:
        """Get orders for a specific user"""
        ...


# ============================================================================
# Event Bus Protocol
# ============================================================================

@runtime_checkable
class EventBusProtocol(Protocol):
    """Interface for Event Bus - no I/O imports"""

    async def publish_event(self, event: Any) -> bool:
        """Publish an event"""
        ...


# ============================================================================
# Client Protocols
# ============================================================================

@runtime_checkable
class InventoryClientProtocol(Protocol):
    """Interface for Inventory Service Client"""

    async def validate_products(self, product_ids: List[str]) -> Dict[str, ProductSnapshot]:
        """Fetch price/name/stock; raises ProductUnavailableError on the first unavailable id"""
        ...

    async def reserve_items(self, items: List[OrderItem]) -> List[str]:
        """Best-effort reservation; returns product ids that failed"""
        ...

    async def release_items(self, items: List[OrderItem]) -> List[str]:
        """Best-effort release; returns product ids that failed"""
        ...

    async def decrease_stock(self, product_id: str, quantity: int) -> int:
        """Permanently decrease stock; raises on failure"""
        ...

    async def restore_stock(self, product_id: str, quantity: int) -> bool:
        """Undo a decrease (compensation); best-effort"""
        ...
