"""
Order Service - Mock Dependencies

Mock implementations for component testing.
Returns Order model objects as expected by the service.
"""
import asyncio
from typing import Optional, Dict, Any, List, Set
from datetime import datetime, timezone
from decimal import Decimal

# Import the actual models used by the service
from microservices.order_service.models import (
    Order, OrderItem, OrderStatus, PaymentStatus, ProductSnapshot
)
from microservices.order_service.protocols import (
    ProductUnavailableError,
    InsufficientStockError
)


class MockOrderRepository:
    """Mock order repository for component testing

    Implements OrderRepositoryProtocol interface. update_order holds a
    per-order asyncio.Lock around the mutator, like the row lock of the
    PostgreSQL repository.
    """

    def __init__(self):
        self._data: Dict[str, Order] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._error: Optional[Exception] = None
        self._write_error: Optional[Exception] = None
        self._call_log: List[Dict] = []

    def set_order(
        self,
        order_id: str,
        user_id: str = "usr_test_123",
        status: OrderStatus = OrderStatus.PENDING,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        items: Optional[List[Dict[str, Any]]] = None,
        total_amount: Decimal = Decimal("10.00"),
        shipping_address: Optional[str] = "1 Test Street",
        payment_method: str = "credit_card",
        payment_intent_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Order:
        """Add an order to the mock repository"""
        now = datetime.now(timezone.utc)
        items = items if items is not None else [
            {"product_id": "prod_a", "quantity": 1, "price": Decimal("10.00"), "name": "Product A"}
        ]
        order = Order(
            order_id=order_id,
            user_id=user_id,
            items=[
                OrderItem(item_id=f"item_{order_id}_{i}", order_id=order_id, **item)
                for i, item in enumerate(items)
            ],
            total_amount=total_amount,
            status=status,
            payment_status=payment_status,
            shipping_address=shipping_address,
            payment_method=payment_method,
            payment_intent_id=payment_intent_id,
            metadata=metadata or {},
            expires_at=expires_at,
            created_at=now,
            updated_at=now
        )
        self._data[order_id] = order
        return order

    def get_stored(self, order_id: str) -> Optional[Order]:
        """Stored order, bypassing the call log"""
        return self._data.get(order_id)

    def set_error(self, error: Exception):
        """Set an error to be raised on operations"""
        self._error = error

    def set_write_error(self, error: Exception):
        """Set an error to be raised when update_order writes a mutated order"""
        self._write_error = error

    def _log_call(self, method: str, **kwargs):
        """Log method calls for assertions"""
        self._call_log.append({"method": method, "kwargs": kwargs})

    def _raise_if_error(self):
        if self._error:
            raise self._error

    def assert_called(self, method: str):
        """Assert that a method was called"""
        called_methods = [c["method"] for c in self._call_log]
        assert method in called_methods, f"Expected {method} to be called, but got {called_methods}"

    def assert_not_called(self, method: str):
        called_methods = [c["method"] for c in self._call_log]
        assert method not in called_methods, f"Expected {method} not to be called, but got {called_methods}"

    def get_call_count(self, method: str) -> int:
        """Get number of times a method was called"""
        return sum(1 for c in self._call_log if c["method"] == method)

    # OrderRepositoryProtocol

    async def create_order(self, order: Order) -> Order:
        self._log_call("create_order", order_id=order.order_id)
        self._raise_if_error()
        self._data[order.order_id] = order.model_copy(deep=True)
        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        self._log_call("get_order", order_id=order_id)
        self._raise_if_error()
        order = self._data.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def update_order(self, order_id: str, mutator) -> Optional[Order]:
        self._log_call("update_order", order_id=order_id)
        self._raise_if_error()

        lock = self._locks.setdefault(order_id, asyncio.Lock())
        async with lock:
            stored = self._data.get(order_id)
            if stored is None:
                return None

            current = stored.model_copy(deep=True)
            updated = await mutator(current)
            if updated is current:
                return current

            if self._write_error:
                raise self._write_error
            self._log_call("write_order", order_id=order_id)
            self._data[order_id] = updated.model_copy(deep=True)
            return updated

    async def list_orders(
        self,
        limit: int = 50,
        offset: int = 0,
        user_id: Optional[str] = None,
        status: Optional[OrderStatus] = None
    ) -> List[Order]:
        self._log_call("list_orders", limit=limit, offset=offset, user_id=user_id, status=status)
        self._raise_if_error()
        orders = [
            o for o in self._data.values()
            if (user_id is None or o.user_id == user_id) and (status is None or o.status == status)
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders[offset:offset + limit]

    async def get_user_orders(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
        self._log_call("get_user_orders", user_id=user_id, limit=limit, offset=offset)
        return await self.list_orders(limit=limit, offset=offset, user_id=user_id)


class MockInventoryClient:
    """Mock inventory client for component testing

    Implements InventoryClientProtocol against an in-memory product table.
    """

    def __init__(self):
        self.products: Dict[str, Dict[str, Any]] = {}
        self.reserved: List[Dict[str, Any]] = []
        self.released: List[Dict[str, Any]] = []
        self.decreased: List[Dict[str, Any]] = []
        self.restored: List[Dict[str, Any]] = []
        self._call_log: List[Dict] = []
        self._reserve_failures: Set[str] = set()
        self._decrease_errors: Dict[str, Exception] = {}
        self._error: Optional[Exception] = None

    def set_product(
        self,
        product_id: str,
        name: str = "Test Product",
        price: Any = "10.00",
        stock: int = 100,
        is_active: bool = True
    ):
        """Add a product to the mock inventory"""
        self.products[product_id] = {
            "name": name,
            "price": price,
            "stock": stock,
            "is_active": is_active,
        }

    def get_stock(self, product_id: str) -> int:
        return self.products[product_id]["stock"]

    def set_error(self, error: Exception):
        """Set an error to be raised by validate_products"""
        self._error = error

    def fail_reservation(self, product_id: str):
        self._reserve_failures.add(product_id)

    def fail_decrease(self, product_id: str, error: Exception):
        self._decrease_errors[product_id] = error

    def _log_call(self, method: str, **kwargs):
        self._call_log.append({"method": method, "kwargs": kwargs})

    def get_call_count(self, method: str) -> int:
        """Get number of times a method was called"""
        return sum(1 for c in self._call_log if c["method"] == method)

    @property
    def total_calls(self) -> int:
        return len(self._call_log)

    # InventoryClientProtocol

    async def validate_products(self, product_ids: List[str]) -> Dict[str, ProductSnapshot]:
        self._log_call("validate_products", product_ids=list(product_ids))
        if self._error:
            raise self._error

        snapshots = {}
        for product_id in dict.fromkeys(product_ids):
            product = self.products.get(product_id)
            if not product or not product["is_active"]:
                raise ProductUnavailableError(product_id)
            snapshots[product_id] = ProductSnapshot(
                product_id=product_id,
                name=product["name"],
                price=product["price"],
                stock=product["stock"]
            )
        return snapshots

    async def reserve_items(self, items: List[OrderItem]) -> List[str]:
        self._log_call("reserve_items", count=len(items))
        failed = []
        for item in items:
            if item.product_id in self._reserve_failures:
                failed.append(item.product_id)
                continue
            self.reserved.append({"product_id": item.product_id, "quantity": item.quantity})
        return failed

    async def release_items(self, items: List[OrderItem]) -> List[str]:
        self._log_call("release_items", count=len(items))
        for item in items:
            self.released.append({"product_id": item.product_id, "quantity": item.quantity})
        return []

    async def decrease_stock(self, product_id: str, quantity: int) -> int:
        self._log_call("decrease_stock", product_id=product_id, quantity=quantity)
        # Let sibling decreases start before this one resolves
        await asyncio.sleep(0)

        if product_id in self._decrease_errors:
            raise self._decrease_errors[product_id]

        product = self.products.get(product_id)
        if product is None:
            raise ProductUnavailableError(product_id)
        if product["stock"] < quantity:
            raise InsufficientStockError(product_id, quantity, product["stock"])

        product["stock"] -= quantity
        self.decreased.append({"product_id": product_id, "quantity": quantity})
        return product["stock"]

    async def restore_stock(self, product_id: str, quantity: int) -> bool:
        self._log_call("restore_stock", product_id=product_id, quantity=quantity)
        if product_id in self.products:
            self.products[product_id]["stock"] += quantity
        self.restored.append({"product_id": product_id, "quantity": quantity})
        return True
