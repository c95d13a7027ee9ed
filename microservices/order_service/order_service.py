"""
Order Service Business Logic

Order lifecycle engine: validates order creation, enforces the order-status
and payment-status state machines, coordinates inventory effects and emits
order events.
"""

from typing import Optional, List, Dict, Any, Tuple
from datetime import datetime, timezone, timedelta
import asyncio
import logging
import uuid

from .models import (
    Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod,
    OrderCreateRequest, DraftOrderCreateRequest, OrderUpdateRequest,
    OrderFilter, OrderDetails, OrderItemDetails, ProductSnapshot,
    DRAFT_PAYMENT_METHOD, SHIPPABLE_PAYMENT_STATUSES, RESERVED_ORDER_STATUSES,
    allowed_status_transitions, allowed_payment_transitions,
    can_transition_status, can_transition_payment, to_money
)
from .protocols import (
    OrderRepositoryProtocol,
    InventoryClientProtocol,
    EventBusProtocol,
    OrderServiceError,
    OrderValidationError,
    InvalidQuantityError,
    InsufficientStockError,
    ItemsImmutableError,
    OrderNotFoundError,
    OrderForbiddenError,
    InvalidOrderStateError,
    InvalidTransitionError,
    PaymentRequiredError,
    InventoryServiceError,
    OrderPersistenceError
)

# Import event publishers
from .events.publishers import (
    publish_order_created,
    publish_order_updated,
    publish_order_cancelled
)

logger = logging.getLogger(__name__)

DEFAULT_DRAFT_TTL_MINUTES = 30


class OrderService:
    """
    Order lifecycle engine

    Two entry points drive the same state machine: direct calls from request
    handling and PaymentEventHandler reacting to payment events. Every
    mutation goes through repository.update_order, which serializes
    read-modify-write per order id.
    """

    def __init__(
        self,
        repository: OrderRepositoryProtocol,
        inventory_client: InventoryClientProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        draft_ttl_minutes: int = DEFAULT_DRAFT_TTL_MINUTES
    ):
        """
        Initialize Order Service

        Args:
            repository: Order store (dependency injection)
            inventory_client: Inventory service client (dependency injection)
            event_bus: NATS event bus instance (optional)
            draft_ttl_minutes: Lifetime of draft orders before they may expire
        """
        self.repository = repository
        self.inventory_client = inventory_client
        self.event_bus = event_bus
        self.draft_ttl_minutes = draft_ttl_minutes

        logger.info("✅ OrderService initialized")

    # Order Creation

    async def create_order(self, request: OrderCreateRequest, user_id: str) -> Order:
        """
        Create a new order

        Args:
            request: Order creation request
            user_id: Owner of the order

        Returns:
            The persisted order (status=PENDING, payment_status=PENDING)

        Raises:
            OrderValidationError: malformed request, unavailable product or insufficient stock
            InventoryServiceError: product lookup failed
        """
        self._validate_order_create_request(request, user_id)

        products = await self.inventory_client.validate_products(
            [item.product_id for item in request.items]
        )
        self._check_stock(request.items, products)

        order_id = self._new_order_id()
        now = self._now()
        items = [
            OrderItem(
                item_id=self._new_item_id(),
                product_id=item.product_id,
                quantity=item.quantity,
                price=products[item.product_id].price,
                name=products[item.product_id].name,
                order_id=order_id
            )
            for item in request.items
        ]

        order = Order(
            order_id=order_id,
            user_id=user_id,
            items=items,
            total_amount=self._calculate_total(items),
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            shipping_address=request.shipping_address.strip(),
            payment_method=request.payment_method,
            payment_intent_id=None,
            currency=request.currency or "USD",
            metadata=request.metadata or {},
            created_at=now,
            updated_at=now
        )

        order = await self._persist_new(order)
        logger.info(f"Order created: {order.order_id} for user {user_id}, total {order.total_amount} {order.currency}")

        await self._reserve_stock(order)
        await publish_order_created(self.event_bus, order)
        return order

    async def create_draft_order(self, request: DraftOrderCreateRequest) -> Order:
        """Create a provisional, expiring order whose items carry quantities only"""
        self._validate_draft_order_request(request)

        order_id = self._new_order_id()
        now = self._now()
        items = [
            OrderItem(
                item_id=self._new_item_id(),
                product_id=item.product_id,
                quantity=item.quantity,
                order_id=order_id
            )
            for item in request.items
        ]

        order = Order(
            order_id=order_id,
            user_id=request.user_id,
            items=items,
            total_amount=to_money(request.total_amount),
            status=OrderStatus.DRAFT,
            payment_status=PaymentStatus.PENDING,
            shipping_address=request.shipping_address.strip() if request.shipping_address else None,
            payment_method=DRAFT_PAYMENT_METHOD,
            currency=request.currency or "USD",
            metadata=request.metadata or {},
            expires_at=now + timedelta(minutes=self.draft_ttl_minutes),
            created_at=now,
            updated_at=now
        )

        order = await self._persist_new(order)
        logger.info(f"Draft order created: {order.order_id} for user {request.user_id}, expires at {order.expires_at}")
        return order

    async def confirm_order(
        self,
        order_id: str,
        payment_intent_id: str,
        payment_method_id: Optional[str] = None
    ) -> Order:
        """
        Confirm a draft order after payment capture

        Resolves price/name snapshots, moves DRAFT -> PENDING with payment
        PAID and publishes order.created.

        Raises:
            InvalidOrderStateError: order is not a draft or the draft expired
            OrderValidationError: unavailable product or insufficient stock
        """
        if not payment_intent_id or not payment_intent_id.strip():
            raise OrderValidationError("payment_intent_id is required to confirm an order")

        draft = await self.get_order(order_id)
        self._require_draft(draft, "confirm")

        products = await self.inventory_client.validate_products(
            [item.product_id for item in draft.items]
        )
        self._check_stock(draft.items, products)
        payment_method, method_metadata = self._resolve_payment_method(payment_method_id)

        async def mutator(current: Order) -> Order:
            self._require_draft(current, "confirm")
            if current.expires_at and current.expires_at <= self._now():
                raise InvalidOrderStateError(f"Draft order {current.order_id} expired at {current.expires_at.isoformat()}")
            self._check_status_transition(current, OrderStatus.PENDING)
            self._check_payment_transition(current, PaymentStatus.PAID)

            items = [
                item.model_copy(update={
                    "price": products[item.product_id].price,
                    "name": products[item.product_id].name
                })
                for item in current.items
            ]
            return current.model_copy(update={
                "items": items,
                "total_amount": self._calculate_total(items),
                "status": OrderStatus.PENDING,
                "payment_status": PaymentStatus.PAID,
                "payment_intent_id": payment_intent_id,
                "payment_method": payment_method,
                "metadata": {**current.metadata, **method_metadata},
                "expires_at": None,
                "updated_at": self._now()
            })

        order = await self._mutate(order_id, mutator)
        logger.info(f"Draft order confirmed: {order_id}, payment intent {payment_intent_id}")

        await self._reserve_stock(order)
        await publish_order_created(self.event_bus, order)
        return order

    async def expire_order(self, order_id: str) -> Order:
        """Expire a draft order"""
        async def mutator(current: Order) -> Order:
            self._require_draft(current, "expire")
            self._check_status_transition(current, OrderStatus.EXPIRED)
            return current.model_copy(update={
                "status": OrderStatus.EXPIRED,
                "updated_at": self._now()
            })

        order = await self._mutate(order_id, mutator)
        logger.info(f"Draft order expired: {order_id}")

        await publish_order_updated(self.event_bus, order)
        return order

    # Order Lifecycle Operations

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        tracking_number: Optional[str] = None
    ) -> Order:
        """
        Move an order along the order-status state machine

        Entering SHIPPED requires a captured payment and permanently decreases
        stock for every item; if any decrease fails the status is not changed.
        Entering CANCELLED from PENDING/PROCESSING releases reserved stock.

        Args:
            order_id: Order ID
            new_status: Target status
            tracking_number: Carrier tracking number recorded on shipment

        Raises:
            OrderNotFoundError: unknown order
            InvalidTransitionError: transition outside the state machine
            PaymentRequiredError: shipping an unpaid order
            InsufficientStockError / InventoryServiceError: ship-time decrease failed
        """
        new_status = OrderStatus(new_status)
        previous_status: Optional[OrderStatus] = None
        changed = False
        decreased: List[Tuple[str, int]] = []

        async def mutator(current: Order) -> Order:
            nonlocal previous_status, changed
            previous_status = current.status
            if new_status == current.status:
                return current

            if current.status == OrderStatus.DRAFT and new_status == OrderStatus.PENDING:
                raise InvalidOrderStateError(
                    f"Draft order {current.order_id} must be confirmed with a payment before it becomes pending"
                )
            self._check_status_transition(current, new_status)

            update: Dict[str, Any] = {"status": new_status, "updated_at": self._now()}
            if new_status == OrderStatus.SHIPPED:
                if current.payment_status not in SHIPPABLE_PAYMENT_STATUSES:
                    raise PaymentRequiredError(
                        f"Order {current.order_id} cannot ship with payment status {current.payment_status.value}"
                    )
                await self._decrease_stock_for_shipment(current, decreased)
                if tracking_number:
                    update["tracking_number"] = tracking_number

            changed = True
            return current.model_copy(update=update)

        try:
            order = await self._mutate(order_id, mutator)
        except Exception:
            # Decreases applied but the write failed
            if decreased:
                await self._compensate_decreases(order_id, decreased)
            raise

        if not changed:
            return order

        logger.info(f"Order {order_id} status: {previous_status.value} -> {order.status.value}")

        if order.status == OrderStatus.CANCELLED and previous_status in RESERVED_ORDER_STATUSES:
            await self._release_stock(order)

        await publish_order_updated(self.event_bus, order)
        return order

    async def update_payment_status(
        self,
        order_id: str,
        new_payment_status: PaymentStatus,
        payment_intent_id: Optional[str] = None
    ) -> Order:
        """
        Move an order along the payment-status state machine

        COMPLETED on a PENDING order moves it to PROCESSING; FAILED on a
        PENDING order cancels it and releases reserved stock.
        """
        new_payment_status = PaymentStatus(new_payment_status)
        previous_status: Optional[OrderStatus] = None
        changed = False

        async def mutator(current: Order) -> Order:
            nonlocal previous_status, changed
            previous_status = current.status
            intent_changed = bool(payment_intent_id) and payment_intent_id != current.payment_intent_id
            if new_payment_status == current.payment_status and not intent_changed:
                return current

            self._check_payment_transition(current, new_payment_status)

            update: Dict[str, Any] = {
                "payment_status": new_payment_status,
                "updated_at": self._now()
            }
            if payment_intent_id:
                update["payment_intent_id"] = payment_intent_id

            if current.status == OrderStatus.PENDING and current.payment_status != new_payment_status:
                if new_payment_status == PaymentStatus.COMPLETED:
                    self._check_status_transition(current, OrderStatus.PROCESSING)
                    update["status"] = OrderStatus.PROCESSING
                elif new_payment_status == PaymentStatus.FAILED:
                    self._check_status_transition(current, OrderStatus.CANCELLED)
                    update["status"] = OrderStatus.CANCELLED

            changed = True
            return current.model_copy(update=update)

        order = await self._mutate(order_id, mutator)
        if not changed:
            return order

        logger.info(
            f"Order {order_id} payment status: {order.payment_status.value} "
            f"(order status {previous_status.value} -> {order.status.value})"
        )

        if order.status == OrderStatus.CANCELLED and previous_status == OrderStatus.PENDING:
            await self._release_stock(order)

        await publish_order_updated(self.event_bus, order)
        return order

    async def cancel_order(self, order_id: str) -> Order:
        """
        Cancel an order

        Only PENDING or PROCESSING orders can be cancelled; reserved stock is
        released on a best-effort basis.
        """
        async def mutator(current: Order) -> Order:
            if current.status not in RESERVED_ORDER_STATUSES:
                raise InvalidOrderStateError(
                    f"Only pending or processing orders can be cancelled (order {current.order_id} is {current.status.value})"
                )
            self._check_status_transition(current, OrderStatus.CANCELLED)
            return current.model_copy(update={
                "status": OrderStatus.CANCELLED,
                "updated_at": self._now()
            })

        order = await self._mutate(order_id, mutator)
        logger.info(f"Order cancelled: {order_id}")

        await self._release_stock(order)
        await publish_order_cancelled(self.event_bus, order)
        return order

    async def update_order(self, order_id: str, request: OrderUpdateRequest, user_id: str) -> Order:
        """
        Update a pending order owned by user_id (shipping address only)

        The request is checked once the order is loaded, so an unknown id
        raises OrderNotFoundError and a foreign order OrderForbiddenError
        before any request validation error.
        """
        changed = False

        async def mutator(current: Order) -> Order:
            nonlocal changed
            if current.user_id != user_id:
                raise OrderForbiddenError(f"User {user_id} does not own order {current.order_id}")
            self._validate_order_update_request(request)
            if current.status != OrderStatus.PENDING:
                raise InvalidOrderStateError(
                    f"Only pending orders can be updated (order {current.order_id} is {current.status.value})"
                )
            if request.shipping_address is None:
                return current
            address = request.shipping_address.strip()
            if address == current.shipping_address:
                return current

            changed = True
            return current.model_copy(update={
                "shipping_address": address,
                "updated_at": self._now()
            })

        order = await self._mutate(order_id, mutator)
        if changed:
            logger.info(f"Order updated: {order_id}")
            await publish_order_updated(self.event_bus, order)
        return order

    # Order Query Operations

    async def get_order(self, order_id: str) -> Order:
        """Get order by ID"""
        try:
            order = await self.repository.get_order(order_id)
        except Exception as e:
            logger.error(f"Failed to get order {order_id}: {e}")
            raise OrderPersistenceError(f"Failed to get order: {str(e)}") from e

        if not order:
            raise OrderNotFoundError(f"Order with ID {order_id} not found")
        return order

    async def get_order_for_user(self, order_id: str, user_id: str, is_admin: bool = False) -> Order:
        """Get an order the caller owns (admins may read any order)"""
        order = await self.get_order(order_id)
        if not is_admin and order.user_id != user_id:
            raise OrderForbiddenError(f"User {user_id} cannot access order {order_id}")
        return order

    async def list_orders(self, filter_params: Optional[OrderFilter] = None) -> List[Order]:
        """List orders with filtering"""
        filter_params = filter_params or OrderFilter()
        try:
            return await self.repository.list_orders(
                limit=filter_params.limit,
                offset=filter_params.offset,
                user_id=filter_params.user_id,
                status=filter_params.status
            )
        except Exception as e:
            logger.error(f"Failed to list orders: {e}")
            raise OrderPersistenceError(f"Failed to list orders: {str(e)}") from e

    async def get_user_orders(self, user_id: str, limit: int = 50, offset: int = 0) -> List[Order]:
        """Get orders for a specific user"""
        try:
            return await self.repository.get_user_orders(user_id, limit, offset)
        except Exception as e:
            logger.error(f"Failed to get user orders for {user_id}: {e}")
            raise OrderPersistenceError(f"Failed to get user orders: {str(e)}") from e

    async def get_order_details(self, order_id: str) -> OrderDetails:
        """Order with line totals and the transitions currently available"""
        order = await self.get_order(order_id)
        if order.is_terminal:
            allowed_payments: List[PaymentStatus] = []
        else:
            allowed_payments = sorted(allowed_payment_transitions(order.payment_status), key=lambda s: s.value)

        return OrderDetails(
            order=order,
            items=[
                OrderItemDetails(
                    product_id=item.product_id,
                    name=item.name,
                    quantity=item.quantity,
                    price=item.price,
                    line_total=item.line_total
                )
                for item in order.items
            ],
            item_count=sum(item.quantity for item in order.items),
            is_terminal=order.is_terminal,
            allowed_statuses=self._manual_status_transitions(order),
            allowed_payment_statuses=allowed_payments
        )

    # State Machine Guards

    @staticmethod
    def _manual_status_transitions(order: Order) -> List[OrderStatus]:
        """Targets update_status accepts; a draft reaches PENDING only through confirm_order"""
        targets = allowed_status_transitions(order.status)
        if order.status == OrderStatus.DRAFT:
            targets = targets - {OrderStatus.PENDING}
        return sorted(targets, key=lambda s: s.value)

    def _check_status_transition(self, order: Order, target: OrderStatus) -> None:
        if not can_transition_status(order.status, target):
            raise InvalidTransitionError(
                "order status", order.status, target, allowed_status_transitions(order.status)
            )

    def _check_payment_transition(self, order: Order, target: PaymentStatus) -> None:
        # Terminal orders also reject a new payment intent on an unchanged status
        if order.is_terminal:
            raise InvalidOrderStateError(
                f"Order {order.order_id} is {order.status.value}; payment details can no longer change"
            )
        if target == order.payment_status:
            return
        if not can_transition_payment(order.payment_status, target):
            raise InvalidTransitionError(
                "payment status", order.payment_status, target, allowed_payment_transitions(order.payment_status)
            )

    def _require_draft(self, order: Order, action: str) -> None:
        if order.status != OrderStatus.DRAFT:
            raise InvalidOrderStateError(
                f"Only draft orders can {action} (order {order.order_id} is {order.status.value})"
            )

    # Inventory Effects

    async def _reserve_stock(self, order: Order) -> None:
        """Advisory reservation; failures never fail the order operation"""
        try:
            failed = await self.inventory_client.reserve_items(order.items)
            if failed:
                logger.warning(f"Stock reservation failed for order {order.order_id}, products: {failed}")
        except Exception as e:
            logger.error(f"Failed to reserve stock for order {order.order_id}: {e}")

    async def _release_stock(self, order: Order) -> None:
        """Best-effort release of reserved stock"""
        try:
            failed = await self.inventory_client.release_items(order.items)
            if failed:
                logger.warning(f"Stock release failed for order {order.order_id}, products: {failed}")
        except Exception as e:
            logger.error(f"Failed to release stock for order {order.order_id}: {e}")

    async def _decrease_stock_for_shipment(self, order: Order, decreased: List[Tuple[str, int]]) -> None:
        """
        Permanently decrease stock for every product of the order.

        Runs one call per product concurrently. If any call fails, the
        decreases that succeeded are compensated and the first failure is
        raised.
        """
        quantities = self._aggregate_quantities(order.items)
        results = await asyncio.gather(
            *(self.inventory_client.decrease_stock(pid, qty) for pid, qty in quantities),
            return_exceptions=True
        )

        failures = []
        for (product_id, quantity), result in zip(quantities, results):
            if isinstance(result, BaseException):
                failures.append((product_id, result))
            else:
                decreased.append((product_id, quantity))

        if not failures:
            return

        await self._compensate_decreases(order.order_id, decreased)
        decreased.clear()

        product_id, error = failures[0]
        logger.error(f"Stock decrease failed for order {order.order_id}, product {product_id}: {error}")
        if isinstance(error, OrderServiceError):
            raise error
        raise InventoryServiceError(f"Failed to decrease stock for product {product_id}: {error}") from error

    async def _compensate_decreases(self, order_id: str, decreased: List[Tuple[str, int]]) -> None:
        if not decreased:
            return
        results = await asyncio.gather(
            *(self.inventory_client.restore_stock(pid, qty) for pid, qty in decreased),
            return_exceptions=True
        )
        for (product_id, quantity), result in zip(decreased, results):
            if result is not True:
                logger.error(
                    f"Could not restore {quantity} units of {product_id} for order {order_id}; manual correction needed"
                )

    # Persistence Helpers

    async def _persist_new(self, order: Order) -> Order:
        try:
            return await self.repository.create_order(order)
        except Exception as e:
            logger.error(f"Failed to create order {order.order_id}: {e}")
            raise OrderPersistenceError(f"Failed to create order: {str(e)}") from e

    async def _mutate(self, order_id: str, mutator) -> Order:
        try:
            order = await self.repository.update_order(order_id, mutator)
        except OrderServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to update order {order_id}: {e}")
            raise OrderPersistenceError(f"Failed to update order: {str(e)}") from e

        if order is None:
            raise OrderNotFoundError(f"Order with ID {order_id} not found")
        return order

    # Private Helper Methods

    def _validate_order_create_request(self, request: OrderCreateRequest, user_id: str) -> None:
        """Validate order creation request"""
        if not user_id or not user_id.strip():
            raise OrderValidationError("user_id is required")

        if not request.items:
            raise OrderValidationError("Order must contain at least one item")

        self._validate_items(request.items)

        if not request.shipping_address or not request.shipping_address.strip():
            raise OrderValidationError("shipping_address is required")

        valid_methods = [method.value for method in PaymentMethod]
        if request.payment_method not in valid_methods:
            raise OrderValidationError(
                f"payment_method must be one of {valid_methods}, got '{request.payment_method}'"
            )

    def _validate_draft_order_request(self, request: DraftOrderCreateRequest) -> None:
        """Validate draft creation request (no stock or price checks)"""
        if not request.user_id or not request.user_id.strip():
            raise OrderValidationError("user_id is required")

        if not request.items:
            raise OrderValidationError("Order must contain at least one item")

        self._validate_items(request.items)

        if request.shipping_address is not None and not request.shipping_address.strip():
            raise OrderValidationError("shipping_address cannot be empty")

        if request.total_amount < 0:
            raise OrderValidationError("total_amount cannot be negative")

    def _validate_order_update_request(self, request: OrderUpdateRequest) -> None:
        if "items" in request.model_fields_set and request.items is not None:
            raise ItemsImmutableError("Order items cannot be changed after creation")

        if request.shipping_address is not None and not request.shipping_address.strip():
            raise OrderValidationError("shipping_address cannot be empty")

    def _validate_items(self, items) -> None:
        for item in items:
            if not item.product_id or not item.product_id.strip():
                raise OrderValidationError("product_id is required for every item")
            if item.quantity is None or item.quantity <= 0:
                raise InvalidQuantityError(
                    f"Quantity for product {item.product_id} must be at least 1, got {item.quantity}"
                )

    def _check_stock(self, items, products: Dict[str, ProductSnapshot]) -> None:
        for product_id, quantity in self._aggregate_quantities(items):
            available = products[product_id].stock
            if quantity > available:
                raise InsufficientStockError(product_id, quantity, available)

    def _resolve_payment_method(self, payment_method_id: Optional[str]) -> Tuple[str, Dict[str, Any]]:
        """Map a confirmation's payment method reference to a PaymentMethod"""
        valid_methods = [method.value for method in PaymentMethod]
        if payment_method_id in valid_methods:
            return payment_method_id, {}
        if payment_method_id:
            # Provider reference (e.g. a card payment method id)
            return PaymentMethod.CREDIT_CARD.value, {"payment_method_id": payment_method_id}
        return PaymentMethod.CREDIT_CARD.value, {}

    @staticmethod
    def _aggregate_quantities(items) -> List[Tuple[str, int]]:
        totals: Dict[str, int] = {}
        for item in items:
            totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
        return list(totals.items())

    @staticmethod
    def _calculate_total(items: List[OrderItem]):
        return to_money(sum((item.price * item.quantity for item in items), to_money(0)))

    @staticmethod
    def _new_order_id() -> str:
        return f"order_{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _new_item_id() -> str:
        return f"item_{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)
