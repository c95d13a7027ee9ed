"""
Order Service Data Models

Pydantic models for orders, order items, lifecycle requests and the two
order state machines (order status and payment status).
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any, FrozenSet
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum


MONEY_QUANTUM = Decimal("0.01")

# payment_method stored on drafts until confirmation
DRAFT_PAYMENT_METHOD = "pending"


def to_money(value: Any) -> Decimal:
    """Convert a price/amount to a 2-decimal Decimal without float artefacts"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    """Order status enumeration"""
    DRAFT = "draft"
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentStatus(str, Enum):
    """Payment status enumeration"""
    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """Accepted payment methods"""
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"


# ============================================================================
# State Machines
# ============================================================================

ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.DRAFT: frozenset({OrderStatus.PENDING, OrderStatus.EXPIRED, OrderStatus.CANCELLED}),
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.EXPIRED: frozenset(),
}

PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.COMPLETED, PaymentStatus.REFUNDED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.REFUNDED: frozenset(),
}

TERMINAL_ORDER_STATUSES = frozenset(
    status for status, allowed in ORDER_STATUS_TRANSITIONS.items() if not allowed
)

# Payment must be captured before an order may ship
SHIPPABLE_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.COMPLETED})

# Statuses whose stock reservation is released on cancellation
RESERVED_ORDER_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})


def allowed_status_transitions(current: OrderStatus) -> FrozenSet[OrderStatus]:
    return ORDER_STATUS_TRANSITIONS[current]


def allowed_payment_transitions(current: PaymentStatus) -> FrozenSet[PaymentStatus]:
    return PAYMENT_STATUS_TRANSITIONS[current]


def can_transition_status(current: OrderStatus, target: OrderStatus) -> bool:
    """Self-transitions are always permitted (no-op)"""
    return current == target or target in ORDER_STATUS_TRANSITIONS[current]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Self-transitions are always permitted (no-op)"""
    return current == target or target in PAYMENT_STATUS_TRANSITIONS[current]


# Core Order Models

class OrderItem(BaseModel):
    """Line item owned by exactly one order"""
    item_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    price: Optional[Decimal] = None  # unit price snapshot; None while draft
    name: Optional[str] = None  # product name snapshot; None while draft
    order_id: str = ""

    @property
    def line_total(self) -> Optional[Decimal]:
        if self.price is None:
            return None
        return to_money(self.price * self.quantity)


class Order(BaseModel):
    """Core order model"""
    order_id: str
    user_id: str
    items: List[OrderItem] = []
    total_amount: Decimal = Decimal("0.00")
    status: OrderStatus
    payment_status: PaymentStatus = PaymentStatus.PENDING
    shipping_address: Optional[str] = None
    payment_method: str
    payment_intent_id: Optional[str] = None
    tracking_number: Optional[str] = None
    currency: str = "USD"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES


class ProductSnapshot(BaseModel):
    """Product data captured from the inventory service"""
    product_id: str
    name: str
    price: Decimal
    stock: int = 0

    @field_validator('price', mode='before')
    @classmethod
    def normalize_price(cls, v):
        return to_money(v)


# Request Models

class OrderItemRequest(BaseModel):
    """Line item of a create-order request"""
    product_id: str
    quantity: int


class OrderCreateRequest(BaseModel):
    """Create order request (validated by OrderService before any side effect)"""
    items: List[OrderItemRequest] = Field(default_factory=list, description="Order line items")
    shipping_address: str = Field("", description="Shipping address")
    payment_method: str = Field("", description="One of credit_card, debit_card, paypal, bank_transfer")
    currency: str = Field(default="USD", description="Order currency")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Additional metadata")


class DraftOrderItemRequest(BaseModel):
    """Draft line item: quantity only, price/name resolved at confirmation"""
    product_id: str
    quantity: int


class DraftOrderCreateRequest(BaseModel):
    """Create draft order request"""
    user_id: str
    items: List[DraftOrderItemRequest] = Field(default_factory=list)
    shipping_address: Optional[str] = None
    total_amount: Decimal = Field(default=Decimal("0"), description="Provisional amount quoted to the customer")
    currency: str = "USD"
    metadata: Optional[Dict[str, Any]] = None


class OrderUpdateRequest(BaseModel):
    """Update order request; items may be sent but are rejected"""
    shipping_address: Optional[str] = None
    items: Optional[List[Dict[str, Any]]] = None


# Filter and Query Models

class OrderFilter(BaseModel):
    """Order filtering parameters"""
    user_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    limit: int = Field(default=50, le=100)
    offset: int = Field(default=0, ge=0)


# Response Models

class OrderItemDetails(BaseModel):
    """Line item with computed line total"""
    product_id: str
    name: Optional[str] = None
    quantity: int
    price: Optional[Decimal] = None
    line_total: Optional[Decimal] = None


class OrderDetails(BaseModel):
    """Order with derived lifecycle information"""
    order: Order
    items: List[OrderItemDetails]
    item_count: int
    is_terminal: bool
    allowed_statuses: List[OrderStatus]
    allowed_payment_statuses: List[PaymentStatus]
