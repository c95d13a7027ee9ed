"""
Order Repository

Data access layer for order management operations using asyncpg.
"""

from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
import json
import logging

import asyncpg

from core.config import InfraConfig
from .models import Order, OrderItem, OrderStatus, PaymentStatus
from .protocols import OrderMutator, OrderPersistenceError

logger = logging.getLogger(__name__)

ORDER_COLUMNS = (
    "order_id", "user_id", "items", "total_amount", "currency", "status",
    "payment_status", "shipping_address", "payment_method", "payment_intent_id",
    "tracking_number", "metadata", "expires_at", "created_at", "updated_at"
)

JSONB_COLUMNS = ("items", "metadata")


class OrderRepository:
    """
    Repository for order data operations

    update_order locks the order row (SELECT ... FOR UPDATE) for the length
    of the mutator, so concurrent updates of one order are serialized.
    """

    def __init__(self, config: Optional[InfraConfig] = None, pool: Optional[asyncpg.Pool] = None):
        """Initialize Order Repository; the pool is created on first use"""
        self.config = config or InfraConfig.from_env()
        self._pool = pool

        self.schema = "orders"  # Using "orders" instead of "order" (reserved keyword)
        self.orders_table = "orders"
        self.table = f'"{self.schema}".{self.orders_table}'

        logger.info(
            f"OrderRepository configured for PostgreSQL at "
            f"{self.config.postgres_host}:{self.config.postgres_port}/{self.config.postgres_db}"
        )

    async def initialize(self) -> asyncpg.Pool:
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    dsn=self.config.postgres_dsn,
                    min_size=self.config.postgres_pool_min,
                    max_size=self.config.postgres_pool_max
                )
            except (asyncpg.PostgresError, OSError) as e:
                logger.error(f"Failed to connect to PostgreSQL: {e}")
                raise OrderPersistenceError(f"Failed to connect to order store: {e}") from e
            logger.info("OrderRepository connection pool created")
        return self._pool

    async def close(self):
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def create_order(self, order: Order) -> Order:
        """Create a new order"""
        pool = await self.initialize()
        columns = ", ".join(ORDER_COLUMNS)
        placeholders = ", ".join(self._placeholder(i, col) for i, col in enumerate(ORDER_COLUMNS, start=1))
        query = f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders}) RETURNING *"

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(query, *self._order_to_params(order))
        except asyncpg.UniqueViolationError as e:
            raise OrderPersistenceError(f"Order {order.order_id} already exists") from e
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Failed to create order {order.order_id}: {e}")
            raise OrderPersistenceError(f"Failed to create order: {e}") from e

        return self._row_to_order(row)

    async def get_order(self, order_id: str) -> Optional[Order]:
        """Get order by ID"""
        pool = await self.initialize()
        query = f"SELECT * FROM {self.table} WHERE order_id = $1"

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(query, order_id)
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Failed to get order {order_id}: {e}")
            raise OrderPersistenceError(f"Failed to get order: {e}") from e

        return self._row_to_order(row) if row else None

    async def update_order(self, order_id: str, mutator: OrderMutator) -> Optional[Order]:
        """
        Apply mutator to the locked order row and write the result.

        Exceptions raised by the mutator roll the transaction back and
        propagate unchanged. Returning the given order skips the write.
        """
        pool = await self.initialize()
        select_query = f"SELECT * FROM {self.table} WHERE order_id = $1 FOR UPDATE"
        update_columns = [col for col in ORDER_COLUMNS if col not in ("order_id", "created_at")]
        set_clause = ", ".join(
            f"{col} = {self._placeholder(i, col)}" for i, col in enumerate(update_columns, start=2)
        )
        update_query = f"UPDATE {self.table} SET {set_clause} WHERE order_id = $1 RETURNING *"

        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(select_query, order_id)
                    if row is None:
                        return None

                    current = self._row_to_order(row)
                    updated = await mutator(current)
                    if updated is current:
                        return current

                    params = dict(zip(ORDER_COLUMNS, self._order_to_params(updated)))
                    row = await conn.fetchrow(update_query, order_id, *(params[col] for col in update_columns))
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Failed to update order {order_id}: {e}")
            raise OrderPersistenceError(f"Failed to update order: {e}") from e

        return self._row_to_order(row)

    async def list_orders(
        self,
        limit: int = 50,
        offset: int = 0,
        user_id: Optional[str] = None,
        status: Optional[OrderStatus] = None
    ) -> List[Order]:
        """List orders with filtering"""
        pool = await self.initialize()
        conditions = []
        params: List[Any] = []

        if user_id:
            params.append(user_id)
            conditions.append(f"user_id = ${len(params)}")

        if status:
            params.append(OrderStatus(status).value)
            conditions.append(f"status = ${len(params)}")

        where_clause = " AND ".join(conditions) if conditions else "TRUE"
        params.extend([limit, offset])
        query = f'''
            SELECT * FROM {self.table}
            WHERE {where_clause}
            ORDER BY created_at DESC
            LIMIT ${len(params) - 1} OFFSET ${len(params)}
        '''

        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(query, *params)
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Failed to list orders: {e}")
            raise OrderPersistenceError(f"Failed to list orders: {e}") from e

        return [self._row_to_order(row) for row in rows]

    async def get_user_orders(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0
    ) -> List[Order]:
        """Get orders for a specific user"""
        return await self.list_orders(
            limit=limit,
            offset=offset,
            user_id=user_id
        )

    @staticmethod
    def _placeholder(index: int, column: str) -> str:
        if column in JSONB_COLUMNS:
            return f"${index}::jsonb"
        return f"${index}"

    @staticmethod
    def _order_to_params(order: Order) -> List[Any]:
        """Column values in ORDER_COLUMNS order"""
        items = [item.model_dump(mode='json') for item in order.items]
        return [
            order.order_id,
            order.user_id,
            json.dumps(items),
            order.total_amount,
            order.currency,
            order.status.value,
            order.payment_status.value,
            order.shipping_address,
            order.payment_method,
            order.payment_intent_id,
            order.tracking_number,
            json.dumps(order.metadata or {}, default=str),
            order.expires_at,
            order.created_at,
            order.updated_at
        ]

    def _row_to_order(self, row) -> Order:
        """Convert database row to Order model"""
        data: Dict[str, Any] = dict(row)

        items = data.get("items")
        if isinstance(items, str):
            items = json.loads(items)
        elif not isinstance(items, list):
            items = []

        metadata = data.get("metadata")
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        elif not isinstance(metadata, dict):
            metadata = {}

        return Order(
            order_id=data["order_id"],
            user_id=data["user_id"],
            items=[OrderItem(**item) for item in items],
            total_amount=Decimal(str(data["total_amount"])),
            currency=data["currency"],
            status=OrderStatus(data["status"]),
            payment_status=PaymentStatus(data["payment_status"]),
            shipping_address=data.get("shipping_address"),
            payment_method=data["payment_method"],
            payment_intent_id=data.get("payment_intent_id"),
            tracking_number=data.get("tracking_number"),
            metadata=metadata,
            expires_at=self._as_datetime(data.get("expires_at")),
            created_at=self._as_datetime(data["created_at"]),
            updated_at=self._as_datetime(data["updated_at"])
        )

    @staticmethod
    def _as_datetime(value) -> Optional[datetime]:
        if value is None or isinstance(value, datetime):
            return value
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
