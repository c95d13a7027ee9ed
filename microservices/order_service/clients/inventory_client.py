"""
Inventory Service Client for Order Service

Thin client over the inventory/product service:
- product validation (existence, active flag, price, name, stock)
- advisory stock reservation/release (never raises)
- permanent stock decrease at shipment (raises)
"""

import asyncio
import httpx
import logging
from typing import Optional, Dict, Any, List

from ..models import OrderItem, ProductSnapshot
from ..protocols import (
    ProductUnavailableError,
    InsufficientStockError,
    InventoryServiceError
)

logger = logging.getLogger(__name__)


class InventoryClient:
    """Client for the inventory service"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        config=None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if base_url:
            self.base_url = base_url.rstrip('/')
        elif config is not None:
            self.base_url = config.inventory_service_url.rstrip('/')
            timeout = config.inventory_timeout_seconds
        else:
            self.base_url = "http://localhost:8220"
            logger.warning(f"No inventory service URL configured, using default: {self.base_url}")

        self.client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json", "User-Agent": "isA-Internal-Client/order_service"}
        )
        logger.info(f"InventoryClient initialized with base_url: {self.base_url}")

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ========================================
    # Product lookup
    # ========================================

    async def get_product(self, product_id: str) -> Dict[str, Any]:
        """
        Fetch a product record.

        Raises:
            ProductUnavailableError: product does not exist
            InventoryServiceError: transport error or unexpected status
        """
        try:
            response = await self.client.get(f"{self.base_url}/products/{product_id}")
        except httpx.HTTPError as e:
            logger.error(f"Error fetching product {product_id}: {e}")
            raise InventoryServiceError(f"Inventory service unreachable: {e}") from e

        if response.status_code == 404:
            raise ProductUnavailableError(product_id, f"Product with ID {product_id} not found")

        try:
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to fetch product {product_id}: {e.response.status_code}")
            raise InventoryServiceError(
                f"Inventory service returned {e.response.status_code} for product {product_id}"
            ) from e
        except ValueError as e:
            raise InventoryServiceError(f"Invalid product payload for {product_id}") from e

    async def validate_product(self, product_id: str) -> ProductSnapshot:
        """Fetch a product and ensure it can be ordered"""
        data = await self.get_product(product_id)
        if not data:
            raise ProductUnavailableError(product_id)

        is_active = data.get("isActive", data.get("is_active", False))
        if not is_active:
            raise ProductUnavailableError(product_id)

        return ProductSnapshot(
            product_id=product_id,
            name=data.get("name", ""),
            price=data.get("price", 0),
            stock=int(data.get("stock", 0) or 0)
        )

    async def validate_products(self, product_ids: List[str]) -> Dict[str, ProductSnapshot]:
        """
        Validate a set of products concurrently.

        All-or-nothing: the first unavailable product fails the whole call.
        """
        unique_ids = list(dict.fromkeys(product_ids))
        snapshots = await asyncio.gather(*(self.validate_product(pid) for pid in unique_ids))
        return {snapshot.product_id: snapshot for snapshot in snapshots}

    # ========================================
    # Advisory reservations (best-effort)
    # ========================================

    async def reserve_stock(self, product_id: str, quantity: int) -> bool:
        try:
            response = await self.client.post(
                f"{self.base_url}/products/{product_id}/stock/reserve",
                json={"quantity": quantity}
            )
            response.raise_for_status()
            return True
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to reserve stock for {product_id}: {e.response.status_code}")
            return False
        except Exception as e:
            logger.error(f"Error reserving stock for {product_id}: {e}")
            return False

    async def release_stock(self, product_id: str, quantity: int) -> bool:
        try:
            response = await self.client.post(
                f"{self.base_url}/products/{product_id}/stock/release",
                json={"quantity": quantity}
            )
            response.raise_for_status()
            return True
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to release stock for {product_id}: {e.response.status_code}")
            return False
        except Exception as e:
            logger.error(f"Error releasing stock for {product_id}: {e}")
            return False

    async def reserve_items(self, items: List[OrderItem]) -> List[str]:
        """Reserve every item concurrently; returns product ids that failed"""
        results = await asyncio.gather(
            *(self.reserve_stock(item.product_id, item.quantity) for item in items)
        )
        return [item.product_id for item, ok in zip(items, results) if not ok]

    async def release_items(self, items: List[OrderItem]) -> List[str]:
        """Release every item concurrently; returns product ids that failed"""
        results = await asyncio.gather(
            *(self.release_stock(item.product_id, item.quantity) for item in items)
        )
        return [item.product_id for item, ok in zip(items, results) if not ok]

    # ========================================
    # Permanent stock changes
    # ========================================

    async def _patch_stock(self, product_id: str, delta: int) -> Dict[str, Any]:
        try:
            response = await self.client.patch(
                f"{self.base_url}/products/{product_id}/stock",
                json={"quantity": delta}
            )
            response.raise_for_status()
            return response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to update stock for {product_id}: {e.response.status_code}")
            raise InventoryServiceError(
                f"Stock update for {product_id} returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Error updating stock for {product_id}: {e}")
            raise InventoryServiceError(f"Inventory service unreachable: {e}") from e

    async def decrease_stock(self, product_id: str, quantity: int) -> int:
        """
        Permanently decrease stock (used on shipment).

        Returns:
            Remaining stock

        Raises:
            InsufficientStockError: current stock is below quantity
            InventoryServiceError: lookup or update failed
        """
        product = await self.get_product(product_id)
        current_stock = int(product.get("stock", 0) or 0)
        if current_stock < quantity:
            raise InsufficientStockError(product_id, quantity, current_stock)

        result = await self._patch_stock(product_id, -quantity)
        remaining = result.get("stock", current_stock - quantity)
        logger.info(f"Decreased stock for {product_id} by {quantity}, remaining {remaining}")
        return remaining

    async def restore_stock(self, product_id: str, quantity: int) -> bool:
        """Add stock back after a partially applied decrease"""
        try:
            await self._patch_stock(product_id, quantity)
            logger.info(f"Restored {quantity} units of stock for {product_id}")
            return True
        except InventoryServiceError as e:
            logger.error(f"Failed to restore stock for {product_id}: {e}")
            return False
