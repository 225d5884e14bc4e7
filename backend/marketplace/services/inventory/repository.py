"""
Inventory data access with atomic conditional stock updates.

Stock arithmetic happens inside the database: ``apply_delta`` issues a
single ``UPDATE ... SET stock = stock + :delta WHERE stock + :delta >= 0``
so concurrent decrements for the same product serialize on the row lock
and can never drive stock negative.
"""

import uuid
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from marketplace.core.logging import get_logger
from marketplace.database.models.inventory import (
    InventoryRecord,
    StockMovement,
    StockOperation,
)
from marketplace.database.models.order import Order, OrderItem
from marketplace.database.models.product import Product
from marketplace.services.orders.enums import OrderStatus

logger = get_logger(__name__)

# Orders whose line items count as sold for forecasting.
SOLD_ORDER_STATUSES = (
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)


class InventoryRepository:
    """Repository for products, stock records and stock movements."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_record(self, product_id: uuid.UUID) -> Optional[InventoryRecord]:
        result = await self.session.execute(
            select(InventoryRecord).where(InventoryRecord.product_id == product_id)
        )
        return result.scalar_one_or_none()

    async def get_products(
        self, product_ids: Sequence[uuid.UUID]
    ) -> dict[uuid.UUID, Product]:
        """
        Load products with their inventory records.

        Args:
            product_ids: Product identifiers to load

        Returns:
            Mapping of product id to product; unknown ids are absent
        """
        if not product_ids:
            return {}
        result = await self.session.execute(
            select(Product)
            .where(Product.id.in_(list(set(product_ids))))
            .options(selectinload(Product.inventory))
        )
        return {product.id: product for product in result.scalars().all()}

    async def apply_delta(
        self, product_id: uuid.UUID, delta: int
    ) -> Optional[tuple[int, int]]:
        """
        Atomically add ``delta`` to stock unless the result would be negative.

        Args:
            product_id: Product identifier
            delta: Signed quantity to add

        Returns:
            (previous_stock, new_stock) if applied, None if the guard failed
            or the product has no inventory record
        """
        result = await self.session.execute(
            update(InventoryRecord)
            .where(
                InventoryRecord.product_id == product_id,
                InventoryRecord.stock + delta >= 0,
            )
            .values(stock=InventoryRecord.stock + delta)
            .returning(InventoryRecord.stock)
            .execution_options(synchronize_session=False)
        )
        new_stock = result.scalar_one_or_none()
        if new_stock is None:
            return None
        return new_stock - delta, new_stock

    async def set_stock(
        self, product_id: uuid.UUID, quantity: int
    ) -> Optional[tuple[int, int]]:
        """
        Overwrite stock under a row lock.

        Returns:
            (previous_stock, new_stock), or None if no record exists
        """
        result = await self.session.execute(
            select(InventoryRecord.stock)
            .where(InventoryRecord.product_id == product_id)
            .with_for_update()
        )
        previous = result.scalar_one_or_none()
        if previous is None:
            return None

        await self.session.execute(
            update(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .values(stock=quantity)
            .execution_options(synchronize_session=False)
        )
        return previous, quantity

    async def add_movement(
        self,
        product_id: uuid.UUID,
        operation: StockOperation,
        quantity: int,
        previous_stock: int,
        new_stock: int,
        reason: str,
    ) -> StockMovement:
        movement = StockMovement(
            product_id=product_id,
            operation=operation,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason=reason,
        )
        self.session.add(movement)
        await self.session.flush()
        return movement

    async def list_movements(
        self, product_id: uuid.UUID, limit: int = 50
    ) -> Sequence[StockMovement]:
        result = await self.session.execute(
            select(StockMovement)
            .where(StockMovement.product_id == product_id)
            .order_by(StockMovement.created_at.desc())
            .limit(limit)
        )
        return result.scalars().all()

    async def units_sold_since(self, product_id: uuid.UUID, since: datetime) -> int:
        """Sum line item quantities for a product in sold orders since a date."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(OrderItem.quantity), 0))
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                OrderItem.product_id == product_id,
                Order.status.in_(SOLD_ORDER_STATUSES),
                Order.created_at >= since,
            )
        )
        return int(result.scalar_one())

    async def units_sold_by_product(self, since: datetime) -> dict[uuid.UUID, int]:
        """Sum sold quantities for every product in one grouped query."""
        result = await self.session.execute(
            select(OrderItem.product_id, func.sum(OrderItem.quantity))
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                Order.status.in_(SOLD_ORDER_STATUSES),
                Order.created_at >= since,
            )
            .group_by(OrderItem.product_id)
        )
        return {product_id: int(total) for product_id, total in result.all()}

    async def list_stocked_products(
        self, seller_id: Optional[uuid.UUID] = None
    ) -> Sequence[tuple[uuid.UUID, int]]:
        """(product_id, stock) for every active product with a stock record."""
        stmt = (
            select(InventoryRecord.product_id, InventoryRecord.stock)
            .join(Product, Product.id == InventoryRecord.product_id)
            .where(Product.is_active.is_(True))
            .order_by(InventoryRecord.product_id)
        )
        if seller_id is not None:
            stmt = stmt.where(Product.seller_id == seller_id)
        result = await self.session.execute(stmt)
        return [(row[0], row[1]) for row in result.all()]
