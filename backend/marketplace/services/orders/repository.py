"""
Order data access repository with guarded state updates.

Every status or payment-status change goes through ``compare_and_set``,
an ``UPDATE ... WHERE`` that only matches rows still in the expected
state. A zero row count tells the caller that another writer (a duplicate
webhook, an admin, the return workflow) got there first.
"""

import uuid
from typing import Any, Collection, Optional, Sequence

from sqlalchemy import and_, func, select, true, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.logging import get_logger
from marketplace.database.models.order import Order, OrderItem, OrderStatusHistory
from marketplace.services.orders.enums import OrderStatus, PaymentStatus

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderRepository:
    """
    Repository for order data access operations.

    The repository never commits; the request-scoped session owns the
    transaction boundary.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_orders(self, orders: Sequence[Order]) -> None:
        """
        Persist newly split orders with their items.

        Args:
            orders: Orders built by the splitter

        Raises:
            OrderRepositoryError: If the insert fails
        """
        try:
            self.session.add_all(orders)
            await self.session.flush()
            for order in orders:
                self.session.add(
                    OrderStatusHistory(
                        order_id=order.id,
                        from_status=None,
                        to_status=order.status.value,
                        payment_status=order.payment_status.value,
                        changed_by=order.customer_id,
                        source="checkout",
                        reason="Order created",
                    )
                )
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Order creation failed - database error",
                error=str(e),
                order_count=len(orders),
            )
            raise OrderRepositoryError(
                "Order creation failed due to database error",
                error=str(e),
            ) from e

    async def get_by_id(
        self,
        order_id: uuid.UUID,
        for_update: bool = False,
        refresh: bool = False,
    ) -> Optional[Order]:
        """
        Get order by ID with its line items.

        Args:
            order_id: Order identifier
            for_update: Lock the order row until the transaction ends
            refresh: Overwrite any stale identity-map copy with database state

        Returns:
            Order if found, None otherwise
        """
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        if refresh or for_update:
            stmt = stmt.execution_options(populate_existing=True)

        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_item(self, order_item_id: uuid.UUID) -> Optional[OrderItem]:
        return await self.session.get(OrderItem, order_item_id)

    async def compare_and_set(
        self,
        order_id: uuid.UUID,
        expected_statuses: Collection[OrderStatus],
        expected_payment_statuses: Collection[PaymentStatus],
        **values: Any,
    ) -> bool:
        """
        Apply an update only if the order is still in an expected state.

        Args:
            order_id: Order identifier
            expected_statuses: Order statuses the row must currently have
            expected_payment_statuses: Payment statuses the row must have
            **values: Column values to write

        Returns:
            True if the row matched and was updated
        """
        stmt = (
            update(Order)
            .where(
                and_(
                    Order.id == order_id,
                    Order.status.in_(list(expected_statuses)),
                    Order.payment_status.in_(list(expected_payment_statuses)),
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        updated = result.rowcount == 1

        logger.debug(
            "Guarded order update",
            order_id=str(order_id),
            updated=updated,
            fields=sorted(values.keys()),
        )
        return updated

    async def record_history(
        self,
        order_id: uuid.UUID,
        from_status: Optional[OrderStatus],
        to_status: OrderStatus,
        payment_status: PaymentStatus,
        source: str,
        changed_by: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.session.add(
            OrderStatusHistory(
                order_id=order_id,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                payment_status=payment_status.value,
                changed_by=changed_by,
                source=source,
                reason=reason,
            )
        )
        await self.session.flush()

    async def list_orders(
        self,
        conditions: Sequence[Any],
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        """
        Get orders matching conditions with pagination.

        Args:
            conditions: SQLAlchemy boolean clauses combined with AND
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Tuple of (orders, total_count)
        """
        where = and_(*conditions) if conditions else true()

        stmt = (
            select(Order)
            .where(where)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(Order).where(where)

        result = await self.session.execute(stmt)
        count_result = await self.session.execute(count_stmt)

        return result.scalars().all(), count_result.scalar_one()
