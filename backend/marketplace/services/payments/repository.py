"""
Partial payment data access.

State changes use guarded updates so a completion or refund racing with
another request applies at most once.
"""

import uuid
from decimal import Decimal
from typing import Any, Collection, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.logging import get_logger
from marketplace.database.models.payment import PartialPayment, PartialPaymentStatus

logger = get_logger(__name__)


class PartialPaymentRepository:
    """Repository for partial payment rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, payment: PartialPayment) -> PartialPayment:
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def get_by_id(
        self, payment_id: uuid.UUID, refresh: bool = False
    ) -> Optional[PartialPayment]:
        stmt = select(PartialPayment).where(PartialPayment.id == payment_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_order(
        self, order_id: uuid.UUID, newest_first: bool = False
    ) -> Sequence[PartialPayment]:
        order_by = (
            PartialPayment.created_at.desc()
            if newest_first
            else PartialPayment.created_at.asc()
        )
        result = await self.session.execute(
            select(PartialPayment)
            .where(PartialPayment.order_id == order_id)
            .order_by(order_by)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def sum_amount(
        self,
        order_id: uuid.UUID,
        statuses: Collection[PartialPaymentStatus],
    ) -> Decimal:
        """Sum installment amounts for an order in the given statuses."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(PartialPayment.amount), 0)).where(
                PartialPayment.order_id == order_id,
                PartialPayment.status.in_(list(statuses)),
            )
        )
        return Decimal(result.scalar_one())

    async def transition(
        self,
        payment_id: uuid.UUID,
        expected: PartialPaymentStatus,
        **values: Any,
    ) -> bool:
        """
        Update a partial payment only if it is still in ``expected`` status.

        Returns:
            True if the row matched and was updated
        """
        result = await self.session.execute(
            update(PartialPayment)
            .where(
                PartialPayment.id == payment_id,
                PartialPayment.status == expected,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount == 1
        logger.debug(
            "Guarded partial payment update",
            payment_id=str(payment_id),
            expected=expected.value,
            updated=updated,
        )
        return updated
