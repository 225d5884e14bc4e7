"""
Return request data access.
"""

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.logging import get_logger
from marketplace.database.models.returns import ReturnRequest, ReturnStatus

logger = get_logger(__name__)


class ReturnRepository:
    """Repository for return requests."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, request: ReturnRequest) -> ReturnRequest:
        self.session.add(request)
        await self.session.flush()
        return request

    async def get_by_id(
        self,
        return_id: uuid.UUID,
        for_update: bool = False,
        refresh: bool = False,
    ) -> Optional[ReturnRequest]:
        stmt = select(ReturnRequest).where(ReturnRequest.id == return_id)
        if for_update:
            stmt = stmt.with_for_update()
        if refresh or for_update:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def claimed_quantity(
        self,
        order_id: uuid.UUID,
        order_item_id: Optional[uuid.UUID] = None,
        whole_order_only: bool = False,
    ) -> int:
        """
        Units already claimed by returns that were not rejected.

        Args:
            order_id: Order identifier
            order_item_id: Restrict to one line item; None counts all
                returns on the order
            whole_order_only: Count only whole-order returns

        Returns:
            Claimed unit count
        """
        conditions = [
            ReturnRequest.order_id == order_id,
            ReturnRequest.status != ReturnStatus.REJECTED,
        ]
        if order_item_id is not None:
            conditions.append(ReturnRequest.order_item_id == order_item_id)
        if whole_order_only:
            conditions.append(ReturnRequest.order_item_id.is_(None))

        result = await self.session.execute(
            select(func.coalesce(func.sum(ReturnRequest.quantity), 0)).where(
                and_(*conditions)
            )
        )
        return int(result.scalar_one())

    async def transition(
        self,
        return_id: uuid.UUID,
        expected: ReturnStatus,
        **values: Any,
    ) -> bool:
        """
        Update a return request only if it is still in ``expected`` status.

        Returns:
            True if the row matched and was updated
        """
        result = await self.session.execute(
            update(ReturnRequest)
            .where(
                ReturnRequest.id == return_id,
                ReturnRequest.status == expected,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount == 1
        logger.debug(
            "Guarded return update",
            return_id=str(return_id),
            expected=expected.value,
            updated=updated,
        )
        return updated

    async def list_requests(
        self,
        conditions: Sequence[Any],
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[ReturnRequest], int]:
        where = and_(*conditions) if conditions else true()
        result = await self.session.execute(
            select(ReturnRequest)
            .where(where)
            .order_by(ReturnRequest.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        count_result = await self.session.execute(
            select(func.count()).select_from(ReturnRequest).where(where)
        )
        return result.scalars().all(), count_result.scalar_one()
