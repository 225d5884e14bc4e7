"""
Return and refund workflow.

A return moves PENDING -> APPROVED -> RECEIVED -> REFUNDED, or
PENDING -> REJECTED. Every step is a guarded update on the expected
current status, so two back-office users acting on the same request
cannot both succeed and a request never moves backwards.

The refund amount is computed once, at approval, from the order's
snapshot prices and written in the same update as the status change.
Later catalog price changes never affect it.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from marketplace.core.logging import get_logger, log_performance
from marketplace.core.retry import RetryConfig, retry
from marketplace.core.security import Principal
from marketplace.database.models.inventory import StockOperation
from marketplace.database.models.returns import ReturnRequest, ReturnStatus
from marketplace.services.inventory.ledger import InventoryLedger
from marketplace.services.orders.enums import OrderStatus, PaymentStatus
from marketplace.services.orders.repository import OrderRepository
from marketplace.services.payments.stripe_client import StripeClient
from marketplace.services.returns.repository import ReturnRepository

logger = get_logger(__name__)


class ReturnWorkflow:
    """Customer returns from request to refund."""

    def __init__(
        self,
        session: AsyncSession,
        provider: Optional[StripeClient] = None,
        returns: Optional[ReturnRepository] = None,
        orders: Optional[OrderRepository] = None,
        ledger: Optional[InventoryLedger] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.provider = provider or StripeClient()
        self.returns = returns or ReturnRepository(session)
        self.orders = orders or OrderRepository(session)
        self.ledger = ledger or InventoryLedger(session)
        self.retry_config = retry_config or RetryConfig.from_settings()

    async def _get(self, return_id: uuid.UUID, lock: bool = False) -> ReturnRequest:
        request = await self.returns.get_by_id(return_id, for_update=lock, refresh=True)
        if request is None:
            raise NotFoundError(
                f"Return request {return_id} not found",
                return_id=return_id,
            )
        return request

    async def get(self, return_id: uuid.UUID, principal: Principal) -> ReturnRequest:
        """Get a return visible to the principal."""
        request = await self._get(return_id)
        if not principal.is_admin and request.customer_id != principal.user_id:
            raise AuthorizationError(
                "You do not have access to this return",
                return_id=return_id,
            )
        return request

    async def create(
        self,
        order_id: uuid.UUID,
        principal: Principal,
        reason: str,
        quantity: Optional[int],
        refund_method: str,
        order_item_id: Optional[uuid.UUID] = None,
    ) -> ReturnRequest:
        """
        Open a return for a delivered, paid order.

        The order row is locked while claims are counted so concurrent
        requests cannot together return more units than were ordered.

        Args:
            order_id: Order being returned
            principal: Caller; must be the ordering customer
            reason: Customer's reason
            quantity: Units to return; may be omitted for whole-order returns
            refund_method: Payout method
            order_item_id: Line item to return, None for the whole order

        Returns:
            The PENDING return request

        Raises:
            NotFoundError: If the order or line item does not exist
            AuthorizationError: If the caller did not place the order
            InvalidStateError: If the order is not DELIVERED and PAID
            ValidationError: For an empty reason or an over-claimed quantity
        """
        if not reason or not reason.strip():
            raise ValidationError("A return reason is required", order_id=order_id)

        order = await self.orders.get_by_id(order_id, for_update=True)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)

        if not order.is_owned_by(principal.user_id):
            logger.warning(
                "Return denied: not the order owner",
                order_id=str(order_id),
                principal_id=str(principal.user_id),
            )
            raise AuthorizationError(
                "Only the ordering customer can request a return",
                order_id=order_id,
            )

        if order.status != OrderStatus.DELIVERED or order.payment_status != PaymentStatus.PAID:
            raise InvalidStateError(
                "Only delivered, paid orders can be returned",
                order_id=order_id,
                status=order.status.value,
                payment_status=order.payment_status.value,
            )

        claimed = await self.returns.claimed_quantity(order_id, order_item_id)

        if order_item_id is not None:
            item = next((i for i in order.items if i.id == order_item_id), None)
            if item is None:
                raise NotFoundError(
                    f"Order item {order_item_id} not found on order {order_id}",
                    order_id=order_id,
                    order_item_id=order_item_id,
                )
            if quantity is None or quantity <= 0:
                raise ValidationError(
                    "Return quantity must be greater than zero",
                    order_item_id=order_item_id,
                )
            if await self.returns.claimed_quantity(order_id, whole_order_only=True):
                raise ValidationError(
                    "Order already has an open whole-order return",
                    code="RETURN_QUANTITY_EXCEEDED",
                    order_id=order_id,
                    order_item_id=order_item_id,
                )
            returnable = item.quantity - claimed
            if quantity > returnable:
                raise ValidationError(
                    "Return quantity exceeds returnable quantity",
                    code="RETURN_QUANTITY_EXCEEDED",
                    order_item_id=order_item_id,
                    requested=quantity,
                    returnable=returnable,
                )
        else:
            if claimed > 0:
                raise ValidationError(
                    "Order already has open returns; return the remaining items individually",
                    code="RETURN_QUANTITY_EXCEEDED",
                    order_id=order_id,
                    claimed=claimed,
                )
            quantity = sum(i.quantity for i in order.items)

        request = await self.returns.add(
            ReturnRequest(
                id=uuid.uuid4(),
                order_id=order_id,
                order_item_id=order_item_id,
                customer_id=principal.user_id,
                reason=reason.strip(),
                quantity=quantity,
                refund_method=refund_method,
                status=ReturnStatus.PENDING,
            )
        )

        logger.info(
            "Return requested",
            return_id=str(request.id),
            order_id=str(order_id),
            order_item_id=str(order_item_id) if order_item_id else None,
            quantity=quantity,
        )
        return request

    def _refund_amount(self, request: ReturnRequest) -> Optional[Decimal]:
        if request.is_whole_order:
            return request.order.total_amount if request.order is not None else None
        if request.order_item is None or request.order_item.unit_price is None:
            return None
        return request.order_item.unit_price * request.quantity

    async def approve(
        self, return_id: uuid.UUID, approver_id: uuid.UUID
    ) -> ReturnRequest:
        """
        Approve a pending return and freeze its refund amount.

        Raises:
            InvalidStateError: If the return is no longer PENDING or its
                refund amount cannot be computed; nothing is written then
        """
        request = await self._get(return_id)
        if request.status != ReturnStatus.PENDING:
            raise InvalidStateError(
                "Only pending returns can be approved",
                return_id=return_id,
                status=request.status.value,
            )

        refund_amount = self._refund_amount(request)
        if refund_amount is None:
            logger.error(
                "Return approval aborted: refund amount unavailable",
                return_id=str(return_id),
                order_id=str(request.order_id),
            )
            raise InvalidStateError(
                "Refund amount could not be determined",
                code="REFUND_AMOUNT_UNAVAILABLE",
                return_id=return_id,
            )

        approved = await self.returns.transition(
            return_id,
            expected=ReturnStatus.PENDING,
            status=ReturnStatus.APPROVED,
            refund_amount=refund_amount,
            approver_id=approver_id,
            approved_at=datetime.now(timezone.utc),
        )
        if not approved:
            raise InvalidStateError(
                "Return was modified concurrently",
                return_id=return_id,
            )

        logger.info(
            "Return approved",
            return_id=str(return_id),
            approver_id=str(approver_id),
            refund_amount=str(refund_amount),
        )
        return await self._get(return_id)

    async def reject(
        self, return_id: uuid.UUID, reason: str, approver_id: uuid.UUID
    ) -> ReturnRequest:
        """
        Decline a pending return.

        Raises:
            ValidationError: If no reason is given
            InvalidStateError: If the return is no longer PENDING
        """
        if not reason or not reason.strip():
            raise ValidationError(
                "A rejection reason is required",
                return_id=return_id,
            )

        rejected = await self.returns.transition(
            return_id,
            expected=ReturnStatus.PENDING,
            status=ReturnStatus.REJECTED,
            rejection_reason=reason.strip(),
            approver_id=approver_id,
            rejected_at=datetime.now(timezone.utc),
        )
        request = await self._get(return_id)
        if not rejected:
            raise InvalidStateError(
                "Only pending returns can be rejected",
                return_id=return_id,
                status=request.status.value,
            )

        logger.info("Return rejected", return_id=str(return_id), approver_id=str(approver_id))
        return request

    async def mark_received(self, return_id: uuid.UUID) -> ReturnRequest:
        """
        Record that returned goods arrived and put them back in stock.

        Raises:
            InvalidStateError: If the return is not APPROVED
            NotFoundError: If a returned product has no inventory record;
                the status change is rolled back with it
        """
        received = await self.returns.transition(
            return_id,
            expected=ReturnStatus.APPROVED,
            status=ReturnStatus.RECEIVED,
            received_at=datetime.now(timezone.utc),
        )
        request = await self._get(return_id)
        if not received:
            raise InvalidStateError(
                "Only approved returns can be received",
                return_id=return_id,
                status=request.status.value,
            )

        if request.is_whole_order:
            lines = [(item.product_id, item.quantity) for item in request.order.items]
        else:
            lines = [(request.order_item.product_id, request.quantity)]

        reason = f"Return {return_id} received"
        for product_id, quantity in lines:
            if not await self.ledger.update_stock(
                product_id, quantity, StockOperation.INCREMENT, reason
            ):
                raise NotFoundError(
                    f"No inventory record for product {product_id}",
                    product_id=product_id,
                    return_id=return_id,
                )

        logger.info(
            "Return received",
            return_id=str(return_id),
            restocked_products=len(lines),
        )
        return request

    async def issue_refund(self, return_id: uuid.UUID) -> ReturnRequest:
        """
        Pay out a received return.

        The return row is locked for the duration so the provider is asked
        at most once per return; the idempotency key covers retries.

        Raises:
            InvalidStateError: If the return is not RECEIVED
            TransientProviderError: If the provider stayed unavailable
            PermanentProviderError: If the provider rejected the refund
        """
        request = await self._get(return_id, lock=True)
        if request.status != ReturnStatus.RECEIVED:
            raise InvalidStateError(
                "Only received returns can be refunded",
                return_id=return_id,
                status=request.status.value,
            )

        order = request.order
        refund_reference = None
        with log_performance(logger, "issue_refund", return_id=str(return_id)):
            if order.payment_intent_id:
                refund_reference = await retry(
                    lambda: self.provider.create_refund(
                        order.payment_intent_id,
                        request.refund_amount,
                        idempotency_key=f"return-refund-{return_id}",
                    ),
                    self.retry_config,
                )
            else:
                logger.warning(
                    "Refund recorded without provider reference",
                    return_id=str(return_id),
                    order_id=str(order.id),
                )

        refunded = await self.returns.transition(
            return_id,
            expected=ReturnStatus.RECEIVED,
            status=ReturnStatus.REFUNDED,
            refund_reference=refund_reference,
            refunded_at=datetime.now(timezone.utc),
        )
        if not refunded:
            raise InvalidStateError("Return was modified concurrently", return_id=return_id)

        if request.is_whole_order:
            moved = await self.orders.compare_and_set(
                order.id,
                expected_statuses={order.status},
                expected_payment_statuses={PaymentStatus.PAID},
                payment_status=PaymentStatus.REFUNDED,
            )
            if moved:
                await self.orders.record_history(
                    order.id,
                    from_status=order.status,
                    to_status=order.status,
                    payment_status=PaymentStatus.REFUNDED,
                    source="returns",
                    reason=f"Return {return_id} refunded",
                )

        logger.info(
            "Return refunded",
            return_id=str(return_id),
            order_id=str(order.id),
            refund_amount=str(request.refund_amount),
            refund_reference=refund_reference,
        )
        return await self._get(return_id)

    async def list_for_user(
        self, principal: Principal, page: int = 1, page_size: int = 20
    ) -> tuple[list[ReturnRequest], int]:
        """Customers see their own returns, admins see all."""
        conditions = []
        if not principal.is_admin:
            conditions.append(ReturnRequest.customer_id == principal.user_id)

        requests, total = await self.returns.list_requests(
            conditions,
            skip=(page - 1) * page_size,
            limit=page_size,
        )
        return list(requests), total
