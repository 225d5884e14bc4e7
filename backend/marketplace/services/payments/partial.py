"""
Partial payment ledger for orders paid in installments.

Creation locks the parent order row so two concurrent installments cannot
together claim more than the order total. Pending and completed
installments both count against the total; only completed ones count as
paid. When completed installments cover the total, the order is confirmed
through the same guarded transition the payment webhook uses.
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
from marketplace.core.logging import get_logger
from marketplace.core.retry import RetryConfig, retry
from marketplace.core.security import Principal, UserRole
from marketplace.database.models.order import Order
from marketplace.database.models.payment import PartialPayment, PartialPaymentStatus
from marketplace.schemas.payments import (
    PartialPaymentResponse,
    PartialPaymentSchedule,
    PartialPaymentSummary,
)
from marketplace.services.orders.enums import PaymentStatus
from marketplace.services.orders.repository import OrderRepository
from marketplace.services.payments.reconciliation import PaymentReconciler
from marketplace.services.payments.repository import PartialPaymentRepository
from marketplace.services.payments.stripe_client import StripeClient

logger = get_logger(__name__)

CLAIMING_STATUSES = (PartialPaymentStatus.PENDING, PartialPaymentStatus.COMPLETED)


class PartialPaymentLedger:
    """Record, settle and refund installments against an order."""

    def __init__(
        self,
        session: AsyncSession,
        provider: Optional[StripeClient] = None,
        orders: Optional[OrderRepository] = None,
        payments: Optional[PartialPaymentRepository] = None,
        reconciler: Optional[PaymentReconciler] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.provider = provider or StripeClient()
        self.orders = orders or OrderRepository(session)
        self.payments = payments or PartialPaymentRepository(session)
        self.reconciler = reconciler or PaymentReconciler(
            session, provider=self.provider, orders=self.orders
        )
        self.retry_config = retry_config or RetryConfig.from_settings()

    async def _owned_order(
        self,
        order_id: uuid.UUID,
        principal: Principal,
        lock: bool = False,
        allow_staff: bool = False,
    ) -> Order:
        """
        Load an order the principal may act on.

        Raises:
            NotFoundError: If the order does not exist
            AuthorizationError: If the principal does not own the order
        """
        order = await self.orders.get_by_id(order_id, for_update=lock)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)

        if order.is_owned_by(principal.user_id):
            return order
        if allow_staff and (
            principal.role == UserRole.ADMIN
            or (principal.role == UserRole.SELLER and order.seller_id == principal.user_id)
        ):
            return order

        logger.warning(
            "Partial payment access denied",
            order_id=str(order_id),
            principal_id=str(principal.user_id),
            role=principal.role.value,
        )
        raise AuthorizationError(
            "You do not have access to this order",
            order_id=order_id,
        )

    async def _get_payment(self, payment_id: uuid.UUID) -> PartialPayment:
        payment = await self.payments.get_by_id(payment_id, refresh=True)
        if payment is None:
            raise NotFoundError(
                f"Partial payment {payment_id} not found",
                payment_id=payment_id,
            )
        return payment

    async def create(
        self,
        order_id: uuid.UUID,
        amount: Decimal,
        method: str,
        transaction_ref: Optional[str],
        principal: Principal,
    ) -> PartialPayment:
        """
        Record a PENDING installment.

        Args:
            order_id: Parent order
            amount: Installment amount
            method: Payment method
            transaction_ref: Provider reference, if already known
            principal: Caller; must own the order

        Returns:
            Created partial payment

        Raises:
            ValidationError: If amount <= 0 or the installment would push
                pending plus completed installments above the order total
            InvalidStateError: If the order no longer accepts payments
            AuthorizationError: If the caller does not own the order
        """
        order = await self._owned_order(order_id, principal, lock=True)

        if amount <= 0:
            raise ValidationError(
                "Payment amount must be greater than zero",
                order_id=order_id,
                amount=amount,
            )

        if order.status.is_terminal() or order.payment_status != PaymentStatus.UNPAID:
            raise InvalidStateError(
                "Order does not accept further payments",
                order_id=order_id,
                status=order.status.value,
                payment_status=order.payment_status.value,
            )

        claimed = await self.payments.sum_amount(order_id, CLAIMING_STATUSES)
        if claimed + amount > order.total_amount:
            raise ValidationError(
                "Payment exceeds remaining order balance",
                code="AMOUNT_EXCEEDS_BALANCE",
                order_id=order_id,
                amount=amount,
                remaining=order.total_amount - claimed,
            )

        payment = await self.payments.add(
            PartialPayment(
                id=uuid.uuid4(),
                order_id=order_id,
                amount=amount,
                payment_method=method,
                transaction_ref=transaction_ref,
                status=PartialPaymentStatus.PENDING,
            )
        )

        logger.info(
            "Partial payment created",
            order_id=str(order_id),
            payment_id=str(payment.id),
            amount=str(amount),
        )
        return payment

    async def complete(
        self, payment_id: uuid.UUID, principal: Principal
    ) -> PartialPayment:
        """
        Settle a PENDING installment. Completing twice is a no-op.

        Raises:
            InvalidStateError: If the installment was refunded
        """
        payment = await self._get_payment(payment_id)
        order = await self._owned_order(payment.order_id, principal, lock=True)

        if payment.status == PartialPaymentStatus.COMPLETED:
            logger.info("Partial payment already completed", payment_id=str(payment_id))
            return payment

        settled = await self.payments.transition(
            payment_id,
            expected=PartialPaymentStatus.PENDING,
            status=PartialPaymentStatus.COMPLETED,
            completed_at=datetime.now(timezone.utc),
        )
        payment = await self._get_payment(payment_id)

        if not settled:
            if payment.status == PartialPaymentStatus.COMPLETED:
                return payment
            raise InvalidStateError(
                "Only pending payments can be completed",
                payment_id=payment_id,
                status=payment.status.value,
            )

        total_paid = await self.payments.sum_amount(
            order.id, (PartialPaymentStatus.COMPLETED,)
        )
        logger.info(
            "Partial payment completed",
            order_id=str(order.id),
            payment_id=str(payment_id),
            total_paid=str(total_paid),
            total_amount=str(order.total_amount),
        )

        if total_paid >= order.total_amount:
            await self.reconciler.confirm_payment(
                order.id,
                source="partial_payments",
                payment_intent_id=payment.transaction_ref,
            )

        return payment

    async def refund(self, payment_id: uuid.UUID, principal: Principal) -> PartialPayment:
        """
        Refund a COMPLETED installment.

        The status change and the provider refund share one transaction;
        if the provider call fails after retries the status change is
        rolled back with it.

        Raises:
            InvalidStateError: If the installment is not COMPLETED
            TransientProviderError: If the provider stayed unavailable
            PermanentProviderError: If the provider rejected the refund
        """
        payment = await self._get_payment(payment_id)
        await self._owned_order(payment.order_id, principal, lock=True)

        refunded = await self.payments.transition(
            payment_id,
            expected=PartialPaymentStatus.COMPLETED,
            status=PartialPaymentStatus.REFUNDED,
            refunded_at=datetime.now(timezone.utc),
        )
        if not refunded:
            raise InvalidStateError(
                "Only completed payments can be refunded",
                payment_id=payment_id,
                status=payment.status.value,
            )

        if payment.transaction_ref:
            await retry(
                lambda: self.provider.create_refund(
                    payment.transaction_ref,
                    payment.amount,
                    idempotency_key=f"partial-refund-{payment.id}",
                ),
                self.retry_config,
            )

        logger.info(
            "Partial payment refunded",
            order_id=str(payment.order_id),
            payment_id=str(payment_id),
            amount=str(payment.amount),
        )
        return await self._get_payment(payment_id)

    async def status(
        self, order_id: uuid.UUID, principal: Principal
    ) -> PartialPaymentSummary:
        """Outstanding balance and installments of an order."""
        order = await self._owned_order(order_id, principal, allow_staff=True)
        payments = await self.payments.list_for_order(order_id)

        total_paid = sum(
            (p.amount for p in payments if p.status == PartialPaymentStatus.COMPLETED),
            Decimal("0.00"),
        )
        remaining = max(order.total_amount - total_paid, Decimal("0.00"))

        return PartialPaymentSummary(
            order_id=order_id,
            total_amount=order.total_amount,
            total_paid=total_paid,
            remaining=remaining,
            is_fully_paid=remaining == 0,
            payments=[PartialPaymentResponse.model_validate(p) for p in payments],
        )

    async def schedule(
        self, order_id: uuid.UUID, principal: Principal
    ) -> PartialPaymentSchedule:
        """Balance plus the oldest installment still awaiting settlement."""
        summary = await self.status(order_id, principal)
        next_due = next(
            (p for p in summary.payments if p.status == PartialPaymentStatus.PENDING),
            None,
        )
        return PartialPaymentSchedule(
            **summary.model_dump(exclude={"payments"}),
            payments=summary.payments,
            next_payment_due=next_due,
        )

    async def history(
        self, order_id: uuid.UUID, principal: Principal
    ) -> list[PartialPayment]:
        """All installments of an order, newest first."""
        await self._owned_order(order_id, principal, allow_staff=True)
        return list(await self.payments.list_for_order(order_id, newest_first=True))
