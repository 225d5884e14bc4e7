"""
Payment reconciliation state machine driven by provider webhooks.

Webhook events may arrive more than once and in any order, so every
transition is a compare-and-set on the order's current state and the
persisted ``payment_status`` doubles as the idempotency token: stock is
decremented only by the delivery that actually moves an order from
UNPAID to PAID. A verified event is always acknowledged; reconciliation
failures after a confirmed payment go to the operational alert path and
never fail the order.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.alerts import AlertSink, LoggingAlertSink
from marketplace.core.errors import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
)
from marketplace.core.logging import get_logger, log_performance
from marketplace.core.retry import RetryConfig, retry
from marketplace.database.models.inventory import StockOperation
from marketplace.database.models.order import Order
from marketplace.services.inventory.ledger import InventoryLedger
from marketplace.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    order_statuses_leading_to,
)
from marketplace.services.orders.repository import OrderRepository
from marketplace.services.payments.stripe_client import (
    ProviderEvent,
    ProviderEventType,
    StripeClient,
)

logger = get_logger(__name__)


@dataclass
class ReconciliationResult:
    """
    Outcome of handling one provider event.

    Attributes:
        event_id: Provider event identifier
        event_type: Provider event type string
        order_id: Order the event referred to, if any
        applied: Whether this delivery changed the order
        failed_items: Product ids whose stock could not be decremented
    """

    event_id: str
    event_type: str
    order_id: Optional[str] = None
    applied: bool = False
    failed_items: list[str] = field(default_factory=list)

    @property
    def acknowledged(self) -> bool:
        return True


class PaymentReconciler:
    """Apply provider payment events to orders and inventory."""

    def __init__(
        self,
        session: AsyncSession,
        provider: Optional[StripeClient] = None,
        orders: Optional[OrderRepository] = None,
        ledger: Optional[InventoryLedger] = None,
        alerts: Optional[AlertSink] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.session = session
        self.provider = provider or StripeClient()
        self.orders = orders or OrderRepository(session)
        self.ledger = ledger or InventoryLedger(session)
        self.alerts = alerts or LoggingAlertSink()
        self.retry_config = retry_config or RetryConfig.from_settings()

    async def handle_webhook(
        self, payload: bytes, signature: Optional[str]
    ) -> ReconciliationResult:
        """
        Verify and apply an inbound webhook.

        Args:
            payload: Raw request body
            signature: Provider signature header

        Returns:
            Result to acknowledge to the provider

        Raises:
            AuthenticationError: If the signature check fails; nothing is
                touched in that case
        """
        event = self.provider.verify_event(payload, signature)
        return await self.apply_event(event)

    async def apply_event(self, event: ProviderEvent) -> ReconciliationResult:
        """
        Apply a verified provider event.

        Unknown event types and events without an order reference are
        acknowledged without effect.
        """
        result = ReconciliationResult(
            event_id=event.event_id,
            event_type=event.raw_type,
            order_id=event.order_id,
        )

        if event.type is None:
            logger.info(
                "Unhandled webhook event type",
                event_id=event.event_id,
                event_type=event.raw_type,
            )
            return result

        order_id = self._parse_order_id(event.order_id)
        if order_id is None:
            logger.warning(
                "Webhook event discarded: missing order id",
                event_id=event.event_id,
                event_type=event.raw_type,
                metadata_order_id=event.order_id,
            )
            await self.alerts.raise_alert(
                NotFoundError("Payment event without a usable order id"),
                event_id=event.event_id,
                event_type=event.raw_type,
                payment_intent_id=event.payment_intent_id,
            )
            return result

        with log_performance(
            logger, "apply_payment_event", event_id=event.event_id, order_id=str(order_id)
        ):
            if event.type == ProviderEventType.PAYMENT_SUCCEEDED:
                result.applied, result.failed_items = await self.confirm_payment(
                    order_id,
                    source="webhook",
                    payment_intent_id=event.payment_intent_id,
                )
            elif event.type == ProviderEventType.PAYMENT_FAILED:
                result.applied = await self.mark_failed(order_id, event.failure_message)
            else:
                result.applied = await self.mark_canceled(order_id)

        return result

    @staticmethod
    def _parse_order_id(raw: Optional[str]) -> Optional[uuid.UUID]:
        if not raw:
            return None
        try:
            return uuid.UUID(raw)
        except ValueError:
            return None

    async def confirm_payment(
        self,
        order_id: uuid.UUID,
        source: str,
        payment_intent_id: Optional[str] = None,
    ) -> tuple[bool, list[str]]:
        """
        Move an order from PENDING/UNPAID to CONFIRMED/PAID and take stock.

        Only the caller whose guarded update matches decrements inventory;
        every later or concurrent delivery is a no-op.

        Args:
            order_id: Order identifier
            source: What confirmed the payment (webhook, partial_payments)
            payment_intent_id: Provider reference to record

        Returns:
            Tuple of (applied, product ids whose decrement failed)
        """
        values = {
            "status": OrderStatus.CONFIRMED,
            "payment_status": PaymentStatus.PAID,
            "paid_at": datetime.now(timezone.utc),
        }
        if payment_intent_id:
            values["payment_intent_id"] = payment_intent_id

        applied = await self.orders.compare_and_set(
            order_id,
            expected_statuses={OrderStatus.PENDING},
            expected_payment_statuses={PaymentStatus.UNPAID},
            **values,
        )
        if not applied:
            await self._report_skipped(
                order_id, "confirm_payment", source, payment_intent_id=payment_intent_id
            )
            return False, []

        await self.orders.record_history(
            order_id,
            from_status=OrderStatus.PENDING,
            to_status=OrderStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
            source=source,
            reason="Payment confirmed",
        )

        order = await self.orders.get_by_id(order_id, refresh=True)
        failed_items = await self._adjust_items(
            order,
            StockOperation.DECREMENT,
            f"Order {order_id} payment confirmed",
        )

        logger.info(
            "Order payment confirmed",
            order_id=str(order_id),
            source=source,
            failed_item_count=len(failed_items),
        )
        return True, failed_items

    async def _report_skipped(
        self,
        order_id: uuid.UUID,
        transition: str,
        source: str,
        payment_intent_id: Optional[str] = None,
    ) -> None:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            logger.warning(
                "Payment event for unknown order",
                order_id=str(order_id),
                transition=transition,
            )
            await self.alerts.raise_alert(
                NotFoundError(f"Order {order_id} not found"),
                order_id=str(order_id),
                source=source,
            )
            return
        if transition == "confirm_payment" and order.payment_status != PaymentStatus.PAID:
            # Captured money on an order that already failed or was canceled
            logger.warning(
                "Payment succeeded for an order that cannot be confirmed",
                order_id=str(order_id),
                status=order.status.value,
                payment_status=order.payment_status.value,
                payment_intent_id=payment_intent_id,
            )
            await self.alerts.raise_alert(
                InvalidStateError(
                    f"Payment succeeded for order {order_id} in state "
                    f"{order.status.value}/{order.payment_status.value}",
                    order_id=order_id,
                ),
                order_id=str(order_id),
                payment_intent_id=payment_intent_id,
                source=source,
            )
            return
        logger.info(
            "Payment transition skipped: order already past this state",
            order_id=str(order_id),
            transition=transition,
            source=source,
        )

    async def _adjust_items(
        self,
        order: Optional[Order],
        operation: StockOperation,
        reason: str,
    ) -> list[str]:
        """
        Apply a stock operation to every line item independently.

        A failure on one item is logged and alerted but never stops its
        siblings or propagates to the caller.

        Returns:
            Product ids whose stock could not be adjusted
        """
        if order is None:
            return []

        failed: list[str] = []
        for item in order.items:
            try:
                applied = await retry(
                    lambda item=item: self.ledger.update_stock(
                        item.product_id,
                        item.quantity,
                        operation,
                        reason,
                    ),
                    self.retry_config,
                )
                if not applied:
                    raise InsufficientStockError(
                        item.product_id, item.quantity, order_id=order.id
                    )
            except Exception as e:
                failed.append(str(item.product_id))
                logger.error(
                    "Stock adjustment failed for reconciled order",
                    order_id=str(order.id),
                    product_id=str(item.product_id),
                    operation=operation.value,
                    quantity=item.quantity,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await self.alerts.raise_alert(
                    e,
                    order_id=str(order.id),
                    product_id=str(item.product_id),
                    operation=operation.value,
                    quantity=item.quantity,
                )

        return failed

    async def mark_failed(
        self, order_id: uuid.UUID, failure_message: Optional[str] = None
    ) -> bool:
        """Move an unpaid order to PAYMENT_FAILED/FAILED. No inventory effect."""
        return await self._guarded_transition(
            order_id,
            to_status=OrderStatus.PAYMENT_FAILED,
            to_payment_status=PaymentStatus.FAILED,
            from_payment_status=PaymentStatus.UNPAID,
            reason=failure_message or "Payment failed",
        )

    async def mark_canceled(self, order_id: uuid.UUID) -> bool:
        """
        Move an order to CANCELLED/CANCELED after provider cancellation.

        Stock taken when a paid order was confirmed is put back.
        """
        for from_payment_status in (PaymentStatus.UNPAID, PaymentStatus.PAID):
            if await self._guarded_transition(
                order_id,
                to_status=OrderStatus.CANCELLED,
                to_payment_status=PaymentStatus.CANCELED,
                from_payment_status=from_payment_status,
                reason="Payment canceled by provider",
                report_skip=False,
            ):
                if from_payment_status == PaymentStatus.PAID:
                    order = await self.orders.get_by_id(order_id, refresh=True)
                    await self._adjust_items(
                        order,
                        StockOperation.INCREMENT,
                        f"Order {order_id} payment canceled",
                    )
                return True

        await self._report_skipped(order_id, "mark_canceled", "webhook")
        return False

    async def _guarded_transition(
        self,
        order_id: uuid.UUID,
        to_status: OrderStatus,
        to_payment_status: PaymentStatus,
        from_payment_status: PaymentStatus,
        reason: str,
        report_skip: bool = True,
    ) -> bool:
        # Only PENDING and CONFIRMED orders react to payment events, so a
        # late event never regresses a shipped or delivered order.
        from_statuses = order_statuses_leading_to(to_status) & {
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
        }
        order = await self.orders.get_by_id(order_id, refresh=True)
        previous_status = order.status if order is not None else None

        applied = order is not None and await self.orders.compare_and_set(
            order_id,
            expected_statuses=from_statuses,
            expected_payment_statuses={from_payment_status},
            status=to_status,
            payment_status=to_payment_status,
        )
        if not applied:
            if report_skip:
                await self._report_skipped(order_id, to_status.value, "webhook")
            return False

        await self.orders.record_history(
            order_id,
            from_status=previous_status,
            to_status=to_status,
            payment_status=to_payment_status,
            source="webhook",
            reason=reason,
        )
        logger.info(
            "Order payment state updated",
            order_id=str(order_id),
            status=to_status.value,
            payment_status=to_payment_status.value,
        )
        return True
