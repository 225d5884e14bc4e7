"""
Tests for the partial payment ledger.
"""

import uuid
from decimal import Decimal

import pytest

from fakes import make_order, make_product
from marketplace.core.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    TransientProviderError,
    ValidationError,
)
from marketplace.core.security import Principal, UserRole
from marketplace.database.models.payment import PartialPaymentStatus
from marketplace.services.orders.enums import OrderStatus, PaymentStatus
from marketplace.services.payments.partial import PartialPaymentLedger
from marketplace.services.payments.reconciliation import PaymentReconciler


@pytest.fixture
def partial_ledger(
    fake_session, mock_provider, order_repo, payment_repo, ledger, alerts, fast_retry
) -> PartialPaymentLedger:
    reconciler = PaymentReconciler(
        fake_session,
        provider=mock_provider,
        orders=order_repo,
        ledger=ledger,
        alerts=alerts,
        retry_config=fast_retry,
    )
    return PartialPaymentLedger(
        fake_session,
        provider=mock_provider,
        orders=order_repo,
        payments=payment_repo,
        reconciler=reconciler,
        retry_config=fast_retry,
    )


@pytest.fixture
def product(inventory_repo, seller_id):
    return inventory_repo.add_product(make_product(seller_id, "50.00", stock=4))


@pytest.fixture
def order(order_repo, product, customer):
    """A 100.00 order awaiting payment."""
    order = make_order(customer.user_id, [(product, 2)])
    order_repo.orders[order.id] = order
    return order


# ============================================================================
# Creating Installments
# ============================================================================


class TestCreate:
    """Tests for PartialPaymentLedger.create()."""

    @pytest.mark.asyncio
    async def test_creates_pending_installment(self, partial_ledger, order, customer):
        payment = await partial_ledger.create(
            order.id, Decimal("40.00"), "card", None, customer
        )

        assert payment.status == PartialPaymentStatus.PENDING
        assert payment.amount == Decimal("40.00")
        assert payment.order_id == order.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0.00", "-5.00"])
    async def test_non_positive_amount(self, partial_ledger, order, customer, amount):
        with pytest.raises(ValidationError):
            await partial_ledger.create(order.id, Decimal(amount), "card", None, customer)

    @pytest.mark.asyncio
    async def test_pending_and_completed_installments_cap_the_total(
        self, partial_ledger, order, customer
    ):
        first = await partial_ledger.create(order.id, Decimal("60.00"), "card", None, customer)
        await partial_ledger.complete(first.id, customer)
        await partial_ledger.create(order.id, Decimal("30.00"), "card", None, customer)

        with pytest.raises(ValidationError) as exc_info:
            await partial_ledger.create(order.id, Decimal("10.01"), "card", None, customer)

        assert exc_info.value.code == "AMOUNT_EXCEEDS_BALANCE"

    @pytest.mark.asyncio
    async def test_exact_remaining_balance_is_accepted(
        self, partial_ledger, order, customer
    ):
        await partial_ledger.create(order.id, Decimal("60.00"), "card", None, customer)

        payment = await partial_ledger.create(
            order.id, Decimal("40.00"), "card", None, customer
        )

        assert payment.amount == Decimal("40.00")

    @pytest.mark.asyncio
    async def test_other_customer_is_rejected(self, partial_ledger, order, other_customer):
        with pytest.raises(AuthorizationError):
            await partial_ledger.create(
                order.id, Decimal("10.00"), "card", None, other_customer
            )

    @pytest.mark.asyncio
    async def test_ownership_is_checked_before_amount(
        self, partial_ledger, order, other_customer
    ):
        with pytest.raises(AuthorizationError):
            await partial_ledger.create(
                order.id, Decimal("0.00"), "card", None, other_customer
            )

    @pytest.mark.asyncio
    async def test_cancelled_order_does_not_accept_payments(
        self, partial_ledger, order, customer
    ):
        order.status = OrderStatus.CANCELLED
        order.payment_status = PaymentStatus.CANCELED

        with pytest.raises(InvalidStateError):
            await partial_ledger.create(order.id, Decimal("10.00"), "card", None, customer)

    @pytest.mark.asyncio
    async def test_unknown_order(self, partial_ledger, customer):
        with pytest.raises(NotFoundError):
            await partial_ledger.create(
                uuid.uuid4(), Decimal("10.00"), "card", None, customer
            )


# ============================================================================
# Settlement
# ============================================================================


class TestComplete:
    """Tests for PartialPaymentLedger.complete()."""

    @pytest.mark.asyncio
    async def test_completing_twice_is_a_no_op(self, partial_ledger, order, customer):
        payment = await partial_ledger.create(
            order.id, Decimal("30.00"), "card", None, customer
        )

        first = await partial_ledger.complete(payment.id, customer)
        completed_at = first.completed_at
        second = await partial_ledger.complete(payment.id, customer)

        assert second.status == PartialPaymentStatus.COMPLETED
        assert second.completed_at == completed_at
        assert order.payment_status == PaymentStatus.UNPAID

    @pytest.mark.asyncio
    async def test_full_payment_confirms_order_and_takes_stock(
        self, partial_ledger, order, customer, inventory_repo, product, order_repo
    ):
        # Arrange
        first = await partial_ledger.create(order.id, Decimal("70.00"), "card", None, customer)
        second = await partial_ledger.create(
            order.id, Decimal("30.00"), "card", "pi_final", customer
        )

        # Act
        await partial_ledger.complete(first.id, customer)
        await partial_ledger.complete(second.id, customer)

        # Assert
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_status == PaymentStatus.PAID
        assert inventory_repo.stock_of(product.id) == 2
        assert order_repo.history[-1]["source"] == "partial_payments"

    @pytest.mark.asyncio
    async def test_refunded_installment_cannot_be_completed(
        self, partial_ledger, order, customer, payment_repo
    ):
        payment = await partial_ledger.create(
            order.id, Decimal("30.00"), "card", None, customer
        )
        payment_repo.payments[payment.id].status = PartialPaymentStatus.REFUNDED

        with pytest.raises(InvalidStateError):
            await partial_ledger.complete(payment.id, customer)

    @pytest.mark.asyncio
    async def test_unknown_payment(self, partial_ledger, customer):
        with pytest.raises(NotFoundError):
            await partial_ledger.complete(uuid.uuid4(), customer)


class TestRefund:
    """Tests for PartialPaymentLedger.refund()."""

    @pytest.mark.asyncio
    async def test_pending_installment_cannot_be_refunded(
        self, partial_ledger, order, customer, mock_provider
    ):
        payment = await partial_ledger.create(
            order.id, Decimal("30.00"), "card", "pi_1", customer
        )

        with pytest.raises(InvalidStateError):
            await partial_ledger.refund(payment.id, customer)

        mock_provider.create_refund.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refund_calls_provider_with_idempotency_key(
        self, partial_ledger, order, customer, mock_provider
    ):
        payment = await partial_ledger.create(
            order.id, Decimal("30.00"), "card", "pi_1", customer
        )
        await partial_ledger.complete(payment.id, customer)

        refunded = await partial_ledger.refund(payment.id, customer)

        assert refunded.status == PartialPaymentStatus.REFUNDED
        assert refunded.refunded_at is not None
        mock_provider.create_refund.assert_awaited_once_with(
            "pi_1",
            Decimal("30.00"),
            idempotency_key=f"partial-refund-{payment.id}",
        )

    @pytest.mark.asyncio
    async def test_refund_retries_transient_provider_errors(
        self, partial_ledger, order, customer, mock_provider
    ):
        mock_provider.create_refund.side_effect = [
            TransientProviderError("provider timeout"),
            "re_2",
        ]
        payment = await partial_ledger.create(
            order.id, Decimal("30.00"), "card", "pi_1", customer
        )
        await partial_ledger.complete(payment.id, customer)

        await partial_ledger.refund(payment.id, customer)

        assert mock_provider.create_refund.await_count == 2


# ============================================================================
# Reads
# ============================================================================


class TestReads:
    """Tests for status(), schedule() and history()."""

    @pytest.mark.asyncio
    async def test_status_reports_balance(self, partial_ledger, order, customer):
        paid = await partial_ledger.create(order.id, Decimal("25.00"), "card", None, customer)
        await partial_ledger.complete(paid.id, customer)
        await partial_ledger.create(order.id, Decimal("25.00"), "card", None, customer)

        summary = await partial_ledger.status(order.id, customer)

        assert summary.total_amount == Decimal("100.00")
        assert summary.total_paid == Decimal("25.00")
        assert summary.remaining == Decimal("75.00")
        assert summary.is_fully_paid is False
        assert len(summary.payments) == 2

    @pytest.mark.asyncio
    async def test_schedule_points_at_oldest_pending(self, partial_ledger, order, customer):
        first = await partial_ledger.create(order.id, Decimal("10.00"), "card", None, customer)
        await partial_ledger.create(order.id, Decimal("20.00"), "card", None, customer)

        schedule = await partial_ledger.schedule(order.id, customer)

        assert schedule.next_payment_due.id == first.id

    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, partial_ledger, order, customer):
        first = await partial_ledger.create(order.id, Decimal("10.00"), "card", None, customer)
        second = await partial_ledger.create(order.id, Decimal("20.00"), "card", None, customer)

        history = await partial_ledger.history(order.id, customer)

        assert [p.id for p in history] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_seller_and_admin_can_read(self, partial_ledger, order, seller_id, admin):
        seller = Principal(user_id=seller_id, role=UserRole.SELLER)

        await partial_ledger.status(order.id, seller)
        await partial_ledger.history(order.id, admin)

    @pytest.mark.asyncio
    async def test_other_customer_cannot_read(self, partial_ledger, order, other_customer):
        with pytest.raises(AuthorizationError):
            await partial_ledger.status(order.id, other_customer)
