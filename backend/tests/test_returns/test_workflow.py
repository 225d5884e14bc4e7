"""
Tests for the return and refund workflow.

Covers request validation, the forward-only status flow, the refund
amount frozen at approval, restocking on receipt and the refund payout.
"""

import uuid
from decimal import Decimal

import pytest

from fakes import make_order, make_product
from marketplace.core.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from marketplace.database.models.returns import ReturnStatus
from marketplace.services.orders.enums import OrderStatus, PaymentStatus
from marketplace.services.returns.workflow import ReturnWorkflow


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def workflow(
    fake_session, mock_provider, return_repo, order_repo, ledger, fast_retry
) -> ReturnWorkflow:
    return ReturnWorkflow(
        fake_session,
        provider=mock_provider,
        returns=return_repo,
        orders=order_repo,
        ledger=ledger,
        retry_config=fast_retry,
    )


@pytest.fixture
def product(inventory_repo, seller_id):
    return inventory_repo.add_product(make_product(seller_id, "20.00", stock=0))


@pytest.fixture
def delivered_order(order_repo, product, customer):
    """Delivered, paid order for two units at 20.00 each."""
    order = make_order(
        customer.user_id,
        [(product, 2)],
        status=OrderStatus.DELIVERED,
        payment_status=PaymentStatus.PAID,
        payment_intent_id="pi_paid",
    )
    order_repo.orders[order.id] = order
    return order


async def open_item_return(workflow, order, customer, quantity=1):
    return await workflow.create(
        order.id,
        customer,
        reason="Damaged on arrival",
        quantity=quantity,
        refund_method="original_payment",
        order_item_id=order.items[0].id,
    )


# ============================================================================
# Requesting Returns
# ============================================================================


class TestCreate:
    """Tests for ReturnWorkflow.create()."""

    @pytest.mark.asyncio
    async def test_item_return_is_pending(self, workflow, delivered_order, customer):
        request = await open_item_return(workflow, delivered_order, customer)

        assert request.status == ReturnStatus.PENDING
        assert request.quantity == 1
        assert request.refund_amount is None

    @pytest.mark.asyncio
    async def test_whole_order_return_counts_all_units(
        self, workflow, delivered_order, customer
    ):
        request = await workflow.create(
            delivered_order.id,
            customer,
            reason="Changed my mind",
            quantity=None,
            refund_method="original_payment",
        )

        assert request.is_whole_order
        assert request.quantity == 2

    @pytest.mark.asyncio
    async def test_empty_reason(self, workflow, delivered_order, customer):
        with pytest.raises(ValidationError):
            await workflow.create(
                delivered_order.id, customer, "  ", 1, "original_payment"
            )

    @pytest.mark.asyncio
    async def test_undelivered_order(self, workflow, order_repo, product, customer):
        order = make_order(
            customer.user_id,
            [(product, 1)],
            status=OrderStatus.SHIPPED,
            payment_status=PaymentStatus.PAID,
        )
        order_repo.orders[order.id] = order

        with pytest.raises(InvalidStateError):
            await open_item_return(workflow, order, customer)

    @pytest.mark.asyncio
    async def test_only_owner_can_request(self, workflow, delivered_order, other_customer):
        with pytest.raises(AuthorizationError):
            await open_item_return(workflow, delivered_order, other_customer)

    @pytest.mark.asyncio
    async def test_claims_cannot_exceed_ordered_quantity(
        self, workflow, delivered_order, customer
    ):
        await open_item_return(workflow, delivered_order, customer, quantity=2)

        with pytest.raises(ValidationError) as exc_info:
            await open_item_return(workflow, delivered_order, customer, quantity=1)

        assert exc_info.value.code == "RETURN_QUANTITY_EXCEEDED"

    @pytest.mark.asyncio
    async def test_rejected_claims_are_released(
        self, workflow, delivered_order, customer, admin
    ):
        first = await open_item_return(workflow, delivered_order, customer, quantity=2)
        await workflow.reject(first.id, "Outside return window", admin.user_id)

        second = await open_item_return(workflow, delivered_order, customer, quantity=2)

        assert second.status == ReturnStatus.PENDING

    @pytest.mark.asyncio
    async def test_whole_order_blocked_after_item_claim(
        self, workflow, delivered_order, customer
    ):
        await open_item_return(workflow, delivered_order, customer)

        with pytest.raises(ValidationError):
            await workflow.create(
                delivered_order.id, customer, "Everything", None, "original_payment"
            )

    @pytest.mark.asyncio
    async def test_item_claim_blocked_after_whole_order_return(
        self, workflow, delivered_order, customer
    ):
        await workflow.create(
            delivered_order.id, customer, "Everything", None, "original_payment"
        )

        with pytest.raises(ValidationError) as exc_info:
            await open_item_return(workflow, delivered_order, customer, quantity=2)

        assert exc_info.value.code == "RETURN_QUANTITY_EXCEEDED"

    @pytest.mark.asyncio
    async def test_item_claim_allowed_after_whole_order_rejected(
        self, workflow, delivered_order, customer, admin
    ):
        whole = await workflow.create(
            delivered_order.id, customer, "Everything", None, "original_payment"
        )
        await workflow.reject(whole.id, "Missing packaging", admin.user_id)

        request = await open_item_return(workflow, delivered_order, customer, quantity=2)

        assert request.quantity == 2

    @pytest.mark.asyncio
    async def test_unknown_item(self, workflow, delivered_order, customer):
        with pytest.raises(NotFoundError):
            await workflow.create(
                delivered_order.id,
                customer,
                "Wrong size",
                1,
                "original_payment",
                order_item_id=uuid.uuid4(),
            )


# ============================================================================
# Back-office Decisions
# ============================================================================


class TestApproveAndReject:
    """Tests for approve() and reject()."""

    @pytest.mark.asyncio
    async def test_refund_amount_is_frozen_at_approval(
        self, workflow, delivered_order, product, customer, admin
    ):
        request = await open_item_return(workflow, delivered_order, customer, quantity=2)

        approved = await workflow.approve(request.id, admin.user_id)
        product.price = Decimal("25.00")

        assert approved.status == ReturnStatus.APPROVED
        assert approved.refund_amount == Decimal("40.00")
        assert approved.approver_id == admin.user_id
        assert approved.approved_at is not None

    @pytest.mark.asyncio
    async def test_whole_order_refunds_order_total(
        self, workflow, delivered_order, customer, admin
    ):
        request = await workflow.create(
            delivered_order.id, customer, "Not needed", None, "original_payment"
        )

        approved = await workflow.approve(request.id, admin.user_id)

        assert approved.refund_amount == delivered_order.total_amount

    @pytest.mark.asyncio
    async def test_approving_twice_fails(self, workflow, delivered_order, customer, admin):
        request = await open_item_return(workflow, delivered_order, customer)
        await workflow.approve(request.id, admin.user_id)

        with pytest.raises(InvalidStateError):
            await workflow.approve(request.id, admin.user_id)

    @pytest.mark.asyncio
    async def test_missing_price_aborts_without_writing(
        self, workflow, delivered_order, customer, admin, return_repo
    ):
        request = await open_item_return(workflow, delivered_order, customer)
        return_repo.requests[request.id].order_item.unit_price = None

        with pytest.raises(InvalidStateError) as exc_info:
            await workflow.approve(request.id, admin.user_id)

        assert exc_info.value.code == "REFUND_AMOUNT_UNAVAILABLE"
        assert return_repo.requests[request.id].status == ReturnStatus.PENDING
        assert return_repo.requests[request.id].refund_amount is None

    @pytest.mark.asyncio
    async def test_reject_requires_reason(self, workflow, delivered_order, customer, admin):
        request = await open_item_return(workflow, delivered_order, customer)

        with pytest.raises(ValidationError):
            await workflow.reject(request.id, "", admin.user_id)

        rejected = await workflow.reject(request.id, "Item was used", admin.user_id)
        assert rejected.status == ReturnStatus.REJECTED
        assert rejected.rejection_reason == "Item was used"

    @pytest.mark.asyncio
    async def test_approved_return_cannot_be_rejected(
        self, workflow, delivered_order, customer, admin
    ):
        request = await open_item_return(workflow, delivered_order, customer)
        await workflow.approve(request.id, admin.user_id)

        with pytest.raises(InvalidStateError):
            await workflow.reject(request.id, "Too late", admin.user_id)


# ============================================================================
# Receipt and Refund
# ============================================================================


class TestReceiveAndRefund:
    """Tests for mark_received() and issue_refund()."""

    @pytest.mark.asyncio
    async def test_pending_return_cannot_be_received(
        self, workflow, delivered_order, customer, inventory_repo
    ):
        request = await open_item_return(workflow, delivered_order, customer)

        with pytest.raises(InvalidStateError):
            await workflow.mark_received(request.id)

        assert inventory_repo.movements == []

    @pytest.mark.asyncio
    async def test_receipt_restocks_returned_units(
        self, workflow, delivered_order, product, customer, admin, inventory_repo
    ):
        request = await open_item_return(workflow, delivered_order, customer)
        await workflow.approve(request.id, admin.user_id)

        received = await workflow.mark_received(request.id)

        assert received.status == ReturnStatus.RECEIVED
        assert inventory_repo.stock_of(product.id) == 1
        assert inventory_repo.movements[-1].reason == f"Return {request.id} received"

    @pytest.mark.asyncio
    async def test_received_return_cannot_go_back_to_approved(
        self, workflow, delivered_order, customer, admin
    ):
        request = await open_item_return(workflow, delivered_order, customer)
        await workflow.approve(request.id, admin.user_id)
        await workflow.mark_received(request.id)

        with pytest.raises(InvalidStateError):
            await workflow.approve(request.id, admin.user_id)
        with pytest.raises(InvalidStateError):
            await workflow.mark_received(request.id)

    @pytest.mark.asyncio
    async def test_refund_only_after_receipt(
        self, workflow, delivered_order, customer, admin, mock_provider
    ):
        request = await open_item_return(workflow, delivered_order, customer)
        await workflow.approve(request.id, admin.user_id)

        with pytest.raises(InvalidStateError):
            await workflow.issue_refund(request.id)

        mock_provider.create_refund.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_item_refund_pays_frozen_amount(
        self, workflow, delivered_order, product, customer, admin, mock_provider
    ):
        # Arrange
        request = await open_item_return(workflow, delivered_order, customer, quantity=2)
        await workflow.approve(request.id, admin.user_id)
        await workflow.mark_received(request.id)
        product.price = Decimal("25.00")

        # Act
        refunded = await workflow.issue_refund(request.id)

        # Assert
        assert refunded.status == ReturnStatus.REFUNDED
        assert refunded.refund_reference == "re_test_123"
        mock_provider.create_refund.assert_awaited_once_with(
            "pi_paid",
            Decimal("40.00"),
            idempotency_key=f"return-refund-{request.id}",
        )
        assert delivered_order.payment_status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_whole_order_refund_marks_order_refunded(
        self, workflow, delivered_order, customer, admin, order_repo
    ):
        request = await workflow.create(
            delivered_order.id, customer, "Not needed", None, "original_payment"
        )
        await workflow.approve(request.id, admin.user_id)
        await workflow.mark_received(request.id)

        await workflow.issue_refund(request.id)

        assert delivered_order.payment_status == PaymentStatus.REFUNDED
        assert delivered_order.status == OrderStatus.DELIVERED
        assert order_repo.history[-1]["source"] == "returns"

    @pytest.mark.asyncio
    async def test_refund_without_payment_reference_skips_provider(
        self, workflow, delivered_order, customer, admin, mock_provider
    ):
        delivered_order.payment_intent_id = None
        request = await open_item_return(workflow, delivered_order, customer)
        await workflow.approve(request.id, admin.user_id)
        await workflow.mark_received(request.id)

        refunded = await workflow.issue_refund(request.id)

        assert refunded.status == ReturnStatus.REFUNDED
        assert refunded.refund_reference is None
        mock_provider.create_refund.assert_not_awaited()


class TestReads:
    """Tests for get() and list_for_user()."""

    @pytest.mark.asyncio
    async def test_other_customer_cannot_view(
        self, workflow, delivered_order, customer, other_customer, admin
    ):
        request = await open_item_return(workflow, delivered_order, customer)

        with pytest.raises(AuthorizationError):
            await workflow.get(request.id, other_customer)
        assert (await workflow.get(request.id, admin)).id == request.id

    @pytest.mark.asyncio
    async def test_listing(self, workflow, delivered_order, customer, admin):
        await open_item_return(workflow, delivered_order, customer)

        requests, total = await workflow.list_for_user(admin)

        assert total == 1
        assert requests[0].customer_id == customer.user_id
