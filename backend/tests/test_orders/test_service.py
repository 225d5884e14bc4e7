"""
Tests for OrderService orchestration over in-memory repositories.
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
from marketplace.core.security import Principal, UserRole
from marketplace.schemas.orders import (
    CartItem,
    CheckoutRequest,
    OrderFilter,
    OrderStatusUpdate,
    ShippingAddress,
)
from marketplace.services.orders.enums import OrderStatus, PaymentStatus
from marketplace.services.orders.service import OrderService
from marketplace.services.orders.splitter import OrderSplitter


@pytest.fixture
def service(fake_session, order_repo, inventory_repo, ledger) -> OrderService:
    splitter = OrderSplitter(
        inventory_repo,
        free_shipping_floor=Decimal("50.00"),
        flat_shipping_fee=Decimal("5.00"),
    )
    return OrderService(
        fake_session, repository=order_repo, splitter=splitter, ledger=ledger
    )


@pytest.fixture
def seller(seller_id) -> Principal:
    return Principal(user_id=seller_id, role=UserRole.SELLER)


@pytest.fixture
def product(inventory_repo, seller_id):
    return inventory_repo.add_product(make_product(seller_id, "20.00", stock=8))


@pytest.fixture
def stored_order(order_repo, product, customer):
    def _store(**kwargs):
        order = make_order(customer.user_id, [(product, 2)], **kwargs)
        order_repo.orders[order.id] = order
        return order

    return _store


# ============================================================================
# Checkout
# ============================================================================


class TestCheckout:
    """Tests for OrderService.checkout() and preview_splits()."""

    @pytest.mark.asyncio
    async def test_checkout_persists_orders_with_history(
        self, service, order_repo, inventory_repo, product, customer
    ):
        other = inventory_repo.add_product(make_product(uuid.uuid4(), "60.00", stock=1))
        request = CheckoutRequest(
            items=[
                CartItem(product_id=product.id, quantity=1),
                CartItem(product_id=other.id, quantity=1),
            ],
            shipping_address=ShippingAddress(
                street="1 Main St",
                city="Springfield",
                state="IL",
                postal_code="62701",
                country="US",
            ),
            payment_method="card",
        )

        response = await service.checkout(customer.user_id, request)

        assert len(response.orders) == 2
        assert response.grand_total == Decimal("85.00")
        assert set(order_repo.orders) == {o.id for o in response.orders}
        assert [h["source"] for h in order_repo.history] == ["checkout", "checkout"]

    @pytest.mark.asyncio
    async def test_preview_does_not_persist(self, service, order_repo, product):
        previews = await service.preview_splits(
            [CartItem(product_id=product.id, quantity=3)]
        )

        assert previews[0].subtotal == Decimal("60.00")
        assert previews[0].shipping_cost == Decimal("0.00")
        assert order_repo.orders == {}

    @pytest.mark.asyncio
    async def test_preview_rejects_empty_cart(self, service):
        with pytest.raises(ValidationError):
            await service.preview_splits([])


# ============================================================================
# Status Updates
# ============================================================================


class TestUpdateStatus:
    """Tests for OrderService.update_status()."""

    @pytest.mark.asyncio
    async def test_missing_order(self, service, admin):
        with pytest.raises(NotFoundError):
            await service.update_status(
                uuid.uuid4(), admin, OrderStatusUpdate(status=OrderStatus.CANCELLED)
            )

    @pytest.mark.asyncio
    async def test_seller_cancelling_paid_order_restocks(
        self, service, stored_order, inventory_repo, product, seller
    ):
        # Arrange: payment already took the two units
        order = stored_order(
            status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.PAID
        )

        # Act
        updated = await service.update_status(
            order.id, seller, OrderStatusUpdate(status=OrderStatus.CANCELLED)
        )

        # Assert
        assert updated.status == OrderStatus.CANCELLED
        assert inventory_repo.stock_of(product.id) == 10
        assert inventory_repo.movements[-1].reason == f"Order {order.id} cancelled"

    @pytest.mark.asyncio
    async def test_customer_cancelling_pending_order_does_not_restock(
        self, service, stored_order, inventory_repo, product, customer
    ):
        order = stored_order()

        await service.update_status(
            order.id, customer, OrderStatusUpdate(status=OrderStatus.CANCELLED)
        )

        assert inventory_repo.stock_of(product.id) == 8
        assert inventory_repo.movements == []


class TestAssignCourier:
    """Tests for OrderService.assign_courier()."""

    @pytest.mark.asyncio
    async def test_admin_assigns_courier(self, service, stored_order, admin):
        order = stored_order(status=OrderStatus.CONFIRMED, payment_status=PaymentStatus.PAID)
        courier_id = uuid.uuid4()

        updated = await service.assign_courier(order.id, courier_id, admin)

        assert updated.courier_id == courier_id

    @pytest.mark.asyncio
    async def test_non_admin_is_rejected(self, service, stored_order, seller):
        order = stored_order()

        with pytest.raises(AuthorizationError):
            await service.assign_courier(order.id, uuid.uuid4(), seller)

    @pytest.mark.asyncio
    async def test_terminal_order_is_rejected(self, service, stored_order, admin):
        order = stored_order(status=OrderStatus.DELIVERED, payment_status=PaymentStatus.PAID)

        with pytest.raises(InvalidStateError):
            await service.assign_courier(order.id, uuid.uuid4(), admin)


class TestReads:
    """Tests for get_order() and list_orders()."""

    @pytest.mark.asyncio
    async def test_get_order_outside_scope(self, service, stored_order, other_customer):
        order = stored_order()

        with pytest.raises(AuthorizationError):
            await service.get_order(order.id, other_customer)

    @pytest.mark.asyncio
    async def test_customer_listing_is_scoped_and_filtered(
        self, service, stored_order, order_repo, customer
    ):
        stored_order()

        orders, total = await service.list_orders(
            customer, OrderFilter(status=OrderStatus.PENDING), page=1, page_size=10
        )

        assert total == 1
        assert len(order_repo.list_conditions) == 2

    @pytest.mark.asyncio
    async def test_admin_listing_is_unscoped(self, service, order_repo, admin):
        await service.list_orders(admin)

        assert order_repo.list_conditions == []
