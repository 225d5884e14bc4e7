"""
Tests for splitting multi-seller carts into per-seller orders.
"""

import uuid
from decimal import Decimal

import pytest

from fakes import make_product
from marketplace.core.errors import ValidationError
from marketplace.schemas.orders import CartItem, CheckoutRequest, ShippingAddress
from marketplace.services.orders.enums import OrderStatus, PaymentStatus
from marketplace.services.orders.splitter import OrderSplitter, calculate_shipping

ADDRESS = ShippingAddress(
    street="1 Main St",
    city="Springfield",
    state="IL",
    postal_code="62701",
    country="US",
)


@pytest.fixture
def seller_a() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def seller_b() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def catalog(inventory_repo, seller_a, seller_b):
    """Seller A sells a 10.00 item and a 5.00 item, seller B a 25.00 item."""
    return {
        "a1": inventory_repo.add_product(make_product(seller_a, "10.00", stock=10)),
        "a2": inventory_repo.add_product(make_product(seller_a, "5.00", stock=10)),
        "b1": inventory_repo.add_product(make_product(seller_b, "25.00", stock=3)),
    }


@pytest.fixture
def splitter(inventory_repo) -> OrderSplitter:
    return OrderSplitter(
        inventory_repo,
        free_shipping_floor=Decimal("50.00"),
        flat_shipping_fee=Decimal("5.00"),
    )


def checkout(*items: CartItem, address: ShippingAddress = ADDRESS) -> CheckoutRequest:
    return CheckoutRequest(items=list(items), shipping_address=address, payment_method="card")


# ============================================================================
# Splitting
# ============================================================================


class TestSplit:
    """Tests for OrderSplitter.split()."""

    @pytest.mark.asyncio
    async def test_two_sellers_get_independent_orders(
        self, splitter, catalog, seller_a, seller_b, customer
    ):
        # Arrange: A subtotal 30.00 (below floor), B subtotal 50.00 (at floor)
        request = checkout(
            CartItem(product_id=catalog["a1"].id, quantity=2),
            CartItem(product_id=catalog["a2"].id, quantity=2),
            CartItem(product_id=catalog["b1"].id, quantity=2),
        )

        # Act
        orders = await splitter.split(customer.user_id, request)

        # Assert
        by_seller = {o.seller_id: o for o in orders}
        assert set(by_seller) == {seller_a, seller_b}

        order_a = by_seller[seller_a]
        assert order_a.subtotal == Decimal("30.00")
        assert order_a.shipping_cost == Decimal("5.00")
        assert order_a.total_amount == Decimal("35.00")

        order_b = by_seller[seller_b]
        assert order_b.subtotal == Decimal("50.00")
        assert order_b.shipping_cost == Decimal("0.00")
        assert order_b.total_amount == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_orders_share_checkout_session_and_start_pending(
        self, splitter, catalog, customer
    ):
        request = checkout(
            CartItem(product_id=catalog["a1"].id, quantity=1),
            CartItem(product_id=catalog["b1"].id, quantity=1),
        )

        orders = await splitter.split(customer.user_id, request)

        assert len({o.checkout_session_id for o in orders}) == 1
        assert all(o.customer_id == customer.user_id for o in orders)
        assert all(o.status == OrderStatus.PENDING for o in orders)
        assert all(o.payment_status == PaymentStatus.UNPAID for o in orders)

    @pytest.mark.asyncio
    async def test_unit_price_is_frozen_on_items(self, splitter, catalog, customer):
        request = checkout(CartItem(product_id=catalog["a1"].id, quantity=1))

        orders = await splitter.split(customer.user_id, request)
        catalog["a1"].price = Decimal("99.00")

        assert orders[0].items[0].unit_price == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_repeated_product_lines_are_merged(self, splitter, catalog, customer):
        request = checkout(
            CartItem(product_id=catalog["a1"].id, quantity=1),
            CartItem(product_id=catalog["a1"].id, quantity=2),
        )

        orders = await splitter.split(customer.user_id, request)

        assert len(orders[0].items) == 1
        assert orders[0].items[0].quantity == 3

    @pytest.mark.asyncio
    async def test_split_does_not_touch_stock(
        self, splitter, catalog, inventory_repo, customer
    ):
        request = checkout(CartItem(product_id=catalog["b1"].id, quantity=3))

        await splitter.split(customer.user_id, request)

        assert inventory_repo.stock_of(catalog["b1"].id) == 3
        assert inventory_repo.movements == []


# ============================================================================
# Cart Validation
# ============================================================================


class TestCartValidation:
    """Tests for cart and address rejection codes."""

    @pytest.mark.asyncio
    async def test_empty_cart(self, splitter, customer):
        with pytest.raises(ValidationError) as exc_info:
            await splitter.split(customer.user_id, checkout())

        assert exc_info.value.code == "EMPTY_CART"

    @pytest.mark.asyncio
    async def test_incomplete_address(self, splitter, catalog, customer):
        address = ShippingAddress(street="1 Main St", city="Springfield")
        request = checkout(
            CartItem(product_id=catalog["a1"].id, quantity=1), address=address
        )

        with pytest.raises(ValidationError) as exc_info:
            await splitter.split(customer.user_id, request)

        assert exc_info.value.code == "INVALID_ADDRESS"
        assert "postal_code" in exc_info.value.context["missing_fields"]

    @pytest.mark.asyncio
    async def test_quantity_above_stock(self, splitter, catalog, customer):
        request = checkout(CartItem(product_id=catalog["b1"].id, quantity=4))

        with pytest.raises(ValidationError) as exc_info:
            await splitter.split(customer.user_id, request)

        assert exc_info.value.code == "INSUFFICIENT_STOCK"

    @pytest.mark.asyncio
    async def test_stale_seller_on_cart_item(self, splitter, catalog, customer):
        request = checkout(
            CartItem(product_id=catalog["a1"].id, quantity=1, seller_id=uuid.uuid4())
        )

        with pytest.raises(ValidationError) as exc_info:
            await splitter.split(customer.user_id, request)

        assert exc_info.value.code == "SELLER_MISMATCH"

    @pytest.mark.asyncio
    async def test_unknown_and_inactive_products(
        self, splitter, inventory_repo, seller_a, customer
    ):
        inactive = inventory_repo.add_product(
            make_product(seller_a, "1.00", is_active=False)
        )

        for product_id in (uuid.uuid4(), inactive.id):
            with pytest.raises(ValidationError) as exc_info:
                await splitter.split(
                    customer.user_id, checkout(CartItem(product_id=product_id, quantity=1))
                )
            assert exc_info.value.code == "PRODUCT_UNAVAILABLE"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -2])
    async def test_non_positive_quantity(self, splitter, catalog, customer, quantity):
        request = checkout(CartItem(product_id=catalog["a1"].id, quantity=quantity))

        with pytest.raises(ValidationError):
            await splitter.split(customer.user_id, request)


class TestShipping:
    """Tests for per-seller shipping."""

    @pytest.mark.parametrize(
        "subtotal,expected",
        [("49.99", "5.00"), ("50.00", "0.00"), ("120.00", "0.00")],
    )
    def test_threshold(self, subtotal, expected):
        assert calculate_shipping(
            Decimal(subtotal), Decimal("50.00"), Decimal("5.00")
        ) == Decimal(expected)

    @pytest.mark.asyncio
    async def test_lower_floor_makes_both_orders_free(
        self, inventory_repo, catalog, customer
    ):
        splitter = OrderSplitter(
            inventory_repo,
            free_shipping_floor=Decimal("30.00"),
            flat_shipping_fee=Decimal("5.00"),
        )
        request = checkout(
            CartItem(product_id=catalog["a1"].id, quantity=3),
            CartItem(product_id=catalog["b1"].id, quantity=2),
        )

        orders = await splitter.split(customer.user_id, request)

        assert all(o.shipping_cost == Decimal("0.00") for o in orders)
