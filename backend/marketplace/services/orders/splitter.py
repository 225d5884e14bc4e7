"""
Order splitter: turns one multi-seller cart into per-seller orders.

Each seller group becomes an independent order with its own subtotal,
shipping cost and status. Unit prices are read live from the catalog and
frozen onto the line items. Stock availability is checked here, but
nothing is decremented until payment is confirmed.
"""

import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from marketplace.core.config import get_settings
from marketplace.core.errors import ValidationError
from marketplace.core.logging import get_logger
from marketplace.database.models.order import Order, OrderItem
from marketplace.database.models.product import Product
from marketplace.schemas.orders import CartItem, CheckoutRequest, ShippingAddress
from marketplace.services.inventory.repository import InventoryRepository
from marketplace.services.orders.enums import OrderStatus, PaymentStatus

logger = get_logger(__name__)

CENTS = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass
class SellerLine:
    product: Product
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.product.price * self.quantity


@dataclass
class SellerGroup:
    """One seller's share of a cart with computed money fields."""

    seller_id: uuid.UUID
    lines: list[SellerLine] = field(default_factory=list)
    subtotal: Decimal = Decimal("0.00")
    shipping_cost: Decimal = Decimal("0.00")

    @property
    def total_amount(self) -> Decimal:
        return self.subtotal + self.shipping_cost


def calculate_shipping(
    subtotal: Decimal,
    free_shipping_floor: Decimal,
    flat_fee: Decimal,
) -> Decimal:
    """Free shipping once a seller order reaches the floor, flat fee below it."""
    return Decimal("0.00") if subtotal >= free_shipping_floor else _money(flat_fee)


class OrderSplitter:
    """Split carts into seller orders."""

    def __init__(
        self,
        inventory: InventoryRepository,
        free_shipping_floor: Optional[Decimal] = None,
        flat_shipping_fee: Optional[Decimal] = None,
    ):
        settings = get_settings()
        self.inventory = inventory
        self.free_shipping_floor = (
            settings.free_shipping_floor
            if free_shipping_floor is None
            else free_shipping_floor
        )
        self.flat_shipping_fee = (
            settings.flat_shipping_fee if flat_shipping_fee is None else flat_shipping_fee
        )

    async def group_by_seller(
        self,
        items: Sequence[CartItem],
        check_stock: bool = True,
    ) -> list[SellerGroup]:
        """
        Group cart items by seller and price each group.

        Args:
            items: Cart items
            check_stock: Reject items exceeding available stock

        Returns:
            Seller groups in first-seen cart order

        Raises:
            ValidationError: For an empty cart, a non-positive quantity, an
                unknown or inactive product, a seller mismatch or
                insufficient stock
        """
        if not items:
            raise ValidationError("Cart is empty", code="EMPTY_CART")

        products = await self.inventory.get_products([item.product_id for item in items])

        # Quantities for the same product are summed so the stock check sees
        # the whole cart demand.
        requested: dict[uuid.UUID, int] = {}
        for item in items:
            if item.quantity <= 0:
                raise ValidationError(
                    "Quantity must be positive",
                    product_id=item.product_id,
                    quantity=item.quantity,
                )
            product = products.get(item.product_id)
            if product is None or not product.is_active:
                raise ValidationError(
                    f"Product {item.product_id} is not available",
                    code="PRODUCT_UNAVAILABLE",
                    product_id=item.product_id,
                )
            if item.seller_id is not None and item.seller_id != product.seller_id:
                raise ValidationError(
                    f"Product {item.product_id} is no longer sold by this seller",
                    code="SELLER_MISMATCH",
                    product_id=item.product_id,
                )
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

        if check_stock:
            for product_id, quantity in requested.items():
                record = products[product_id].inventory
                available = record.available_stock if record is not None else 0
                if quantity > available:
                    raise ValidationError(
                        f"Insufficient stock for product {product_id}",
                        code="INSUFFICIENT_STOCK",
                        product_id=product_id,
                        requested=quantity,
                        available=available,
                    )

        groups: "OrderedDict[uuid.UUID, SellerGroup]" = OrderedDict()
        for product_id, quantity in requested.items():
            product = products[product_id]
            group = groups.setdefault(product.seller_id, SellerGroup(product.seller_id))
            group.lines.append(SellerLine(product=product, quantity=quantity))

        for group in groups.values():
            group.subtotal = _money(sum((line.line_total for line in group.lines), Decimal("0")))
            group.shipping_cost = calculate_shipping(
                group.subtotal, self.free_shipping_floor, self.flat_shipping_fee
            )

        return list(groups.values())

    @staticmethod
    def validate_address(address: ShippingAddress) -> None:
        """
        Raises:
            ValidationError: If any required address field is empty
        """
        missing = address.missing_fields()
        if missing:
            raise ValidationError(
                "Shipping address is incomplete",
                code="INVALID_ADDRESS",
                missing_fields=", ".join(missing),
            )

    async def split(
        self,
        customer_id: uuid.UUID,
        request: CheckoutRequest,
    ) -> list[Order]:
        """
        Build one PENDING/UNPAID order per seller.

        The returned orders are not yet persisted.

        Args:
            customer_id: Customer checking out
            request: Cart items, shipping address and payment method

        Returns:
            New orders sharing one checkout session id

        Raises:
            ValidationError: If the cart or address is invalid
        """
        self.validate_address(request.shipping_address)
        groups = await self.group_by_seller(request.items)

        checkout_session_id = uuid.uuid4()
        address_snapshot = request.shipping_address.model_dump()

        orders: list[Order] = []
        for group in groups:
            order = Order(
                id=uuid.uuid4(),
                checkout_session_id=checkout_session_id,
                customer_id=customer_id,
                seller_id=group.seller_id,
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.UNPAID,
                subtotal=group.subtotal,
                shipping_cost=group.shipping_cost,
                total_amount=group.total_amount,
                payment_method=request.payment_method,
                shipping_address=dict(address_snapshot),
                items=[
                    OrderItem(
                        id=uuid.uuid4(),
                        product_id=line.product.id,
                        product_name=line.product.name,
                        quantity=line.quantity,
                        unit_price=line.product.price,
                    )
                    for line in group.lines
                ],
            )
            orders.append(order)

        logger.info(
            "Cart split into seller orders",
            customer_id=str(customer_id),
            checkout_session_id=str(checkout_session_id),
            order_count=len(orders),
        )
        return orders
