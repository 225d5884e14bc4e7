"""
Order models for per-seller sub-orders created at checkout.

One Order exists per seller per checkout. Line items freeze the unit price
at checkout time and the shipping address is stored as an immutable JSON
snapshot, so later product or profile edits never alter historical orders.
The ``total_amount = subtotal + shipping_cost`` invariant is enforced by a
check constraint in addition to the splitter computing it.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import BaseModel
from marketplace.services.orders.enums import OrderStatus, PaymentStatus


class Order(BaseModel):
    """
    Seller order produced by splitting a customer cart.

    Attributes:
        id: Unique order identifier (UUID)
        checkout_session_id: Shared by all orders created from one cart
        customer_id: Customer who placed the order
        seller_id: Seller fulfilling the order
        courier_id: Courier assigned for delivery, if any
        status: Fulfillment status axis
        payment_status: Payment status axis
        subtotal: Sum of line item price times quantity
        shipping_cost: Shipping charged for this seller order
        total_amount: subtotal + shipping_cost
        payment_method: Payment method chosen at checkout
        payment_intent_id: Provider reference for the payment
        shipping_address: Address snapshot taken at checkout
        paid_at: When the payment was confirmed
    """

    __tablename__ = "orders"

    checkout_session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Checkout session shared by sibling seller orders",
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Customer who placed the order",
    )

    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Seller fulfilling the order",
    )

    courier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
        comment="Courier assigned for delivery",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(
            PaymentStatus,
            name="order_payment_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=PaymentStatus.UNPAID,
        index=True,
        comment="Current payment status",
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Sum of line item totals",
    )

    shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Shipping charged for this seller order",
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Subtotal plus shipping",
    )

    payment_method: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Payment method chosen at checkout",
    )

    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Payment provider intent identifier",
    )

    shipping_address: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Shipping address snapshot taken at checkout",
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Timestamp when payment was confirmed",
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        lazy="raise",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_orders_customer_status", "customer_id", "status"),
        Index("ix_orders_seller_status", "seller_id", "status"),
        Index("ix_orders_status_created", "status", "created_at"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint(
            "shipping_cost >= 0",
            name="ck_orders_shipping_cost_non_negative",
        ),
        CheckConstraint(
            "total_amount = subtotal + shipping_cost",
            name="ck_orders_total_is_subtotal_plus_shipping",
        ),
        {"comment": "Per-seller orders created at checkout"},
    )

    def is_owned_by(self, customer_id: uuid.UUID) -> bool:
        return self.customer_id == customer_id

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, seller_id={self.seller_id}, "
            f"status={self.status}, payment_status={self.payment_status}, "
            f"total={self.total_amount})>"
        )


class OrderItem(BaseModel):
    """
    Line item owned by exactly one order.

    ``unit_price`` is the product price captured at checkout.
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    product_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product name captured at checkout",
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Unit price captured at checkout",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint(
            "unit_price >= 0",
            name="ck_order_items_unit_price_non_negative",
        ),
        {"comment": "Individual items in an order"},
    )

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderStatusHistory(BaseModel):
    """Audit row written for every order status change."""

    __tablename__ = "order_status_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    from_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    to_status: Mapped[str] = mapped_column(String(50), nullable=False)

    payment_status: Mapped[str] = mapped_column(String(50), nullable=False)

    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="User who made the change; null for provider events",
    )

    source: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="What drove the change (checkout, webhook, seller, courier, ...)",
    )

    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")
