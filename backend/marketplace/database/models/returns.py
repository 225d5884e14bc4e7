"""
Return request model for customer-initiated returns and refunds.

A return covers either one line item (``order_item_id`` set) or the whole
order. ``refund_amount`` is frozen at approval and never recomputed.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
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


class ReturnStatus(str, Enum):
    """
    Return request status.

    Attributes:
        PENDING: Awaiting back-office decision
        APPROVED: Accepted, refund amount frozen
        REJECTED: Declined with a reason (terminal)
        RECEIVED: Goods back in the warehouse
        REFUNDED: Money returned to the customer (terminal)
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RECEIVED = "received"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "ReturnStatus":
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Invalid return status: {value}")


class ReturnRequest(BaseModel):
    """Customer request to return an order or one of its line items."""

    __tablename__ = "return_requests"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    order_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("order_items.id", ondelete="RESTRICT"),
        nullable=True,
        comment="Line item being returned; null for whole-order returns",
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )

    reason: Mapped[str] = mapped_column(String(1000), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    refund_method: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[ReturnStatus] = mapped_column(
        SQLEnum(
            ReturnStatus,
            name="return_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=ReturnStatus.PENDING,
    )

    refund_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=True,
        comment="Frozen at approval",
    )

    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )

    rejection_reason: Mapped[Optional[str]] = mapped_column(
        String(1000), nullable=True
    )

    refund_reference: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Payment provider refund identifier",
    )

    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    received_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    order: Mapped["Order"] = relationship("Order", lazy="selectin")
    order_item: Mapped[Optional["OrderItem"]] = relationship(
        "OrderItem", lazy="selectin"
    )

    __table_args__ = (
        Index("ix_return_requests_order_status", "order_id", "status"),
        CheckConstraint("quantity > 0", name="ck_return_requests_quantity_positive"),
        CheckConstraint(
            "status IN ('pending', 'rejected') OR refund_amount IS NOT NULL",
            name="ck_return_requests_refund_amount_after_approval",
        ),
        {"comment": "Customer return and refund requests"},
    )

    @property
    def is_whole_order(self) -> bool:
        return self.order_item_id is None
