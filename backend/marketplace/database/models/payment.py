"""
Partial payment model for installment-style order payments.

Each row is one installment toward an order total with its own
PENDING -> COMPLETED -> REFUNDED lifecycle. The aggregate paid amount of
an order is always derived from these rows and never stored on the order.
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
    Numeric,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import BaseModel


class PartialPaymentStatus(str, Enum):
    """
    Partial payment status enumeration.

    Attributes:
        PENDING: Installment recorded, funds not yet settled
        COMPLETED: Installment settled and counted toward the order total
        REFUNDED: Settled installment returned to the customer
    """

    PENDING = "pending"
    COMPLETED = "completed"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "PartialPaymentStatus":
        """
        Create PartialPaymentStatus from string value.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Invalid partial payment status: {value}")

    @property
    def counts_toward_total(self) -> bool:
        """Pending and completed installments both claim part of the total."""
        return self in (PartialPaymentStatus.PENDING, PartialPaymentStatus.COMPLETED)


class PartialPayment(BaseModel):
    """Installment recorded against a single order."""

    __tablename__ = "partial_payments"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)

    transaction_ref: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Payment provider transaction reference",
    )

    status: Mapped[PartialPaymentStatus] = mapped_column(
        SQLEnum(
            PartialPaymentStatus,
            name="partial_payment_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=PartialPaymentStatus.PENDING,
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    order: Mapped["Order"] = relationship("Order", lazy="raise")

    __table_args__ = (
        Index("ix_partial_payments_order_status", "order_id", "status"),
        CheckConstraint("amount > 0", name="ck_partial_payments_amount_positive"),
        {"comment": "Installments recorded against orders"},
    )
