"""
Inventory models for per-product stock and its audit trail.

``InventoryRecord.stock`` is only ever changed by the inventory ledger's
conditional updates, and each change writes one ``StockMovement`` row in
the same transaction.
"""

import uuid
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import BaseModel


class StockOperation(str, Enum):
    """Stock mutation kinds accepted by the inventory ledger."""

    INCREMENT = "increment"
    DECREMENT = "decrement"
    SET = "set"

    @classmethod
    def from_string(cls, value: str) -> "StockOperation":
        """
        Create StockOperation from string value.

        Raises:
            ValueError: If value is not a valid operation
        """
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Invalid stock operation: {value}")


class InventoryRecord(BaseModel):
    """On-hand stock for one product."""

    __tablename__ = "inventory_records"

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    stock: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="On-hand quantity",
    )

    product: Mapped["Product"] = relationship("Product", back_populates="inventory")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_inventory_records_stock_non_negative"),
        {"comment": "Per-product on-hand stock"},
    )

    @property
    def available_stock(self) -> int:
        """Stock available to sell; no reservations are held."""
        return max(0, self.stock)


class StockMovement(BaseModel):
    """Audit entry for one stock mutation."""

    __tablename__ = "stock_movements"

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
    )

    operation: Mapped[StockOperation] = mapped_column(
        SQLEnum(
            StockOperation,
            name="stock_operation",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    previous_stock: Mapped[int] = mapped_column(Integer, nullable=False)

    new_stock: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[str] = mapped_column(String(500), nullable=False)

    __table_args__ = (
        Index("ix_stock_movements_product_created", "product_id", "created_at"),
        CheckConstraint("quantity >= 0", name="ck_stock_movements_quantity_non_negative"),
        CheckConstraint("new_stock >= 0", name="ck_stock_movements_new_stock_non_negative"),
        {"comment": "Audit trail of stock mutations"},
    )
