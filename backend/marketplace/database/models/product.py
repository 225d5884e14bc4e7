"""
Product model for seller listings.

Only the fields the fulfillment engine reads live here: owning seller,
current price and whether the listing can be bought.
"""

import uuid
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database.base import BaseModel


class Product(BaseModel):
    """Product listed by a seller."""

    __tablename__ = "products"

    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Seller who owns the listing",
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Current live price",
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    inventory: Mapped["InventoryRecord"] = relationship(
        "InventoryRecord",
        back_populates="product",
        uselist=False,
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        {"comment": "Seller product listings"},
    )
