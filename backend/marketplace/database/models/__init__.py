"""
Database models package initialization.

Models are imported here so they are registered with the Base metadata
for Alembic autogeneration and relationship resolution.
"""

from marketplace.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from marketplace.database.models.inventory import (
    InventoryRecord,
    StockMovement,
    StockOperation,
)
from marketplace.database.models.order import Order, OrderItem, OrderStatusHistory
from marketplace.database.models.payment import PartialPayment, PartialPaymentStatus
from marketplace.database.models.product import Product
from marketplace.database.models.returns import ReturnRequest, ReturnStatus

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "InventoryRecord",
    "StockMovement",
    "StockOperation",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "PartialPayment",
    "PartialPaymentStatus",
    "Product",
    "ReturnRequest",
    "ReturnStatus",
]
