"""
Order Pydantic schemas for checkout, status updates and listing.

Address fields are deliberately accepted as plain strings so that the
order splitter can report missing fields through the domain
``ValidationError`` with a stable error code.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from marketplace.services.orders.enums import OrderStatus, PaymentStatus


class ShippingAddress(BaseModel):
    """Shipping address captured at checkout."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    street: str = Field(default="", max_length=255, description="Street address")
    city: str = Field(default="", max_length=100, description="City")
    state: str = Field(default="", max_length=100, description="State or region")
    postal_code: str = Field(default="", max_length=20, description="Postal code")
    country: str = Field(default="", max_length=100, description="Country")

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = (
        "street",
        "city",
        "state",
        "postal_code",
        "country",
    )

    def missing_fields(self) -> list[str]:
        """Names of required fields left empty."""
        return [name for name in self.REQUIRED_FIELDS if not getattr(self, name)]


class CartItem(BaseModel):
    """One cart line submitted at checkout."""

    product_id: UUID = Field(..., description="Product ID")
    quantity: int = Field(..., description="Requested quantity")
    seller_id: Optional[UUID] = Field(
        None,
        description="Seller shown to the customer when the item was added",
    )


class CheckoutRequest(BaseModel):
    """Request schema for checking out a multi-seller cart."""

    items: list[CartItem] = Field(..., max_length=100, description="Cart items")
    shipping_address: ShippingAddress = Field(..., description="Shipping address")
    payment_method: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Payment method",
    )


class SplitPreviewRequest(BaseModel):
    """Request schema for previewing how a cart will be split."""

    items: list[CartItem] = Field(..., max_length=100)


class OrderStatusUpdate(BaseModel):
    """Request schema for a role-scoped status change."""

    status: OrderStatus = Field(..., description="Target order status")
    reason: Optional[str] = Field(None, max_length=500, description="Reason for change")


class CourierAssignment(BaseModel):
    """Request schema for assigning a courier to an order."""

    courier_id: UUID


class OrderFilter(BaseModel):
    """
    Optional filters for order listing.

    An unset field leaves that dimension unfiltered.
    """

    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    checkout_session_id: Optional[UUID] = None


class OrderItemResponse(BaseModel):
    """Order item response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    product_name: str
    quantity: int
    unit_price: Decimal


class OrderResponse(BaseModel):
    """Complete order response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    checkout_session_id: UUID
    customer_id: UUID
    seller_id: UUID
    courier_id: Optional[UUID] = None
    status: OrderStatus
    payment_status: PaymentStatus
    subtotal: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    payment_method: str
    shipping_address: dict
    items: list[OrderItemResponse]
    paid_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class OrderListResponse(BaseModel):
    """Paginated order list."""

    items: list[OrderResponse]
    total: int
    page: int
    page_size: int


class CheckoutResponse(BaseModel):
    """Orders created from one checkout."""

    checkout_session_id: UUID
    orders: list[OrderResponse]
    grand_total: Decimal


class SplitPreviewItem(BaseModel):
    product_id: UUID
    product_name: str
    quantity: int
    unit_price: Decimal


class SplitPreview(BaseModel):
    """One seller's share of a cart before checkout."""

    seller_id: UUID
    items: list[SplitPreviewItem]
    subtotal: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
