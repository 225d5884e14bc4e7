"""
Return request schemas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from marketplace.database.models.returns import ReturnStatus


class ReturnCreate(BaseModel):
    """Request schema for opening a return."""

    order_id: UUID = Field(..., description="Order being returned")
    order_item_id: Optional[UUID] = Field(
        None,
        description="Line item being returned; omit to return the whole order",
    )
    reason: str = Field(..., max_length=1000, description="Customer's reason")
    quantity: Optional[int] = Field(
        None,
        description="Units to return; defaults to all units of a whole-order return",
    )
    refund_method: str = Field(
        default="original_payment",
        max_length=50,
        description="How the refund should be paid out",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "4f1c2d6e-8a4b-4a53-9d1e-0f7e6c2b9a10",
                    "order_item_id": "0b9e7f4a-2c1d-4e5f-8a6b-7c8d9e0f1a2b",
                    "reason": "Arrived damaged",
                    "quantity": 1,
                    "refund_method": "original_payment",
                }
            ]
        }
    }


class ReturnRejection(BaseModel):
    """Request schema for declining a return."""

    reason: str = Field(..., max_length=1000, description="Why the return was declined")


class ReturnResponse(BaseModel):
    """Return request response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    order_item_id: Optional[UUID] = None
    customer_id: UUID
    reason: str
    quantity: int
    refund_method: str
    status: ReturnStatus
    refund_amount: Optional[Decimal] = None
    approver_id: Optional[UUID] = None
    rejection_reason: Optional[str] = None
    refund_reference: Optional[str] = None
    created_at: datetime
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class ReturnListResponse(BaseModel):
    """Paginated return requests."""

    items: list[ReturnResponse]
    total: int
    page: int
    page_size: int
