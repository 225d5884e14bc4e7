"""
Payment schemas for webhooks and partial payments.

Amounts are validated by the partial payment ledger itself so that a
non-positive amount is reported with the domain ``VALIDATION_ERROR`` code.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from marketplace.database.models.payment import PartialPaymentStatus


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment provider."""

    received: bool = True
    event_id: str
    event_type: str
    order_id: Optional[str] = None
    applied: bool


class PartialPaymentCreate(BaseModel):
    """Request schema for recording an installment."""

    amount: Decimal = Field(..., decimal_places=2, description="Installment amount")
    payment_method: str = Field(..., min_length=1, max_length=50)
    transaction_ref: Optional[str] = Field(
        None,
        max_length=255,
        description="Payment provider transaction reference",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "amount": "25.00",
                    "payment_method": "card",
                    "transaction_ref": "pi_3Nxyz",
                }
            ]
        }
    }


class PartialPaymentResponse(BaseModel):
    """Partial payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    amount: Decimal
    payment_method: str
    transaction_ref: Optional[str] = None
    status: PartialPaymentStatus
    created_at: datetime
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class PartialPaymentSummary(BaseModel):
    """Outstanding balance of an order paid in installments."""

    order_id: UUID
    total_amount: Decimal
    total_paid: Decimal
    remaining: Decimal
    is_fully_paid: bool
    payments: list[PartialPaymentResponse]


class PartialPaymentSchedule(PartialPaymentSummary):
    """Balance plus the next installment awaiting settlement."""

    next_payment_due: Optional[PartialPaymentResponse] = None
