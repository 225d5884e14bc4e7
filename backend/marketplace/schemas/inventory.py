"""
Inventory schemas for stock updates, movements and forecasts.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from marketplace.database.models.inventory import StockOperation
from marketplace.services.inventory.forecasting import Urgency


class StockUpdate(BaseModel):
    """Request schema for a manual stock adjustment."""

    operation: StockOperation = Field(..., description="increment, decrement or set")
    quantity: int = Field(..., description="Non-negative quantity for the operation")
    reason: str = Field(..., max_length=255, description="Audit reason")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "operation": "increment",
                    "quantity": 25,
                    "reason": "Supplier delivery PO-1042",
                }
            ]
        }
    }


class StockLevel(BaseModel):
    product_id: UUID
    available_stock: int


class StockUpdateResult(BaseModel):
    """Outcome of a stock adjustment."""

    product_id: UUID
    applied: bool
    available_stock: int


class StockMovementResponse(BaseModel):
    """Stock audit entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    operation: StockOperation
    quantity: int
    previous_stock: int
    new_stock: int
    reason: str
    created_at: datetime


class ForecastResponse(BaseModel):
    """Replenishment forecast for one product."""

    model_config = ConfigDict(from_attributes=True)

    product_id: UUID
    current_stock: int
    average_daily_sales: float
    safety_stock: int
    reorder_point: int
    recommended_order_quantity: int
    days_until_stockout: Optional[int] = None
    forecasted_sales_next_30_days: int
    urgency: Urgency
    needs_reorder: bool


class ForecastListResponse(BaseModel):
    """Paginated forecasts, most urgent first."""

    items: list[ForecastResponse]
    total: int
    page: int
    page_size: int
