"""Stock forecasting math.

Pure functions over sales velocity; the inventory ledger supplies the
trailing sales total and current stock.
"""

import math
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Horizon used for the recommended order quantity and the sales forecast.
PLANNING_HORIZON_DAYS = 30


class Urgency(str, Enum):
    """Replenishment urgency, most urgent first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _URGENCY_RANK[self]


_URGENCY_RANK = {
    Urgency.CRITICAL: 0,
    Urgency.HIGH: 1,
    Urgency.MEDIUM: 2,
    Urgency.LOW: 3,
}


@dataclass(frozen=True)
class ForecastResult:
    """
    Replenishment forecast for one product.

    Attributes:
        product_id: Product the forecast is for
        current_stock: On-hand stock when computed
        average_daily_sales: Units sold per day over the trailing window
        safety_stock: Buffer held against demand spikes
        reorder_point: Stock level at which replenishment should start
        recommended_order_quantity: Units to order now
        days_until_stockout: Whole days of stock left; None when unbounded
        forecasted_sales_next_30_days: Expected units sold over 30 days
        urgency: Replenishment urgency
    """

    product_id: uuid.UUID
    current_stock: int
    average_daily_sales: float
    safety_stock: int
    reorder_point: int
    recommended_order_quantity: int
    days_until_stockout: Optional[int]
    forecasted_sales_next_30_days: int
    urgency: Urgency

    @property
    def needs_reorder(self) -> bool:
        return self.current_stock <= self.reorder_point


def _ceil(value: float) -> int:
    # Rounding first keeps float noise such as 18.000000000000004 from
    # bumping the result up by one.
    return math.ceil(round(value, 6))


def classify_urgency(
    current_stock: int,
    days_until_stockout: Optional[int],
    reorder_point: int,
) -> Urgency:
    """
    Classify replenishment urgency.

    Args:
        current_stock: On-hand stock
        days_until_stockout: Days left, None when sales are zero
        reorder_point: Product reorder point

    Returns:
        Urgency level
    """
    if current_stock <= 0 or (days_until_stockout is not None and days_until_stockout <= 3):
        return Urgency.CRITICAL
    if days_until_stockout is not None and days_until_stockout <= 7:
        return Urgency.HIGH
    if current_stock <= reorder_point:
        return Urgency.MEDIUM
    return Urgency.LOW


def compute_forecast(
    product_id: uuid.UUID,
    current_stock: int,
    units_sold: int,
    window_days: int = 90,
    lead_time_days: int = 7,
    safety_days: int = 7,
) -> ForecastResult:
    """
    Compute a replenishment forecast from trailing sales.

    Args:
        product_id: Product identifier
        current_stock: On-hand stock
        units_sold: Units sold in confirmed orders over the window
        window_days: Length of the trailing window
        lead_time_days: Supplier lead time
        safety_days: Days of sales held as safety stock

    Returns:
        ForecastResult

    Example:
        >>> f = compute_forecast(pid, current_stock=10, units_sold=180)
        >>> (f.safety_stock, f.reorder_point, f.days_until_stockout, f.urgency)
        (14, 28, 5, <Urgency.HIGH: 'high'>)
    """
    average_daily_sales = units_sold / window_days if window_days > 0 else 0.0

    safety_stock = _ceil(average_daily_sales * safety_days)
    reorder_point = _ceil(average_daily_sales * lead_time_days + safety_stock)

    horizon_demand = average_daily_sales * PLANNING_HORIZON_DAYS
    recommended = max(
        0, _ceil(horizon_demand - current_stock + (reorder_point - horizon_demand))
    )

    if average_daily_sales > 0:
        days_until_stockout: Optional[int] = math.floor(
            round(max(current_stock, 0) / average_daily_sales, 6)
        )
    else:
        days_until_stockout = None

    return ForecastResult(
        product_id=product_id,
        current_stock=current_stock,
        average_daily_sales=round(average_daily_sales, 4),
        safety_stock=safety_stock,
        reorder_point=reorder_point,
        recommended_order_quantity=recommended,
        days_until_stockout=days_until_stockout,
        forecasted_sales_next_30_days=_ceil(horizon_demand),
        urgency=classify_urgency(current_stock, days_until_stockout, reorder_point),
    )


def sort_by_urgency(forecasts: list[ForecastResult]) -> list[ForecastResult]:
    """Order forecasts critical first, then by fewest days of stock left."""
    return sorted(
        forecasts,
        key=lambda f: (
            f.urgency.rank,
            f.days_until_stockout if f.days_until_stockout is not None else math.inf,
        ),
    )
