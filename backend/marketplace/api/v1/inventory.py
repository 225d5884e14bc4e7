"""
Inventory API endpoints: stock levels, adjustments and forecasts.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from marketplace.api.deps import (
    CurrentInventoryManager,
    CurrentPrincipal,
    get_inventory_ledger,
)
from marketplace.core.logging import get_logger
from marketplace.core.security import Principal
from marketplace.schemas.inventory import (
    ForecastListResponse,
    ForecastResponse,
    StockLevel,
    StockMovementResponse,
    StockUpdate,
    StockUpdateResult,
)
from marketplace.services.inventory.forecasting import ForecastResult
from marketplace.services.inventory.ledger import InventoryLedger

logger = get_logger(__name__)

router = APIRouter(prefix="/inventory", tags=["inventory"])

Ledger = Annotated[InventoryLedger, Depends(get_inventory_ledger)]
Page = Annotated[int, Query(ge=1)]
PageSize = Annotated[int, Query(ge=1, le=100)]


def _seller_scope(principal: Principal) -> Optional[UUID]:
    """Sellers only see their own products; admins see every product."""
    return None if principal.is_admin else principal.user_id


def _forecast_response(forecast: ForecastResult) -> ForecastResponse:
    return ForecastResponse(
        product_id=forecast.product_id,
        current_stock=forecast.current_stock,
        average_daily_sales=forecast.average_daily_sales,
        safety_stock=forecast.safety_stock,
        reorder_point=forecast.reorder_point,
        recommended_order_quantity=forecast.recommended_order_quantity,
        days_until_stockout=forecast.days_until_stockout,
        forecasted_sales_next_30_days=forecast.forecasted_sales_next_30_days,
        urgency=forecast.urgency,
        needs_reorder=forecast.needs_reorder,
    )


@router.get("/forecasts", response_model=ForecastListResponse, summary="Forecast all products")
async def list_forecasts(
    principal: CurrentInventoryManager,
    ledger: Ledger,
    page: Page = 1,
    page_size: PageSize = 20,
) -> ForecastListResponse:
    forecasts, total = await ledger.forecast_all(
        page, page_size, seller_id=_seller_scope(principal)
    )
    return ForecastListResponse(
        items=[_forecast_response(f) for f in forecasts],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/alerts", response_model=ForecastListResponse, summary="Low stock alerts")
async def low_stock_alerts(
    principal: CurrentInventoryManager,
    ledger: Ledger,
    page: Page = 1,
    page_size: PageSize = 20,
) -> ForecastListResponse:
    forecasts, total = await ledger.low_stock_alerts(
        page, page_size, seller_id=_seller_scope(principal)
    )
    return ForecastListResponse(
        items=[_forecast_response(f) for f in forecasts],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{product_id}", response_model=StockLevel, summary="Available stock")
async def get_stock(
    product_id: UUID,
    principal: CurrentPrincipal,
    ledger: Ledger,
) -> StockLevel:
    return StockLevel(
        product_id=product_id,
        available_stock=await ledger.get_available_stock(product_id),
    )


@router.post("/{product_id}/adjust", response_model=StockUpdateResult, summary="Adjust stock")
async def adjust_stock(
    product_id: UUID,
    update: StockUpdate,
    principal: CurrentInventoryManager,
    ledger: Ledger,
) -> StockUpdateResult:
    """
    Apply a manual stock adjustment.

    A decrement that would take stock below zero is reported with
    ``applied: false`` and leaves stock unchanged.
    """
    await ledger.ensure_can_manage(product_id, principal)
    applied = await ledger.update_stock(
        product_id, update.quantity, update.operation, update.reason
    )
    logger.info(
        "Manual stock adjustment",
        product_id=str(product_id),
        user_id=str(principal.user_id),
        operation=update.operation.value,
        applied=applied,
    )
    return StockUpdateResult(
        product_id=product_id,
        applied=applied,
        available_stock=await ledger.get_available_stock(product_id),
    )


@router.get(
    "/{product_id}/movements",
    response_model=list[StockMovementResponse],
    summary="Stock audit trail",
)
async def list_movements(
    product_id: UUID,
    principal: CurrentInventoryManager,
    ledger: Ledger,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[StockMovementResponse]:
    await ledger.ensure_can_manage(product_id, principal)
    movements = await ledger.repository.list_movements(product_id, limit=limit)
    return [StockMovementResponse.model_validate(m) for m in movements]


@router.get(
    "/{product_id}/forecast",
    response_model=ForecastResponse,
    summary="Forecast one product",
)
async def get_forecast(
    product_id: UUID,
    principal: CurrentInventoryManager,
    ledger: Ledger,
) -> ForecastResponse:
    await ledger.ensure_can_manage(product_id, principal)
    return _forecast_response(await ledger.forecast(product_id))
