"""
Order API endpoints: checkout, split preview, status changes and listing.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from marketplace.api.deps import (
    CurrentAdmin,
    CurrentCustomer,
    CurrentPrincipal,
    get_order_service,
)
from marketplace.core.logging import get_logger
from marketplace.schemas.orders import (
    CheckoutRequest,
    CheckoutResponse,
    CourierAssignment,
    OrderFilter,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
    SplitPreview,
    SplitPreviewRequest,
)
from marketplace.services.orders.enums import OrderStatus, PaymentStatus
from marketplace.services.orders.service import OrderService

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

Service = Annotated[OrderService, Depends(get_order_service)]


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Check out a cart",
    description="Split a multi-seller cart into one order per seller",
)
async def checkout(
    request: CheckoutRequest,
    principal: CurrentCustomer,
    service: Service,
) -> CheckoutResponse:
    logger.info(
        "Checkout requested",
        user_id=str(principal.user_id),
        item_count=len(request.items),
    )
    return await service.checkout(principal.user_id, request)


@router.post(
    "/preview",
    response_model=list[SplitPreview],
    summary="Preview seller split",
    description="Show per-seller subtotals and shipping without creating orders",
)
async def preview_splits(
    request: SplitPreviewRequest,
    principal: CurrentPrincipal,
    service: Service,
) -> list[SplitPreview]:
    return await service.preview_splits(request.items)


@router.get(
    "/",
    response_model=OrderListResponse,
    summary="List orders",
    description="List orders visible to the caller's role",
)
async def list_orders(
    principal: CurrentPrincipal,
    service: Service,
    order_status: Annotated[Optional[OrderStatus], Query(alias="status")] = None,
    payment_status: Optional[PaymentStatus] = None,
    checkout_session_id: Optional[UUID] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
) -> OrderListResponse:
    filters = OrderFilter(
        status=order_status,
        payment_status=payment_status,
        checkout_session_id=checkout_session_id,
    )
    orders, total = await service.list_orders(principal, filters, page, page_size)
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order",
)
async def get_order(
    order_id: UUID,
    principal: CurrentPrincipal,
    service: Service,
) -> OrderResponse:
    order = await service.get_order(order_id, principal)
    return OrderResponse.model_validate(order)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
    description="Apply a manual status change permitted for the caller's role",
)
async def update_order_status(
    order_id: UUID,
    update: OrderStatusUpdate,
    principal: CurrentPrincipal,
    service: Service,
) -> OrderResponse:
    order = await service.update_status(order_id, principal, update)
    return OrderResponse.model_validate(order)


@router.put(
    "/{order_id}/courier",
    response_model=OrderResponse,
    summary="Assign courier",
)
async def assign_courier(
    order_id: UUID,
    assignment: CourierAssignment,
    principal: CurrentAdmin,
    service: Service,
) -> OrderResponse:
    order = await service.assign_courier(order_id, assignment.courier_id, principal)
    return OrderResponse.model_validate(order)
