"""
Order service orchestrating checkout, status changes and listing.

Checkout splits a cart into per-seller orders and persists them in one
transaction. Manual status updates go through the role-scoped state
machine; cancelling an order that already took stock puts the stock back
through the inventory ledger.
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
)
from marketplace.core.logging import get_logger, log_performance
from marketplace.core.security import Principal, UserRole
from marketplace.database.models.inventory import StockOperation
from marketplace.database.models.order import Order
from marketplace.schemas.orders import (
    CartItem,
    CheckoutRequest,
    CheckoutResponse,
    OrderFilter,
    OrderResponse,
    OrderStatusUpdate,
    SplitPreview,
    SplitPreviewItem,
)
from marketplace.services.inventory.ledger import InventoryLedger
from marketplace.services.inventory.repository import InventoryRepository
from marketplace.services.orders.enums import OrderStatus, PaymentStatus
from marketplace.services.orders.repository import OrderRepository
from marketplace.services.orders.splitter import OrderSplitter
from marketplace.services.orders.state_machine import OrderStateMachine, is_in_scope

logger = get_logger(__name__)

# Statuses in which stock has been taken for the order's items.
STOCK_HOLDING_PAYMENT_STATUSES = {PaymentStatus.PAID}


class OrderService:
    """
    Order service orchestrating business logic.

    Attributes:
        repository: Order repository for data access
        splitter: Cart to seller-order splitter
        state_machine: Role-scoped status transitions
        ledger: Inventory ledger for cancellation restocks
    """

    def __init__(
        self,
        session: AsyncSession,
        repository: Optional[OrderRepository] = None,
        splitter: Optional[OrderSplitter] = None,
        ledger: Optional[InventoryLedger] = None,
    ):
        self.repository = repository or OrderRepository(session)
        self.splitter = splitter or OrderSplitter(InventoryRepository(session))
        self.state_machine = OrderStateMachine(self.repository)
        self.ledger = ledger or InventoryLedger(session)

    async def checkout(
        self, customer_id: uuid.UUID, request: CheckoutRequest
    ) -> CheckoutResponse:
        """
        Split a cart into per-seller orders and persist them.

        Args:
            customer_id: Customer checking out
            request: Cart, shipping address and payment method

        Returns:
            The created orders with their shared checkout session id

        Raises:
            ValidationError: If the cart or address is invalid
        """
        with log_performance(logger, "checkout", customer_id=str(customer_id)):
            orders = await self.splitter.split(customer_id, request)
            await self.repository.add_orders(orders)

        grand_total = sum((o.total_amount for o in orders), Decimal("0.00"))
        logger.info(
            "Checkout completed",
            customer_id=str(customer_id),
            checkout_session_id=str(orders[0].checkout_session_id),
            order_ids=[str(o.id) for o in orders],
            grand_total=str(grand_total),
        )
        return CheckoutResponse(
            checkout_session_id=orders[0].checkout_session_id,
            orders=[OrderResponse.model_validate(o) for o in orders],
            grand_total=grand_total,
        )

    async def preview_splits(self, items: list[CartItem]) -> list[SplitPreview]:
        """
        Show how a cart would be split without persisting anything.

        Stock is checked so the preview surfaces shortages early; the
        shipping address is not required.
        """
        groups = await self.splitter.group_by_seller(items)
        return [
            SplitPreview(
                seller_id=group.seller_id,
                items=[
                    SplitPreviewItem(
                        product_id=line.product.id,
                        product_name=line.product.name,
                        quantity=line.quantity,
                        unit_price=line.product.price,
                    )
                    for line in group.lines
                ],
                subtotal=group.subtotal,
                shipping_cost=group.shipping_cost,
                total_amount=group.total_amount,
            )
            for group in groups
        ]

    async def get_order(self, order_id: uuid.UUID, principal: Principal) -> Order:
        """
        Get an order within the principal's scope.

        Raises:
            NotFoundError: If the order does not exist
            AuthorizationError: If the order is outside the caller's scope
        """
        order = await self.repository.get_by_id(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
        if not is_in_scope(order, principal):
            logger.warning(
                "Order access denied",
                order_id=str(order_id),
                user_id=str(principal.user_id),
                role=principal.role.value,
            )
            raise AuthorizationError("You do not have access to this order", order_id=order_id)
        return order

    async def update_status(
        self,
        order_id: uuid.UUID,
        principal: Principal,
        update: OrderStatusUpdate,
    ) -> Order:
        """
        Apply a manual status change.

        Args:
            order_id: Order identifier
            principal: Caller requesting the change
            update: Target status and optional reason

        Returns:
            The updated order

        Raises:
            NotFoundError: If the order does not exist
            AuthorizationError: If the caller may not make this change
            InvalidStateError: If the transition is illegal or lost a race
        """
        order = await self.repository.get_by_id(order_id, refresh=True)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)

        previous_status = order.status
        await self.state_machine.apply_transition(
            order, update.status, principal, reason=update.reason
        )

        if (
            update.status == OrderStatus.CANCELLED
            and previous_status == OrderStatus.CONFIRMED
            and order.payment_status in STOCK_HOLDING_PAYMENT_STATUSES
        ):
            await self._restock(order)

        return await self.repository.get_by_id(order_id, refresh=True)

    async def _restock(self, order: Order) -> None:
        reason = f"Order {order.id} cancelled"
        for item in order.items:
            await self.ledger.update_stock(
                item.product_id, item.quantity, StockOperation.INCREMENT, reason
            )
        logger.info(
            "Cancelled order restocked",
            order_id=str(order.id),
            item_count=len(order.items),
        )

    async def assign_courier(
        self,
        order_id: uuid.UUID,
        courier_id: uuid.UUID,
        principal: Principal,
    ) -> Order:
        """
        Assign a courier to a non-terminal order. Admin only.

        Raises:
            AuthorizationError: If the caller is not an admin
            NotFoundError: If the order does not exist
            InvalidStateError: If the order is delivered or cancelled
        """
        if not principal.is_admin:
            raise AuthorizationError("Only admins can assign couriers", order_id=order_id)

        order = await self.repository.get_by_id(order_id, refresh=True)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)

        active_statuses = {s for s in OrderStatus if not s.is_terminal()}
        updated = await self.repository.compare_and_set(
            order_id,
            expected_statuses=active_statuses,
            expected_payment_statuses=set(PaymentStatus),
            courier_id=courier_id,
        )
        if not updated:
            raise InvalidStateError(
                "Couriers cannot be assigned to completed orders",
                order_id=order_id,
                status=order.status.value,
            )

        logger.info(
            "Courier assigned",
            order_id=str(order_id),
            courier_id=str(courier_id),
            assigned_by=str(principal.user_id),
        )
        return await self.repository.get_by_id(order_id, refresh=True)

    async def list_orders(
        self,
        principal: Principal,
        filters: Optional[OrderFilter] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Order], int]:
        """
        List orders visible to the principal.

        Args:
            principal: Caller; determines which orders are visible
            filters: Optional status, payment status or checkout filters
            page: 1-based page number
            page_size: Orders per page

        Returns:
            Tuple of (orders, total_count)
        """
        conditions = []
        if principal.role == UserRole.CUSTOMER:
            conditions.append(Order.customer_id == principal.user_id)
        elif principal.role == UserRole.SELLER:
            conditions.append(Order.seller_id == principal.user_id)
        elif principal.role == UserRole.COURIER:
            conditions.append(Order.courier_id == principal.user_id)

        filters = filters or OrderFilter()
        if filters.status is not None:
            conditions.append(Order.status == filters.status)
        if filters.payment_status is not None:
            conditions.append(Order.payment_status == filters.payment_status)
        if filters.checkout_session_id is not None:
            conditions.append(Order.checkout_session_id == filters.checkout_session_id)

        orders, total = await self.repository.list_orders(
            conditions,
            skip=(page - 1) * page_size,
            limit=page_size,
        )
        return list(orders), total
