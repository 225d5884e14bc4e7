"""Order state machine for manual, role-scoped status updates.

Payment-driven transitions live in the reconciliation module. This module
covers the changes people make: sellers confirming and shipping, couriers
delivering, customers cancelling, admins correcting. A change must be both
permitted for the caller's role and a legal transition, and it is applied
as a compare-and-set so it loses cleanly to a concurrent webhook.
"""

from typing import Any, Callable, Dict, Optional

from marketplace.core.errors import AuthorizationError, InvalidStateError
from marketplace.core.logging import get_logger
from marketplace.core.security import Principal, UserRole
from marketplace.database.models.order import Order
from marketplace.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)
from marketplace.services.orders.repository import OrderRepository

logger = get_logger(__name__)


# Target statuses each role may set by hand.
ROLE_TARGET_STATUSES: Dict[UserRole, frozenset[OrderStatus]] = {
    UserRole.ADMIN: frozenset(
        {
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
        }
    ),
    UserRole.SELLER: frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.CANCELLED}
    ),
    UserRole.COURIER: frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED}),
    UserRole.CUSTOMER: frozenset({OrderStatus.CANCELLED}),
}


def is_in_scope(order: Order, principal: Principal) -> bool:
    """Check whether an order falls within the principal's scope.

    Args:
        order: Order instance
        principal: Authenticated caller

    Returns:
        True if the principal may see and act on the order
    """
    if principal.role == UserRole.ADMIN:
        return True
    if principal.role == UserRole.SELLER:
        return order.seller_id == principal.user_id
    if principal.role == UserRole.COURIER:
        return order.courier_id == principal.user_id
    return order.customer_id == principal.user_id


class OrderStateMachine:
    """Validate and apply manual order status transitions."""

    def __init__(self, repository: OrderRepository):
        self.repository = repository
        self._transition_guards: Dict[
            tuple[OrderStatus, OrderStatus], Callable[[Order], bool]
        ] = {
            (OrderStatus.PENDING, OrderStatus.CONFIRMED): self._guard_payment_confirmed,
            (OrderStatus.CONFIRMED, OrderStatus.SHIPPED): self._guard_payment_confirmed,
        }

    def validate_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        principal: Principal,
    ) -> None:
        """Validate that the principal may move the order to target_status.

        Args:
            order: Order instance
            target_status: Desired target status
            principal: Caller requesting the change

        Raises:
            AuthorizationError: If the order is outside the caller's scope
                or the role may not set this status
            InvalidStateError: If the transition is not legal from the
                order's current status
        """
        current_status = order.status

        if not is_in_scope(order, principal):
            raise AuthorizationError(
                "You do not have access to this order",
                order_id=order.id,
            )

        allowed_targets = ROLE_TARGET_STATUSES.get(principal.role, frozenset())
        if target_status not in allowed_targets:
            raise AuthorizationError(
                f"Role {principal.role.value} cannot set status {target_status.value}",
                order_id=order.id,
                role=principal.role.value,
                target_status=target_status.value,
            )

        if principal.role == UserRole.CUSTOMER and current_status != OrderStatus.PENDING:
            raise InvalidStateError(
                "Orders can only be cancelled by the customer while pending",
                order_id=order.id,
                status=current_status.value,
            )

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise InvalidStateError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                order_id=order.id,
                allowed_transitions=sorted(s.value for s in allowed),
            )

        guard = self._transition_guards.get((current_status, target_status))
        if guard is not None and not guard(order):
            raise InvalidStateError(
                f"Transition guard failed for {current_status.value} -> "
                f"{target_status.value}",
                order_id=order.id,
                payment_status=order.payment_status.value,
            )

        logger.debug(
            "State transition validated",
            order_id=str(order.id),
            transition=f"{current_status.value}->{target_status.value}",
            user_id=str(principal.user_id),
        )

    async def apply_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        principal: Principal,
        reason: Optional[str] = None,
        **values: Any,
    ) -> None:
        """Validate, apply and record a status transition.

        Args:
            order: Order instance as last read
            target_status: Target status
            principal: Caller requesting the change
            reason: Optional reason stored in the history
            **values: Extra columns to write with the status

        Raises:
            AuthorizationError: See ``validate_transition``
            InvalidStateError: If the transition is illegal or the order
                changed since it was read
        """
        self.validate_transition(order, target_status, principal)

        current_status = order.status
        updated = await self.repository.compare_and_set(
            order.id,
            expected_statuses={current_status},
            expected_payment_statuses={order.payment_status},
            status=target_status,
            **values,
        )
        if not updated:
            raise InvalidStateError(
                "Order was modified concurrently",
                order_id=order.id,
                expected_status=current_status.value,
            )

        await self.repository.record_history(
            order.id,
            from_status=current_status,
            to_status=target_status,
            payment_status=order.payment_status,
            source=principal.role.value,
            changed_by=principal.user_id,
            reason=reason,
        )

        logger.info(
            "State transition applied",
            order_id=str(order.id),
            transition=f"{current_status.value}->{target_status.value}",
            user_id=str(principal.user_id),
            role=principal.role.value,
        )

    # Transition Guards

    def _guard_payment_confirmed(self, order: Order) -> bool:
        """Orders are confirmed and shipped only once paid."""
        return order.payment_status == PaymentStatus.PAID
