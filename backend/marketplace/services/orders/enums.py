"""Order status and payment status enums with transition tables.

An order moves along two independent axes. ``OrderStatus`` tracks
fulfillment, ``PaymentStatus`` tracks money. Each axis has its own
transition table, and legal combinations are checked at the transition
boundary rather than encoded as a cross-product enum.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Valid transitions:
    - PENDING -> CONFIRMED, CANCELLED, PAYMENT_FAILED
    - CONFIRMED -> SHIPPED, CANCELLED, PAYMENT_FAILED
    - SHIPPED -> DELIVERED
    - PAYMENT_FAILED -> CANCELLED
    - DELIVERED -> (terminal state)
    - CANCELLED -> (terminal state)
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Args:
            value: String representation of status

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state."""
        return self in {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

    def can_cancel(self) -> bool:
        """Check if order can be cancelled from current status."""
        return OrderStatus.CANCELLED in ORDER_STATUS_TRANSITIONS[self]


class PaymentStatus(str, Enum):
    """Payment status of an order.

    Valid transitions:
    - UNPAID -> PAID, FAILED, CANCELED
    - PAID -> REFUNDED, CANCELED
    - FAILED -> (terminal state)
    - REFUNDED -> (terminal state)
    - CANCELED -> (terminal state)
    """

    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELED = "canceled"

    @classmethod
    def from_string(cls, value: str) -> "PaymentStatus":
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Invalid payment status: {value}")

    def is_terminal(self) -> bool:
        return not PAYMENT_STATUS_TRANSITIONS[self]


# State transition validation rules
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
        OrderStatus.PAYMENT_FAILED,
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
        OrderStatus.PAYMENT_FAILED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
    },
    OrderStatus.PAYMENT_FAILED: {
        OrderStatus.CANCELLED,
    },
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}

PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.UNPAID: {
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
    },
    PaymentStatus.PAID: {
        PaymentStatus.REFUNDED,
        PaymentStatus.CANCELED,
    },
    PaymentStatus.FAILED: set(),  # Terminal
    PaymentStatus.REFUNDED: set(),  # Terminal
    PaymentStatus.CANCELED: set(),  # Terminal
}


def validate_order_status_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Validate if order status transition is allowed.

    Args:
        current: Current order status
        new: Desired new status

    Returns:
        True if transition is valid
    """
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())


def validate_payment_status_transition(
    current: PaymentStatus, new: PaymentStatus
) -> bool:
    """Validate if payment status transition is allowed.

    Args:
        current: Current payment status
        new: Desired new status

    Returns:
        True if transition is valid
    """
    return new in PAYMENT_STATUS_TRANSITIONS.get(current, set())


def order_statuses_leading_to(target: OrderStatus) -> Set[OrderStatus]:
    """Get every order status from which ``target`` is reachable in one step.

    Used to build the guard clause of compare-and-set updates.
    """
    return {
        source
        for source, targets in ORDER_STATUS_TRANSITIONS.items()
        if target in targets
    }


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status."""
    return ORDER_STATUS_TRANSITIONS.get(current, set()).copy()
