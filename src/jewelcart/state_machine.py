"""Order and payment status transitions.

Legal moves are listed in explicit adjacency maps. An admin update is
validated against them before anything is written, and the old/new diff
decides which customer messages the update triggers.
"""

from dataclasses import dataclass

from .errors import InvalidTransitionError
from .models import OrderStatus, PaymentStatus
from .templates import MessageKind

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.APPROVED, PaymentStatus.REJECTED}),
    PaymentStatus.REJECTED: frozenset({PaymentStatus.PENDING, PaymentStatus.APPROVED}),
    # Admin correction of a mistaken approval.
    PaymentStatus.APPROVED: frozenset({PaymentStatus.REJECTED}),
}

TERMINAL_ORDER_STATES = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if not targets
)


def can_transition_order(old: OrderStatus, new: OrderStatus) -> bool:
    return old == new or new in ORDER_TRANSITIONS[old]


def can_transition_payment(old: PaymentStatus, new: PaymentStatus) -> bool:
    return old == new or new in PAYMENT_TRANSITIONS[old]


def validate_transition(
    old_order: OrderStatus,
    new_order: OrderStatus | None,
    old_payment: PaymentStatus,
    new_payment: PaymentStatus | None,
) -> None:
    """
    Check a requested status change against the transition tables.

    A value of None means the field is not being changed.

    Raises:
        InvalidTransitionError: For the first illegal move found.
    """
    if new_order is not None and not can_transition_order(old_order, new_order):
        raise InvalidTransitionError("order_status", old_order.value, new_order.value)
    if new_payment is not None and not can_transition_payment(old_payment, new_payment):
        raise InvalidTransitionError("payment_status", old_payment.value, new_payment.value)


@dataclass(frozen=True)
class StatusChange:
    """Old and requested values of both status fields for one admin update."""

    old_order: OrderStatus
    old_payment: PaymentStatus
    new_order: OrderStatus | None = None
    new_payment: PaymentStatus | None = None
    notify_customer: bool = False


def plan_notifications(change: StatusChange) -> list[MessageKind]:
    """
    Decide which customer messages an update triggers (at most one per field).

    - order_status moving to shipped, or re-set to shipped with notify_customer
      -> ORDER_SHIPPED
    - payment_status changing value -> PAYMENT_APPROVED / PAYMENT_REJECTED
    """
    kinds: list[MessageKind] = []

    if change.new_order == OrderStatus.SHIPPED and (
        change.old_order != OrderStatus.SHIPPED or change.notify_customer
    ):
        kinds.append(MessageKind.ORDER_SHIPPED)

    if change.new_payment is not None and change.new_payment != change.old_payment:
        if change.new_payment == PaymentStatus.APPROVED:
            kinds.append(MessageKind.PAYMENT_APPROVED)
        elif change.new_payment == PaymentStatus.REJECTED:
            kinds.append(MessageKind.PAYMENT_REJECTED)

    return kinds
