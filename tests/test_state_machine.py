"""Tests for order/payment transitions and notification planning."""

import pytest

from jewelcart.errors import InvalidTransitionError
from jewelcart.models import OrderStatus, PaymentStatus
from jewelcart.state_machine import (
    TERMINAL_ORDER_STATES,
    StatusChange,
    can_transition_order,
    can_transition_payment,
    plan_notifications,
    validate_transition,
)
from jewelcart.templates import MessageKind


class TestTransitions:
    @pytest.mark.parametrize(
        "old,new,allowed",
        [
            (OrderStatus.PROCESSING, OrderStatus.SHIPPED, True),
            (OrderStatus.PROCESSING, OrderStatus.CANCELLED, True),
            (OrderStatus.PROCESSING, OrderStatus.DELIVERED, False),
            (OrderStatus.SHIPPED, OrderStatus.DELIVERED, True),
            (OrderStatus.SHIPPED, OrderStatus.PROCESSING, False),
            (OrderStatus.DELIVERED, OrderStatus.PROCESSING, False),
            (OrderStatus.CANCELLED, OrderStatus.SHIPPED, False),
            (OrderStatus.SHIPPED, OrderStatus.SHIPPED, True),
        ],
    )
    def test_order_table(self, old, new, allowed):
        assert can_transition_order(old, new) is allowed

    def test_terminal_states(self):
        assert TERMINAL_ORDER_STATES == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

    def test_payment_table(self):
        assert can_transition_payment(PaymentStatus.PENDING, PaymentStatus.APPROVED)
        assert can_transition_payment(PaymentStatus.REJECTED, PaymentStatus.PENDING)
        assert can_transition_payment(PaymentStatus.APPROVED, PaymentStatus.REJECTED)
        assert not can_transition_payment(PaymentStatus.APPROVED, PaymentStatus.PENDING)

    def test_validate_reports_field(self):
        with pytest.raises(InvalidTransitionError) as exc:
            validate_transition(
                OrderStatus.DELIVERED, OrderStatus.PROCESSING, PaymentStatus.PENDING, None
            )
        assert exc.value.field == "order_status"
        assert exc.value.old == "delivered"
        assert exc.value.new == "processing"

    def test_validate_ignores_unchanged_fields(self):
        validate_transition(OrderStatus.CANCELLED, None, PaymentStatus.APPROVED, None)


class TestPlanNotifications:
    def test_processing_to_shipped(self):
        change = StatusChange(
            OrderStatus.PROCESSING, PaymentStatus.APPROVED, new_order=OrderStatus.SHIPPED
        )
        assert plan_notifications(change) == [MessageKind.ORDER_SHIPPED]

    def test_shipped_again_without_flag_sends_nothing(self):
        change = StatusChange(OrderStatus.SHIPPED, PaymentStatus.APPROVED, new_order=OrderStatus.SHIPPED)
        assert plan_notifications(change) == []

    def test_shipped_again_with_flag_resends(self):
        change = StatusChange(
            OrderStatus.SHIPPED,
            PaymentStatus.APPROVED,
            new_order=OrderStatus.SHIPPED,
            notify_customer=True,
        )
        assert plan_notifications(change) == [MessageKind.ORDER_SHIPPED]

    def test_payment_changes(self):
        approved = StatusChange(
            OrderStatus.PROCESSING, PaymentStatus.PENDING, new_payment=PaymentStatus.APPROVED
        )
        rejected = StatusChange(
            OrderStatus.PROCESSING, PaymentStatus.PENDING, new_payment=PaymentStatus.REJECTED
        )
        assert plan_notifications(approved) == [MessageKind.PAYMENT_APPROVED]
        assert plan_notifications(rejected) == [MessageKind.PAYMENT_REJECTED]

    def test_unchanged_payment_sends_nothing(self):
        change = StatusChange(
            OrderStatus.PROCESSING, PaymentStatus.APPROVED, new_payment=PaymentStatus.APPROVED
        )
        assert plan_notifications(change) == []

    def test_back_to_pending_sends_nothing(self):
        change = StatusChange(
            OrderStatus.PROCESSING, PaymentStatus.REJECTED, new_payment=PaymentStatus.PENDING
        )
        assert plan_notifications(change) == []

    def test_both_fields_in_one_update(self):
        change = StatusChange(
            OrderStatus.PROCESSING,
            PaymentStatus.PENDING,
            new_order=OrderStatus.SHIPPED,
            new_payment=PaymentStatus.APPROVED,
        )
        assert plan_notifications(change) == [MessageKind.ORDER_SHIPPED, MessageKind.PAYMENT_APPROVED]
