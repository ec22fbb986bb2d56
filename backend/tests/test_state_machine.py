"""
Transition tables for orders and deliveries.
"""

import pytest

from ricemart.errors import InvalidTransition, ValidationError
from ricemart.state_machine import (
    DELIVERY_TRANSITIONS,
    NON_CANCELLABLE_ORDER_STATUSES,
    ORDER_TRANSITIONS,
    DeliveryStatus,
    OrderStatus,
    can_transition,
    ensure_transition,
    parse_delivery_status,
    parse_order_status,
)


# =============================================================================
# ORDER TABLE
# =============================================================================

class TestOrderTransitions:

    @pytest.mark.parametrize("source,target", [
        (OrderStatus.PENDING, OrderStatus.PROCESSING),
        (OrderStatus.PROCESSING, OrderStatus.PACKED),
        (OrderStatus.PACKED, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.OUT_FOR_DELIVERY),
        (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED),
        (OrderStatus.DELIVERED, OrderStatus.RETURNED),
        (OrderStatus.RETURNED, OrderStatus.REFUNDED),
        (OrderStatus.CANCELLED, OrderStatus.REFUNDED),
        (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    ])
    def test_allowed_edges(self, source, target):
        assert can_transition(ORDER_TRANSITIONS, source, target)

    @pytest.mark.parametrize("source,target", [
        (OrderStatus.PENDING, OrderStatus.DELIVERED),
        (OrderStatus.PENDING, OrderStatus.SHIPPED),
        (OrderStatus.PROCESSING, OrderStatus.PENDING),
        (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED),
        (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
        (OrderStatus.CANCELLED, OrderStatus.PROCESSING),
    ])
    def test_rejected_edges(self, source, target):
        assert not can_transition(ORDER_TRANSITIONS, source, target)

    def test_refunded_is_terminal(self):
        for target in OrderStatus:
            assert not can_transition(ORDER_TRANSITIONS, OrderStatus.REFUNDED, target)

    def test_every_status_has_an_entry(self):
        assert set(ORDER_TRANSITIONS) == set(OrderStatus)

    def test_ensure_transition_reports_both_ends(self):
        with pytest.raises(InvalidTransition) as exc:
            ensure_transition(ORDER_TRANSITIONS, OrderStatus.PENDING, OrderStatus.DELIVERED)

        assert exc.value.source == "Pending"
        assert exc.value.target == "Delivered"
        assert exc.value.to_dict()["kind"] == "invalid_transition"

    def test_cancel_guard_is_looser_than_table(self):
        # Out for Delivery is cancellable through the cancel path only
        assert OrderStatus.OUT_FOR_DELIVERY not in NON_CANCELLABLE_ORDER_STATUSES
        assert not can_transition(ORDER_TRANSITIONS, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED)


# =============================================================================
# DELIVERY TABLE
# =============================================================================

class TestDeliveryTransitions:

    @pytest.mark.parametrize("source,target", [
        (DeliveryStatus.SCHEDULED, DeliveryStatus.IN_TRANSIT),
        (DeliveryStatus.IN_TRANSIT, DeliveryStatus.OUT_FOR_DELIVERY),
        (DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.DELIVERED),
        (DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.FAILED),
        (DeliveryStatus.FAILED, DeliveryStatus.RESCHEDULED),
        (DeliveryStatus.RESCHEDULED, DeliveryStatus.SCHEDULED),
    ])
    def test_allowed_edges(self, source, target):
        assert can_transition(DELIVERY_TRANSITIONS, source, target)

    @pytest.mark.parametrize("terminal", [DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED])
    def test_terminal_statuses(self, terminal):
        for target in DeliveryStatus:
            assert not can_transition(DELIVERY_TRANSITIONS, terminal, target)

    def test_scheduled_cannot_jump_to_delivered(self):
        with pytest.raises(InvalidTransition):
            ensure_transition(DELIVERY_TRANSITIONS, DeliveryStatus.SCHEDULED, DeliveryStatus.DELIVERED)


# =============================================================================
# PARSING
# =============================================================================

class TestStatusParsing:

    def test_parse_known_values(self):
        assert parse_order_status("Out for Delivery") is OrderStatus.OUT_FOR_DELIVERY
        assert parse_delivery_status("In Transit") is DeliveryStatus.IN_TRANSIT

    def test_enum_passes_through(self):
        assert parse_order_status(OrderStatus.PACKED) is OrderStatus.PACKED

    @pytest.mark.parametrize("value", ["pending", "Lost", "", None])
    def test_unknown_values_rejected(self, value):
        with pytest.raises(ValidationError):
            parse_order_status(value)
