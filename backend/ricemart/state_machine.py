# Overview: Order and delivery status enums plus the transition tables that govern them.

"""
ricemart status state machines

ORDER:
    Pending -> Processing -> Packed -> Shipped -> Out for Delivery -> Delivered
    Pending/Processing/Packed/Shipped -> Cancelled
    Out for Delivery/Delivered -> Returned
    Returned/Cancelled -> Refunded

DELIVERY:
    Scheduled -> In Transit -> Out for Delivery -> Delivered
    with Failed, Rescheduled and Cancelled as side branches.

Both machines are plain lookup tables consulted through can_transition().
Illegal edges are rejected, never clamped.
"""

from __future__ import annotations

import enum
from typing import Mapping

from .errors import InvalidTransition, ValidationError


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    PACKED = "Packed"
    SHIPPED = "Shipped"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"
    REFUNDED = "Refunded"


class DeliveryStatus(str, enum.Enum):
    SCHEDULED = "Scheduled"
    IN_TRANSIT = "In Transit"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    FAILED = "Failed"
    RESCHEDULED = "Rescheduled"
    CANCELLED = "Cancelled"


ORDER_TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.PACKED, OrderStatus.CANCELLED}),
    OrderStatus.PACKED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED, OrderStatus.RETURNED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED}),
    OrderStatus.RETURNED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),
}

DELIVERY_TRANSITIONS: Mapping[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.SCHEDULED: frozenset({DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED}),
    DeliveryStatus.IN_TRANSIT: frozenset({
        DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED,
    }),
    DeliveryStatus.OUT_FOR_DELIVERY: frozenset({
        DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.RESCHEDULED,
    }),
    DeliveryStatus.FAILED: frozenset({DeliveryStatus.RESCHEDULED, DeliveryStatus.CANCELLED}),
    DeliveryStatus.RESCHEDULED: frozenset({DeliveryStatus.SCHEDULED, DeliveryStatus.CANCELLED}),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.CANCELLED: frozenset(),
}

# Customer/staff cancel path guard (independent of ORDER_TRANSITIONS)
NON_CANCELLABLE_ORDER_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.RETURNED,
    OrderStatus.REFUNDED,
})

# Statuses in which the order's line quantities are held out of stock
STOCK_HOLDING_STATUSES = frozenset({
    OrderStatus.PROCESSING,
    OrderStatus.PACKED,
    OrderStatus.SHIPPED,
    OrderStatus.OUT_FOR_DELIVERY,
})

DELIVERY_SCHEDULABLE_ORDER_STATUSES = frozenset({OrderStatus.PACKED, OrderStatus.SHIPPED})


def can_transition(table: Mapping, source, target) -> bool:
    """True when `target` is in the allowed set for `source` in `table`."""
    return target in table.get(source, frozenset())


def ensure_transition(table: Mapping, source, target) -> None:
    """Raise InvalidTransition unless (source -> target) is an edge of `table`."""
    if not can_transition(table, source, target):
        raise InvalidTransition(_label(source), _label(target))


def parse_order_status(value) -> OrderStatus:
    return _parse(OrderStatus, value, "status")


def parse_delivery_status(value) -> DeliveryStatus:
    return _parse(DeliveryStatus, value, "status")


def _parse(enum_cls, value, field: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(s.value for s in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}") from None


def _label(value) -> str:
    return value.value if isinstance(value, enum.Enum) else str(value)
