"""
Delivery tracker and how it drives the order.
"""

import pytest

from ricemart.errors import DeliveryExists, Forbidden, InvalidTransition, NotFound, ValidationError
from ricemart.validation import (
    parse_cancel_order,
    parse_create_delivery,
    parse_update_delivery_status,
    parse_update_order_status,
    parse_update_tracking,
)


SCHEDULED_FOR = "2026-10-21T10:00:00Z"


@pytest.fixture
def packed_order(services, customer, staff, place_order, make_product):
    order = place_order(customer, [(make_product(stock=20), 2)])
    services.orders.update_status(order.id, parse_update_order_status({"status": "Packed"}), actor=staff)
    return order


def _schedule(services, order, actor, **extra):
    payload = {"orderId": order.id, "scheduledDate": SCHEDULED_FOR, **extra}
    return services.deliveries.create_delivery(parse_create_delivery(payload), actor=actor)


def _move(services, delivery, status, actor, **extra):
    return services.deliveries.update_status(
        delivery.id,
        parse_update_delivery_status({"status": status, **extra}),
        actor=actor,
    )


# =============================================================================
# SCHEDULING
# =============================================================================

class TestCreateDelivery:

    def test_packed_order_is_dispatched(self, services, staff, packed_order):
        delivery = _schedule(services, packed_order, staff, timeSlot="10:00-12:00")

        assert delivery.status == "Scheduled"
        assert delivery.customer_id == packed_order.user_id
        assert delivery.address == packed_order.shipping_address
        assert delivery.time_slot == "10:00-12:00"
        assert [u.status for u in delivery.tracking_updates] == ["Scheduled"]
        assert packed_order.status == "Shipped"

    def test_order_must_be_packed_or_shipped(self, services, customer, staff, place_order, make_product):
        order = place_order(customer, [(make_product(stock=5), 1)])

        with pytest.raises(ValidationError):
            _schedule(services, order, staff)

        assert order.delivery is None

    def test_one_delivery_per_order(self, services, staff, packed_order):
        _schedule(services, packed_order, staff)

        with pytest.raises(DeliveryExists):
            _schedule(services, packed_order, staff)

    def test_agent_must_be_staff(self, services, staff, customer, packed_order):
        with pytest.raises(NotFound):
            _schedule(services, packed_order, staff, agentId=customer.id)

        assert packed_order.status == "Packed"

    def test_explicit_address(self, services, staff, packed_order):
        address = {"address": "Godown 4", "city": "Madurai", "postal_code": "625001", "country": "India"}

        delivery = _schedule(services, packed_order, staff, address=address)

        assert delivery.address == address


# =============================================================================
# STATUS UPDATES
# =============================================================================

class TestUpdateDeliveryStatus:

    def test_delivered_delivery_completes_order(self, services, staff, packed_order):
        delivery = _schedule(services, packed_order, staff)

        _move(services, delivery, "In Transit", staff)
        _move(services, delivery, "Out for Delivery", staff, location={"lat": 10.78, "lng": 79.13})
        assert packed_order.status == "Out for Delivery"

        _move(services, delivery, "Delivered", staff)

        assert delivery.status == "Delivered"
        assert delivery.actual_delivery_time is not None
        assert len(delivery.tracking_updates) == 4
        assert delivery.tracking_updates[2].location == {"lat": 10.78, "lng": 79.13}
        assert packed_order.status == "Delivered"
        assert packed_order.is_delivered is True
        assert packed_order.tracking_number is None

    def test_illegal_edge_rejected(self, services, staff, packed_order):
        delivery = _schedule(services, packed_order, staff)

        with pytest.raises(InvalidTransition):
            _move(services, delivery, "Delivered", staff)

        assert delivery.status == "Scheduled"
        assert packed_order.status == "Shipped"

    def test_failed_attempt_recorded(self, services, staff, packed_order):
        delivery = _schedule(services, packed_order, staff)
        _move(services, delivery, "In Transit", staff)
        _move(services, delivery, "Out for Delivery", staff)

        _move(services, delivery, "Failed", staff, failureReason="Customer not home")

        assert delivery.failure_reason == "Customer not home"
        assert len(delivery.attempts) == 1
        assert packed_order.status == "Out for Delivery"

    def test_cancelled_order_cannot_follow(self, services, staff, packed_order):
        delivery = _schedule(services, packed_order, staff)
        _move(services, delivery, "In Transit", staff)
        _move(services, delivery, "Out for Delivery", staff)
        services.orders.cancel_order(packed_order.id, parse_cancel_order({"reason": "Address unreachable"}), actor=staff)

        with pytest.raises(InvalidTransition):
            _move(services, delivery, "Delivered", staff)

        assert delivery.status == "Out for Delivery"
        assert packed_order.status == "Cancelled"

    def test_manual_order_delivery_leaves_delivery_alone(self, services, staff, packed_order):
        delivery = _schedule(services, packed_order, staff)
        services.orders.update_tracking(
            packed_order.id,
            parse_update_tracking({"trackingNumber": "TRK-9", "courierProvider": "DTDC"}),
            actor=staff,
        )
        for status in ("Out for Delivery", "Delivered"):
            services.orders.update_status(packed_order.id, parse_update_order_status({"status": status}), actor=staff)

        assert packed_order.status == "Delivered"
        assert delivery.status == "Scheduled"
        assert len(delivery.tracking_updates) == 1

    def test_customer_cannot_update(self, services, staff, customer, packed_order):
        delivery = _schedule(services, packed_order, staff)

        with pytest.raises(Forbidden):
            _move(services, delivery, "In Transit", customer)

    def test_customer_notified(self, services, notifier, staff, customer, packed_order):
        delivery = _schedule(services, packed_order, staff)
        _move(services, delivery, "In Transit", staff)

        assert notifier.titles_for(customer.id).count("Delivery Update") == 2


# =============================================================================
# QUERIES
# =============================================================================

class TestDeliveryQueries:

    def test_visibility(self, services, staff, customer, other_customer, packed_order):
        delivery = _schedule(services, packed_order, staff)

        assert services.deliveries.get_delivery(delivery.id, actor=customer).id == delivery.id
        with pytest.raises(Forbidden):
            services.deliveries.get_delivery(delivery.id, actor=other_customer)

    def test_list_by_agent(self, services, staff, admin, packed_order):
        _schedule(services, packed_order, staff, agentId=admin.id)

        rows, total = services.deliveries.list_deliveries(agent_id=admin.id)

        assert total == 1
        assert rows[0].agent_id == admin.id
