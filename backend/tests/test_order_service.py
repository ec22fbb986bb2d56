"""
Order aggregate: checkout, transitions, cancel, tracking and out-of-band payment.
"""

import re
from datetime import timedelta

import pytest

from ricemart.errors import (
    AlreadyPaid,
    Forbidden,
    InvalidTransition,
    NotFound,
    OutOfStock,
    ValidationError,
)
from ricemart.models import Order, Payment
from ricemart.models.inventory import STOCK_STATUS_OUT
from ricemart.validation import (
    parse_cancel_order,
    parse_mark_order_paid,
    parse_update_order_status,
    parse_update_tracking,
)


def _status(services, order, status, actor, note=None):
    payload = {"status": status}
    if note:
        payload["note"] = note
    return services.orders.update_status(order.id, parse_update_order_status(payload), actor=actor)


def _track(services, order, actor, number="TRK-1001", courier="BlueDart"):
    return services.orders.update_tracking(
        order.id,
        parse_update_tracking({"trackingNumber": number, "courierProvider": courier}),
        actor=actor,
    )


# =============================================================================
# CHECKOUT
# =============================================================================

class TestCreateOrder:

    def test_confirmed_checkout_takes_stock(self, customer, place_order, make_product, make_stock):
        p = make_product(name="Sona Masoori", stock=10)
        q = make_product(name="Basmati")
        q_entry = make_stock(q, 1)

        order = place_order(customer, [(p, 3), (q, 1)], payment_method="UPI")

        assert order.status == "Processing"
        assert order.stock_reserved is True
        assert p.stock_quantity == 7
        assert q.stock_quantity == 0
        assert q_entry.current_stock == 0
        assert q_entry.status == STOCK_STATUS_OUT

    def test_cash_on_delivery_starts_pending(self, customer, place_order, make_product):
        product = make_product(stock=10)

        order = place_order(customer, [(product, 3)], payment_method="Cash on Delivery")

        assert order.status == "Pending"
        assert order.stock_reserved is False
        assert product.stock_quantity == 10

    def test_totals_and_snapshot(self, customer, farmer, place_order, make_product):
        product = make_product(name="Ponni", stock=10, price_cents=5500)

        order = place_order(customer, [(product, 2)], taxPrice=550, shippingPrice=4000)

        assert order.items_price_cents == 11000
        assert order.total_price_cents == 11000 + 550 + 4000
        line = order.lines[0]
        assert line.product_name == "Ponni"
        assert line.unit_price_cents == 5500
        assert line.farmer_name == farmer.name
        assert order.estimated_delivery_date - order.created_at == timedelta(days=5)

    def test_snapshot_survives_product_edit(self, db_session, customer, place_order, make_product):
        product = make_product(name="Ponni", stock=10, price_cents=5500)
        order = place_order(customer, [(product, 1)])

        product.name = "Ponni Premium"
        product.price_cents = 9000
        db_session.commit()

        assert order.lines[0].product_name == "Ponni"
        assert order.lines[0].unit_price_cents == 5500

    def test_order_numbers_are_sequential(self, customer, place_order, make_product):
        product = make_product(stock=10)

        first = place_order(customer, [(product, 1)])
        second = place_order(customer, [(product, 1)])

        assert re.fullmatch(r"ORD-\d{8}-0001", first.order_number)
        assert re.fullmatch(r"ORD-\d{8}-0002", second.order_number)

    def test_out_of_stock_creates_nothing(self, db_session, customer, place_order, make_product):
        product = make_product(name="Ponni", stock=10)

        with pytest.raises(OutOfStock) as exc:
            place_order(customer, [(product, 11)])

        assert exc.value.details["lines"][0]["available"] == 10
        assert product.stock_quantity == 10
        assert db_session.query(Order).count() == 0

    def test_inactive_product(self, customer, place_order, make_product):
        product = make_product(stock=10, is_active=False)

        with pytest.raises(NotFound):
            place_order(customer, [(product, 1)])

    def test_client_total_must_match(self, customer, place_order, make_product):
        product = make_product(stock=10, price_cents=5500)

        with pytest.raises(ValidationError):
            place_order(customer, [(product, 1)], totalPrice=1)

    def test_customer_payment_claim_not_trusted(self, db_session, customer, place_order, make_product):
        product = make_product(stock=10)

        order = place_order(customer, [(product, 1)], paymentResult={"id": "UPI-778", "status": "COMPLETED"})

        assert order.is_paid is False
        assert order.payment_result["id"] == "UPI-778"
        assert db_session.query(Payment).filter_by(order_id=order.id).count() == 0

    def test_paid_at_checkout_by_staff(self, db_session, staff, place_order, make_product):
        product = make_product(stock=10)

        order = place_order(staff, [(product, 1)], paymentResult={"id": "UPI-778", "status": "COMPLETED"})

        assert order.is_paid is True
        payment = db_session.query(Payment).filter_by(order_id=order.id).one()
        assert payment.status == "completed"
        assert payment.transaction_id == "UPI-778"

    def test_side_channels_informed(self, notifier, mailer, customer, staff, place_order, make_product):
        place_order(customer, [(make_product(stock=5), 1)])

        assert "Order Placed Successfully" in notifier.titles_for(customer.id)
        assert "New Order" in notifier.titles_for(staff.id)
        assert "order-confirmation" in mailer.templates


# =============================================================================
# TRANSITIONS
# =============================================================================

class TestTransitions:

    def test_pending_cannot_jump_to_delivered(self, services, customer, staff, place_order, make_product):
        order = place_order(customer, [(make_product(stock=10), 1)], payment_method="Cash on Delivery")

        with pytest.raises(InvalidTransition):
            _status(services, order, "Delivered", staff)

        assert order.status == "Pending"
        assert len(order.status_history) == 1

    def test_each_transition_appends_history(self, services, customer, staff, place_order, make_product):
        order = place_order(customer, [(make_product(stock=10), 1)])

        _status(services, order, "Packed", staff, note="Packed in 25kg bags")
        _status(services, order, "Shipped", staff)

        assert [h.status for h in order.status_history] == ["Processing", "Packed", "Shipped"]
        assert order.status_history[1].note == "Packed in 25kg bags"
        assert order.status_history[1].actor_user_id == staff.id

    def test_staff_confirmation_takes_stock(self, services, customer, staff, place_order, make_product):
        product = make_product(stock=10)
        order = place_order(customer, [(product, 4)], payment_method="Cash on Delivery")

        _status(services, order, "Processing", staff)

        assert order.stock_reserved is True
        assert product.stock_quantity == 6

    def test_delivered_requires_tracking(self, services, customer, staff, place_order, make_product):
        order = place_order(customer, [(make_product(stock=10), 1)])
        for status in ("Packed", "Shipped", "Out for Delivery"):
            _status(services, order, status, staff)

        with pytest.raises(ValidationError):
            _status(services, order, "Delivered", staff)
        assert order.status == "Out for Delivery"

        _track(services, order, staff)
        _status(services, order, "Delivered", staff)

        assert order.status == "Delivered"
        assert order.is_delivered is True
        assert order.delivered_at is not None

    def test_tracking_ships_packed_order(self, services, customer, staff, place_order, make_product):
        order = place_order(customer, [(make_product(stock=10), 1)])
        _status(services, order, "Packed", staff)

        _track(services, order, staff, number="TRK-55")

        assert order.status == "Shipped"
        assert order.tracking_number == "TRK-55"
        assert order.courier_provider == "BlueDart"


# =============================================================================
# CANCEL
# =============================================================================

class TestCancel:

    def test_cancel_shipped_order_restores_stock(self, services, customer, staff, place_order, make_product, make_stock):
        p = make_product(name="Sona Masoori", stock=10)
        q = make_product(name="Basmati")
        q_entry = make_stock(q, 5)
        order = place_order(customer, [(p, 3), (q, 2)])
        _status(services, order, "Packed", staff)
        _track(services, order, staff)
        assert order.status == "Shipped"

        services.orders.cancel_order(order.id, parse_cancel_order({}), actor=customer)

        assert order.status == "Cancelled"
        assert order.cancellation_reason == "Cancelled by customer"
        assert order.stock_reserved is False
        assert p.stock_quantity == 10
        assert q.stock_quantity == 5
        assert q_entry.current_stock == 5
        assert [h.status for h in order.status_history].count("Cancelled") == 1

    def test_cancel_pending_order_leaves_stock(self, services, customer, place_order, make_product):
        product = make_product(stock=10)
        order = place_order(customer, [(product, 3)], payment_method="Cash on Delivery")

        services.orders.cancel_order(order.id, parse_cancel_order({"reason": "Ordered twice"}), actor=customer)

        assert order.status == "Cancelled"
        assert order.cancellation_reason == "Ordered twice"
        assert product.stock_quantity == 10

    def test_out_for_delivery_is_cancellable(self, services, customer, staff, place_order, make_product):
        product = make_product(stock=10)
        order = place_order(customer, [(product, 2)])
        for status in ("Packed", "Shipped", "Out for Delivery"):
            _status(services, order, status, staff)

        services.orders.cancel_order(order.id, parse_cancel_order({}), actor=staff)

        assert order.status == "Cancelled"
        assert order.cancellation_reason == "Cancelled by administrator"
        assert product.stock_quantity == 10

    def test_delivered_order_cannot_be_cancelled(self, services, customer, staff, place_order, make_product):
        order = place_order(customer, [(make_product(stock=10), 1)])
        _status(services, order, "Packed", staff)
        _track(services, order, staff)
        _status(services, order, "Out for Delivery", staff)
        _status(services, order, "Delivered", staff)

        with pytest.raises(InvalidTransition):
            services.orders.cancel_order(order.id, parse_cancel_order({}), actor=staff)

        assert order.status == "Delivered"

    def test_cancelled_twice(self, services, customer, place_order, make_product):
        order = place_order(customer, [(make_product(stock=10), 1)])
        services.orders.cancel_order(order.id, parse_cancel_order({}), actor=customer)

        with pytest.raises(InvalidTransition):
            services.orders.cancel_order(order.id, parse_cancel_order({}), actor=customer)

    def test_other_customer_cannot_cancel(self, services, customer, other_customer, place_order, make_product):
        order = place_order(customer, [(make_product(stock=10), 1)])

        with pytest.raises(Forbidden):
            services.orders.cancel_order(order.id, parse_cancel_order({}), actor=other_customer)

        assert order.status == "Processing"

    def test_staff_cancel_via_status_uses_table(self, services, customer, staff, place_order, make_product):
        order = place_order(customer, [(make_product(stock=10), 1)])
        for status in ("Packed", "Shipped", "Out for Delivery"):
            _status(services, order, status, staff)

        with pytest.raises(InvalidTransition):
            _status(services, order, "Cancelled", staff)


# =============================================================================
# OUT-OF-BAND PAYMENT
# =============================================================================

class TestMarkPaid:

    def test_pending_order_promoted(self, services, db_session, customer, staff, place_order, make_product):
        product = make_product(stock=10)
        order = place_order(customer, [(product, 2)], payment_method="Cash on Delivery")

        services.orders.mark_paid(
            order.id,
            parse_mark_order_paid({"id": "COD-1", "status": "COMPLETED"}),
            actor=staff,
        )

        assert order.is_paid is True
        assert order.paid_at is not None
        assert order.status == "Processing"
        assert product.stock_quantity == 8
        assert order.payment_result["id"] == "COD-1"
        assert db_session.query(Payment).filter_by(order_id=order.id, status="completed").count() == 1

    def test_owner_cannot_mark_own_order_paid(self, services, db_session, customer, place_order, make_product):
        product = make_product(stock=10)
        order = place_order(customer, [(product, 2)], payment_method="Cash on Delivery")

        with pytest.raises(Forbidden):
            services.orders.mark_paid(order.id, parse_mark_order_paid({"id": "fake", "status": "COMPLETED"}), actor=customer)

        assert order.is_paid is False
        assert order.status == "Pending"
        assert product.stock_quantity == 10
        assert db_session.query(Payment).count() == 0

    def test_already_paid(self, services, customer, staff, place_order, make_product):
        order = place_order(customer, [(make_product(stock=10), 1)])
        services.orders.mark_paid(order.id, parse_mark_order_paid({"id": "A"}), actor=staff)

        with pytest.raises(AlreadyPaid):
            services.orders.mark_paid(order.id, parse_mark_order_paid({"id": "B"}), actor=staff)


# =============================================================================
# QUERIES
# =============================================================================

class TestQueries:

    def test_owner_and_staff_can_read(self, services, customer, staff, other_customer, place_order, make_product):
        order = place_order(customer, [(make_product(stock=10), 1)])

        assert services.orders.get_order(order.id, actor=customer).id == order.id
        assert services.orders.get_order(order.id, actor=staff).id == order.id
        with pytest.raises(Forbidden):
            services.orders.get_order(order.id, actor=other_customer)

    def test_unknown_order(self, services, staff):
        with pytest.raises(NotFound):
            services.orders.get_order(424242, actor=staff)

    def test_counts_by_status(self, services, customer, place_order, make_product):
        product = make_product(stock=10)
        place_order(customer, [(product, 1)])
        place_order(customer, [(product, 1)], payment_method="Cash on Delivery")

        counts = services.orders.counts_by_status()

        assert counts["Processing"] == 1
        assert counts["Pending"] == 1
        assert counts["Refunded"] == 0

    def test_my_orders(self, services, customer, other_customer, place_order, make_product):
        product = make_product(stock=10)
        place_order(customer, [(product, 1)])
        place_order(other_customer, [(product, 1)])

        rows, total = services.orders.my_orders(customer)

        assert total == 1
        assert rows[0].user_id == customer.id
