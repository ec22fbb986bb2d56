"""
HTTP contract: auth, roles, status codes and the error envelope.
"""

import pytest

from conftest import SHIPPING_ADDRESS, auth_headers


def _checkout(client, user, product, quantity=1, payment_method="UPI"):
    return client.post(
        "/api/orders",
        json={
            "items": [{"productId": product.id, "quantity": quantity}],
            "shippingAddress": SHIPPING_ADDRESS,
            "paymentMethod": payment_method,
        },
        headers=auth_headers(user),
    )


# =============================================================================
# AUTHENTICATION & ROLES
# =============================================================================

class TestAuth:

    def test_missing_actor_header(self, client, db_session):
        response = client.get("/api/orders/mine")

        assert response.status_code == 401
        assert response.get_json()["error"]["kind"] == "unauthenticated"

    def test_unknown_actor(self, client, db_session):
        response = client.get("/api/orders/mine", headers={"X-Actor-Id": "99999"})
        assert response.status_code == 401

    def test_non_numeric_actor(self, client, db_session):
        response = client.get("/api/orders/mine", headers={"X-Actor-Id": "admin"})
        assert response.status_code == 401

    def test_inactive_actor(self, client, make_user):
        user = make_user(is_active=False)
        response = client.get("/api/orders/mine", headers=auth_headers(user))
        assert response.status_code == 401

    @pytest.mark.parametrize("method,url", [
        ("get", "/api/orders"),
        ("get", "/api/orders/counts"),
        ("get", "/api/inventory"),
        ("get", "/api/inventory/low-stock"),
        ("get", "/api/deliveries"),
        ("get", "/api/payments"),
        ("post", "/api/inventory/run-forecasting"),
        ("post", "/api/payments/farmer"),
    ])
    def test_customer_forbidden(self, client, customer, method, url):
        response = getattr(client, method)(url, headers=auth_headers(customer))

        assert response.status_code == 403
        body = response.get_json()
        assert body["error"]["kind"] == "forbidden"
        assert body["error"]["message"] == "Permission denied"
        assert "required_roles" in body["error"]["details"]

    def test_staff_cannot_refund(self, client, staff):
        response = client.post("/api/payments/1/refund", json={"reason": "x"}, headers=auth_headers(staff))
        assert response.status_code == 403


# =============================================================================
# ERROR ENVELOPE
# =============================================================================

class TestErrorEnvelope:

    def test_validation_error(self, client, customer):
        response = client.post("/api/orders", json={"items": []}, headers=auth_headers(customer))

        assert response.status_code == 400
        error = response.get_json()["error"]
        assert error["kind"] == "validation_error"
        assert error["message"] == "No order items"
        assert error["details"] == {"field": "items"}

    def test_float_quantity_rejected(self, client, customer, make_product):
        product = make_product(stock=10)

        response = client.post(
            "/api/orders",
            json={
                "items": [{"productId": product.id, "quantity": 1.5}],
                "shippingAddress": SHIPPING_ADDRESS,
                "paymentMethod": "UPI",
            },
            headers=auth_headers(customer),
        )

        assert response.status_code == 400
        assert response.get_json()["error"]["details"]["field"] == "quantity"

    def test_out_of_stock(self, client, customer, make_product):
        product = make_product(stock=1)

        response = _checkout(client, customer, product, quantity=3)

        assert response.status_code == 400
        error = response.get_json()["error"]
        assert error["kind"] == "out_of_stock"
        assert error["details"]["lines"][0]["requested"] == 3

    def test_invalid_transition(self, client, customer, staff, make_product):
        order_id = _checkout(client, customer, make_product(stock=5), payment_method="Cash on Delivery").get_json()["id"]

        response = client.put(
            f"/api/orders/{order_id}/status",
            json={"status": "Delivered"},
            headers=auth_headers(staff),
        )

        assert response.status_code == 400
        error = response.get_json()["error"]
        assert error["kind"] == "invalid_transition"
        assert error["details"] == {"source": "Pending", "target": "Delivered"}

    def test_not_found(self, client, staff):
        response = client.get("/api/orders/4040", headers=auth_headers(staff))

        assert response.status_code == 404
        assert response.get_json()["error"]["kind"] == "not_found"

    def test_unknown_route(self, client, db_session):
        response = client.get("/api/nothing-here")

        assert response.status_code == 404
        assert response.get_json()["error"]["kind"] == "not_found"

    def test_unexpected_error_is_generic(self, client, customer, monkeypatch):
        from ricemart.services.order_service import OrderService

        def explode(self, actor, **kwargs):
            raise RuntimeError("secret stack detail")

        monkeypatch.setattr(OrderService, "my_orders", explode)

        response = client.get("/api/orders/mine", headers=auth_headers(customer))

        assert response.status_code == 500
        error = response.get_json()["error"]
        assert error["kind"] == "internal"
        assert "secret" not in error["message"]


# =============================================================================
# ORDERS
# =============================================================================

class TestOrderRoutes:

    def test_checkout_and_read_back(self, client, customer, make_product):
        product = make_product(stock=10, price_cents=5500)

        response = _checkout(client, customer, product, quantity=2)

        assert response.status_code == 201
        body = response.get_json()
        assert body["status"] == "Processing"
        assert body["total_price_cents"] == 11000
        assert body["items"][0]["quantity"] == 2
        assert body["status_history"][0]["status"] == "Processing"
        assert body["created_at"].endswith("Z")

        read = client.get(f"/api/orders/{body['id']}", headers=auth_headers(customer))
        assert read.status_code == 200
        assert read.get_json()["order_number"] == body["order_number"]

    def test_other_customer_forbidden(self, client, customer, other_customer, make_product):
        order_id = _checkout(client, customer, make_product(stock=5)).get_json()["id"]

        response = client.get(f"/api/orders/{order_id}", headers=auth_headers(other_customer))

        assert response.status_code == 403

    def test_staff_listing(self, client, customer, staff, make_product):
        product = make_product(stock=10)
        _checkout(client, customer, product)
        _checkout(client, customer, product, payment_method="Cash on Delivery")

        response = client.get("/api/orders?status=Pending", headers=auth_headers(staff))

        body = response.get_json()
        assert response.status_code == 200
        assert body["total"] == 1
        assert body["items"][0]["status"] == "Pending"
        assert "status_history" not in body["items"][0]

    def test_listing_rejects_unknown_status(self, client, staff):
        response = client.get("/api/orders?status=Lost", headers=auth_headers(staff))
        assert response.status_code == 400

    def test_cancel(self, client, customer, make_product):
        product = make_product(stock=10)
        order_id = _checkout(client, customer, product, quantity=4).get_json()["id"]

        response = client.put(f"/api/orders/{order_id}/cancel", json={"reason": "Changed mind"}, headers=auth_headers(customer))

        assert response.status_code == 200
        assert response.get_json()["status"] == "Cancelled"
        assert product.stock_quantity == 10

    def test_counts(self, client, customer, staff, make_product):
        _checkout(client, customer, make_product(stock=10))

        response = client.get("/api/orders/counts", headers=auth_headers(staff))

        assert response.get_json()["counts"]["Processing"] == 1

    def test_owner_cannot_mark_paid(self, client, customer, make_product):
        product = make_product(stock=10)
        order_id = _checkout(client, customer, product, payment_method="Cash on Delivery").get_json()["id"]

        response = client.put(
            f"/api/orders/{order_id}/pay",
            json={"id": "fake", "status": "COMPLETED"},
            headers=auth_headers(customer),
        )

        assert response.status_code == 403
        assert response.get_json()["error"]["kind"] == "forbidden"
        order = client.get(f"/api/orders/{order_id}", headers=auth_headers(customer)).get_json()
        assert order["is_paid"] is False
        assert order["status"] == "Pending"
        assert product.stock_quantity == 10

    def test_staff_marks_paid(self, client, customer, staff, make_product):
        order_id = _checkout(client, customer, make_product(stock=10), payment_method="Cash on Delivery").get_json()["id"]

        response = client.put(f"/api/orders/{order_id}/pay", json={"id": "CASH-7"}, headers=auth_headers(staff))

        assert response.status_code == 200
        assert response.get_json()["is_paid"] is True
        assert response.get_json()["status"] == "Processing"


# =============================================================================
# INVENTORY
# =============================================================================

class TestInventoryRoutes:

    def test_purchase_adjust_and_read(self, client, staff, farmer, make_product):
        product = make_product()

        created = client.post(
            "/api/inventory/purchase",
            json={
                "productId": product.id,
                "farmerId": farmer.id,
                "quantityPurchased": 200,
                "purchasePrice": 4000,
                "sellingPrice": 5500,
                "qualityGrade": "A",
            },
            headers=auth_headers(staff),
        )
        assert created.status_code == 201
        entry = created.get_json()
        assert entry["current_stock"] == 200
        assert entry["movements"][0]["type"] == "purchase"

        adjusted = client.post(
            f"/api/inventory/{entry['id']}/adjust",
            json={"quantity": -20, "reason": "Spillage", "type": "loss"},
            headers=auth_headers(staff),
        )
        assert adjusted.status_code == 200
        assert adjusted.get_json()["current_stock"] == 180

        too_much = client.post(
            f"/api/inventory/{entry['id']}/adjust",
            json={"quantity": -500, "reason": "Recount"},
            headers=auth_headers(staff),
        )
        assert too_much.status_code == 400
        assert too_much.get_json()["error"]["kind"] == "negative_stock"

        read = client.get(f"/api/inventory/{entry['id']}", headers=auth_headers(staff))
        assert [m["quantity"] for m in read.get_json()["movements"]] == [200, -20]

    def test_list_filters(self, client, staff, make_product, make_stock):
        make_stock(make_product(name="Low"), 5)
        make_stock(make_product(name="Plenty"), 500)

        low = client.get("/api/inventory?lowStock=true", headers=auth_headers(staff)).get_json()
        assert low["total"] == 1
        bad = client.get("/api/inventory?status=plenty", headers=auth_headers(staff))
        assert bad.status_code == 400

    def test_forecast(self, client, staff, make_product, make_stock):
        entry = make_stock(make_product(), 100)

        response = client.get(f"/api/inventory/{entry.id}/forecast", headers=auth_headers(staff))

        assert response.status_code == 200
        assert response.get_json()["forecast"]["confidence"] == 0

    def test_run_forecasting_admin(self, client, admin, make_product, make_stock):
        make_stock(make_product(), 100)

        response = client.post("/api/inventory/run-forecasting", headers=auth_headers(admin))

        assert response.status_code == 200
        assert response.get_json()["skipped"] == 1


# =============================================================================
# PAYMENTS & DELIVERIES
# =============================================================================

class TestPaymentRoutes:

    def test_gateway_round_trip(self, client, sign, customer, admin, make_product):
        order_id = _checkout(client, customer, make_product(stock=10, price_cents=500)).get_json()["id"]

        created = client.post("/api/payments/gateway/create", json={"orderId": order_id}, headers=auth_headers(customer))
        assert created.status_code == 201
        gateway_order = created.get_json()
        assert gateway_order["amount"] == 500
        assert gateway_order["key_id"] == "rzp_test_key"

        verified = client.post(
            "/api/payments/gateway/verify",
            json={
                "gateway_order_id": gateway_order["id"],
                "gateway_payment_id": "pay_route1",
                "signature": sign(gateway_order["id"], "pay_route1"),
                "paymentId": gateway_order["payment_id"],
            },
            headers=auth_headers(customer),
        )
        assert verified.status_code == 200
        assert verified.get_json()["payment"]["status"] == "completed"

        refunded = client.post(
            f"/api/payments/{gateway_order['payment_id']}/refund",
            json={"reason": "Damaged", "amount": 200},
            headers=auth_headers(admin),
        )
        assert refunded.status_code == 200
        assert refunded.get_json()["refund"]["amount_cents"] == 200

        order = client.get(f"/api/orders/{order_id}", headers=auth_headers(customer)).get_json()
        assert order["status"] == "Refunded"

    def test_bad_signature(self, client, customer, make_product):
        order_id = _checkout(client, customer, make_product(stock=10)).get_json()["id"]
        gateway_order = client.post(
            "/api/payments/gateway/create", json={"orderId": order_id}, headers=auth_headers(customer),
        ).get_json()

        response = client.post(
            "/api/payments/gateway/verify",
            json={
                "gateway_order_id": gateway_order["id"],
                "gateway_payment_id": "pay_x",
                "signature": "deadbeef",
                "paymentId": gateway_order["payment_id"],
            },
            headers=auth_headers(customer),
        )

        assert response.status_code == 400
        assert response.get_json()["error"]["kind"] == "invalid_signature"


class TestDeliveryRoutes:

    def test_schedule_and_deliver(self, client, customer, staff, make_product):
        order_id = _checkout(client, customer, make_product(stock=10)).get_json()["id"]
        client.put(f"/api/orders/{order_id}/status", json={"status": "Packed"}, headers=auth_headers(staff))

        created = client.post(
            "/api/deliveries",
            json={"orderId": order_id, "scheduledDate": "2026-10-21T09:00:00Z"},
            headers=auth_headers(staff),
        )
        assert created.status_code == 201
        delivery_id = created.get_json()["id"]

        for status in ("In Transit", "Out for Delivery", "Delivered"):
            response = client.put(
                f"/api/deliveries/{delivery_id}/status",
                json={"status": status},
                headers=auth_headers(staff),
            )
            assert response.status_code == 200

        order = client.get(f"/api/orders/{order_id}", headers=auth_headers(customer)).get_json()
        assert order["status"] == "Delivered"
        assert order["is_delivered"] is True

        duplicate = client.post(
            "/api/deliveries",
            json={"orderId": order_id, "scheduledDate": "2026-10-22T09:00:00Z"},
            headers=auth_headers(staff),
        )
        assert duplicate.status_code == 400


# =============================================================================
# NOTIFICATIONS & HEALTH
# =============================================================================

class TestNotificationRoutes:

    def test_inbox_and_mark_read(self, client, customer, other_customer, make_product):
        _checkout(client, customer, make_product(stock=10))

        inbox = client.get("/api/notifications", headers=auth_headers(customer)).get_json()["items"]
        assert inbox[0]["title"] == "Order Placed Successfully"

        foreign = client.put(f"/api/notifications/{inbox[0]['id']}/read", headers=auth_headers(other_customer))
        assert foreign.status_code == 404

        marked = client.put(f"/api/notifications/{inbox[0]['id']}/read", headers=auth_headers(customer))
        assert marked.get_json()["is_read"] is True

        unread = client.get("/api/notifications?unread=true", headers=auth_headers(customer)).get_json()["items"]
        assert unread == []


class TestHealth:

    def test_health(self, client, db_session):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["timestamp"].endswith("Z")
