"""
Pytest fixtures for ricemart backend tests.

Provides the application on an in-memory database, a table wipe per test,
user/product/ledger factories, recording side channels and the test client.
"""

import pytest

from ricemart import create_app
from ricemart.config import TestConfig
from ricemart.container import get_services
from ricemart.extensions import db
from ricemart.models import Product, User
from ricemart.models.users import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_FARMER, ROLE_STAFF
from ricemart.services.gateway import compute_signature
from ricemart.validation import (
    parse_create_order,
    parse_record_purchase,
)


SHIPPING_ADDRESS = {
    "address": "12 Paddy Lane",
    "city": "Thanjavur",
    "postalCode": "613001",
    "country": "India",
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def services(db_session):
    return get_services()


# =============================================================================
# SIDE CHANNELS
# =============================================================================

class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, recipient_id, title, message, type, link=None, **kwargs):
        self.sent.append({
            "recipient_id": recipient_id,
            "title": title,
            "message": message,
            "type": type,
            "link": link,
            **kwargs,
        })
        return None

    def titles_for(self, recipient_id):
        return [n["title"] for n in self.sent if n["recipient_id"] == recipient_id]


class RecordingMailer:
    def __init__(self):
        self.sent = []

    def send(self, template, recipient, data):
        self.sent.append((template, recipient, data))
        return True

    @property
    def templates(self):
        return [template for template, _, _ in self.sent]


@pytest.fixture(scope='function')
def notifier(app, monkeypatch):
    recorder = RecordingNotifier()
    monkeypatch.setitem(app.extensions, "ricemart.notifier", recorder)
    return recorder


@pytest.fixture(scope='function')
def mailer(app, monkeypatch):
    recorder = RecordingMailer()
    monkeypatch.setitem(app.extensions, "ricemart.mailer", recorder)
    return recorder


@pytest.fixture(scope='function')
def sign(app):
    """Build a valid provider signature for (gateway_order_id, gateway_payment_id)."""
    def _sign(gateway_order_id, gateway_payment_id):
        return compute_signature(app.config["GATEWAY_KEY_SECRET"], gateway_order_id, gateway_payment_id)
    return _sign


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture(scope='function')
def make_user(db_session):
    counter = {"n": 0}

    def _make(role=ROLE_CUSTOMER, name=None, is_active=True):
        counter["n"] += 1
        user = User(
            name=name or f"{role.title()} {counter['n']}",
            email=f"{role}{counter['n']}@ricemart.test",
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def customer(make_user):
    return make_user(ROLE_CUSTOMER, name="Meena")


@pytest.fixture(scope='function')
def other_customer(make_user):
    return make_user(ROLE_CUSTOMER, name="Ravi")


@pytest.fixture(scope='function')
def staff(make_user):
    return make_user(ROLE_STAFF, name="Priya")


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user(ROLE_ADMIN, name="Arjun")


@pytest.fixture(scope='function')
def farmer(make_user):
    return make_user(ROLE_FARMER, name="Kumar")


@pytest.fixture(scope='function')
def make_product(db_session, farmer):
    def _make(name="Sona Masoori", stock=0, price_cents=5500, is_active=True):
        product = Product(
            farmer_id=farmer.id,
            name=name,
            grade="A",
            price_cents=price_cents,
            stock_quantity=stock,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_stock(services, farmer, staff):
    """Record a farmer purchase: ledger entry plus the same units of product stock."""
    def _make(product, quantity, threshold=None, purchase_price=4000, selling_price=None):
        payload = {
            "productId": product.id,
            "farmerId": farmer.id,
            "quantityPurchased": quantity,
            "purchasePrice": purchase_price,
            "sellingPrice": selling_price if selling_price is not None else product.price_cents,
        }
        if threshold is not None:
            payload["lowStockThreshold"] = threshold
        return services.stock.record_purchase(parse_record_purchase(payload), actor_user_id=staff.id)

    return _make


@pytest.fixture(scope='function')
def place_order(services):
    """Check out `lines` ([(product, qty), ...]) as `actor`."""
    def _place(actor, lines, payment_method="UPI", **extra):
        payload = {
            "items": [{"productId": p.id, "quantity": q} for p, q in lines],
            "shippingAddress": SHIPPING_ADDRESS,
            "paymentMethod": payment_method,
            **extra,
        }
        return services.orders.create_order(parse_create_order(payload), actor=actor)

    return _place


def auth_headers(user) -> dict:
    """Helper to create actor headers for a user."""
    return {TestConfig.ACTOR_HEADER: str(user.id)}
