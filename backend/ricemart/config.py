# backend/ricemart/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/ricemart.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///ricemart.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Upstream auth layer resolves the actor and forwards its id in this header
    ACTOR_HEADER = os.environ.get("ACTOR_HEADER", "X-Actor-Id")

    CURRENCY = os.environ.get("CURRENCY", "INR")
    INVOICE_TAX_RATE_BPS = _env_int("INVOICE_TAX_RATE_BPS", 500)
    FARMER_INVOICE_TAX_RATE_BPS = _env_int("FARMER_INVOICE_TAX_RATE_BPS", 0)
    INVOICE_DUE_DAYS = _env_int("INVOICE_DUE_DAYS", 7)
    ESTIMATED_DELIVERY_DAYS = _env_int("ESTIMATED_DELIVERY_DAYS", 5)
    DEFAULT_LOW_STOCK_THRESHOLD = _env_int("DEFAULT_LOW_STOCK_THRESHOLD", 50)

    # Payment gateway (Razorpay-compatible REST API)
    GATEWAY_NAME = os.environ.get("GATEWAY_NAME", "Razorpay")
    GATEWAY_BASE_URL = os.environ.get("GATEWAY_BASE_URL", "https://api.razorpay.com/v1")
    GATEWAY_KEY_ID = os.environ.get("GATEWAY_KEY_ID", "")
    GATEWAY_KEY_SECRET = os.environ.get("GATEWAY_KEY_SECRET", "")
    GATEWAY_TIMEOUT_SECONDS = _env_int("GATEWAY_TIMEOUT_SECONDS", 10)
    USE_MOCK_GATEWAY = _env_bool("USE_MOCK_GATEWAY", not os.environ.get("GATEWAY_KEY_SECRET"))

    # Best-effort side channels
    EMAIL_API_URL = os.environ.get("EMAIL_API_URL", "https://api.resend.com/emails")
    EMAIL_API_KEY = os.environ.get("EMAIL_API_KEY", "")
    EMAIL_FROM = os.environ.get("EMAIL_FROM", "orders@ricemart.local")
    USE_MOCK_EMAIL = _env_bool("USE_MOCK_EMAIL", not os.environ.get("EMAIL_API_KEY"))
    SIDE_EFFECT_TIMEOUT_SECONDS = _env_int("SIDE_EFFECT_TIMEOUT_SECONDS", 5)
    EVENTS_ASYNC = _env_bool("EVENTS_ASYNC", False)


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    GATEWAY_KEY_ID = "rzp_test_key"
    GATEWAY_KEY_SECRET = "test-gateway-secret"
    USE_MOCK_GATEWAY = True
    USE_MOCK_EMAIL = True
    EVENTS_ASYNC = False
