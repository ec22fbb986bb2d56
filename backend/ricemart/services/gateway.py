"""
Payment gateway client (Razorpay-compatible REST API)

Handles gateway order creation, refunds and callback signature checks.

Config keys:
- GATEWAY_BASE_URL, GATEWAY_KEY_ID, GATEWAY_KEY_SECRET
- GATEWAY_TIMEOUT_SECONDS (every HTTP call is bounded)
- USE_MOCK_GATEWAY (no network; ids are generated locally)
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from typing import Dict, Optional

import requests
from flask import current_app

from ..errors import GatewayError


logger = logging.getLogger(__name__)


def compute_signature(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    """Hex HMAC-SHA256 of "order_id|payment_id" keyed with the shared secret."""
    body = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class PaymentGateway:
    """
    Thin client over the provider's REST API.

    Amounts passed in and out are minor units (paise), which is also what
    the provider expects.
    """

    def __init__(
        self,
        *,
        base_url: str,
        key_id: str,
        key_secret: str,
        timeout: float = 10,
        use_mock: bool = False,
        name: str = "Razorpay",
    ):
        self.base_url = base_url.rstrip("/")
        self.key_id = key_id
        self.key_secret = key_secret
        self.timeout = timeout
        self.use_mock = use_mock
        self.name = name

        if not self.configured:
            logger.warning("Payment gateway credentials not configured; gateway calls will fail")

    @classmethod
    def from_config(cls, config) -> "PaymentGateway":
        return cls(
            base_url=config["GATEWAY_BASE_URL"],
            key_id=config["GATEWAY_KEY_ID"],
            key_secret=config["GATEWAY_KEY_SECRET"],
            timeout=config["GATEWAY_TIMEOUT_SECONDS"],
            use_mock=config["USE_MOCK_GATEWAY"],
            name=config["GATEWAY_NAME"],
        )

    @property
    def configured(self) -> bool:
        return bool(self.key_secret) and (self.use_mock or bool(self.key_id))

    def verify_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        if not self.configured:
            raise GatewayError("Payment gateway is not configured", unavailable=True)
        expected = compute_signature(self.key_secret, gateway_order_id, gateway_payment_id)
        return hmac.compare_digest(expected, signature or "")

    def create_order(
        self,
        *,
        amount_cents: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict] = None,
    ) -> Dict:
        """
        Create a provider-side order for `amount_cents`.

        Returns:
            Provider order payload; always carries "id", "amount", "currency"
        """
        payload = {
            "amount": amount_cents,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        if self.use_mock:
            logger.info("Mock gateway order for receipt %s (%s %s)", receipt, amount_cents, currency)
            return {
                "id": f"order_mock_{uuid.uuid4().hex[:14]}",
                "entity": "order",
                "amount": amount_cents,
                "currency": currency,
                "receipt": receipt,
                "status": "created",
            }
        return self._request("POST", "/orders", payload)

    def refund(self, gateway_payment_id: str, *, amount_cents: int, notes: Optional[Dict] = None) -> Dict:
        payload = {"amount": amount_cents, "notes": notes or {}}
        if self.use_mock:
            logger.info("Mock gateway refund of %s for %s", amount_cents, gateway_payment_id)
            return {
                "id": f"rfnd_mock_{uuid.uuid4().hex[:14]}",
                "entity": "refund",
                "amount": amount_cents,
                "payment_id": gateway_payment_id,
                "status": "processed",
            }
        return self._request("POST", f"/payments/{gateway_payment_id}/refund", payload)

    def _request(self, method: str, endpoint: str, data: Optional[Dict] = None) -> Dict:
        """
        Make an authenticated request to the provider.

        Raises:
            GatewayError: 503 when credentials are missing, 502 on timeout,
                transport error or a non-2xx response
        """
        if not self.configured:
            raise GatewayError("Payment gateway is not configured", unavailable=True)

        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(
                method,
                url,
                json=data,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()

        except requests.exceptions.Timeout:
            logger.error("Gateway timeout: %s %s", method, endpoint)
            raise GatewayError("Payment gateway timed out", details={"endpoint": endpoint}) from None

        except requests.exceptions.RequestException as exc:
            logger.error("Gateway error: %s %s: %s", method, endpoint, exc)
            message = str(exc)
            if exc.response is not None:
                try:
                    body = exc.response.json()
                except ValueError:
                    body = None
                if isinstance(body, dict) and isinstance(body.get("error"), dict):
                    message = body["error"].get("description") or message
            raise GatewayError(f"Payment gateway error: {message}", details={"endpoint": endpoint}) from None


def get_gateway() -> PaymentGateway:
    """Per-app gateway client; tests may replace app.extensions["ricemart.gateway"]."""
    gateway = current_app.extensions.get("ricemart.gateway")
    if gateway is None:
        gateway = PaymentGateway.from_config(current_app.config)
        current_app.extensions["ricemart.gateway"] = gateway
    return gateway
