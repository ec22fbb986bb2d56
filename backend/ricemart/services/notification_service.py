"""
Notification Service
Best-effort side channels fed by domain events

Channels:
- In-app notifications (Notification rows, written in their own transaction)
- Transactional email over an HTTP API (Resend-compatible)

Nothing in this module raises into its caller. Every failure is logged
with the event and entity it concerns and then dropped.

Config keys:
- EMAIL_API_URL, EMAIL_API_KEY, EMAIL_FROM
- USE_MOCK_EMAIL (log instead of sending)
- SIDE_EFFECT_TIMEOUT_SECONDS
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import requests
from flask import current_app

from ..errors import NotFound
from ..events import (
    DeliveryStatusChanged,
    EventDispatcher,
    FarmerPaid,
    OrderPlaced,
    OrderStatusChanged,
    PaymentCompleted,
    PaymentInitiated,
    PaymentRefunded,
    StockLow,
)
from ..extensions import db
from ..models import Notification
from ..repositories import NotificationRepository, UserRepository
from ..state_machine import OrderStatus


logger = logging.getLogger(__name__)


ORDER_STATUS_MESSAGES = {
    OrderStatus.PROCESSING.value: ("Order Confirmed", "Your order #{number} has been confirmed and is being processed."),
    OrderStatus.PACKED.value: ("Order Packed", "Your order #{number} has been packed and is ready for shipping."),
    OrderStatus.SHIPPED.value: ("Order Shipped", "Your order #{number} has been shipped."),
    OrderStatus.OUT_FOR_DELIVERY.value: ("Out for Delivery", "Your order #{number} is out for delivery and will arrive soon."),
    OrderStatus.DELIVERED.value: ("Order Delivered", "Your order #{number} has been delivered. Thank you for shopping with us!"),
    OrderStatus.CANCELLED.value: ("Order Cancelled", "Your order #{number} has been cancelled."),
    OrderStatus.RETURNED.value: ("Order Returned", "Your order #{number} has been marked as returned."),
    OrderStatus.REFUNDED.value: ("Order Refunded", "Your order #{number} has been refunded."),
}

# Staff hear about these in addition to the customer
STAFF_ALERT_STATUSES = (OrderStatus.CANCELLED.value, OrderStatus.RETURNED.value)


def format_amount(amount_cents: int, currency: str = "INR") -> str:
    sign = "-" if amount_cents < 0 else ""
    value = abs(amount_cents)
    return f"{sign}{currency} {value // 100}.{value % 100:02d}"


class NotificationDispatcher:
    """Persists in-app notifications. notify() never raises."""

    def notify(
        self,
        recipient_id: int,
        title: str,
        message: str,
        type: str,
        link: Optional[str] = None,
        *,
        priority: str = "normal",
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
    ) -> Optional[Notification]:
        try:
            notification = Notification(
                user_id=recipient_id,
                title=title,
                message=message,
                type=type,
                link=link,
                priority=priority,
                reference_type=reference_type,
                reference_id=reference_id,
            )
            NotificationRepository(db.session).add(notification)
            db.session.commit()
            return notification
        except Exception:
            db.session.rollback()
            logger.exception(
                "Failed to create %s notification for user %s (%s %s)",
                type, recipient_id, reference_type, reference_id,
            )
            return None


class EmailDispatcher:
    """
    Sends transactional email through an HTTP API with a bounded timeout.
    send() returns True on success and False on any failure.
    """

    def __init__(self, *, api_url: str, api_key: str, from_email: str, timeout: float, use_mock: bool):
        self.api_url = api_url
        self.api_key = api_key
        self.from_email = from_email
        self.timeout = timeout
        self.use_mock = use_mock or not api_key

    @classmethod
    def from_config(cls, config) -> "EmailDispatcher":
        return cls(
            api_url=config["EMAIL_API_URL"],
            api_key=config["EMAIL_API_KEY"],
            from_email=config["EMAIL_FROM"],
            timeout=config["SIDE_EFFECT_TIMEOUT_SECONDS"],
            use_mock=config["USE_MOCK_EMAIL"],
        )

    def send(self, template: str, recipient: str, data: Dict) -> bool:
        if not recipient:
            logger.warning("Email %s skipped: recipient has no address", template)
            return False

        if self.use_mock:
            logger.info("[MOCK EMAIL] %s -> %s %s", template, recipient, data)
            return True

        payload = {
            "from": self.from_email,
            "to": [recipient],
            "subject": data.get("subject") or template.replace("-", " ").title(),
            "text": data.get("text") or "",
            "tags": [{"name": "template", "value": template}],
        }
        try:
            response = requests.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as exc:
            logger.error("Failed to send %s email to %s: %s", template, recipient, exc)
            return False


def get_notifier() -> NotificationDispatcher:
    return current_app.extensions["ricemart.notifier"]


def get_mailer() -> EmailDispatcher:
    return current_app.extensions["ricemart.mailer"]


# =============================================================================
# EVENT SUBSCRIBERS
# =============================================================================

def _notify_staff(title: str, message: str, type: str, link: str, **kwargs) -> None:
    notifier = get_notifier()
    for staff in UserRepository(db.session).staff_members():
        notifier.notify(staff.id, title, message, type, link, **kwargs)


def _email_user(user_id: int, template: str, data: Dict) -> None:
    user = UserRepository(db.session).get(user_id)
    if user is None:
        logger.warning("Email %s skipped: user %s not found", template, user_id)
        return
    get_mailer().send(template, user.email, data)


def on_order_placed(event: OrderPlaced) -> None:
    get_notifier().notify(
        event.user_id,
        "Order Placed Successfully",
        f"Your order #{event.order_number} has been placed successfully. We'll notify you when it ships.",
        "order",
        f"/orders/{event.order_id}",
        reference_type="Order",
        reference_id=event.order_id,
    )

    customer = UserRepository(db.session).get(event.user_id)
    customer_name = customer.name if customer else "a customer"
    _notify_staff(
        "New Order",
        f"A new order #{event.order_number} has been placed by {customer_name}.",
        "order",
        f"/admin/orders/{event.order_id}",
        reference_type="Order",
        reference_id=event.order_id,
    )

    _email_user(event.user_id, "order-confirmation", {
        "subject": f"Order #{event.order_number} confirmed",
        "order_number": event.order_number,
        "status": event.status,
        "total": format_amount(event.total_price_cents, current_app.config["CURRENCY"]),
    })


def on_order_status_changed(event: OrderStatusChanged) -> None:
    title, template = ORDER_STATUS_MESSAGES.get(
        event.status,
        ("Order Update", "Your order #{number} has been updated to " + event.status + "."),
    )
    message = template.format(number=event.order_number)
    if event.status == OrderStatus.CANCELLED.value and event.note:
        message = f"{message} {event.note}"

    get_notifier().notify(
        event.user_id,
        title,
        message,
        "order",
        f"/orders/{event.order_id}",
        reference_type="Order",
        reference_id=event.order_id,
    )

    if event.status in STAFF_ALERT_STATUSES:
        staff_message = f"Order #{event.order_number} has been {event.status.lower()}."
        if event.note:
            staff_message = f"{staff_message} {event.note}"
        _notify_staff(
            f"Order {event.status}",
            staff_message,
            "order",
            f"/admin/orders/{event.order_id}",
            reference_type="Order",
            reference_id=event.order_id,
        )

    _email_user(event.user_id, "order-status-update", {
        "subject": f"Order #{event.order_number}: {event.status}",
        "order_number": event.order_number,
        "previous_status": event.previous_status,
        "status": event.status,
        "note": event.note,
    })


def on_payment_initiated(event: PaymentInitiated) -> None:
    get_notifier().notify(
        event.user_id,
        "Payment Initiated",
        f"Payment of {format_amount(event.amount_cents, current_app.config['CURRENCY'])} has been initiated.",
        "payment",
        f"/payments/{event.payment_id}",
        reference_type="Payment",
        reference_id=event.payment_id,
    )


def on_payment_completed(event: PaymentCompleted) -> None:
    amount = format_amount(event.amount_cents, current_app.config["CURRENCY"])
    get_notifier().notify(
        event.user_id,
        "Payment Successful",
        f"Your payment of {amount} for order #{event.order_number} was successful.",
        "payment",
        f"/payments/{event.payment_id}",
        reference_type="Payment",
        reference_id=event.payment_id,
    )
    _email_user(event.user_id, "payment-confirmation", {
        "subject": f"Payment received for order #{event.order_number}",
        "order_number": event.order_number,
        "amount": amount,
        "transaction_id": event.transaction_id,
    })


def on_payment_refunded(event: PaymentRefunded) -> None:
    if event.user_id is None:
        return
    amount = format_amount(event.refund_amount_cents, current_app.config["CURRENCY"])
    get_notifier().notify(
        event.user_id,
        "Refund Successful",
        f"A refund of {amount} has been processed for order #{event.order_number}.",
        "refund",
        f"/payments/{event.payment_id}",
        reference_type="Payment",
        reference_id=event.payment_id,
    )
    _email_user(event.user_id, "payment-refund", {
        "subject": f"Refund processed for order #{event.order_number}",
        "order_number": event.order_number,
        "amount": amount,
        "reason": event.reason,
    })


def on_farmer_paid(event: FarmerPaid) -> None:
    amount = format_amount(event.amount_cents, current_app.config["CURRENCY"])
    get_notifier().notify(
        event.farmer_id,
        "Payment Received",
        f"A payment of {amount} has been made to you for your rice supply.",
        "payment",
        f"/payments/{event.payment_id}",
        reference_type="Payment",
        reference_id=event.payment_id,
    )


def on_delivery_status_changed(event: DeliveryStatusChanged) -> None:
    get_notifier().notify(
        event.customer_id,
        "Delivery Update",
        f"Your delivery is now {event.status}.",
        "delivery",
        f"/orders/{event.order_id}",
        reference_type="Delivery",
        reference_id=event.delivery_id,
    )


def on_stock_low(event: StockLow) -> None:
    if event.current_stock == 0:
        title = "Out of Stock"
        message = f"{event.product_name} is out of stock."
    else:
        title = "Low Stock Alert"
        message = (
            f"{event.product_name} is running low: {event.current_stock} units left "
            f"(threshold {event.threshold})."
        )
    _notify_staff(
        title,
        message,
        "low-stock",
        f"/admin/inventory/{event.entry_id}",
        priority="high",
        reference_type="Inventory",
        reference_id=event.entry_id,
    )


def register_subscribers(dispatcher: EventDispatcher) -> None:
    dispatcher.subscribe(OrderPlaced, on_order_placed)
    dispatcher.subscribe(OrderStatusChanged, on_order_status_changed)
    dispatcher.subscribe(PaymentInitiated, on_payment_initiated)
    dispatcher.subscribe(PaymentCompleted, on_payment_completed)
    dispatcher.subscribe(PaymentRefunded, on_payment_refunded)
    dispatcher.subscribe(FarmerPaid, on_farmer_paid)
    dispatcher.subscribe(DeliveryStatusChanged, on_delivery_status_changed)
    dispatcher.subscribe(StockLow, on_stock_low)


def init_side_channels(app, dispatcher: EventDispatcher) -> None:
    app.extensions["ricemart.notifier"] = NotificationDispatcher()
    app.extensions["ricemart.mailer"] = EmailDispatcher.from_config(app.config)
    register_subscribers(dispatcher)


# =============================================================================
# INBOX
# =============================================================================

def list_notifications(user_id: int, *, unread_only: bool = False, limit: int = 50):
    return NotificationRepository(db.session).for_user(user_id, unread_only=unread_only, limit=limit)


def mark_read(notification_id: int, user_id: int) -> Notification:
    """
    Raises:
        NotFound: unknown id, or the notification belongs to someone else
    """
    notification = NotificationRepository(db.session).get(notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFound("Notification not found", details={"notification_id": notification_id})
    notification.is_read = True
    db.session.commit()
    return notification
