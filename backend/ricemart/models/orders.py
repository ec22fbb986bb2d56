from __future__ import annotations

from ..extensions import db
from ..errors import ValidationError
from ..state_machine import (
    ORDER_TRANSITIONS,
    OrderStatus,
    ensure_transition,
)
from ..time_utils import to_utc_z, utcnow


PAYMENT_METHOD_COD = "Cash on Delivery"
VALID_PAYMENT_METHODS = (
    "Credit Card",
    "Debit Card",
    "UPI",
    PAYMENT_METHOD_COD,
    "Net Banking",
)

DEFAULT_STAFF_CANCEL_REASON = "Cancelled by administrator"
DEFAULT_CUSTOMER_CANCEL_REASON = "Cancelled by customer"


class Order(db.Model):
    """
    One checkout by one customer.

    The status column only changes through transition_to(), which checks
    the transition table, appends exactly one history row and applies the
    per-status flags. Inventory effects of a transition are applied by
    OrderService in the same database transaction.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    shipping_address = db.Column(db.JSON, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    payment_result = db.Column(db.JSON, nullable=True)

    # Computed once at creation (minor units)
    items_price_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_price_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_price_cents = db.Column(db.Integer, nullable=False, default=0)
    total_price_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(32), nullable=False, default=OrderStatus.PENDING.value, index=True)

    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_delivered = db.Column(db.Boolean, nullable=False, default=False)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_refunded = db.Column(db.Boolean, nullable=False, default=False)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # True while line quantities are held out of product/ledger stock
    stock_reserved = db.Column(db.Boolean, nullable=False, default=False)

    cancellation_reason = db.Column(db.String(255), nullable=True)
    estimated_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    tracking_number = db.Column(db.String(64), nullable=True)
    courier_provider = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = db.relationship("User")
    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy=True,
        order_by="OrderLine.id",
        cascade="all, delete-orphan",
    )
    status_history = db.relationship(
        "OrderStatusHistory",
        backref="order",
        lazy=True,
        order_by="OrderStatusHistory.id",
        cascade="all, delete-orphan",
    )

    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    def record_status(self, status: OrderStatus, *, actor_user_id: int | None, note: str | None = None) -> "OrderStatusHistory":
        """Append one history row. History rows are never rewritten."""
        entry = OrderStatusHistory(
            status=status.value,
            occurred_at=utcnow(),
            actor_user_id=actor_user_id,
            note=note,
        )
        self.status_history.append(entry)
        if note:
            self.notes = note
        return entry

    def transition_to(
        self,
        target: OrderStatus,
        *,
        actor_user_id: int | None,
        note: str | None = None,
        cancellation_reason: str | None = None,
        enforce_table: bool = True,
        delivery_confirmed: bool = False,
    ) -> OrderStatus:
        """
        Move the order to `target` and return the status it left.

        Args:
            target: Desired status
            actor_user_id: Who requested the change (history attribution)
            note: Optional note stored on the new history row and on `notes`
            cancellation_reason: Used when target is Cancelled
            enforce_table: False only for the cancel path and settlement
                propagation, which carry their own guards
            delivery_confirmed: A Delivery record reached Delivered; it
                stands in for the tracking-number proof

        Raises:
            InvalidTransition: Edge not in ORDER_TRANSITIONS
            ValidationError: Delivered requested without tracking proof
        """
        source = self.current_status
        if enforce_table:
            ensure_transition(ORDER_TRANSITIONS, source, target)

        if target == OrderStatus.DELIVERED and not delivery_confirmed:
            if not self.tracking_number or not self.courier_provider:
                raise ValidationError(
                    "Tracking information is required before marking as delivered",
                    details={"order_id": self.id},
                )

        now = utcnow()
        self.status = target.value
        self.record_status(target, actor_user_id=actor_user_id, note=note)

        if target == OrderStatus.DELIVERED:
            self.is_delivered = True
            self.delivered_at = now
        elif target == OrderStatus.CANCELLED:
            if not self.cancellation_reason:
                self.cancellation_reason = cancellation_reason or note or DEFAULT_STAFF_CANCEL_REASON
        elif target == OrderStatus.REFUNDED:
            self.is_refunded = True
            self.refunded_at = now

        return source

    def mark_paid(self, payment_result: dict | None = None) -> None:
        self.is_paid = True
        self.paid_at = utcnow()
        if payment_result is not None:
            self.payment_result = payment_result

    def to_dict(self, include_history: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "items": [line.to_dict() for line in self.lines],
            "shipping_address": self.shipping_address,
            "payment_method": self.payment_method,
            "payment_result": self.payment_result,
            "items_price_cents": self.items_price_cents,
            "tax_price_cents": self.tax_price_cents,
            "shipping_price_cents": self.shipping_price_cents,
            "total_price_cents": self.total_price_cents,
            "status": self.status,
            "is_paid": self.is_paid,
            "paid_at": to_utc_z(self.paid_at),
            "is_delivered": self.is_delivered,
            "delivered_at": to_utc_z(self.delivered_at),
            "is_refunded": self.is_refunded,
            "refunded_at": to_utc_z(self.refunded_at),
            "cancellation_reason": self.cancellation_reason,
            "estimated_delivery_date": to_utc_z(self.estimated_delivery_date),
            "tracking_number": self.tracking_number,
            "courier_provider": self.courier_provider,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_history:
            data["status_history"] = [h.to_dict() for h in self.status_history]
        return data


class OrderLine(db.Model):
    """Snapshot of one purchased product. Later product edits never touch it."""
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(100), nullable=False)
    image = db.Column(db.String(512), nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    farmer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    farmer_name = db.Column(db.String(120), nullable=True)

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.product_name,
            "image": self.image,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
            "farmer_id": self.farmer_id,
            "farmer_name": self.farmer_name,
        }


class OrderStatusHistory(db.Model):
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False)
    note = db.Column(db.String(500), nullable=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
