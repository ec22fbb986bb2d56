from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..errors import AlreadyPaid, AlreadyRefunded, ValidationError
from ..time_utils import to_utc_z, utcnow


PAYMENT_TYPE_CUSTOMER = "customer-payment"
PAYMENT_TYPE_FARMER = "farmer-payment"
PAYMENT_TYPE_REFUND = "refund"
PAYMENT_TYPES = (PAYMENT_TYPE_CUSTOMER, PAYMENT_TYPE_FARMER, PAYMENT_TYPE_REFUND)

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_REFUNDED = "refunded"
# Refund claimed under the row lock while the provider call is in flight
PAYMENT_STATUS_REFUNDING = "refunding"
PAYMENT_STATUS_CANCELLED = "cancelled"
PAYMENT_STATUSES = (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_REFUNDING,
    PAYMENT_STATUS_REFUNDED,
    PAYMENT_STATUS_CANCELLED,
)

FARMER_PAYMENT_METHODS = ("Bank Transfer", "UPI", "Cash", "Cheque")

REFUND_METHOD_GATEWAY = "Razorpay"
REFUND_METHOD_MANUAL = "Manual"

# Amount is frozen once money has actually moved
_SETTLED_STATUSES = (PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_REFUNDING, PAYMENT_STATUS_REFUNDED)


class Payment(db.Model):
    """
    One monetary event: customer payment, farmer payout or refund.

    Status moves pending -> completed -> refunding -> refunded (or
    pending -> failed / cancelled). A failed provider refund puts a
    refunding payment back to completed. A completed payment never
    returns to pending, and its
    amount is immutable.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_payments_amount_non_negative"),
        db.Index("ix_payments_order_status", "order_id", "status"),
        db.Index("ix_payments_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_type = db.Column(db.String(20), nullable=False, default=PAYMENT_TYPE_CUSTOMER, index=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    farmer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="INR")
    payment_method = db.Column(db.String(32), nullable=True)

    gateway = db.Column(db.String(32), nullable=True)
    gateway_order_id = db.Column(db.String(64), nullable=True, index=True)
    gateway_payment_id = db.Column(db.String(64), nullable=True)
    gateway_signature = db.Column(db.String(128), nullable=True)
    transaction_id = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    attempt_count = db.Column(db.Integer, nullable=False, default=0)
    failure_reason = db.Column(db.String(255), nullable=True)

    # Refund sub-record
    refund_amount_cents = db.Column(db.Integer, nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refund_date = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    refund_transaction_id = db.Column(db.String(64), nullable=True)
    refund_status = db.Column(db.String(16), nullable=True)
    refund_method = db.Column(db.String(16), nullable=True)

    # Farmer payout sub-record: quantity, rate_per_kg_cents, bank_details
    farmer_details = db.Column(db.JSON, nullable=True)

    # Frozen at generation time
    invoice = db.Column(db.JSON, nullable=True)
    invoice_number = db.Column(db.String(64), nullable=True, unique=True)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))
    inventory = db.relationship("StockLedgerEntry")
    user = db.relationship("User", foreign_keys=[user_id])
    farmer = db.relationship("User", foreign_keys=[farmer_id])

    @validates("amount_cents")
    def _validate_amount(self, key, value):
        if self.status in _SETTLED_STATUSES and self.amount_cents is not None and value != self.amount_cents:
            raise ValidationError(
                "Payment amount cannot change once completed",
                details={"payment_id": self.id},
            )
        return value

    @property
    def used_gateway(self) -> bool:
        return bool(self.gateway_payment_id)

    def mark_completed(
        self,
        *,
        transaction_id: str | None = None,
        gateway_payment_id: str | None = None,
        signature: str | None = None,
    ) -> None:
        """
        pending -> completed.

        Raises:
            AlreadyPaid: payment already completed (repeat callback)
            ValidationError: payment is failed/refunded/cancelled
        """
        if self.status == PAYMENT_STATUS_COMPLETED:
            raise AlreadyPaid("Payment already completed", details={"payment_id": self.id})
        if self.status != PAYMENT_STATUS_PENDING:
            raise ValidationError(
                f"Cannot complete a payment in status {self.status}",
                details={"payment_id": self.id, "status": self.status},
            )
        self.status = PAYMENT_STATUS_COMPLETED
        self.payment_date = utcnow()
        if gateway_payment_id:
            self.gateway_payment_id = gateway_payment_id
        if signature:
            self.gateway_signature = signature
        self.transaction_id = transaction_id or gateway_payment_id or self.transaction_id

    def ensure_refundable(self) -> None:
        if self.status == PAYMENT_STATUS_REFUNDED:
            raise AlreadyRefunded("Payment already refunded", details={"payment_id": self.id})
        if self.status == PAYMENT_STATUS_REFUNDING:
            raise AlreadyRefunded("A refund for this payment is already in progress", details={"payment_id": self.id})
        if self.status != PAYMENT_STATUS_COMPLETED:
            raise ValidationError(
                "Only completed payments can be refunded",
                details={"payment_id": self.id, "status": self.status},
            )

    def claim_refund(self) -> None:
        """completed -> refunding. Only one caller can hold the claim."""
        self.ensure_refundable()
        self.status = PAYMENT_STATUS_REFUNDING
        self.refund_status = PAYMENT_STATUS_PENDING

    def release_refund_claim(self) -> None:
        """refunding -> completed, after the provider rejected the refund."""
        if self.status == PAYMENT_STATUS_REFUNDING:
            self.status = PAYMENT_STATUS_COMPLETED
            self.refund_status = None

    def mark_refunded(
        self,
        *,
        amount_cents: int,
        reason: str,
        actor_user_id: int | None,
        method: str,
        transaction_id: str | None = None,
    ) -> None:
        if self.status != PAYMENT_STATUS_REFUNDING:
            self.ensure_refundable()
        self.status = PAYMENT_STATUS_REFUNDED
        self.refund_amount_cents = amount_cents
        self.refund_reason = reason
        self.refund_date = utcnow()
        self.refunded_by_user_id = actor_user_id
        self.refund_transaction_id = transaction_id
        self.refund_status = PAYMENT_STATUS_COMPLETED
        self.refund_method = method

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "payment_type": self.payment_type,
            "order_id": self.order_id,
            "inventory_id": self.inventory_id,
            "user_id": self.user_id,
            "farmer_id": self.farmer_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "gateway": self.gateway,
            "gateway_order_id": self.gateway_order_id,
            "gateway_payment_id": self.gateway_payment_id,
            "transaction_id": self.transaction_id,
            "status": self.status,
            "payment_date": to_utc_z(self.payment_date),
            "attempt_count": self.attempt_count,
            "failure_reason": self.failure_reason,
            "farmer_details": self.farmer_details,
            "invoice_number": self.invoice_number,
            "invoice": self.invoice,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if self.refund_amount_cents is not None:
            data["refund"] = {
                "amount_cents": self.refund_amount_cents,
                "reason": self.refund_reason,
                "refund_date": to_utc_z(self.refund_date),
                "refunded_by_user_id": self.refunded_by_user_id,
                "transaction_id": self.refund_transaction_id,
                "status": self.refund_status,
                "method": self.refund_method,
            }
        return data
