from __future__ import annotations

from ..extensions import db
from ..state_machine import DELIVERY_TRANSITIONS, DeliveryStatus, ensure_transition
from ..time_utils import to_utc_z, utcnow


class Delivery(db.Model):
    """
    Physical fulfilment of one order (at most one Delivery per Order).

    Delivered and Cancelled are terminal. Every status change appends one
    DeliveryTrackingUpdate; a Failed status also appends a DeliveryAttempt.
    """
    __tablename__ = "deliveries"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_deliveries_order"),
        db.Index("ix_deliveries_status_scheduled", "status", "scheduled_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    scheduled_date = db.Column(db.DateTime(timezone=True), nullable=False)
    time_slot = db.Column(db.String(32), nullable=True)
    address = db.Column(db.JSON, nullable=False)
    special_instructions = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=DeliveryStatus.SCHEDULED.value)
    actual_delivery_time = db.Column(db.DateTime(timezone=True), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    order = db.relationship("Order", backref=db.backref("delivery", uselist=False))
    tracking_updates = db.relationship(
        "DeliveryTrackingUpdate",
        backref="delivery",
        lazy=True,
        order_by="DeliveryTrackingUpdate.id",
        cascade="all, delete-orphan",
    )
    attempts = db.relationship(
        "DeliveryAttempt",
        backref="delivery",
        lazy=True,
        order_by="DeliveryAttempt.id",
        cascade="all, delete-orphan",
    )

    @property
    def current_status(self) -> DeliveryStatus:
        return DeliveryStatus(self.status)

    def add_tracking_update(
        self,
        status: DeliveryStatus,
        *,
        actor_user_id: int | None,
        location: dict | None = None,
        note: str | None = None,
    ) -> "DeliveryTrackingUpdate":
        update = DeliveryTrackingUpdate(
            status=status.value,
            location=location,
            note=note,
            updated_by_user_id=actor_user_id,
            occurred_at=utcnow(),
        )
        self.tracking_updates.append(update)
        return update

    def transition_to(
        self,
        target: DeliveryStatus,
        *,
        actor_user_id: int | None,
        location: dict | None = None,
        note: str | None = None,
        failure_reason: str | None = None,
    ) -> DeliveryStatus:
        """Apply one edge of DELIVERY_TRANSITIONS and return the previous status."""
        source = self.current_status
        ensure_transition(DELIVERY_TRANSITIONS, source, target)

        self.status = target.value
        self.add_tracking_update(target, actor_user_id=actor_user_id, location=location, note=note)

        if target == DeliveryStatus.DELIVERED:
            self.actual_delivery_time = utcnow()
        elif target == DeliveryStatus.FAILED:
            reason = failure_reason or note or "Delivery attempt failed"
            self.failure_reason = reason
            self.attempts.append(DeliveryAttempt(
                attempted_at=utcnow(),
                reason=reason,
                agent_id=self.agent_id,
            ))

        return source

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "agent_id": self.agent_id,
            "scheduled_date": to_utc_z(self.scheduled_date),
            "time_slot": self.time_slot,
            "address": self.address,
            "special_instructions": self.special_instructions,
            "status": self.status,
            "actual_delivery_time": to_utc_z(self.actual_delivery_time),
            "failure_reason": self.failure_reason,
            "tracking_updates": [u.to_dict() for u in self.tracking_updates],
            "attempts": [a.to_dict() for a in self.attempts],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DeliveryTrackingUpdate(db.Model):
    __tablename__ = "delivery_tracking_updates"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False)
    location = db.Column(db.JSON, nullable=True)
    note = db.Column(db.String(500), nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "location": self.location,
            "note": self.note,
            "updated_by_user_id": self.updated_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class DeliveryAttempt(db.Model):
    __tablename__ = "delivery_attempts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=False, index=True)
    attempted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    reason = db.Column(db.String(255), nullable=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "attempted_at": to_utc_z(self.attempted_at),
            "reason": self.reason,
            "agent_id": self.agent_id,
        }
