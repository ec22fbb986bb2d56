from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


NOTIFICATION_TYPES = (
    "order",
    "payment",
    "refund",
    "inventory",
    "low-stock",
    "delivery",
    "quality",
    "system",
)


class Notification(db.Model):
    """In-app message for one recipient. Written best-effort, never part of a business transaction."""
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    link = db.Column(db.String(255), nullable=True)
    priority = db.Column(db.String(16), nullable=False, default="normal")
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "link": self.link,
            "priority": self.priority,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }
