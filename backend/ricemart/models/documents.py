from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Serialized counters for human-readable document numbers.

    scope is the full prefix the counter belongs to, e.g. "ORD-20261019"
    (one counter per day) or "INV-ORD-20261019-0001" (one per order).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("scope", name="uq_document_sequences_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(64), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope": self.scope,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
