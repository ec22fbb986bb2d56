from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ROLE_CUSTOMER = "customer"
ROLE_FARMER = "farmer"
ROLE_STAFF = "staff"
ROLE_ADMIN = "admin"
VALID_ROLES = (ROLE_CUSTOMER, ROLE_FARMER, ROLE_STAFF, ROLE_ADMIN)
STAFF_ROLES = (ROLE_STAFF, ROLE_ADMIN)


class User(db.Model):
    """
    Marketplace account: customer, farmer, staff or admin.

    Credentials live with the upstream auth layer; this table only carries
    what the order engine needs for attribution, ownership and messaging.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_users_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    role = db.Column(db.String(16), nullable=False, default=ROLE_CUSTOMER, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
