from __future__ import annotations

from ..extensions import db
from ..errors import NegativeStockError
from ..time_utils import to_utc_z, utcnow


STOCK_STATUS_AVAILABLE = "available"
STOCK_STATUS_LOW = "low-stock"
STOCK_STATUS_OUT = "out-of-stock"
STOCK_STATUSES = (STOCK_STATUS_AVAILABLE, STOCK_STATUS_LOW, STOCK_STATUS_OUT)

MOVEMENT_PURCHASE = "purchase"
MOVEMENT_SALE = "sale"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_RETURN = "return"
MOVEMENT_LOSS = "loss"
MOVEMENT_TYPES = (
    MOVEMENT_PURCHASE,
    MOVEMENT_SALE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
    MOVEMENT_LOSS,
)

QUALITY_GRADES = ("A+", "A", "B+", "B", "C", "D")
AROMA_LEVELS = ("excellent", "good", "average", "poor", "bad")


class StockLedgerEntry(db.Model):
    """
    Warehouse record for one batch of rice bought from a farmer.

    INVARIANTS:
    - current_stock never goes negative (CHECK constraint + apply_delta guard)
    - is_low_stock/status are derived from (current_stock, low_stock_threshold)
      by refresh_stock_status(); callers never set them directly
    - every current_stock change goes through apply_delta(), which appends
      exactly one StockMovement carrying the signed delta
    """
    __tablename__ = "stock_ledger_entries"
    __table_args__ = (
        db.CheckConstraint("current_stock >= 0", name="ck_stock_ledger_current_non_negative"),
        db.Index("ix_stock_ledger_product_created", "product_id", "created_at"),
        db.Index("ix_stock_ledger_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    farmer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Purchase details
    quantity_purchased = db.Column(db.Integer, nullable=False)
    purchase_price_cents = db.Column(db.Integer, nullable=False)
    total_purchase_amount_cents = db.Column(db.Integer, nullable=False)
    purchase_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False)

    warehouse_location = db.Column(db.JSON, nullable=True)
    packaging = db.Column(db.JSON, nullable=True)

    initial_quality_grade = db.Column(db.String(4), nullable=True)
    verified_quality_grade = db.Column(db.String(4), nullable=True)

    low_stock_threshold = db.Column(db.Integer, nullable=False, default=50)
    is_low_stock = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(16), nullable=False, default=STOCK_STATUS_AVAILABLE)

    # Demand forecast snapshot
    predicted_demand = db.Column(db.Integer, nullable=True)
    forecast_confidence = db.Column(db.Integer, nullable=True)
    recommended_reorder = db.Column(db.Integer, nullable=True)
    reorder_point = db.Column(db.Integer, nullable=True)
    last_forecast_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product")
    farmer = db.relationship("User", foreign_keys=[farmer_id])
    movements = db.relationship(
        "StockMovement",
        backref="entry",
        lazy=True,
        order_by="StockMovement.id",
        cascade="all, delete-orphan",
    )
    sales_history = db.relationship(
        "SalesHistoryPeriod",
        backref="entry",
        lazy=True,
        order_by="SalesHistoryPeriod.period",
        cascade="all, delete-orphan",
    )
    quality_assessments = db.relationship(
        "QualityAssessment",
        backref="entry",
        lazy=True,
        order_by="QualityAssessment.id",
        cascade="all, delete-orphan",
    )

    def refresh_stock_status(self) -> None:
        stock = self.current_stock or 0
        threshold = self.low_stock_threshold or 0
        self.is_low_stock = stock <= threshold
        if stock == 0:
            self.status = STOCK_STATUS_OUT
        elif self.is_low_stock:
            self.status = STOCK_STATUS_LOW
        else:
            self.status = STOCK_STATUS_AVAILABLE

    def set_low_stock_threshold(self, threshold: int) -> None:
        self.low_stock_threshold = threshold
        self.refresh_stock_status()

    def apply_delta(
        self,
        delta: int,
        movement_type: str,
        *,
        actor_user_id: int | None,
        reason: str | None = None,
        reference_type: str | None = None,
        reference_id: int | None = None,
    ) -> "StockMovement":
        """
        Change current_stock by `delta` and record the movement.

        Raises:
            NegativeStockError: the result would be below zero
        """
        before = self.current_stock or 0
        after = before + delta
        if after < 0:
            raise NegativeStockError(
                "Adjustment would result in negative stock",
                details={"entry_id": self.id, "current_stock": before, "delta": delta},
            )

        self.current_stock = after
        self.refresh_stock_status()

        movement = StockMovement(
            product_id=self.product_id,
            type=movement_type,
            quantity=delta,
            balance_after=after,
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            actor_user_id=actor_user_id,
            occurred_at=utcnow(),
        )
        self.movements.append(movement)
        return movement

    def record_sales(self, period: str, quantity: int, revenue_cents: int) -> "SalesHistoryPeriod":
        """Add (or with negative values, remove) sales in the YYYY-MM bucket."""
        bucket = next((h for h in self.sales_history if h.period == period), None)
        if bucket is None:
            bucket = SalesHistoryPeriod(period=period, quantity_sold=0, revenue_cents=0)
            self.sales_history.append(bucket)
        bucket.quantity_sold = max(0, (bucket.quantity_sold or 0) + quantity)
        bucket.revenue_cents = max(0, (bucket.revenue_cents or 0) + revenue_cents)
        return bucket

    def to_dict(self, include_movements: bool = False) -> dict:
        data = {
            "id": self.id,
            "product_id": self.product_id,
            "farmer_id": self.farmer_id,
            "purchase_details": {
                "quantity_purchased": self.quantity_purchased,
                "purchase_price_cents": self.purchase_price_cents,
                "total_purchase_amount_cents": self.total_purchase_amount_cents,
                "purchase_date": to_utc_z(self.purchase_date),
            },
            "current_stock": self.current_stock,
            "selling_price_cents": self.selling_price_cents,
            "warehouse_location": self.warehouse_location,
            "packaging": self.packaging,
            "quality": {
                "initial_grade": self.initial_quality_grade,
                "verified_grade": self.verified_quality_grade,
            },
            "low_stock_threshold": self.low_stock_threshold,
            "is_low_stock": self.is_low_stock,
            "status": self.status,
            "forecast": {
                "predicted_demand": self.predicted_demand,
                "confidence": self.forecast_confidence,
                "recommended_reorder": self.recommended_reorder,
                "reorder_point": self.reorder_point,
                "last_forecast_at": to_utc_z(self.last_forecast_at),
            },
            "sales_history": [h.to_dict() for h in self.sales_history],
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_movements:
            data["movements"] = [m.to_dict() for m in self.movements]
            data["quality_assessments"] = [q.to_dict() for q in self.quality_assessments]
        return data


class StockMovement(db.Model):
    """Append-only movement log. Rows are never updated or deleted."""
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    # "Order", "Adjustment" or "Purchase"
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entry_id": self.entry_id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "balance_after": self.balance_after,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class SalesHistoryPeriod(db.Model):
    __tablename__ = "sales_history_periods"
    __table_args__ = (
        db.UniqueConstraint("entry_id", "period", name="uq_sales_history_entry_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=False, index=True)
    period = db.Column(db.String(7), nullable=False)
    quantity_sold = db.Column(db.Integer, nullable=False, default=0)
    revenue_cents = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "period": self.period,
            "quantity_sold": self.quantity_sold,
            "revenue_cents": self.revenue_cents,
        }


class QualityAssessment(db.Model):
    __tablename__ = "quality_assessments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=False, index=True)

    # Percentages
    moisture = db.Column(db.Float, nullable=True)
    broken = db.Column(db.Float, nullable=True)
    foreign_matter = db.Column(db.Float, nullable=True)
    discoloration = db.Column(db.Float, nullable=True)

    aroma = db.Column(db.String(16), nullable=True)
    overall_grade = db.Column(db.String(4), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    assessed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    assessed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "moisture": self.moisture,
            "broken": self.broken,
            "foreign_matter": self.foreign_matter,
            "discoloration": self.discoloration,
            "aroma": self.aroma,
            "overall_grade": self.overall_grade,
            "notes": self.notes,
            "assessed_by_user_id": self.assessed_by_user_id,
            "assessed_at": to_utc_z(self.assessed_at),
        }
