# Overview: Explicit repositories over one SQLAlchemy session; injected into the services.

"""
One repository per aggregate. Services never reach for Model.query
directly; they receive a Repositories bundle built from the session that
owns the current unit of work.

Stock changes on products go through ProductRepository's conditional
UPDATE statements. The WHERE clause carries the availability check, so
the check and the write are one statement and two concurrent checkouts
cannot both succeed against the same units.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from .models import (
    Delivery,
    DocumentSequence,
    Notification,
    Order,
    Payment,
    Product,
    StockLedgerEntry,
    StockMovement,
    User,
)
from .models.users import STAFF_ROLES
from .services.concurrency import lock_for_update


class UserRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int) -> User | None:
        return self.session.get(User, user_id)

    def staff_members(self) -> list[User]:
        return (
            self.session.query(User)
            .filter(User.role.in_(STAFF_ROLES), User.is_active.is_(True))
            .order_by(User.id)
            .all()
        )


class ProductRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, product_id: int) -> Product | None:
        return self.session.get(Product, product_id)

    def get_many(self, product_ids) -> dict[int, Product]:
        ids = set(product_ids)
        if not ids:
            return {}
        rows = self.session.query(Product).filter(Product.id.in_(ids)).all()
        return {p.id: p for p in rows}

    def decrement_if_sufficient(self, product_id: int, quantity: int) -> bool:
        """
        Atomically take `quantity` units. Returns False (and changes nothing)
        when fewer than `quantity` units are available.
        """
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self._expire_stock(product_id)
        return result.rowcount == 1

    def increment(self, product_id: int, quantity: int) -> None:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)
        self._expire_stock(product_id)

    def _expire_stock(self, product_id: int) -> None:
        product = self.session.identity_map.get(identity_key(Product, product_id))
        if product is not None:
            self.session.expire(product, ["stock_quantity"])


class OrderRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, order: Order) -> Order:
        self.session.add(order)
        self.session.flush()
        return order

    def get(self, order_id: int) -> Order | None:
        return self.session.get(Order, order_id)

    def get_for_update(self, order_id: int) -> Order | None:
        return lock_for_update(self.session.query(Order).filter(Order.id == order_id)).first()

    def list(
        self,
        *,
        status: str | None = None,
        user_id: int | None = None,
        search: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Order], int]:
        query = self.session.query(Order)
        if status:
            query = query.filter(Order.status == status)
        if user_id is not None:
            query = query.filter(Order.user_id == user_id)
        if search:
            query = query.filter(Order.order_number.ilike(f"%{search}%"))
        if from_date is not None:
            query = query.filter(Order.created_at >= from_date)
        if to_date is not None:
            query = query.filter(Order.created_at <= to_date)
        total = query.count()
        rows = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()
        return rows, total

    def counts_by_status(self) -> dict[str, int]:
        rows = (
            self.session.query(Order.status, func.count(Order.id))
            .group_by(Order.status)
            .all()
        )
        return {status: count for status, count in rows}


class StockRepository:
    """Stock ledger entries and their movement log."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, entry: StockLedgerEntry) -> StockLedgerEntry:
        self.session.add(entry)
        self.session.flush()
        return entry

    def get(self, entry_id: int) -> StockLedgerEntry | None:
        return self.session.get(StockLedgerEntry, entry_id)

    def get_for_update(self, entry_id: int) -> StockLedgerEntry | None:
        return lock_for_update(
            self.session.query(StockLedgerEntry).filter(StockLedgerEntry.id == entry_id)
        ).first()

    def entries_for_product(self, product_id: int) -> list[StockLedgerEntry]:
        """Oldest batch first (FIFO allocation order)."""
        return lock_for_update(
            self.session.query(StockLedgerEntry)
            .filter(StockLedgerEntry.product_id == product_id)
            .order_by(StockLedgerEntry.created_at.asc(), StockLedgerEntry.id.asc())
        ).all()

    def all_entries(self) -> list[StockLedgerEntry]:
        return self.session.query(StockLedgerEntry).order_by(StockLedgerEntry.id).all()

    def list(
        self,
        *,
        status: str | None = None,
        low_stock: bool | None = None,
        farmer_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[StockLedgerEntry], int]:
        query = self.session.query(StockLedgerEntry)
        if status:
            query = query.filter(StockLedgerEntry.status == status)
        if low_stock is not None:
            query = query.filter(StockLedgerEntry.is_low_stock.is_(low_stock))
        if farmer_id is not None:
            query = query.filter(StockLedgerEntry.farmer_id == farmer_id)
        total = query.count()
        rows = query.order_by(StockLedgerEntry.created_at.desc(), StockLedgerEntry.id.desc()).offset(offset).limit(limit).all()
        return rows, total

    def low_stock(self) -> list[StockLedgerEntry]:
        return (
            self.session.query(StockLedgerEntry)
            .filter(StockLedgerEntry.is_low_stock.is_(True))
            .order_by(StockLedgerEntry.current_stock.asc(), StockLedgerEntry.id.asc())
            .all()
        )

    def movements_for_reference(self, reference_type: str, reference_id: int) -> list[StockMovement]:
        return (
            self.session.query(StockMovement)
            .filter(
                StockMovement.reference_type == reference_type,
                StockMovement.reference_id == reference_id,
            )
            .order_by(StockMovement.id.asc())
            .all()
        )


class PaymentRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, payment: Payment) -> Payment:
        self.session.add(payment)
        self.session.flush()
        return payment

    def get(self, payment_id: int) -> Payment | None:
        return self.session.get(Payment, payment_id)

    def get_for_update(self, payment_id: int) -> Payment | None:
        return lock_for_update(self.session.query(Payment).filter(Payment.id == payment_id)).first()

    def pending_for_order(self, order_id: int) -> Payment | None:
        return (
            self.session.query(Payment)
            .filter(
                Payment.order_id == order_id,
                Payment.payment_type == "customer-payment",
                Payment.status == "pending",
            )
            .order_by(Payment.id.desc())
            .first()
        )

    def list(
        self,
        *,
        status: str | None = None,
        payment_type: str | None = None,
        user_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Payment], int]:
        query = self.session.query(Payment)
        if status:
            query = query.filter(Payment.status == status)
        if payment_type:
            query = query.filter(Payment.payment_type == payment_type)
        if user_id is not None:
            query = query.filter(or_(Payment.user_id == user_id, Payment.farmer_id == user_id))
        total = query.count()
        rows = query.order_by(Payment.created_at.desc(), Payment.id.desc()).offset(offset).limit(limit).all()
        return rows, total


class DeliveryRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, delivery: Delivery) -> Delivery:
        self.session.add(delivery)
        self.session.flush()
        return delivery

    def get(self, delivery_id: int) -> Delivery | None:
        return self.session.get(Delivery, delivery_id)

    def get_for_update(self, delivery_id: int) -> Delivery | None:
        return lock_for_update(self.session.query(Delivery).filter(Delivery.id == delivery_id)).first()

    def for_order(self, order_id: int) -> Delivery | None:
        return self.session.query(Delivery).filter(Delivery.order_id == order_id).first()

    def list(
        self,
        *,
        status: str | None = None,
        agent_id: int | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Delivery], int]:
        query = self.session.query(Delivery)
        if status:
            query = query.filter(Delivery.status == status)
        if agent_id is not None:
            query = query.filter(Delivery.agent_id == agent_id)
        if from_date is not None:
            query = query.filter(Delivery.scheduled_date >= from_date)
        if to_date is not None:
            query = query.filter(Delivery.scheduled_date <= to_date)
        total = query.count()
        rows = query.order_by(Delivery.scheduled_date.asc(), Delivery.id.asc()).offset(offset).limit(limit).all()
        return rows, total


class NotificationRepository:
    def __init__(self, session: Session):
        self.session = session

    def add(self, notification: Notification) -> Notification:
        self.session.add(notification)
        return notification

    def get(self, notification_id: int) -> Notification | None:
        return self.session.get(Notification, notification_id)

    def for_user(self, user_id: int, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        query = self.session.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


class SequenceRepository:
    def __init__(self, session: Session):
        self.session = session

    def increment(self, scope: str) -> int | None:
        """
        Bump the counter for `scope` and return the number just claimed,
        or None when no counter row exists yet.
        """
        stmt = (
            update(DocumentSequence)
            .where(DocumentSequence.scope == scope)
            .values(next_number=DocumentSequence.next_number + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if not result.rowcount:
            return None
        current = (
            self.session.query(DocumentSequence.next_number)
            .filter(DocumentSequence.scope == scope)
            .scalar()
        )
        return current - 1

    def create(self, scope: str) -> int:
        """Insert the counter row with number 1 already claimed."""
        self.session.add(DocumentSequence(scope=scope, next_number=2))
        self.session.flush()
        return 1


@dataclass
class Repositories:
    users: UserRepository
    products: ProductRepository
    orders: OrderRepository
    stock: StockRepository
    payments: PaymentRepository
    deliveries: DeliveryRepository
    notifications: NotificationRepository
    sequences: SequenceRepository

    @classmethod
    def from_session(cls, session: Session) -> "Repositories":
        return cls(
            users=UserRepository(session),
            products=ProductRepository(session),
            orders=OrderRepository(session),
            stock=StockRepository(session),
            payments=PaymentRepository(session),
            deliveries=DeliveryRepository(session),
            notifications=NotificationRepository(session),
            sequences=SequenceRepository(session),
        )
