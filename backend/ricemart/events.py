# Overview: Domain events and the in-process dispatcher that delivers them after commit.

"""
Services collect events while a unit of work is being applied and hand
them to EventDispatcher.publish() only once the transaction has committed.
Subscribers (notifications, email) are best-effort: a failing handler is
logged with the event name and swallowed. Nothing a subscriber does can
reach the caller of the business operation or roll it back.
"""

from __future__ import annotations

import atexit
import logging
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from flask import Flask, current_app


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainEvent:
    """Base event type. Subclasses are frozen dataclasses."""

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class OrderPlaced(DomainEvent):
    order_id: int
    order_number: str
    user_id: int
    status: str
    total_price_cents: int


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    order_id: int
    order_number: str
    user_id: int
    previous_status: str
    status: str
    actor_user_id: int | None = None
    note: str | None = None


@dataclass(frozen=True)
class PaymentInitiated(DomainEvent):
    payment_id: int
    order_id: int
    user_id: int
    amount_cents: int


@dataclass(frozen=True)
class PaymentCompleted(DomainEvent):
    payment_id: int
    order_id: int
    order_number: str
    user_id: int
    amount_cents: int
    transaction_id: str | None = None


@dataclass(frozen=True)
class PaymentRefunded(DomainEvent):
    payment_id: int
    order_id: int | None
    order_number: str | None
    user_id: int | None
    refund_amount_cents: int
    reason: str


@dataclass(frozen=True)
class FarmerPaid(DomainEvent):
    payment_id: int
    farmer_id: int
    amount_cents: int
    invoice_number: str | None = None


@dataclass(frozen=True)
class DeliveryStatusChanged(DomainEvent):
    delivery_id: int
    order_id: int
    customer_id: int
    previous_status: str | None
    status: str
    agent_id: int | None = None


@dataclass(frozen=True)
class StockLow(DomainEvent):
    entry_id: int
    product_id: int
    product_name: str
    current_stock: int
    threshold: int
    status: str


@dataclass
class EventCollector:
    """Events raised inside one unit of work, published after commit."""
    events: list[DomainEvent] = field(default_factory=list)

    def add(self, event: DomainEvent) -> None:
        self.events.append(event)

    def drain(self) -> list[DomainEvent]:
        pending, self.events = self.events, []
        return pending


Handler = Callable[[DomainEvent], Any]


class EventDispatcher:
    """
    In-process publish/subscribe keyed by event type.

    With run_async=True, publish() hands the batch to a daemon thread that
    pushes its own application context; otherwise handlers run inline
    after the caller's commit. Live workers are tracked so flush() can
    wait for them at shutdown or in tests.
    """

    def __init__(self, app: Flask | None = None, *, run_async: bool = False):
        self._handlers: dict[type, list[Handler]] = {}
        self._app = app
        self.run_async = run_async
        self._workers: set[threading.Thread] = set()
        self._workers_lock = threading.Lock()

    def subscribe(self, event_type: type[DomainEvent], handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def handlers_for(self, event: DomainEvent) -> list[Handler]:
        return list(self._handlers.get(type(event), []))

    def publish(self, events: list[DomainEvent]) -> None:
        if not events:
            return
        if self.run_async and self._app is not None:
            worker = threading.Thread(
                target=self._deliver_in_context,
                args=(list(events),),
                name="ricemart-events",
                daemon=True,
            )
            with self._workers_lock:
                self._workers.add(worker)
            worker.start()
            return
        self._deliver(events)

    def flush(self, timeout: float | None = None) -> bool:
        """
        Wait for in-flight async deliveries.

        Returns:
            True if every worker finished within `timeout`
        """
        with self._workers_lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(timeout)
        with self._workers_lock:
            return not any(w.is_alive() for w in self._workers)

    @property
    def pending(self) -> int:
        with self._workers_lock:
            return len(self._workers)

    def _deliver_in_context(self, events: list[DomainEvent]) -> None:
        try:
            with self._app.app_context():
                self._deliver(events)
        finally:
            with self._workers_lock:
                self._workers.discard(threading.current_thread())

    def _deliver(self, events: list[DomainEvent]) -> None:
        for event in events:
            for handler in self.handlers_for(event):
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        "Event handler %s failed for %s %s",
                        getattr(handler, "__name__", repr(handler)),
                        event.name,
                        event.to_dict(),
                    )


def get_dispatcher() -> EventDispatcher:
    return current_app.extensions["ricemart.events"]


def init_events(app: Flask) -> EventDispatcher:
    dispatcher = EventDispatcher(app, run_async=app.config.get("EVENTS_ASYNC", False))
    if dispatcher.run_async:
        # Daemon workers die with the interpreter; give in-flight deliveries a bounded wait
        atexit.register(dispatcher.flush, app.config.get("SIDE_EFFECT_TIMEOUT_SECONDS", 5))
    app.extensions["ricemart.events"] = dispatcher
    return dispatcher
