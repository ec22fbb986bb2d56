# Overview: Order aggregate operations: checkout, status transitions, cancel, tracking, settlement hooks.

"""
ricemart order lifecycle (authoritative)

Every status change runs through OrderService._apply_transition(), which:
1. asks Order.transition_to() to check the edge and append history
   (it raises before touching anything when the edge is illegal),
2. applies the inventory effect of the edge in the same transaction:
   - first entry into Processing reserves stock for every line,
   - Cancelled (or a settlement Refunded) from a stock-holding status
     releases exactly what was reserved,
3. records an OrderStatusChanged event, published after commit.

Cancel path:
- PUT /orders/:id/cancel does not consult ORDER_TRANSITIONS. It only
  refuses orders that are already Delivered/Cancelled/Returned/Refunded,
  so an order that is Out for Delivery can still be cancelled here.
- PUT /orders/:id/status with status=Cancelled goes through the table.

Payment and delivery services call settle_payment(), settle_refund() and
follow_delivery() from inside their own unit of work; the order never
calls back into them.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from ..errors import AlreadyPaid, Forbidden, InvalidTransition, NotFound, OutOfStock, ValidationError
from ..events import EventCollector, OrderPlaced, OrderStatusChanged, PaymentCompleted
from ..models import Order, OrderLine, Payment, User
from ..models.orders import (
    DEFAULT_CUSTOMER_CANCEL_REASON,
    DEFAULT_STAFF_CANCEL_REASON,
    PAYMENT_METHOD_COD,
)
from ..models.payments import PAYMENT_STATUS_COMPLETED, PAYMENT_TYPE_CUSTOMER
from ..repositories import Repositories
from ..state_machine import (
    NON_CANCELLABLE_ORDER_STATUSES,
    STOCK_HOLDING_STATUSES,
    DeliveryStatus,
    OrderStatus,
)
from ..time_utils import utcnow
from ..validation import (
    CancelOrderCommand,
    CreateOrderCommand,
    MarkOrderPaidCommand,
    UpdateOrderStatusCommand,
    UpdateTrackingCommand,
)
from .concurrency import run_unit_of_work
from .sequence_service import next_order_number
from .stock_service import StockService


logger = logging.getLogger(__name__)

# Tracking can still be recorded on anything that has not been closed out
_TRACKING_CLOSED_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})


class OrderService:
    def __init__(self, repos: Repositories, stock: StockService, dispatcher, config):
        self.repos = repos
        self.stock = stock
        self.dispatcher = dispatcher
        self.config = config

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    def create_order(self, cmd: CreateOrderCommand, *, actor: User) -> Order:
        """
        Create an order from a validated checkout command.

        Lines are snapshotted from the current products. Cash on Delivery
        orders start Pending; every other payment method starts Processing
        and reserves stock immediately (all lines or none).

        Raises:
            NotFound: a product does not exist or is inactive
            OutOfStock: a line asks for more than is available
            ValidationError: client totals disagree with the server's
        """
        def _op(events: EventCollector) -> Order:
            products = self.repos.products.get_many(item.product_id for item in cmd.items)

            lines: list[OrderLine] = []
            short: list[dict] = []
            for item in cmd.items:
                product = products.get(item.product_id)
                if product is None or not product.is_active:
                    raise NotFound(f"Product not found: {item.product_id}", details={"product_id": item.product_id})
                if item.quantity > product.stock_quantity:
                    short.append({
                        "product_id": product.id,
                        "name": product.name,
                        "requested": item.quantity,
                        "available": product.stock_quantity,
                    })
                    continue
                lines.append(OrderLine(
                    product_id=product.id,
                    product_name=product.name,
                    image=product.image_url,
                    unit_price_cents=product.price_cents,
                    quantity=item.quantity,
                    farmer_id=product.farmer_id,
                    farmer_name=product.farmer.name if product.farmer else None,
                ))

            if short:
                names = ", ".join(s["name"] for s in short)
                raise OutOfStock(f"Insufficient stock for: {names}", details={"lines": short})

            items_price = sum(line.unit_price_cents * line.quantity for line in lines)
            total_price = items_price + cmd.tax_price_cents + cmd.shipping_price_cents
            if cmd.items_price_cents is not None and cmd.items_price_cents != items_price:
                raise ValidationError(
                    "itemsPrice does not match current product prices",
                    details={"expected": items_price, "received": cmd.items_price_cents},
                )
            if cmd.total_price_cents is not None and cmd.total_price_cents != total_price:
                raise ValidationError(
                    "totalPrice does not equal itemsPrice + taxPrice + shippingPrice",
                    details={"expected": total_price, "received": cmd.total_price_cents},
                )

            now = utcnow()
            initial = OrderStatus.PENDING if cmd.payment_method == PAYMENT_METHOD_COD else OrderStatus.PROCESSING

            order = Order(
                order_number=next_order_number(self.repos.sequences, now=now),
                user_id=actor.id,
                shipping_address=cmd.shipping_address.to_dict(),
                payment_method=cmd.payment_method,
                items_price_cents=items_price,
                tax_price_cents=cmd.tax_price_cents,
                shipping_price_cents=cmd.shipping_price_cents,
                total_price_cents=total_price,
                status=initial.value,
                estimated_delivery_date=now + timedelta(days=self.config["ESTIMATED_DELIVERY_DAYS"]),
                created_at=now,
            )
            order.lines.extend(lines)
            order.record_status(initial, actor_user_id=actor.id, note="Order created")
            if cmd.notes:
                order.notes = cmd.notes
            self.repos.orders.add(order)

            if initial == OrderStatus.PROCESSING:
                self.stock.reserve_for_order(order, actor_user_id=actor.id, events=events)

            if cmd.payment_result:
                if actor.is_staff:
                    self._record_external_payment(order, cmd.payment_result, actor_user_id=actor.id, events=events)
                else:
                    # Unverified client claim; customers settle through the signed gateway callback
                    order.payment_result = cmd.payment_result

            events.add(OrderPlaced(
                order_id=order.id,
                order_number=order.order_number,
                user_id=order.user_id,
                status=order.status,
                total_price_cents=order.total_price_cents,
            ))
            return order

        order = run_unit_of_work(_op, self.dispatcher)
        logger.info("Order %s created (%s)", order.order_number, order.status)
        return order

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    def update_status(self, order_id: int, cmd: UpdateOrderStatusCommand, *, actor: User) -> Order:
        """Staff transition, checked against ORDER_TRANSITIONS."""
        def _op(events: EventCollector) -> Order:
            order = self._get_for_update(order_id)
            self._apply_transition(
                order,
                cmd.status,
                actor_user_id=actor.id,
                note=cmd.note,
                cancellation_reason=cmd.note or DEFAULT_STAFF_CANCEL_REASON,
                events=events,
            )
            return order

        return run_unit_of_work(_op, self.dispatcher)

    def cancel_order(self, order_id: int, cmd: CancelOrderCommand, *, actor: User) -> Order:
        """
        Customer-or-staff cancel.

        Raises:
            Forbidden: a customer cancelling someone else's order
            InvalidTransition: order already Delivered/Cancelled/Returned/Refunded
        """
        def _op(events: EventCollector) -> Order:
            order = self._get_for_update(order_id)
            self._ensure_owner_or_staff(order, actor)

            source = order.current_status
            if source in NON_CANCELLABLE_ORDER_STATUSES:
                raise InvalidTransition(
                    source.value,
                    OrderStatus.CANCELLED.value,
                    f"Cannot cancel order with status {source.value}",
                )

            default_reason = DEFAULT_STAFF_CANCEL_REASON if actor.is_staff else DEFAULT_CUSTOMER_CANCEL_REASON
            reason = cmd.reason or default_reason
            self._apply_transition(
                order,
                OrderStatus.CANCELLED,
                actor_user_id=actor.id,
                note=reason,
                cancellation_reason=reason,
                enforce_table=False,
                events=events,
            )
            return order

        return run_unit_of_work(_op, self.dispatcher)

    def update_tracking(self, order_id: int, cmd: UpdateTrackingCommand, *, actor: User) -> Order:
        """Record carrier details; a Packed order moves to Shipped."""
        def _op(events: EventCollector) -> Order:
            order = self._get_for_update(order_id)
            if order.current_status in _TRACKING_CLOSED_STATUSES:
                raise ValidationError(
                    f"Cannot update tracking for an order that is {order.status}",
                    details={"order_id": order.id, "status": order.status},
                )

            order.tracking_number = cmd.tracking_number
            order.courier_provider = cmd.courier_provider

            if order.current_status == OrderStatus.PACKED:
                self._apply_transition(
                    order,
                    OrderStatus.SHIPPED,
                    actor_user_id=actor.id,
                    note=f"Shipped via {cmd.courier_provider} ({cmd.tracking_number})",
                    events=events,
                )
            return order

        return run_unit_of_work(_op, self.dispatcher)

    def mark_paid(self, order_id: int, cmd: MarkOrderPaidCommand, *, actor: User) -> Order:
        """
        Staff record a payment confirmed outside the gateway flow (cash,
        bank transfer). A completed Payment row is written so isPaid always
        has a payment behind it.

        Raises:
            Forbidden: actor is not staff
        """
        if not actor.is_staff:
            raise Forbidden("Only staff can record an out-of-band payment", details={"order_id": order_id})

        def _op(events: EventCollector) -> Order:
            order = self._get_for_update(order_id)
            if order.is_paid:
                raise AlreadyPaid("Order is already paid", details={"order_id": order.id})
            if order.current_status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
                raise ValidationError(
                    f"Cannot pay for an order that is {order.status}",
                    details={"order_id": order.id, "status": order.status},
                )
            self._record_external_payment(order, cmd.payment_result, actor_user_id=actor.id, events=events)
            return order

        return run_unit_of_work(_op, self.dispatcher)

    def _apply_transition(
        self,
        order: Order,
        target: OrderStatus,
        *,
        actor_user_id: int | None,
        events: EventCollector,
        note: str | None = None,
        cancellation_reason: str | None = None,
        enforce_table: bool = True,
        delivery_confirmed: bool = False,
    ) -> OrderStatus:
        source = order.transition_to(
            target,
            actor_user_id=actor_user_id,
            note=note,
            cancellation_reason=cancellation_reason,
            enforce_table=enforce_table,
            delivery_confirmed=delivery_confirmed,
        )

        if target == OrderStatus.PROCESSING and not order.stock_reserved:
            self.stock.reserve_for_order(order, actor_user_id=actor_user_id, events=events)
        elif target in (OrderStatus.CANCELLED, OrderStatus.REFUNDED) and source in STOCK_HOLDING_STATUSES:
            self.stock.release_for_order(order, actor_user_id=actor_user_id, reason=note)

        events.add(OrderStatusChanged(
            order_id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            previous_status=source.value,
            status=target.value,
            actor_user_id=actor_user_id,
            note=note,
        ))
        logger.info("Order %s: %s -> %s", order.order_number, source.value, target.value)
        return source

    # =========================================================================
    # SETTLEMENT HOOKS (run inside the caller's unit of work)
    # =========================================================================

    def settle_payment(
        self,
        order: Order,
        *,
        actor_user_id: int | None,
        events: EventCollector,
        payment_result: dict | None = None,
    ) -> None:
        """Mark the order paid; a Pending order is promoted to Processing."""
        order.mark_paid(payment_result)
        if order.current_status == OrderStatus.PENDING:
            self._apply_transition(
                order,
                OrderStatus.PROCESSING,
                actor_user_id=actor_user_id,
                note="Payment received",
                events=events,
            )

    def settle_refund(
        self,
        order: Order,
        *,
        actor_user_id: int | None,
        reason: str,
        events: EventCollector,
    ) -> None:
        """
        Propagate a completed refund: the order ends Refunded with
        isRefunded set, whatever status it was in. Money has already been
        returned, so this does not consult ORDER_TRANSITIONS.
        """
        if order.current_status == OrderStatus.REFUNDED:
            order.is_refunded = True
            order.refunded_at = order.refunded_at or utcnow()
            return
        self._apply_transition(
            order,
            OrderStatus.REFUNDED,
            actor_user_id=actor_user_id,
            note=f"Refunded: {reason}",
            enforce_table=False,
            events=events,
        )

    def mark_dispatched(self, order: Order, *, actor_user_id: int | None, events: EventCollector) -> None:
        """A Packed order moves to Shipped once its delivery is scheduled."""
        if order.current_status == OrderStatus.PACKED:
            self._apply_transition(
                order,
                OrderStatus.SHIPPED,
                actor_user_id=actor_user_id,
                note="Dispatched for delivery",
                events=events,
            )

    def follow_delivery(
        self,
        order: Order,
        delivery_status: DeliveryStatus,
        *,
        actor_user_id: int | None,
        events: EventCollector,
    ) -> None:
        """
        Pull the order along behind its Delivery.

        - Delivery Out for Delivery: a Shipped order follows.
        - Delivery Delivered: the order is pushed to Delivered (through Out
          for Delivery when it is still Shipped). The delivery record is
          the proof of delivery.

        Raises:
            InvalidTransition: the order cannot follow (e.g. it was cancelled)
        """
        status = order.current_status

        if delivery_status == DeliveryStatus.OUT_FOR_DELIVERY:
            if status == OrderStatus.SHIPPED:
                self._apply_transition(
                    order,
                    OrderStatus.OUT_FOR_DELIVERY,
                    actor_user_id=actor_user_id,
                    note="Out for delivery",
                    events=events,
                )
            return

        if delivery_status != DeliveryStatus.DELIVERED or status == OrderStatus.DELIVERED:
            return

        if status == OrderStatus.SHIPPED:
            self._apply_transition(
                order,
                OrderStatus.OUT_FOR_DELIVERY,
                actor_user_id=actor_user_id,
                note="Out for delivery",
                events=events,
            )
        self._apply_transition(
            order,
            OrderStatus.DELIVERED,
            actor_user_id=actor_user_id,
            note="Delivered",
            delivery_confirmed=True,
            events=events,
        )

    def _record_external_payment(
        self,
        order: Order,
        payment_result: dict,
        *,
        actor_user_id: int | None,
        events: EventCollector,
    ) -> Payment:
        payment = Payment(
            payment_type=PAYMENT_TYPE_CUSTOMER,
            order_id=order.id,
            user_id=order.user_id,
            status=PAYMENT_STATUS_COMPLETED,
            amount_cents=order.total_price_cents,
            currency=self.config["CURRENCY"],
            payment_method=order.payment_method,
            gateway=order.payment_method,
            transaction_id=payment_result.get("id"),
            payment_date=utcnow(),
            created_by_user_id=actor_user_id,
        )
        self.repos.payments.add(payment)
        self.settle_payment(order, actor_user_id=actor_user_id, payment_result=payment_result, events=events)

        events.add(PaymentCompleted(
            payment_id=payment.id,
            order_id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            amount_cents=payment.amount_cents,
            transaction_id=payment.transaction_id,
        ))
        return payment

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_order(self, order_id: int, *, actor: User) -> Order:
        order = self.repos.orders.get(order_id)
        if order is None:
            raise NotFound("Order not found", details={"order_id": order_id})
        self._ensure_owner_or_staff(order, actor)
        return order

    def list_orders(self, **filters):
        return self.repos.orders.list(**filters)

    def my_orders(self, actor: User, *, limit: int = 50, offset: int = 0):
        return self.repos.orders.list(user_id=actor.id, limit=limit, offset=offset)

    def counts_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in OrderStatus}
        counts.update(self.repos.orders.counts_by_status())
        return counts

    def _get_for_update(self, order_id: int) -> Order:
        order = self.repos.orders.get_for_update(order_id)
        if order is None:
            raise NotFound("Order not found", details={"order_id": order_id})
        return order

    @staticmethod
    def _ensure_owner_or_staff(order: Order, actor: User) -> None:
        if order.user_id != actor.id and not actor.is_staff:
            raise Forbidden("Not authorized to access this order", details={"order_id": order.id})
