# Overview: Delivery tracker: scheduling, status updates and order propagation.

from __future__ import annotations

import logging

from ..errors import DeliveryExists, Forbidden, NotFound, ValidationError
from ..events import DeliveryStatusChanged, EventCollector
from ..models import Delivery, User
from ..repositories import Repositories
from ..state_machine import DELIVERY_SCHEDULABLE_ORDER_STATUSES, DeliveryStatus
from ..validation import CreateDeliveryCommand, UpdateDeliveryStatusCommand
from .concurrency import run_unit_of_work
from .order_service import OrderService


logger = logging.getLogger(__name__)


class DeliveryService:
    """
    The Delivery is the trigger and the Order the follower: a delivery
    update may push its order forward, an order update never touches the
    delivery.
    """

    def __init__(self, repos: Repositories, orders: OrderService, dispatcher):
        self.repos = repos
        self.orders = orders
        self.dispatcher = dispatcher

    def create_delivery(self, cmd: CreateDeliveryCommand, *, actor: User) -> Delivery:
        """
        Schedule the single Delivery for a Packed or Shipped order.

        A Packed order is promoted to Shipped in the same unit of work.

        Raises:
            NotFound: unknown order or agent
            ValidationError: order is not Packed/Shipped
            DeliveryExists: the order already has a delivery
        """
        def _op(events: EventCollector) -> Delivery:
            order = self.repos.orders.get_for_update(cmd.order_id)
            if order is None:
                raise NotFound("Order not found", details={"order_id": cmd.order_id})

            if order.current_status not in DELIVERY_SCHEDULABLE_ORDER_STATUSES:
                raise ValidationError(
                    "Delivery can only be scheduled for Packed or Shipped orders",
                    details={"order_id": order.id, "status": order.status},
                )
            if self.repos.deliveries.for_order(order.id) is not None:
                raise DeliveryExists(
                    "Delivery already exists for this order",
                    details={"order_id": order.id},
                )

            if cmd.agent_id is not None:
                agent = self.repos.users.get(cmd.agent_id)
                if agent is None or not agent.is_staff:
                    raise NotFound("Delivery agent not found", details={"agent_id": cmd.agent_id})

            delivery = Delivery(
                order_id=order.id,
                customer_id=order.user_id,
                agent_id=cmd.agent_id,
                scheduled_date=cmd.scheduled_date,
                time_slot=cmd.time_slot,
                address=cmd.address or order.shipping_address,
                special_instructions=cmd.special_instructions,
                status=DeliveryStatus.SCHEDULED.value,
                created_by_user_id=actor.id,
            )
            delivery.add_tracking_update(
                DeliveryStatus.SCHEDULED,
                actor_user_id=actor.id,
                note="Delivery scheduled",
            )
            self.repos.deliveries.add(delivery)

            self.orders.mark_dispatched(order, actor_user_id=actor.id, events=events)

            events.add(DeliveryStatusChanged(
                delivery_id=delivery.id,
                order_id=order.id,
                customer_id=order.user_id,
                previous_status=None,
                status=DeliveryStatus.SCHEDULED.value,
                agent_id=delivery.agent_id,
            ))
            return delivery

        delivery = run_unit_of_work(_op, self.dispatcher)
        logger.info("Delivery %s scheduled for order %s", delivery.id, delivery.order_id)
        return delivery

    def update_status(self, delivery_id: int, cmd: UpdateDeliveryStatusCommand, *, actor: User) -> Delivery:
        """
        Apply one DELIVERY_TRANSITIONS edge and let the order follow.

        Raises:
            NotFound: unknown delivery
            Forbidden: actor is neither staff nor the assigned agent
            InvalidTransition: illegal delivery edge, or the order cannot
                follow (nothing is written in either case)
        """
        def _op(events: EventCollector) -> Delivery:
            delivery = self.repos.deliveries.get_for_update(delivery_id)
            if delivery is None:
                raise NotFound("Delivery not found", details={"delivery_id": delivery_id})
            if not actor.is_staff and delivery.agent_id != actor.id:
                raise Forbidden("Not authorized to update this delivery", details={"delivery_id": delivery.id})

            source = delivery.transition_to(
                cmd.status,
                actor_user_id=actor.id,
                location=cmd.location,
                note=cmd.note,
                failure_reason=cmd.failure_reason,
            )

            if cmd.status in (DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.DELIVERED):
                order = self.repos.orders.get_for_update(delivery.order_id)
                self.orders.follow_delivery(order, cmd.status, actor_user_id=actor.id, events=events)

            events.add(DeliveryStatusChanged(
                delivery_id=delivery.id,
                order_id=delivery.order_id,
                customer_id=delivery.customer_id,
                previous_status=source.value,
                status=cmd.status.value,
                agent_id=delivery.agent_id,
            ))
            return delivery

        delivery = run_unit_of_work(_op, self.dispatcher)
        logger.info("Delivery %s -> %s", delivery.id, delivery.status)
        return delivery

    def get_delivery(self, delivery_id: int, *, actor: User) -> Delivery:
        delivery = self.repos.deliveries.get(delivery_id)
        if delivery is None:
            raise NotFound("Delivery not found", details={"delivery_id": delivery_id})
        if not actor.is_staff and actor.id not in (delivery.agent_id, delivery.customer_id):
            raise Forbidden("Not authorized to view this delivery", details={"delivery_id": delivery.id})
        return delivery

    def list_deliveries(self, **filters):
        return self.repos.deliveries.list(**filters)
