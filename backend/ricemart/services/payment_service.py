# Overview: Payment settlement: gateway orders, callback verification, refunds, farmer payouts, invoices.

"""
ricemart payment settlement (authoritative)

Customer payment:
1. create_gateway_order(): provider order for the order total, persisted as
   a pending Payment (a retry reuses the pending row and bumps
   attempt_count).
2. verify_payment(): the HMAC signature over "order_id|payment_id" is the
   only authenticity gate and is checked before any stored data is read.
   On success the Payment is completed and committed first; then the
   Order is marked paid (Pending orders move to Processing and reserve
   stock) and an invoice snapshot is attached. When the order cannot be
   settled the captured money is refunded automatically.

Refund: only from completed. The payment is first claimed (refunding)
under the row lock, then the provider refund runs, then the refund is
finalized. A gateway failure puts the Payment back to completed.

Provider calls never run while the database write lock is held.
"""

from __future__ import annotations

import logging

from ..errors import AlreadyPaid, DomainError, Forbidden, InvalidSignature, NotFound, ValidationError
from ..events import EventCollector, FarmerPaid, PaymentCompleted, PaymentInitiated, PaymentRefunded
from ..models import Payment, User
from ..models.payments import (
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_PENDING,
    PAYMENT_TYPE_CUSTOMER,
    PAYMENT_TYPE_FARMER,
    REFUND_METHOD_GATEWAY,
    REFUND_METHOD_MANUAL,
)
from ..models.users import ROLE_ADMIN, ROLE_FARMER
from ..repositories import Repositories
from ..time_utils import utcnow
from ..validation import (
    CreateGatewayOrderCommand,
    FarmerPaymentCommand,
    RefundCommand,
    VerifyPaymentCommand,
)
from .concurrency import run_unit_of_work
from .gateway import PaymentGateway
from .invoicing import build_customer_invoice, build_farmer_invoice
from .order_service import OrderService
from .sequence_service import next_farmer_invoice_number, next_invoice_number


logger = logging.getLogger(__name__)


class PaymentService:
    def __init__(self, repos: Repositories, orders: OrderService, gateway: PaymentGateway, dispatcher, config):
        self.repos = repos
        self.orders = orders
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.config = config

    # =========================================================================
    # CUSTOMER PAYMENT
    # =========================================================================

    def create_gateway_order(self, cmd: CreateGatewayOrderCommand, *, actor: User) -> tuple[Payment, dict]:
        """
        Returns:
            (pending Payment, provider order payload)

        Raises:
            NotFound: unknown order
            AlreadyPaid: order already paid
            Forbidden: actor is neither the owner nor an admin
            GatewayError: provider unavailable or rejected the request
        """
        order = self.repos.orders.get(cmd.order_id)
        if order is None:
            raise NotFound("Order not found", details={"order_id": cmd.order_id})
        if order.is_paid:
            raise AlreadyPaid("This order has already been paid for", details={"order_id": order.id})
        if order.user_id != actor.id and actor.role != ROLE_ADMIN:
            raise Forbidden("Not authorized to make payment for this order", details={"order_id": order.id})

        currency = self.config["CURRENCY"]
        gateway_order = self.gateway.create_order(
            amount_cents=order.total_price_cents,
            currency=currency,
            receipt=f"receipt_{order.id}",
            notes={"order_number": order.order_number, "user_id": str(actor.id)},
        )

        def _op(events: EventCollector) -> Payment:
            locked = self.repos.orders.get_for_update(order.id)
            if locked.is_paid:
                raise AlreadyPaid("This order has already been paid for", details={"order_id": locked.id})

            payment = self.repos.payments.pending_for_order(locked.id)
            if payment is None:
                payment = Payment(
                    payment_type=PAYMENT_TYPE_CUSTOMER,
                    order_id=locked.id,
                    user_id=locked.user_id,
                    amount_cents=locked.total_price_cents,
                    currency=currency,
                    payment_method=locked.payment_method,
                    status=PAYMENT_STATUS_PENDING,
                    attempt_count=0,
                    notes=f"Payment for order #{locked.order_number}",
                    created_by_user_id=actor.id,
                )
                self.repos.payments.add(payment)

            payment.gateway = self.gateway.name
            payment.gateway_order_id = gateway_order["id"]
            payment.attempt_count = (payment.attempt_count or 0) + 1
            self.repos.payments.session.flush()

            events.add(PaymentInitiated(
                payment_id=payment.id,
                order_id=locked.id,
                user_id=locked.user_id,
                amount_cents=payment.amount_cents,
            ))
            return payment

        payment = run_unit_of_work(_op, self.dispatcher)
        return payment, gateway_order

    def verify_payment(self, cmd: VerifyPaymentCommand, *, actor: User) -> Payment:
        """
        Settle a provider callback.

        The completed Payment is committed before the order is touched: by
        now the provider holds the money, so it must be on record even when
        the order cannot be settled. If settlement fails (stock ran out, the
        order was paid some other way) the payment is refunded through the
        gateway and the settlement error is raised.

        Raises:
            InvalidSignature: signature mismatch (nothing is read or written)
            NotFound: unknown payment id
            ValidationError: payment does not belong to this gateway order
            AlreadyPaid: payment already completed (repeat callback), or the
                order was already paid (payment refunded)
            OutOfStock: a Pending order could not reserve stock (payment refunded)
        """
        if not self.gateway.verify_signature(cmd.gateway_order_id, cmd.gateway_payment_id, cmd.signature):
            logger.warning("Rejected payment callback with invalid signature for %s", cmd.gateway_order_id)
            raise InvalidSignature("Invalid payment signature")

        def _complete(events: EventCollector) -> Payment:
            payment = self.repos.payments.get_for_update(cmd.payment_id)
            if payment is None:
                raise NotFound("Payment record not found", details={"payment_id": cmd.payment_id})
            if payment.gateway_order_id != cmd.gateway_order_id:
                raise ValidationError(
                    "Payment does not match gateway order",
                    details={"payment_id": payment.id},
                )

            payment.mark_completed(
                transaction_id=cmd.gateway_payment_id,
                gateway_payment_id=cmd.gateway_payment_id,
                signature=cmd.signature,
            )
            return payment

        def _settle(events: EventCollector) -> Payment:
            payment = self.repos.payments.get_for_update(cmd.payment_id)
            order = self.repos.orders.get_for_update(payment.order_id)
            if order is None:
                raise NotFound("Order not found", details={"order_id": payment.order_id})
            if order.is_paid:
                raise AlreadyPaid("This order has already been paid for", details={"order_id": order.id})

            self.orders.settle_payment(
                order,
                actor_user_id=actor.id,
                payment_result={
                    "id": cmd.gateway_payment_id,
                    "status": PAYMENT_STATUS_COMPLETED,
                    "update_time": utcnow().isoformat(),
                    "gateway_order_id": cmd.gateway_order_id,
                },
                events=events,
            )
            self._attach_customer_invoice(payment, order)

            events.add(PaymentCompleted(
                payment_id=payment.id,
                order_id=order.id,
                order_number=order.order_number,
                user_id=order.user_id,
                amount_cents=payment.amount_cents,
                transaction_id=payment.transaction_id,
            ))
            return payment

        run_unit_of_work(_complete, self.dispatcher)
        try:
            payment = run_unit_of_work(_settle, self.dispatcher)
        except DomainError as exc:
            logger.warning("Payment %s captured but not settled (%s); refunding", cmd.payment_id, exc.kind)
            try:
                self._refund(
                    cmd.payment_id,
                    reason=f"Automatic refund: {exc.message}",
                    actor_user_id=None,
                    settle_order=False,
                )
            except DomainError:
                logger.exception("Automatic refund failed for payment %s", cmd.payment_id)
            raise

        logger.info("Payment %s completed (%s)", payment.id, payment.transaction_id)
        return payment

    # =========================================================================
    # REFUND
    # =========================================================================

    def refund(self, payment_id: int, cmd: RefundCommand, *, actor: User) -> Payment:
        """
        Refund a completed payment (full amount unless `cmd.amount_cents`).

        Raises:
            NotFound: unknown payment
            AlreadyRefunded: payment already refunded, or a refund is in flight
            ValidationError: payment not completed, or amount out of range
            GatewayError: provider refund failed (payment unchanged)
        """
        return self._refund(
            payment_id,
            reason=cmd.reason,
            amount_cents=cmd.amount_cents,
            actor_user_id=actor.id,
        )

    def _refund(
        self,
        payment_id: int,
        *,
        reason: str,
        actor_user_id: int | None,
        amount_cents: int | None = None,
        settle_order: bool = True,
    ) -> Payment:
        """
        Claim, call the provider, finalize.

        The claim (completed -> refunding) is committed under the row lock
        before the provider is called, so concurrent refunds of one payment
        reach the provider at most once. A provider failure releases the
        claim.
        """
        def _claim(events: EventCollector) -> tuple[Payment, int]:
            payment = self.repos.payments.get_for_update(payment_id)
            if payment is None:
                raise NotFound("Payment not found", details={"payment_id": payment_id})
            payment.ensure_refundable()

            amount = amount_cents if amount_cents is not None else payment.amount_cents
            if amount <= 0 or amount > payment.amount_cents:
                raise ValidationError(
                    "Refund amount must be greater than 0 and at most the payment amount",
                    details={"amount": amount, "payment_amount": payment.amount_cents},
                )
            payment.claim_refund()
            return payment, amount

        payment, amount = run_unit_of_work(_claim, self.dispatcher)

        method = REFUND_METHOD_MANUAL
        refund_transaction_id = None
        if payment.used_gateway:
            try:
                result = self.gateway.refund(
                    payment.gateway_payment_id,
                    amount_cents=amount,
                    notes={"reason": reason, "refunded_by": str(actor_user_id or "system")},
                )
            except Exception:
                run_unit_of_work(self._release_claim(payment_id), self.dispatcher)
                raise
            method = REFUND_METHOD_GATEWAY
            refund_transaction_id = result.get("id")

        def _finalize(events: EventCollector) -> Payment:
            locked = self.repos.payments.get_for_update(payment_id)
            locked.mark_refunded(
                amount_cents=amount,
                reason=reason,
                actor_user_id=actor_user_id,
                method=method,
                transaction_id=refund_transaction_id,
            )

            order = None
            if locked.order_id is not None:
                order = self.repos.orders.get_for_update(locked.order_id)
                if order is not None and settle_order:
                    self.orders.settle_refund(order, actor_user_id=actor_user_id, reason=reason, events=events)

            events.add(PaymentRefunded(
                payment_id=locked.id,
                order_id=order.id if order else None,
                order_number=order.order_number if order else None,
                user_id=locked.user_id,
                refund_amount_cents=amount,
                reason=reason,
            ))
            return locked

        payment = run_unit_of_work(_finalize, self.dispatcher)
        logger.info("Payment %s refunded (%s, %s)", payment.id, amount, method)
        return payment

    def _release_claim(self, payment_id: int):
        def _op(events: EventCollector) -> Payment:
            locked = self.repos.payments.get_for_update(payment_id)
            locked.release_refund_claim()
            return locked
        return _op

    # =========================================================================
    # FARMER PAYOUT
    # =========================================================================

    def create_farmer_payment(self, cmd: FarmerPaymentCommand, *, actor: User) -> Payment:
        """One-shot payout, created completed with its invoice attached."""
        def _op(events: EventCollector) -> Payment:
            farmer = self.repos.users.get(cmd.farmer_id)
            if farmer is None or farmer.role != ROLE_FARMER:
                raise NotFound("Farmer not found", details={"farmer_id": cmd.farmer_id})

            if cmd.inventory_id is not None and self.repos.stock.get(cmd.inventory_id) is None:
                raise NotFound("Inventory not found", details={"inventory_id": cmd.inventory_id})

            payment = Payment(
                payment_type=PAYMENT_TYPE_FARMER,
                user_id=farmer.id,
                farmer_id=farmer.id,
                inventory_id=cmd.inventory_id,
                status=PAYMENT_STATUS_COMPLETED,
                amount_cents=cmd.amount_cents,
                currency=self.config["CURRENCY"],
                payment_method=cmd.payment_method,
                gateway=cmd.payment_method,
                payment_date=utcnow(),
                notes=cmd.description or "Payment to farmer for rice purchase",
                farmer_details={
                    "rice_quantity": cmd.rice_quantity,
                    "rate_per_kg_cents": cmd.rate_per_kg_cents,
                    "payment_method": cmd.payment_method,
                    "bank_details": cmd.bank_details,
                },
                created_by_user_id=actor.id,
            )
            self.repos.payments.add(payment)
            self._attach_farmer_invoice(payment)

            events.add(FarmerPaid(
                payment_id=payment.id,
                farmer_id=farmer.id,
                amount_cents=payment.amount_cents,
                invoice_number=payment.invoice_number,
            ))
            return payment

        return run_unit_of_work(_op, self.dispatcher)

    # =========================================================================
    # INVOICES
    # =========================================================================

    def generate_invoice(self, payment_id: int) -> Payment:
        """Attach a fresh invoice snapshot (new number) to a payment."""
        def _op(events: EventCollector) -> Payment:
            payment = self.repos.payments.get_for_update(payment_id)
            if payment is None:
                raise NotFound("Payment not found", details={"payment_id": payment_id})

            if payment.payment_type == PAYMENT_TYPE_FARMER:
                self._attach_farmer_invoice(payment)
                return payment

            if payment.order_id is None:
                raise ValidationError(
                    "This payment is not associated with an order",
                    details={"payment_id": payment.id},
                )
            order = self.repos.orders.get(payment.order_id)
            self._attach_customer_invoice(payment, order)
            return payment

        return run_unit_of_work(_op, self.dispatcher)

    def _attach_customer_invoice(self, payment: Payment, order) -> None:
        number = next_invoice_number(self.repos.sequences, order.order_number)
        payment.invoice_number = number
        payment.invoice = build_customer_invoice(
            invoice_number=number,
            order=order,
            payment=payment,
            tax_rate_bps=self.config["INVOICE_TAX_RATE_BPS"],
            due_days=self.config["INVOICE_DUE_DAYS"],
            issued_at=utcnow(),
        )

    def _attach_farmer_invoice(self, payment: Payment) -> None:
        number = next_farmer_invoice_number(self.repos.sequences)
        payment.invoice_number = number
        payment.invoice = build_farmer_invoice(
            invoice_number=number,
            payment=payment,
            tax_rate_bps=self.config["FARMER_INVOICE_TAX_RATE_BPS"],
            issued_at=utcnow(),
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_payment(self, payment_id: int, *, actor: User) -> Payment:
        payment = self.repos.payments.get(payment_id)
        if payment is None:
            raise NotFound("Payment not found", details={"payment_id": payment_id})
        if actor.role != ROLE_ADMIN and actor.id not in (payment.user_id, payment.farmer_id):
            raise Forbidden("Not authorized to view this payment", details={"payment_id": payment.id})
        return payment

    def my_payments(self, actor: User, *, limit: int = 50, offset: int = 0):
        return self.repos.payments.list(user_id=actor.id, limit=limit, offset=offset)

    def list_payments(self, **filters):
        return self.repos.payments.list(**filters)
