# Overview: Stock ledger operations: order reservation/release, purchases, adjustments, forecasts.

"""
ricemart stock invariants (authoritative)

Two stock figures exist per product:
- Product.stock_quantity: the sellable count checked at checkout.
- StockLedgerEntry.current_stock: warehouse batches bought from farmers,
  each with an append-only StockMovement log.

Business invariants:
- Neither figure is ever negative. Product stock only changes through
  ProductRepository's conditional UPDATEs; ledger stock only through
  StockLedgerEntry.apply_delta(), which refuses to go below zero.
- Every ledger change appends exactly one movement whose signed delta is
  the net change.
- Reservation for an order is all-or-nothing: if any line cannot be
  decremented, the lines already taken are given back before OutOfStock
  is raised. The enclosing transaction rolls back as well.
- Release reverses exactly the movements written by the reservation, so a
  cancel restores line-by-line what the confirmation took.

Ledger allocation is FIFO: the oldest batch with stock is drawn first.
A product without ledger entries only has its product stock changed.
"""

from __future__ import annotations

import logging

from ..errors import NegativeStockError, NotFound, OutOfStock
from ..events import EventCollector, StockLow
from ..models import Order, StockLedgerEntry
from ..models.inventory import (
    MOVEMENT_PURCHASE,
    MOVEMENT_RETURN,
    MOVEMENT_SALE,
    QualityAssessment,
)
from ..models.users import ROLE_FARMER
from ..repositories import Repositories
from ..time_utils import month_period, utcnow
from ..validation import (
    AdjustStockCommand,
    QualityAssessmentCommand,
    RecordPurchaseCommand,
    UpdateLedgerEntryCommand,
)
from .concurrency import run_unit_of_work
from .forecasting import MIN_HISTORY_PERIODS, Forecast, forecast_demand


logger = logging.getLogger(__name__)

REFERENCE_ORDER = "Order"
REFERENCE_ADJUSTMENT = "Adjustment"
REFERENCE_PURCHASE = "Purchase"

DEFAULT_QUALITY_GRADE = "B+"


class StockService:
    def __init__(self, repos: Repositories, dispatcher, config):
        self.repos = repos
        self.dispatcher = dispatcher
        self.config = config

    # =========================================================================
    # ORDER RESERVATION (called inside the order's unit of work)
    # =========================================================================

    def reserve_for_order(self, order: Order, *, actor_user_id: int | None, events: EventCollector) -> None:
        """
        Take every line of `order` out of stock.

        Raises:
            OutOfStock: at least one line could not be satisfied; details
                list every short line with requested/available quantities
        """
        if order.stock_reserved:
            return

        taken: list[tuple[int, int]] = []
        short: list[dict] = []

        for line in order.lines:
            if self.repos.products.decrement_if_sufficient(line.product_id, line.quantity):
                taken.append((line.product_id, line.quantity))
            else:
                product = self.repos.products.get(line.product_id)
                short.append({
                    "product_id": line.product_id,
                    "name": line.product_name,
                    "requested": line.quantity,
                    "available": product.stock_quantity if product else 0,
                })

        if short:
            # Compensate whatever was already taken before surfacing the error
            for product_id, quantity in taken:
                self.repos.products.increment(product_id, quantity)
            names = ", ".join(s["name"] for s in short)
            raise OutOfStock(f"Insufficient stock for: {names}", details={"lines": short})

        period = month_period(utcnow())
        for line in order.lines:
            self._draw_from_ledger(
                line.product_id,
                line.quantity,
                unit_price_cents=line.unit_price_cents,
                period=period,
                order=order,
                actor_user_id=actor_user_id,
                events=events,
            )

        order.stock_reserved = True

    def release_for_order(self, order: Order, *, actor_user_id: int | None, reason: str | None = None) -> None:
        """Undo reserve_for_order(): product stock and every ledger sale movement."""
        if not order.stock_reserved:
            return

        for line in order.lines:
            self.repos.products.increment(line.product_id, line.quantity)

        prices = {line.product_id: line.unit_price_cents for line in order.lines}
        note = reason or f"Order {order.order_number} cancelled"

        for movement in self.repos.stock.movements_for_reference(REFERENCE_ORDER, order.id):
            if movement.type != MOVEMENT_SALE:
                continue
            entry = movement.entry
            quantity = -movement.quantity
            entry.apply_delta(
                quantity,
                MOVEMENT_RETURN,
                actor_user_id=actor_user_id,
                reason=note,
                reference_type=REFERENCE_ORDER,
                reference_id=order.id,
            )
            entry.record_sales(
                month_period(movement.occurred_at),
                -quantity,
                -quantity * prices.get(movement.product_id, 0),
            )

        order.stock_reserved = False

    def _draw_from_ledger(
        self,
        product_id: int,
        quantity: int,
        *,
        unit_price_cents: int,
        period: str,
        order: Order,
        actor_user_id: int | None,
        events: EventCollector,
    ) -> None:
        remaining = quantity
        for entry in self.repos.stock.entries_for_product(product_id):
            if remaining <= 0:
                break
            take = min(entry.current_stock, remaining)
            if take <= 0:
                continue
            was_low = entry.is_low_stock
            entry.apply_delta(
                -take,
                MOVEMENT_SALE,
                actor_user_id=actor_user_id,
                reason=f"Order {order.order_number}",
                reference_type=REFERENCE_ORDER,
                reference_id=order.id,
            )
            entry.record_sales(period, take, take * unit_price_cents)
            remaining -= take
            if entry.is_low_stock and not was_low:
                events.add(self._stock_low_event(entry))

        if remaining > 0:
            logger.info(
                "Order %s: %s unit(s) of product %s not covered by ledger batches",
                order.order_number, remaining, product_id,
            )

    @staticmethod
    def _stock_low_event(entry: StockLedgerEntry) -> StockLow:
        return StockLow(
            entry_id=entry.id,
            product_id=entry.product_id,
            product_name=entry.product.name if entry.product else f"Product {entry.product_id}",
            current_stock=entry.current_stock,
            threshold=entry.low_stock_threshold,
            status=entry.status,
        )

    # =========================================================================
    # PURCHASES & ADJUSTMENTS
    # =========================================================================

    def record_purchase(self, cmd: RecordPurchaseCommand, *, actor_user_id: int | None) -> StockLedgerEntry:
        """
        Record rice bought from a farmer: new ledger batch, a purchase
        movement for the full quantity, and the product's sellable stock
        raised by the same amount.
        """
        def _op(events: EventCollector) -> StockLedgerEntry:
            product = self.repos.products.get(cmd.product_id)
            if product is None:
                raise NotFound("Product not found", details={"product_id": cmd.product_id})

            farmer = self.repos.users.get(cmd.farmer_id)
            if farmer is None or farmer.role != ROLE_FARMER:
                raise NotFound("Farmer not found", details={"farmer_id": cmd.farmer_id})

            threshold = cmd.low_stock_threshold
            if threshold is None:
                threshold = self.config["DEFAULT_LOW_STOCK_THRESHOLD"]

            entry = StockLedgerEntry(
                product_id=product.id,
                farmer_id=farmer.id,
                quantity_purchased=cmd.quantity_purchased,
                purchase_price_cents=cmd.purchase_price_cents,
                total_purchase_amount_cents=cmd.purchase_price_cents * cmd.quantity_purchased,
                purchase_date=cmd.purchase_date or utcnow(),
                current_stock=0,
                selling_price_cents=cmd.selling_price_cents,
                warehouse_location=cmd.warehouse_location,
                packaging=cmd.packaging,
                initial_quality_grade=cmd.quality_grade or product.grade or DEFAULT_QUALITY_GRADE,
                low_stock_threshold=threshold,
                created_by_user_id=actor_user_id,
            )
            entry.refresh_stock_status()
            self.repos.stock.add(entry)

            entry.apply_delta(
                cmd.quantity_purchased,
                MOVEMENT_PURCHASE,
                actor_user_id=actor_user_id,
                reason=f"Purchase from {farmer.name}",
                reference_type=REFERENCE_PURCHASE,
                reference_id=entry.id,
            )
            self.repos.products.increment(product.id, cmd.quantity_purchased)
            self.repos.stock.session.flush()

            if entry.is_low_stock:
                events.add(self._stock_low_event(entry))
            return entry

        return run_unit_of_work(_op, self.dispatcher)

    def adjust(self, entry_id: int, cmd: AdjustStockCommand, *, actor_user_id: int | None) -> StockLedgerEntry:
        """
        Apply a signed manual correction to one batch and mirror it onto
        the product's sellable stock.

        Raises:
            NotFound: unknown entry
            NegativeStockError: either figure would drop below zero
        """
        def _op(events: EventCollector) -> StockLedgerEntry:
            entry = self.repos.stock.get_for_update(entry_id)
            if entry is None:
                raise NotFound("Inventory not found", details={"entry_id": entry_id})

            was_low = entry.is_low_stock
            entry.apply_delta(
                cmd.quantity,
                cmd.type,
                actor_user_id=actor_user_id,
                reason=cmd.reason,
                reference_type=REFERENCE_ADJUSTMENT,
            )

            if cmd.quantity < 0:
                if not self.repos.products.decrement_if_sufficient(entry.product_id, -cmd.quantity):
                    raise NegativeStockError(
                        "Adjustment would result in negative stock",
                        details={"product_id": entry.product_id, "delta": cmd.quantity},
                    )
            else:
                self.repos.products.increment(entry.product_id, cmd.quantity)

            if entry.is_low_stock and not was_low:
                events.add(self._stock_low_event(entry))
            return entry

        return run_unit_of_work(_op, self.dispatcher)

    def update_entry(self, entry_id: int, cmd: UpdateLedgerEntryCommand) -> StockLedgerEntry:
        def _op(events: EventCollector) -> StockLedgerEntry:
            entry = self.repos.stock.get_for_update(entry_id)
            if entry is None:
                raise NotFound("Inventory not found", details={"entry_id": entry_id})

            was_low = entry.is_low_stock
            if cmd.selling_price_cents is not None:
                entry.selling_price_cents = cmd.selling_price_cents
            if cmd.warehouse_location is not None:
                entry.warehouse_location = cmd.warehouse_location
            if cmd.packaging is not None:
                entry.packaging = cmd.packaging
            if cmd.low_stock_threshold is not None:
                entry.set_low_stock_threshold(cmd.low_stock_threshold)
            entry.refresh_stock_status()

            if entry.is_low_stock and not was_low:
                events.add(self._stock_low_event(entry))
            return entry

        return run_unit_of_work(_op, self.dispatcher)

    def add_quality_assessment(
        self,
        entry_id: int,
        cmd: QualityAssessmentCommand,
        *,
        actor_user_id: int | None,
    ) -> StockLedgerEntry:
        def _op(events: EventCollector) -> StockLedgerEntry:
            entry = self.repos.stock.get_for_update(entry_id)
            if entry is None:
                raise NotFound("Inventory not found", details={"entry_id": entry_id})

            entry.quality_assessments.append(QualityAssessment(
                moisture=cmd.moisture,
                broken=cmd.broken,
                foreign_matter=cmd.foreign_matter,
                discoloration=cmd.discoloration,
                aroma=cmd.aroma,
                overall_grade=cmd.overall_grade,
                notes=cmd.notes,
                assessed_by_user_id=actor_user_id,
                assessed_at=utcnow(),
            ))
            if cmd.update_grade:
                entry.verified_quality_grade = cmd.overall_grade
            return entry

        return run_unit_of_work(_op, self.dispatcher)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_entry(self, entry_id: int) -> StockLedgerEntry:
        entry = self.repos.stock.get(entry_id)
        if entry is None:
            raise NotFound("Inventory not found", details={"entry_id": entry_id})
        return entry

    def list_entries(self, **filters):
        return self.repos.stock.list(**filters)

    def low_stock_entries(self) -> list[StockLedgerEntry]:
        return self.repos.stock.low_stock()

    # =========================================================================
    # FORECASTING
    # =========================================================================

    def forecast(self, entry_id: int) -> Forecast:
        """Compute and store the forecast snapshot for one entry."""
        def _op(events: EventCollector) -> Forecast:
            entry = self.repos.stock.get_for_update(entry_id)
            if entry is None:
                raise NotFound("Inventory not found", details={"entry_id": entry_id})
            return self._apply_forecast(entry)

        return run_unit_of_work(_op, self.dispatcher)

    def run_forecasting(self) -> dict:
        """
        Forecast every ledger entry.

        Entries with too little history are skipped (not failed). A single
        entry that errors is rolled back to its savepoint, logged and
        counted; the batch carries on.
        """
        def _op(events: EventCollector) -> dict:
            summary = {"processed": 0, "updated": 0, "skipped": 0, "failed": 0}
            session = self.repos.stock.session
            for entry in self.repos.stock.all_entries():
                summary["processed"] += 1
                if len(entry.sales_history) < MIN_HISTORY_PERIODS:
                    summary["skipped"] += 1
                    continue
                savepoint = session.begin_nested()
                try:
                    self._apply_forecast(entry)
                    savepoint.commit()
                    summary["updated"] += 1
                except Exception:
                    savepoint.rollback()
                    summary["failed"] += 1
                    logger.exception("Forecast failed for inventory entry %s", entry.id)
            return summary

        return run_unit_of_work(_op, self.dispatcher)

    def _apply_forecast(self, entry: StockLedgerEntry) -> Forecast:
        quantities = [h.quantity_sold for h in sorted(entry.sales_history, key=lambda h: h.period)]
        result = forecast_demand(quantities, entry.low_stock_threshold)
        entry.predicted_demand = result.predicted_demand
        entry.forecast_confidence = result.confidence
        entry.recommended_reorder = result.recommended_reorder
        entry.reorder_point = result.reorder_point
        entry.last_forecast_at = utcnow()
        return result

