# Overview: Invoice snapshots derived from a payment and its order (pure functions).

"""
An invoice is frozen data attached to a Payment at generation time. It is
never edited afterwards; regenerating produces a new snapshot with a new
number. All amounts are integer minor units; tax uses basis points.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from ..time_utils import to_utc_z

CUSTOMER_INVOICE_NOTES = "Thank you for your business!"
FARMER_INVOICE_NOTES = "Thank you for supplying rice to our platform!"


def tax_for(amount_cents: int, rate_bps: int) -> int:
    """Tax on an amount at `rate_bps` basis points, rounded half up."""
    return (amount_cents * rate_bps + 5_000) // 10_000


def build_customer_invoice(
    *,
    invoice_number: str,
    order,
    payment,
    tax_rate_bps: int,
    due_days: int,
    issued_at: datetime,
) -> dict:
    """
    Itemized invoice for a customer payment.

    Header totals come from the order (computed once at checkout); the
    per-line tax figures are informational.
    """
    items = []
    for line in order.lines:
        line_total = line.unit_price_cents * line.quantity
        items.append({
            "name": line.product_name,
            "description": f"{line.product_name} - Rice Product",
            "quantity": line.quantity,
            "unit_price_cents": line.unit_price_cents,
            "total_price_cents": line_total,
            "tax_rate_bps": tax_rate_bps,
            "tax_amount_cents": tax_for(line_total, tax_rate_bps),
        })

    total = order.total_price_cents
    is_paid = payment.status == "completed"

    return {
        "invoice_number": invoice_number,
        "invoice_date": to_utc_z(issued_at),
        "due_date": to_utc_z(issued_at + timedelta(days=due_days)),
        "order_number": order.order_number,
        "currency": payment.currency,
        "items": items,
        "subtotal_cents": order.items_price_cents,
        "tax_total_cents": order.tax_price_cents,
        "shipping_cents": order.shipping_price_cents,
        "discount_cents": 0,
        "total_cents": total,
        "paid_amount_cents": total if is_paid else 0,
        "balance_due_cents": 0 if is_paid else total,
        "notes": CUSTOMER_INVOICE_NOTES,
        "terms": f"Payment due within {due_days} days.",
        "status": "paid" if is_paid else "sent",
    }


def build_farmer_invoice(
    *,
    invoice_number: str,
    payment,
    tax_rate_bps: int,
    issued_at: datetime,
) -> dict:
    details = payment.farmer_details or {}
    quantity = details.get("rice_quantity")
    rate = details.get("rate_per_kg_cents")

    tax = tax_for(payment.amount_cents, tax_rate_bps)
    total = payment.amount_cents + tax

    if quantity and rate:
        description = f"Purchase of {quantity} kg rice at {rate} per kg (minor units)"
    else:
        description = "Purchase of rice"

    return {
        "invoice_number": invoice_number,
        "invoice_date": to_utc_z(issued_at),
        "due_date": to_utc_z(issued_at),
        "currency": payment.currency,
        "items": [{
            "name": "Rice Purchase",
            "description": description,
            "quantity": quantity or 1,
            "unit_price_cents": rate or payment.amount_cents,
            "total_price_cents": payment.amount_cents,
            "tax_rate_bps": tax_rate_bps,
            "tax_amount_cents": tax,
        }],
        "subtotal_cents": payment.amount_cents,
        "tax_total_cents": tax,
        "discount_cents": 0,
        "total_cents": total,
        "paid_amount_cents": total,
        "balance_due_cents": 0,
        "notes": FARMER_INVOICE_NOTES,
        "terms": "Payment completed",
        "status": "paid",
    }
