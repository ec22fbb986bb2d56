# Overview: Serialized document numbers (orders, invoices, farmer payouts).

from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..repositories import SequenceRepository
from ..time_utils import day_stamp, utcnow


class DocumentSequenceError(Exception):
    """Raised when a counter row can be neither claimed nor created."""


def next_in_scope(sequences: SequenceRepository, scope: str) -> int:
    """
    Claim the next number for `scope` inside the caller's transaction.

    The counter lives in document_sequences and is bumped with a single
    conditional UPDATE, so two writers can never receive the same number.
    A missing counter row is created under a SAVEPOINT; if a concurrent
    writer created it first, the UPDATE path is taken again.
    """
    if not scope:
        raise DocumentSequenceError("scope is required")

    claimed = sequences.increment(scope)
    if claimed is not None:
        return claimed

    savepoint = sequences.session.begin_nested()
    try:
        claimed = sequences.create(scope)
        savepoint.commit()
        return claimed
    except IntegrityError:
        savepoint.rollback()

    claimed = sequences.increment(scope)
    if claimed is None:
        raise DocumentSequenceError(f"Could not allocate number for {scope}")
    return claimed


def next_order_number(sequences: SequenceRepository, *, now: datetime | None = None) -> str:
    """ORD-YYYYMMDD-NNNN with a per-day counter."""
    prefix = f"ORD-{day_stamp(now or utcnow())}"
    return f"{prefix}-{next_in_scope(sequences, prefix):04d}"


def next_invoice_number(sequences: SequenceRepository, order_number: str) -> str:
    """INV-<orderNumber>-NN; regenerating an invoice gets the next suffix."""
    prefix = f"INV-{order_number}"
    return f"{prefix}-{next_in_scope(sequences, prefix):02d}"


def next_farmer_invoice_number(sequences: SequenceRepository, *, now: datetime | None = None) -> str:
    prefix = f"FP-{day_stamp(now or utcnow())}"
    return f"{prefix}-{next_in_scope(sequences, prefix):04d}"
