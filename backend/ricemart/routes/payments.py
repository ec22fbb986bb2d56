# Overview: Flask API routes for payment settlement; parses input and returns JSON responses.

"""
Payment API Routes

DESIGN:
- Customer payments go through the gateway in two steps: create (provider
  order + pending Payment) and verify (signed callback -> completed).
- Refunds and farmer payouts are admin operations.
- Invoices are frozen snapshots on the Payment; /invoice re-issues one.
"""

from flask import Blueprint, request, jsonify, g

from ..container import get_services
from ..decorators import require_auth, require_role
from ..errors import ValidationError
from ..models.payments import PAYMENT_STATUSES, PAYMENT_TYPES
from ..models.users import ROLE_ADMIN
from ..validation import (
    parse_create_gateway_order,
    parse_farmer_payment,
    parse_paging,
    parse_refund,
    parse_verify_payment,
)


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# CUSTOMER PAYMENT
# =============================================================================

@payments_bp.post("/gateway/create")
@require_auth
def create_gateway_order_route():
    """
    Request body: {"orderId": 12}

    Returns:
        201: {"id", "amount", "currency", "order_id", "receipt", "payment_id", "key_id"}
        400: Order already paid
        403: Not the owner
        404: Unknown order
        502/503: Gateway unavailable
    """
    cmd = parse_create_gateway_order(request.get_json(silent=True))
    services = get_services()
    payment, gateway_order = services.payments.create_gateway_order(cmd, actor=g.current_user)
    return jsonify({
        "id": gateway_order["id"],
        "amount": gateway_order["amount"],
        "currency": gateway_order["currency"],
        "order_id": payment.order_id,
        "receipt": gateway_order.get("receipt"),
        "payment_id": payment.id,
        "key_id": services.payments.gateway.key_id,
    }), 201


@payments_bp.post("/gateway/verify")
@require_auth
def verify_payment_route():
    """
    Request body:
    {
        "gateway_order_id": "order_...",
        "gateway_payment_id": "pay_...",
        "signature": "<hex hmac>",
        "paymentId": 5
    }

    Returns:
        200: Completed payment (with invoice)
        400: Invalid signature, payment already completed
        404: Unknown payment
    """
    cmd = parse_verify_payment(request.get_json(silent=True))
    payment = get_services().payments.verify_payment(cmd, actor=g.current_user)
    return jsonify({"success": True, "payment": payment.to_dict()}), 200


# =============================================================================
# REFUND / PAYOUT / INVOICE (admin)
# =============================================================================

@payments_bp.post("/<int:payment_id>/refund")
@require_auth
@require_role(ROLE_ADMIN)
def refund_payment_route(payment_id: int):
    """
    Request body: {"reason": "Damaged goods", "amount": 20000 (optional, minor units)}

    Returns:
        200: Refunded payment
        400: Already refunded, not completed, amount out of range
        502/503: Gateway refund failed (payment unchanged)
    """
    cmd = parse_refund(request.get_json(silent=True))
    payment = get_services().payments.refund(payment_id, cmd, actor=g.current_user)
    return jsonify(payment.to_dict()), 200


@payments_bp.post("/farmer")
@require_auth
@require_role(ROLE_ADMIN)
def farmer_payment_route():
    """
    Request body:
    {
        "farmerId": 7,
        "amount": 250000,
        "paymentMethod": "Bank Transfer",
        "inventoryId": 3,           (optional)
        "riceQuantity": 500,        (optional)
        "ratePerKg": 500,           (optional)
        "bankDetails": {...},       (optional)
        "description": "..."        (optional)
    }
    """
    cmd = parse_farmer_payment(request.get_json(silent=True))
    payment = get_services().payments.create_farmer_payment(cmd, actor=g.current_user)
    return jsonify(payment.to_dict()), 201


@payments_bp.post("/<int:payment_id>/invoice")
@require_auth
@require_role(ROLE_ADMIN)
def generate_invoice_route(payment_id: int):
    payment = get_services().payments.generate_invoice(payment_id)
    return jsonify({"invoice_number": payment.invoice_number, "invoice": payment.invoice}), 200


# =============================================================================
# QUERIES
# =============================================================================

@payments_bp.get("/mine")
@require_auth
def my_payments_route():
    limit, offset = parse_paging(request.args)
    rows, total = get_services().payments.my_payments(g.current_user, limit=limit, offset=offset)
    return jsonify({
        "items": [p.to_dict() for p in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@payments_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def list_payments_route():
    """Query params: status, type, limit, offset."""
    limit, offset = parse_paging(request.args)
    status = request.args.get("status") or None
    payment_type = request.args.get("type") or None
    if status is not None and status not in PAYMENT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PAYMENT_STATUSES)}")
    if payment_type is not None and payment_type not in PAYMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(PAYMENT_TYPES)}")

    rows, total = get_services().payments.list_payments(
        status=status,
        payment_type=payment_type,
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [p.to_dict() for p in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment_route(payment_id: int):
    payment = get_services().payments.get_payment(payment_id, actor=g.current_user)
    return jsonify(payment.to_dict()), 200
