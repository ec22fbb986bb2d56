# Overview: Flask API routes for orders; parses input into commands and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..container import get_services
from ..decorators import require_auth, require_role
from ..models.users import ROLE_ADMIN, ROLE_STAFF
from ..state_machine import parse_order_status
from ..validation import (
    parse_cancel_order,
    parse_create_order,
    parse_mark_order_paid,
    parse_optional_datetime_arg,
    parse_paging,
    parse_update_order_status,
    parse_update_tracking,
)


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _page(rows, total, limit, offset):
    return {
        "items": [o.to_dict(include_history=False) for o in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


# =============================================================================
# CHECKOUT
# =============================================================================

@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Create an order (checkout).

    Request body:
    {
        "items": [{"productId": 1, "quantity": 3}],
        "shippingAddress": {"address": "...", "city": "...", "postalCode": "...", "country": "..."},
        "paymentMethod": "Cash on Delivery",
        "taxPrice": 0, "shippingPrice": 0,
        "itemsPrice": 1500, "totalPrice": 1500,   (optional, checked against the server's totals)
        "paymentResult": {...}                     (optional; marks the order paid only when staff place it)
    }

    Returns:
        201: Order created
        400: Invalid input, out of stock
        404: Unknown product
    """
    cmd = parse_create_order(request.get_json(silent=True))
    order = get_services().orders.create_order(cmd, actor=g.current_user)
    return jsonify(order.to_dict()), 201


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def list_orders_route():
    """
    Staff listing.

    Query params:
    - status, search (order number), from, to (ISO-8601), limit, offset
    """
    limit, offset = parse_paging(request.args)
    status = request.args.get("status")
    rows, total = get_services().orders.list_orders(
        status=parse_order_status(status).value if status else None,
        search=request.args.get("search") or None,
        from_date=parse_optional_datetime_arg(request.args, "from"),
        to_date=parse_optional_datetime_arg(request.args, "to"),
        limit=limit,
        offset=offset,
    )
    return jsonify(_page(rows, total, limit, offset)), 200


@orders_bp.get("/mine")
@require_auth
def my_orders_route():
    limit, offset = parse_paging(request.args)
    rows, total = get_services().orders.my_orders(g.current_user, limit=limit, offset=offset)
    return jsonify(_page(rows, total, limit, offset)), 200


@orders_bp.get("/counts")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def order_counts_route():
    return jsonify({"counts": get_services().orders.counts_by_status()}), 200


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    order = get_services().orders.get_order(order_id, actor=g.current_user)
    return jsonify(order.to_dict()), 200


# =============================================================================
# STATUS CHANGES
# =============================================================================

@orders_bp.put("/<int:order_id>/status")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def update_order_status_route(order_id: int):
    """
    Move an order along the transition table.

    Request body: {"status": "Packed", "note": "optional"}

    Returns:
        200: Updated order
        400: Illegal transition, missing delivery proof
        404: Unknown order
    """
    cmd = parse_update_order_status(request.get_json(silent=True))
    order = get_services().orders.update_status(order_id, cmd, actor=g.current_user)
    return jsonify(order.to_dict()), 200


@orders_bp.put("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    """Owner or staff; stock held by the order is restored."""
    cmd = parse_cancel_order(request.get_json(silent=True))
    order = get_services().orders.cancel_order(order_id, cmd, actor=g.current_user)
    return jsonify(order.to_dict()), 200


@orders_bp.put("/<int:order_id>/tracking")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def update_tracking_route(order_id: int):
    """
    Request body: {"trackingNumber": "TRK123", "courierProvider": "BlueDart"}

    A Packed order is promoted to Shipped.
    """
    cmd = parse_update_tracking(request.get_json(silent=True))
    order = get_services().orders.update_tracking(order_id, cmd, actor=g.current_user)
    return jsonify(order.to_dict()), 200


@orders_bp.put("/<int:order_id>/pay")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def mark_order_paid_route(order_id: int):
    """Staff record an out-of-band payment result ({"id", "status", "update_time", "email_address"})."""
    cmd = parse_mark_order_paid(request.get_json(silent=True))
    order = get_services().orders.mark_paid(order_id, cmd, actor=g.current_user)
    return jsonify(order.to_dict()), 200
