# Overview: Flask API routes for delivery tracking; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..container import get_services
from ..decorators import require_auth, require_role
from ..models.users import ROLE_ADMIN, ROLE_STAFF
from ..state_machine import parse_delivery_status
from ..validation import (
    parse_create_delivery,
    parse_optional_datetime_arg,
    parse_paging,
    parse_update_delivery_status,
)


deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")


@deliveries_bp.post("")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def create_delivery_route():
    """
    Schedule the delivery for a Packed or Shipped order.

    Request body:
    {
        "orderId": 12,
        "scheduledDate": "2026-10-21T09:00:00Z",
        "timeSlot": "09:00-12:00",          (optional)
        "agentId": 4,                       (optional)
        "address": {...},                   (optional, defaults to the order's)
        "specialInstructions": "..."        (optional)
    }

    Returns:
        201: Delivery created
        400: Order not Packed/Shipped, delivery already exists
        404: Unknown order or agent
    """
    cmd = parse_create_delivery(request.get_json(silent=True))
    delivery = get_services().deliveries.create_delivery(cmd, actor=g.current_user)
    return jsonify(delivery.to_dict()), 201


@deliveries_bp.put("/<int:delivery_id>/status")
@require_auth
def update_delivery_status_route(delivery_id: int):
    """
    Staff or the assigned agent.

    Request body: {"status": "Delivered", "location": {...}, "note": "...", "failureReason": "..."}

    Reaching Delivered pushes the order to Delivered.
    """
    cmd = parse_update_delivery_status(request.get_json(silent=True))
    delivery = get_services().deliveries.update_status(delivery_id, cmd, actor=g.current_user)
    return jsonify(delivery.to_dict()), 200


@deliveries_bp.get("")
@require_auth
@require_role(ROLE_STAFF, ROLE_ADMIN)
def list_deliveries_route():
    """Query params: status, agent, from, to (ISO-8601), limit, offset."""
    limit, offset = parse_paging(request.args)
    status = request.args.get("status")
    rows, total = get_services().deliveries.list_deliveries(
        status=parse_delivery_status(status).value if status else None,
        agent_id=request.args.get("agent", type=int),
        from_date=parse_optional_datetime_arg(request.args, "from"),
        to_date=parse_optional_datetime_arg(request.args, "to"),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [d.to_dict() for d in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@deliveries_bp.get("/<int:delivery_id>")
@require_auth
def get_delivery_route(delivery_id: int):
    delivery = get_services().deliveries.get_delivery(delivery_id, actor=g.current_user)
    return jsonify(delivery.to_dict()), 200
