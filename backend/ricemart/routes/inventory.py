# Overview: Flask API routes for the stock ledger; purchases, adjustments, quality and forecasts.

from flask import Blueprint, request, jsonify, g

from ..container import get_services
from ..decorators import require_auth, require_role
from ..errors import ValidationError
from ..models.inventory import STOCK_STATUSES
from ..models.users import ROLE_ADMIN, ROLE_STAFF
from ..validation import (
    parse_adjust_stock,
    parse_paging,
    parse_quality_assessment,
    parse_record_purchase,
    parse_update_ledger_entry,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STAFF = (ROLE_STAFF, ROLE_ADMIN)


def _bool_arg(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    lowered = raw.lower()
    if lowered not in {"true", "false"}:
        raise ValidationError(f"{name} must be true or false")
    return lowered == "true"


@inventory_bp.post("/purchase")
@require_auth
@require_role(*STAFF)
def record_purchase_route():
    """
    Record rice bought from a farmer.

    Request body:
    {
        "productId": 1,
        "farmerId": 7,
        "quantityPurchased": 500,
        "purchasePrice": 4000,       (minor units per unit)
        "sellingPrice": 5500,
        "lowStockThreshold": 50,     (optional)
        "qualityGrade": "A",         (optional)
        "warehouseLocation": {...},  (optional)
        "packaging": {...}           (optional)
    }

    Returns:
        201: Ledger entry with its purchase movement
        404: Unknown product or farmer
    """
    cmd = parse_record_purchase(request.get_json(silent=True))
    entry = get_services().stock.record_purchase(cmd, actor_user_id=g.current_user.id)
    return jsonify(entry.to_dict(include_movements=True)), 201


@inventory_bp.get("")
@require_auth
@require_role(*STAFF)
def list_inventory_route():
    """
    Query params:
    - status: available | low-stock | out-of-stock
    - lowStock: true | false
    - farmer: farmer user id
    - limit, offset
    """
    limit, offset = parse_paging(request.args)
    status = request.args.get("status") or None
    if status is not None and status not in STOCK_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(STOCK_STATUSES)}")
    farmer_id = request.args.get("farmer", type=int)

    rows, total = get_services().stock.list_entries(
        status=status,
        low_stock=_bool_arg("lowStock"),
        farmer_id=farmer_id,
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [e.to_dict() for e in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@inventory_bp.get("/low-stock")
@require_auth
@require_role(*STAFF)
def low_stock_route():
    entries = get_services().stock.low_stock_entries()
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)}), 200


@inventory_bp.post("/run-forecasting")
@require_auth
@require_role(ROLE_ADMIN)
def run_forecasting_route():
    """Forecast every entry; entries without enough history are skipped."""
    summary = get_services().stock.run_forecasting()
    return jsonify(summary), 200


@inventory_bp.get("/<int:entry_id>")
@require_auth
@require_role(*STAFF)
def get_inventory_route(entry_id: int):
    entry = get_services().stock.get_entry(entry_id)
    return jsonify(entry.to_dict(include_movements=True)), 200


@inventory_bp.put("/<int:entry_id>")
@require_auth
@require_role(*STAFF)
def update_inventory_route(entry_id: int):
    """Request body: any of sellingPrice, lowStockThreshold, warehouseLocation."""
    cmd = parse_update_ledger_entry(request.get_json(silent=True))
    entry = get_services().stock.update_entry(entry_id, cmd)
    return jsonify(entry.to_dict()), 200


@inventory_bp.post("/<int:entry_id>/adjust")
@require_auth
@require_role(*STAFF)
def adjust_inventory_route(entry_id: int):
    """
    Request body: {"quantity": -5, "reason": "Damaged bags", "type": "loss"}

    Returns:
        200: Updated entry with movements
        400: Adjustment would make stock negative
    """
    cmd = parse_adjust_stock(request.get_json(silent=True))
    entry = get_services().stock.adjust(entry_id, cmd, actor_user_id=g.current_user.id)
    return jsonify(entry.to_dict(include_movements=True)), 200


@inventory_bp.post("/<int:entry_id>/quality")
@require_auth
@require_role(*STAFF)
def quality_assessment_route(entry_id: int):
    cmd = parse_quality_assessment(request.get_json(silent=True))
    entry = get_services().stock.add_quality_assessment(entry_id, cmd, actor_user_id=g.current_user.id)
    return jsonify(entry.to_dict()), 201


@inventory_bp.get("/<int:entry_id>/forecast")
@require_auth
@require_role(*STAFF)
def forecast_route(entry_id: int):
    forecast = get_services().stock.forecast(entry_id)
    return jsonify({"inventory_id": entry_id, "forecast": forecast.to_dict()}), 200
