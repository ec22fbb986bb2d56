# Overview: Flask API routes for the in-app notification inbox.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth
from ..services import notification_service
from ..validation import parse_paging


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_auth
def list_notifications_route():
    """Query params: unread=true, limit."""
    limit, _ = parse_paging(request.args)
    unread_only = request.args.get("unread", "false").lower() == "true"
    items = notification_service.list_notifications(g.current_user.id, unread_only=unread_only, limit=limit)
    return jsonify({"items": [n.to_dict() for n in items]}), 200


@notifications_bp.put("/<int:notification_id>/read")
@require_auth
def mark_notification_read_route(notification_id: int):
    notification = notification_service.mark_read(notification_id, g.current_user.id)
    return jsonify(notification.to_dict()), 200
