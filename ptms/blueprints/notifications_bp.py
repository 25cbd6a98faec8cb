"""
Notification Blueprint: the acting user's in-app notifications.

Endpoints:
    GET    /api/v1/me/notifications?unread=true&limit=&offset=
    POST   /api/v1/me/notifications/<nid>/read
    POST   /api/v1/me/notifications/read-all
"""

from flask import Blueprint, jsonify, request

from ptms.services.notification import NotificationService
from ptms.utils.errors import E, api_error, register_error_handlers
from ptms.utils.helpers import optional_int, require_actor

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/me/notifications")
register_error_handlers(notifications_bp)


@notifications_bp.route("", methods=["GET"])
def list_notifications():
    actor, err = require_actor()
    if err:
        return err
    try:
        limit = optional_int(request.args.get("limit"), "limit") or 50
        offset = optional_int(request.args.get("offset"), "offset") or 0
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    unread = request.args.get("unread", "").lower() in ("1", "true", "yes")
    items, total = NotificationService.list_for_recipient(
        actor.user_id, unread_only=unread, limit=min(limit, 200), offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@notifications_bp.route("/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    actor, err = require_actor()
    if err:
        return err
    notif = NotificationService.mark_read(notification_id, actor.user_id)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notifications_bp.route("/read-all", methods=["POST"])
def mark_all_read():
    actor, err = require_actor()
    if err:
        return err
    return jsonify({"updated": NotificationService.mark_all_read(actor.user_id)})
