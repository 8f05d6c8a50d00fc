"""
PMS — Project Management System
Notification Blueprint.

Endpoints (all scoped to the calling user):
    GET  /api/v1/notifications                 list (?unread_only=1, ?project_id=)
    GET  /api/v1/notifications/unread-count
    POST /api/v1/notifications/<id>/read
    POST /api/v1/notifications/read-all
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from pms.blueprints import paging_args
from pms.middleware.current_user import login_required
from pms.services.notification import NotificationService
from pms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")


def _flag(name):
    return request.args.get(name, "").lower() in ("1", "true", "yes")


@notification_bp.route("/notifications", methods=["GET"])
@login_required
def list_notifications():
    limit, offset = paging_args()
    items, total = NotificationService.list_for_recipient(
        g.actor.id,
        project_id=request.args.get("project_id"),
        unread_only=_flag("unread_only"),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(g.actor.id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@login_required
def unread_count():
    return jsonify({
        "unread_count": NotificationService.unread_count(
            g.actor.id, project_id=request.args.get("project_id"),
        ),
    })


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
@login_required
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, g.actor.id)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
@login_required
def mark_all_read():
    data = request.get_json(silent=True) or {}
    count = NotificationService.mark_all_read(g.actor.id, project_id=data.get("project_id"))
    return jsonify({"marked": count})
