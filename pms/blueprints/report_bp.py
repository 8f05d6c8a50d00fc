"""
PMS — Project Management System
Reports Blueprint.

Endpoints:
    POST   /api/v1/projects/<project_id>/reports     create (201)
    GET    /api/v1/projects/<project_id>/reports     list (?status=, ?type=)
    GET    /api/v1/reports/<report_id>               detail + available_transitions
    PUT    /api/v1/reports/<report_id>               edit fields
    DELETE /api/v1/reports/<report_id>               soft delete
    PATCH  /api/v1/reports/<report_id>/status        status transition
    GET    /api/v1/reports/<report_id>/status-log    transition history, oldest first
    GET    /api/v1/reports/<report_id>/replies       reply thread, oldest first
    POST   /api/v1/reports/<report_id>/replies       add reply (201)
    POST   /api/v1/reports/<report_id>/replies/read  mark thread read
    GET    /api/v1/projects/<project_id>/reports/unread-replies   unread reply counts

Every route needs a resolved caller (``g.actor``). Service errors are
rendered by the blueprint error handler via ``api_error_for``.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

import pms.services.report_service as reports
from pms.core.exceptions import ConflictError, DomainError, StoreUnavailableError
from pms.middleware.current_user import login_required
from pms.services.report_lifecycle import ReportLifecycle, check_status
from pms.services.status_log import StatusChangeLog
from pms.utils.errors import E, api_error, api_error_for

logger = logging.getLogger(__name__)

report_bp = Blueprint("reports", __name__, url_prefix="/api/v1")

_lifecycle = ReportLifecycle()
_status_log = StatusChangeLog()


# ── Error handlers ────────────────────────────────────────────────────────────


@report_bp.errorhandler(DomainError)
def _handle_domain_error(error: DomainError):
    if isinstance(error, (ConflictError, StoreUnavailableError)):
        logger.warning("%s endpoint=%s: %s", type(error).__name__, request.endpoint, error)
    details = getattr(error, "details", None) or None
    return api_error_for(error, details=details)


def _json_object():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _report_payload(report):
    d = report.to_dict()
    d["available_transitions"] = _lifecycle.available_transitions(g.actor, report)
    return d


# ═════════════════════════════════════════════════════════════════════════
# Project reports
# ═════════════════════════════════════════════════════════════════════════


@report_bp.route("/projects/<project_id>/reports", methods=["POST"])
@login_required
def create_report(project_id):
    data = _json_object()
    report = reports.create_report(g.actor, project_id, data)
    return jsonify({"report": report.to_dict()}), 201


@report_bp.route("/projects/<project_id>/reports", methods=["GET"])
@login_required
def list_reports(project_id):
    items = reports.list_reports(
        g.actor, project_id,
        status=request.args.get("status"),
        report_type=request.args.get("type"),
    )
    return jsonify({"reports": [r.to_dict() for r in items], "total": len(items)})


# ═════════════════════════════════════════════════════════════════════════
# Single report
# ═════════════════════════════════════════════════════════════════════════


@report_bp.route("/reports/<report_id>", methods=["GET"])
@login_required
def get_report(report_id):
    report = reports.get_report(g.actor, report_id)
    return jsonify({"report": _report_payload(report)})


@report_bp.route("/reports/<report_id>", methods=["PUT"])
@login_required
def update_report(report_id):
    data = _json_object()
    report = reports.edit_report(g.actor, report_id, data)
    return jsonify({"report": _report_payload(report)})


@report_bp.route("/reports/<report_id>", methods=["DELETE"])
@login_required
def delete_report(report_id):
    reports.delete_report(g.actor, report_id)
    return jsonify({"message": "Report deleted successfully"})


# ═════════════════════════════════════════════════════════════════════════
# Status lifecycle
# ═════════════════════════════════════════════════════════════════════════


@report_bp.route("/reports/<report_id>/status", methods=["PATCH"])
@login_required
def change_status(report_id):
    """Move a report to a new status.

    Body: {"status": "<new status>"}
    Returns: {"report", "log", "message"}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or "status" not in data:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    new_status = check_status(data["status"])

    # Then project access; the engine decides on the transition itself.
    reports.get_report(g.actor, report_id, include_deleted=True)
    result = _lifecycle.apply(g.actor, report_id, new_status)

    body = result.to_dict(changed_by_name=g.current_user.full_name)
    body["report"]["available_transitions"] = _lifecycle.available_transitions(
        g.actor, result.report,
    )
    body["message"] = "Status updated successfully"
    return jsonify(body)


@report_bp.route("/reports/<report_id>/status-log", methods=["GET"])
@login_required
def status_log(report_id):
    report = reports.get_report(g.actor, report_id, include_deleted=True)
    entries = _status_log.list_dicts_for_report(report.id)
    return jsonify({"entries": entries, "total": len(entries)})


# ═════════════════════════════════════════════════════════════════════════
# Replies
# ═════════════════════════════════════════════════════════════════════════


@report_bp.route("/reports/<report_id>/replies", methods=["GET"])
@login_required
def list_replies(report_id):
    replies = reports.list_replies(g.actor, report_id)
    return jsonify({"replies": [r.to_dict() for r in replies], "total": len(replies)})


@report_bp.route("/reports/<report_id>/replies", methods=["POST"])
@login_required
def add_reply(report_id):
    """Post a reply.

    Body: {"content": "...", "attachments": [...]}
    Returns: {"reply", "report", "status_changed"} (201)
    """
    reply, transition = reports.add_reply(g.actor, report_id, _json_object())
    report = transition.report if transition else reports.get_report(g.actor, report_id)
    return jsonify({
        "reply": reply.to_dict(),
        "report": _report_payload(report),
        "status_changed": transition is not None,
    }), 201


@report_bp.route("/reports/<report_id>/replies/read", methods=["POST"])
@login_required
def mark_replies_read(report_id):
    read_at = reports.mark_replies_read(g.actor, report_id)
    return jsonify({"success": True, "last_read_at": read_at.isoformat()})


@report_bp.route("/projects/<project_id>/reports/unread-replies", methods=["GET"])
@login_required
def unread_replies(project_id):
    return jsonify({"counts": reports.unread_reply_counts(g.actor, project_id)})
