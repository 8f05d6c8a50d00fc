"""Report service layer — create, edit, delete and read reports, plus
their reply threads.

Transaction policy: each operation commits its own unit of work (store
writes use flush(); the commit happens here), then dispatches
notifications. Status never changes here directly; a developer's reply
that picks up an open report goes through ``pms.services.report_lifecycle``.

Access rules:
- Read / create / reply: admin, PM/CTO, or a member of the project
- Edit content / delete: the reporter or an admin
- Assignee and dev notes: admin or PM/CTO only
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError

from pms.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from pms.models import db
from pms.models.auth import UserProfile
from pms.models.project import Project, ProjectMember
from pms.models.reply import ReportReadMarker, ReportReply
from pms.models.report import REPORT_PRIORITIES, REPORT_STATUSES, REPORT_TYPES, Report
from pms.services.notification import dispatcher
from pms.services.report_lifecycle import ReportLifecycle
from pms.services.report_store import ReportStore
from pms.services.status_policy import RoleGroup

logger = logging.getLogger(__name__)

_store = ReportStore()
_lifecycle = ReportLifecycle(store=_store)

REPORTER_FIELDS = ("title", "description", "type", "priority", "browser", "device", "attachments")
MANAGER_FIELDS = ("assigned_to", "dev_notes")

# A developer's reply on an open report picks it up
PICKED_UP_FROM = "open"
PICKED_UP_TO = "in_progress"


# ── Access ───────────────────────────────────────────────────────────────


def get_project(project_id):
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def is_member(actor, project_id):
    return (
        ProjectMember.query
        .filter_by(project_id=project_id, user_id=actor.id)
        .first()
        is not None
    )


def check_project_access(actor, project_id):
    """Admin, PM/CTO and project members may work with a project's reports."""
    if actor.is_admin or actor.is_pm:
        return
    if not is_member(actor, project_id):
        raise ForbiddenError("Access denied", reason="not_a_member")


def _commit(operation):
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Commit failed during %s", operation, exc_info=True)
        raise StoreUnavailableError(operation) from exc


# ── Validation ───────────────────────────────────────────────────────────


def _is_choice(value, choices):
    return isinstance(value, str) and value in choices


def _validate_enums(data):
    errors = {}
    if "type" in data and not _is_choice(data["type"], REPORT_TYPES):
        errors["type"] = f"Must be one of: {', '.join(sorted(REPORT_TYPES))}"
    if data.get("priority") and not _is_choice(data["priority"], REPORT_PRIORITIES):
        errors["priority"] = f"Must be one of: {', '.join(sorted(REPORT_PRIORITIES))}"
    for f in ("title", "description", "browser", "device", "dev_notes"):
        if data.get(f) is not None and not isinstance(data[f], str):
            errors[f] = "Must be a string"
    if "attachments" in data and data["attachments"] is not None \
            and not isinstance(data["attachments"], list):
        errors["attachments"] = "Must be a list"
    if errors:
        raise ValidationError("Invalid report fields", details=errors)


def _validate_assignee(user_id):
    if user_id is None:
        return
    if not isinstance(user_id, str) or db.session.get(UserProfile, user_id) is None:
        raise ValidationError("Assignee not found", details={"assigned_to": user_id})


# ── CRUD ─────────────────────────────────────────────────────────────────


def create_report(actor, project_id, data):
    """Create a report in ``open`` status and notify project members.

    Returns:
        Report instance (committed).
    """
    get_project(project_id)
    check_project_access(actor, project_id)

    if not data.get("title") or not data.get("description") or not data.get("type"):
        raise ValidationError(
            "Title, description, and type are required",
            details={f: "required" for f in ("title", "description", "type") if not data.get(f)},
        )
    _validate_enums(data)

    draft = {f: data[f] for f in REPORTER_FIELDS if f in data}
    if actor.is_admin or actor.is_pm:
        for f in MANAGER_FIELDS:
            if f in data:
                draft[f] = data[f]
        _validate_assignee(draft.get("assigned_to"))
    draft["project_id"] = project_id
    draft["reported_by"] = actor.id

    report = _store.create(draft)
    _commit("create")
    logger.info("Report %s (#%s) created in project=%s by %s",
                report.id, report.report_number, project_id, actor.id)

    dispatcher.report_created(report, actor)
    return report


def get_report(actor, report_id, *, include_deleted=False):
    report = _store.get(report_id)
    if report.is_deleted and not include_deleted:
        raise NotFoundError(resource="Report", resource_id=report_id)
    check_project_access(actor, report.project_id)
    return report


def list_reports(actor, project_id, *, status=None, report_type=None):
    get_project(project_id)
    check_project_access(actor, project_id)
    if status and status not in REPORT_STATUSES:
        raise ValidationError(f"Unknown status filter: {status}", details={"status": status})
    return _store.list_for_project(project_id, status=status, report_type=report_type)


def edit_report(actor, report_id, data):
    """Update a report's editable fields.

    Status is rejected here; assignee and dev notes need admin or PM/CTO.
    """
    report = _store.get(report_id)
    check_project_access(actor, report.project_id)

    is_owner = report.reported_by == actor.id or actor.is_admin
    is_manager = actor.is_admin or actor.is_pm
    if not is_owner and not is_manager:
        raise ForbiddenError("Only the report creator can edit this report", reason="not_owner")
    if report.is_deleted:
        raise ForbiddenError("Cannot edit a deleted report", reason="deleted")
    if "status" in data:
        raise ValidationError(
            "Status cannot be edited directly; use the status endpoint",
            details={"status": "read-only"},
        )

    changes = {f: data[f] for f in REPORTER_FIELDS if f in data}
    manager_changes = {f: data[f] for f in MANAGER_FIELDS if f in data}
    if changes and not is_owner:
        raise ForbiddenError("Only the report creator can edit this report", reason="not_owner")
    if manager_changes and not is_manager:
        raise ForbiddenError(
            "Only PM, CTO, or an admin can change the assignee or dev notes",
            reason="role_not_authorized",
        )
    changes.update(manager_changes)

    if not changes:
        raise ValidationError("No valid fields to update")
    for f in ("title", "description", "type"):
        if f in changes and not changes[f]:
            raise ValidationError(f"{f.capitalize()} cannot be empty", details={f: "required"})
    _validate_enums(changes)
    if "assigned_to" in changes:
        _validate_assignee(changes["assigned_to"])

    report = _store.update_fields(report_id, changes)
    _commit("update_fields")
    logger.info("Report %s edited by %s: %s", report.id, actor.id, sorted(changes))
    return report


def delete_report(actor, report_id):
    """Soft-delete a report. The row and its status log stay in place."""
    report = _store.get(report_id)
    check_project_access(actor, report.project_id)

    if report.reported_by != actor.id and not actor.is_admin:
        raise ForbiddenError("Only the report creator can delete this report", reason="not_owner")
    if report.is_deleted:
        raise ValidationError("Report is already deleted")

    report = _store.soft_delete(report_id)
    _commit("soft_delete")
    logger.info("Report %s deleted by %s", report.id, actor.id)
    return report


# ── Replies ──────────────────────────────────────────────────────────────


def list_replies(actor, report_id):
    """Replies on a report, oldest first."""
    report = get_report(actor, report_id)
    return (
        ReportReply.query
        .filter_by(report_id=report.id)
        .order_by(ReportReply.created_at.asc(), ReportReply.id.asc())
        .all()
    )


def add_reply(actor, report_id, data):
    """Post a reply and notify the reporter and assignee.

    A developer replying to an ``open`` report picks it up: the report is
    moved to ``in_progress`` through the lifecycle engine, so the change is
    authorized, logged and notified like any other transition. If the engine
    refuses (policy or a concurrent change) the reply still stands.

    Returns:
        (reply, transition) where transition is a TransitionResult or None.
    """
    report = get_report(actor, report_id)
    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Reply content is required", details={"content": "required"})
    attachments = data.get("attachments") or []
    if not isinstance(attachments, list):
        raise ValidationError("Invalid reply fields", details={"attachments": "Must be a list"})

    reply = ReportReply(
        report_id=report.id,
        user_id=actor.id,
        content=content.strip(),
        attachments=attachments,
    )
    db.session.add(reply)
    _commit("add_reply")
    logger.info("Reply %s added to report %s by %s", reply.id, report.id, actor.id)

    dispatcher.report_replied(report, reply, actor)

    transition = None
    if actor.in_group(RoleGroup.DEV) and report.status == PICKED_UP_FROM:
        try:
            transition = _lifecycle.apply(actor, report.id, PICKED_UP_TO)
        except (ForbiddenError, ConflictError) as exc:
            logger.info(
                "Reply on report %s left status unchanged: %s", report.id, exc,
                extra={"report_id": report.id, "user_id": actor.id},
            )
    return reply, transition


def mark_replies_read(actor, report_id):
    """Record that the caller has seen every reply on the report so far."""
    report = get_report(actor, report_id)
    now = datetime.now(timezone.utc)
    marker = ReportReadMarker.query.filter_by(user_id=actor.id, report_id=report.id).first()
    if marker is None:
        db.session.add(ReportReadMarker(user_id=actor.id, report_id=report.id, last_read_at=now))
    else:
        marker.last_read_at = now
    _commit("mark_replies_read")
    return now


def unread_reply_counts(actor, project_id):
    """{report_id: n} of other people's replies the caller has not read yet.

    Reports with nothing unread are left out; deleted reports are skipped.
    """
    get_project(project_id)
    check_project_access(actor, project_id)

    rows = (
        db.session.query(ReportReply.report_id, func.count(ReportReply.id))
        .join(Report, Report.id == ReportReply.report_id)
        .outerjoin(
            ReportReadMarker,
            and_(
                ReportReadMarker.report_id == ReportReply.report_id,
                ReportReadMarker.user_id == actor.id,
            ),
        )
        .filter(
            Report.project_id == project_id,
            Report.is_deleted.is_(False),
            or_(ReportReply.user_id.is_(None), ReportReply.user_id != actor.id),
            or_(
                ReportReadMarker.last_read_at.is_(None),
                ReportReply.created_at > ReportReadMarker.last_read_at,
            ),
        )
        .group_by(ReportReply.report_id)
        .all()
    )
    return {report_id: count for report_id, count in rows}
