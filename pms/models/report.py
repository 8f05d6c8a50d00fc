"""
PMS — Project Management System
Report domain models.

Models:
    - Report:           bug / feature / improvement report filed against a project
    - ReportStatusLog:  append-only trail of accepted status transitions

Architecture ref:
    Project ──1:N──▶ Report ──1:N──▶ ReportStatusLog

Lifecycle (extended workflow):
    open → in_progress → do_qc → resolved
                  ▲         └──▶ still_issue ──▶ in_progress
                  └──────── resolved (reopen)
    open / in_progress / do_qc / still_issue ──▶ wont_fix

The transition/role table lives in ``pms.services.status_policy``.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import event

from pms.core.exceptions import ImmutableRecordError
from pms.models import db
from pms.models.soft_delete import SoftDeleteMixin


# ── Constants ────────────────────────────────────────────────────────────

REPORT_TYPES = {"bug", "feature", "improvement"}

REPORT_PRIORITIES = {"low", "medium", "high", "critical"}

# Ordered: used for display and for iterating the policy table in tests.
REPORT_STATUSES = (
    "open", "in_progress", "do_qc", "resolved", "still_issue", "wont_fix",
)

STATUS_LABELS = {
    "open": "Open",
    "in_progress": "In Progress",
    "do_qc": "Do QC",
    "resolved": "Resolved",
    "still_issue": "Still Issue",
    "wont_fix": "Won't Fix",
}

INITIAL_STATUS = "open"


def status_label(status):
    return STATUS_LABELS.get(status, status)


# ═════════════════════════════════════════════════════════════════════════════
# REPORT
# ═════════════════════════════════════════════════════════════════════════════

class Report(SoftDeleteMixin, db.Model):
    """
    A unit of tracked work attached to a project.

    Never hard-deleted: the reporter or an admin flags it via soft delete,
    after which every mutation is rejected.
    """

    __tablename__ = "project_reports"
    __table_args__ = (
        db.UniqueConstraint("project_id", "report_number", name="uq_report_project_number"),
        db.Index("ix_project_reports_project_status", "project_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    report_number = db.Column(
        db.Integer, nullable=False, default=1,
        comment="Per-project sequence shown as #N in the UI",
    )

    # ── People
    reported_by = db.Column(
        db.String(36), db.ForeignKey("user_profiles.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    assigned_to = db.Column(
        db.String(36), db.ForeignKey("user_profiles.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    # ── Content
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    type = db.Column(db.String(20), nullable=False, default="bug", comment="bug | feature | improvement")
    priority = db.Column(db.String(20), nullable=False, default="medium", comment="low | medium | high | critical")
    status = db.Column(
        db.String(30), nullable=False, default=INITIAL_STATUS,
        comment="open | in_progress | do_qc | resolved | still_issue | wont_fix",
    )
    dev_notes = db.Column(db.Text, default="")
    attachments = db.Column(db.JSON, nullable=False, default=list, comment="Ordered attachment references")
    browser = db.Column(db.String(100), default="")
    device = db.Column(db.String(100), default="")

    # ── Audit
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    edited_at = db.Column(db.DateTime(timezone=True), nullable=True, comment="Last content edit by the reporter")

    status_log = db.relationship(
        "ReportStatusLog", backref="report", lazy="dynamic",
        order_by="ReportStatusLog.changed_at",
    )
    reporter = db.relationship("UserProfile", foreign_keys=[reported_by])
    assignee = db.relationship("UserProfile", foreign_keys=[assigned_to])

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "report_number": self.report_number,
            "reported_by": self.reported_by,
            "reported_by_name": self.reporter.full_name if self.reporter else None,
            "assigned_to": self.assigned_to,
            "assigned_to_name": self.assignee.full_name if self.assignee else None,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "priority": self.priority,
            "status": self.status,
            "status_label": status_label(self.status),
            "dev_notes": self.dev_notes,
            "attachments": list(self.attachments or []),
            "browser": self.browser,
            "device": self.device,
            "is_deleted": bool(self.is_deleted),
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "edited_at": self.edited_at.isoformat() if self.edited_at else None,
        }

    def __repr__(self):
        return f"<Report {self.id}: #{self.report_number} [{self.status}] {self.title[:40]}>"


# ═════════════════════════════════════════════════════════════════════════════
# REPORT STATUS LOG
# ═════════════════════════════════════════════════════════════════════════════

class ReportStatusLog(db.Model):
    """
    One row per accepted status transition.

    Write-once: updates and deletes are refused at flush time.
    """

    __tablename__ = "report_status_log"
    __table_args__ = (
        db.Index("ix_report_status_log_report_ts", "report_id", "changed_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.String(36), db.ForeignKey("project_reports.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    changed_by = db.Column(db.String(36), nullable=False, comment="Acting user id")
    old_status = db.Column(db.String(30), nullable=False)
    new_status = db.Column(db.String(30), nullable=False)
    changed_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self, changed_by_name=None):
        return {
            "id": self.id,
            "report_id": self.report_id,
            "changed_by": self.changed_by,
            "changed_by_name": changed_by_name,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }

    def __repr__(self):
        return f"<ReportStatusLog {self.id}: report#{self.report_id} {self.old_status} → {self.new_status}>"


@event.listens_for(ReportStatusLog, "before_update")
def _refuse_log_update(mapper, connection, target):
    raise ImmutableRecordError("ReportStatusLog", target.id)


@event.listens_for(ReportStatusLog, "before_delete")
def _refuse_log_delete(mapper, connection, target):
    raise ImmutableRecordError("ReportStatusLog", target.id)
