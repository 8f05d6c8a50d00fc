"""
PMS — Project Management System
Report discussion models.

Models:
    - ReportReply:       one message in a report's comment thread
    - ReportReadMarker:  per-user "read up to" timestamp for a report's thread

Architecture ref:
    Report ──1:N──▶ ReportReply
    Report ──1:N──▶ ReportReadMarker ◀──N:1── UserProfile
"""

from datetime import datetime, timezone

from pms.models import db


class ReportReply(db.Model):
    __tablename__ = "report_replies"
    __table_args__ = (
        db.Index("ix_report_replies_report_ts", "report_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.String(36), db.ForeignKey("project_reports.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("user_profiles.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    content = db.Column(db.Text, nullable=False)
    attachments = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    author = db.relationship("UserProfile")

    def to_dict(self):
        return {
            "id": self.id,
            "report_id": self.report_id,
            "user_id": self.user_id,
            "user": {
                "id": self.author.id,
                "full_name": self.author.full_name,
                "role": self.author.role,
            } if self.author else None,
            "content": self.content,
            "attachments": list(self.attachments or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ReportReply {self.id}: report#{self.report_id} by {self.user_id}>"


class ReportReadMarker(db.Model):
    """Replies newer than ``last_read_at`` (and not the user's own) count as unread."""

    __tablename__ = "user_report_reads"
    __table_args__ = (
        db.UniqueConstraint("user_id", "report_id", name="uq_user_report_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(36), db.ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    report_id = db.Column(
        db.String(36), db.ForeignKey("project_reports.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    last_read_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
