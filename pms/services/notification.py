"""
PMS — Project Management System
Notification Service.

Three layers:
    NotificationService       create / broadcast / query in-app notifications
    ReportNotificationHook    who hears about a report event, and what they see
    NotificationDispatcher    fire-and-forget execution of hook calls

Dispatch is "send and forget": the caller gets control back immediately and
a failing hook is logged and counted on ``dispatcher.failures``, never
raised. With ``NOTIFY_ASYNC`` on, hooks run on a small thread pool inside
their own app context; otherwise they run inline (tests, CLI).
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from flask import current_app

from pms.models import db
from pms.models.notification import Notification
from pms.models.project import Project
from pms.models.reply import ReportReply
from pms.models.report import Report, status_label

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, recipient_id, title, message="", category="system", severity="info",
               project_id=None, entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            project_id=project_id,
            recipient_id=recipient_id,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def broadcast(*, recipients, title, message="", category="system", severity="info",
                  project_id=None, entity_type="", entity_id=None):
        """
        Send a notification to each recipient id.

        Returns:
            List of created Notification instances.
        """
        notifications = []
        for r in recipients:
            notif = Notification(
                project_id=project_id,
                recipient_id=r,
                title=title,
                message=message,
                category=category,
                severity=severity,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        if notifications:
            db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, project_id=None, unread_only=False,
                           limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if project_id:
            q = q.filter_by(project_id=project_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_id, project_id=None):
        """Return count of unread notifications."""
        q = Notification.query.filter_by(recipient_id=recipient_id, is_read=False)
        if project_id:
            q = q.filter_by(project_id=project_id)
        return q.count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient_id):
        """Mark a single notification as read. Returns None if not the recipient's."""
        notif = db.session.get(Notification, notification_id)
        if not notif or notif.recipient_id != recipient_id:
            return None
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient_id, project_id=None):
        """Mark all notifications for a recipient as read."""
        q = Notification.query.filter_by(recipient_id=recipient_id, is_read=False)
        if project_id:
            q = q.filter_by(project_id=project_id)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count


# ═════════════════════════════════════════════════════════════════════════════
# Report fan-out
# ═════════════════════════════════════════════════════════════════════════════

class ReportNotificationHook:
    """Tell interested people that something happened to a report."""

    @staticmethod
    def status_recipients(report, actor_id) -> list[str]:
        """Reporter and assignee, minus the actor, without duplicates."""
        recipients = []
        for uid in (report.reported_by, report.assigned_to):
            if uid and uid != actor_id and uid not in recipients:
                recipients.append(uid)
        return recipients

    def notify(self, report, old_status, new_status, actor):
        recipients = self.status_recipients(report, actor.id)
        if not recipients:
            return []
        severity = "success" if new_status == "resolved" else "info"
        return NotificationService.broadcast(
            recipients=recipients,
            title=f"Report #{report.report_number} moved to {status_label(new_status)}",
            message=f"{report.title}: {status_label(old_status)} → {status_label(new_status)}",
            category="report",
            severity=severity,
            project_id=report.project_id,
            entity_type="report",
            entity_id=report.id,
        )

    def notify_created(self, report, actor):
        """Project members (except the reporter) hear about a new report."""
        project = db.session.get(Project, report.project_id)
        if project is None:
            return []
        recipients = [uid for uid in project.member_ids() if uid != actor.id]
        return NotificationService.broadcast(
            recipients=recipients,
            title=f"New {report.type} in {project.name}",
            message=report.title[:50],
            category="report",
            project_id=report.project_id,
            entity_type="report",
            entity_id=report.id,
        )

    def notify_replied(self, report, reply_id, actor):
        """Reporter and assignee (minus the author) hear about a new reply."""
        reply = db.session.get(ReportReply, reply_id)
        recipients = self.status_recipients(report, actor.id)
        if reply is None or not recipients:
            return []
        return NotificationService.broadcast(
            recipients=recipients,
            title=f"New reply on report #{report.report_number}",
            message=reply.content[:50],
            category="report",
            project_id=report.project_id,
            entity_type="report",
            entity_id=report.id,
        )


class NotificationDispatcher:
    """Runs report hooks without letting them fail the caller."""

    def __init__(self, app=None, hook=None):
        self.hook = hook or ReportNotificationHook()
        self.async_mode = False
        self.failures = 0
        self._lock = threading.Lock()
        self._executor = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.async_mode = bool(app.config.get("NOTIFY_ASYNC", False))
        if self.async_mode and self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=app.config.get("NOTIFY_MAX_WORKERS", 2),
                thread_name_prefix="pms-notify",
            )
        app.extensions["pms_notifications"] = self

    # ── Public ────────────────────────────────────────────────────────────

    def report_status_changed(self, report, old_status, new_status, actor):
        self._dispatch("notify", report.id, old_status, new_status, actor)

    def report_created(self, report, actor):
        self._dispatch("notify_created", report.id, actor)

    def report_replied(self, report, reply, actor):
        self._dispatch("notify_replied", report.id, reply.id, actor)

    # ── Internal ──────────────────────────────────────────────────────────

    def _dispatch(self, method, report_id, *args):
        if not self.async_mode:
            self._invoke(method, report_id, args)
            return
        try:
            app = current_app._get_current_object()
            self._executor.submit(self._run_in_context, app, method, report_id, args)
        except Exception:
            self._record_failure(method, report_id)

    def _run_in_context(self, app, method, report_id, args):
        with app.app_context():
            self._invoke(method, report_id, args)

    def _invoke(self, method, report_id, args):
        try:
            report = db.session.get(Report, report_id)
            if report is None:
                logger.warning("Notification %s skipped: report %s not found", method, report_id)
                return
            getattr(self.hook, method)(report, *args)
        except Exception:
            db.session.rollback()
            self._record_failure(method, report_id)

    def _record_failure(self, method, report_id):
        with self._lock:
            self.failures += 1
        logger.warning(
            "Notification %s failed for report=%s; transition unaffected",
            method, report_id, exc_info=True,
        )


dispatcher = NotificationDispatcher()
