"""Status Change Log — append-only trail of accepted report transitions.

Exposes append and read only. Rows are write-once: the model refuses
updates and deletes at flush time (see ``pms.models.report``).

Usage:
    from pms.services.status_log import StatusChangeLog

    log = StatusChangeLog()
    entry = log.append(report_id, actor_id, "open", "in_progress")
    entries = log.list_for_report(report_id)   # oldest first
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from pms.core.exceptions import StoreUnavailableError
from pms.models import db
from pms.models.auth import UserProfile
from pms.models.report import ReportStatusLog

logger = logging.getLogger(__name__)


class StatusChangeLog:

    def append(self, report_id, actor_id, old_status, new_status) -> ReportStatusLog:
        """Add one entry. Uses ``flush`` so the caller keeps transaction control."""
        entry = ReportStatusLog(
            report_id=report_id,
            changed_by=actor_id,
            old_status=old_status,
            new_status=new_status,
        )
        try:
            db.session.add(entry)
            db.session.flush()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Status log append failed for report=%s", report_id, exc_info=True)
            raise StoreUnavailableError("status_log.append") from exc
        return entry

    def list_for_report(self, report_id) -> list[ReportStatusLog]:
        try:
            return (
                ReportStatusLog.query
                .filter_by(report_id=report_id)
                .order_by(ReportStatusLog.changed_at.asc(), ReportStatusLog.id.asc())
                .all()
            )
        except SQLAlchemyError as exc:
            logger.error("Status log read failed for report=%s", report_id, exc_info=True)
            raise StoreUnavailableError("status_log.list") from exc

    def list_dicts_for_report(self, report_id) -> list[dict]:
        """Entries serialized with the actor's display name, oldest first."""
        entries = self.list_for_report(report_id)
        actor_ids = {e.changed_by for e in entries}
        names = {}
        if actor_ids:
            names = {
                u.id: u.full_name
                for u in UserProfile.query.filter(UserProfile.id.in_(actor_ids)).all()
            }
        return [e.to_dict(changed_by_name=names.get(e.changed_by)) for e in entries]
