"""Report Store — persistence for Report rows, no business policy.

Transaction policy: methods use flush(), never commit(). The caller
(lifecycle engine or report service) owns the commit.

Failure policy: one attempt per call. SQLAlchemy errors are rolled back and
re-raised as ``StoreUnavailableError`` (or ``ConflictError`` for unique
violations); nothing is retried here.

Concurrency: ``update_status`` is a conditional write
(``UPDATE ... WHERE id = :id AND status = :expected``), so two requests that
authorized against the same status cannot both win.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from pms.core.exceptions import ConflictError, NotFoundError, StoreUnavailableError
from pms.models import db
from pms.models.report import INITIAL_STATUS, Report

logger = logging.getLogger(__name__)


# Columns update_fields() is allowed to touch. Status is excluded on purpose:
# it only moves through update_status().
EDITABLE_FIELDS = (
    "title", "description", "type", "priority",
    "browser", "device", "attachments",
    "assigned_to", "dev_notes",
)


@contextmanager
def _store_errors(operation):
    try:
        yield
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Report store integrity error during %s: %s", operation, exc.orig)
        raise ConflictError("Report", message=f"Report {operation} collided with a concurrent write") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Report store failure during %s", operation, exc_info=True)
        raise StoreUnavailableError(operation) from exc


class ReportStore:
    """Durable CRUD for ``Report`` entities."""

    def get(self, report_id) -> Report:
        """Load a report by id.

        Raises:
            NotFoundError: no such report.
            StoreUnavailableError: the read failed.
        """
        with _store_errors("get"):
            report = db.session.get(Report, report_id)
        if report is None:
            raise NotFoundError(resource="Report", resource_id=report_id)
        return report

    def create(self, draft: dict) -> Report:
        """Insert a new report with status ``open`` and the next report number."""
        with _store_errors("create"):
            report = Report(
                project_id=draft["project_id"],
                report_number=self._next_report_number(draft["project_id"]),
                reported_by=draft.get("reported_by"),
                assigned_to=draft.get("assigned_to"),
                title=draft["title"],
                description=draft.get("description", ""),
                type=draft.get("type", "bug"),
                priority=draft.get("priority") or "medium",
                status=INITIAL_STATUS,
                dev_notes=draft.get("dev_notes", ""),
                attachments=list(draft.get("attachments") or []),
                browser=draft.get("browser") or "",
                device=draft.get("device") or "",
            )
            db.session.add(report)
            db.session.flush()
        return report

    def update_status(self, report_id, new_status: str, expected_status: str) -> Report:
        """Set the status only if the stored status still equals ``expected_status``.

        Raises:
            ConflictError: a concurrent writer changed the status (or deleted
                the report) after the caller read it.
            NotFoundError: the report no longer exists.
            StoreUnavailableError: the write failed.
        """
        now = datetime.now(timezone.utc)
        with _store_errors("update_status"):
            rows = (
                Report.query
                .filter(
                    Report.id == report_id,
                    Report.status == expected_status,
                    Report.is_deleted.is_(False),
                )
                .update(
                    {Report.status: new_status, Report.updated_at: now},
                    synchronize_session="fetch",
                )
            )
        if rows == 0:
            # Distinguish a lost race from a missing row.
            self.get(report_id)
            logger.info(
                "Conditional status write lost: report=%s expected=%s wanted=%s",
                report_id, expected_status, new_status,
            )
            raise ConflictError("Report", report_id, expected=expected_status)
        return self.get(report_id)

    def update_fields(self, report_id, fields: dict) -> Report:
        """Apply editable fields and stamp ``edited_at``.

        Unknown keys are ignored. Callers check ownership and the deleted flag.
        """
        report = self.get(report_id)
        with _store_errors("update_fields"):
            for name in EDITABLE_FIELDS:
                if name in fields:
                    value = fields[name]
                    if name == "attachments":
                        value = list(value or [])
                    setattr(report, name, value)
            report.edited_at = datetime.now(timezone.utc)
            db.session.flush()
        return report

    def soft_delete(self, report_id) -> Report:
        report = self.get(report_id)
        with _store_errors("soft_delete"):
            report.soft_delete()
            db.session.flush()
        return report

    def list_for_project(self, project_id, *, status=None, report_type=None,
                         include_deleted=False) -> list[Report]:
        """Reports of a project, newest first."""
        with _store_errors("list_for_project"):
            q = Report.query if include_deleted else Report.query_active()
            q = q.filter(Report.project_id == project_id)
            if status:
                q = q.filter(Report.status == status)
            if report_type:
                q = q.filter(Report.type == report_type)
            return q.order_by(Report.created_at.desc(), Report.report_number.desc()).all()

    # ── Internal ──────────────────────────────────────────────────────────

    @staticmethod
    def _next_report_number(project_id) -> int:
        current = (
            db.session.query(func.max(Report.report_number))
            .filter(Report.project_id == project_id)
            .scalar()
        )
        return (current or 0) + 1
