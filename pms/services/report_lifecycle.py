"""
Report Lifecycle Service — status transitions.

Runs one status change end to end:
  - Status validation (InvalidStatusError)
  - Policy check against the acting user (ForbiddenError)
  - Conditional status write (ConflictError on a lost race)
  - Status change log entry
  - Notification fan-out (fire-and-forget)

The status write and the log entry commit together, before notifications
are dispatched, so a failed notification can never undo a transition.

Usage:
    from pms.services.report_lifecycle import transition_report

    result = transition_report(actor, report_id="abc", requested_status="in_progress")
    result.report.status      # "in_progress"
    result.log_entry.old_status
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from pms.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStatusError,
    StoreUnavailableError,
)
from pms.models import db
from pms.models.report import REPORT_STATUSES, Report, ReportStatusLog
from pms.services.notification import dispatcher as default_dispatcher
from pms.services.report_store import ReportStore
from pms.services.status_log import StatusChangeLog
from pms.services.status_policy import ActingUser, Decision, TransitionPolicy, get_policy

logger = logging.getLogger(__name__)


def check_status(requested_status) -> str:
    """Return ``requested_status`` if it names a known status, else raise InvalidStatusError."""
    if not isinstance(requested_status, str) or requested_status not in REPORT_STATUSES:
        raise InvalidStatusError(requested_status)
    return requested_status


@dataclass(frozen=True)
class TransitionResult:
    report: Report
    log_entry: ReportStatusLog

    def to_dict(self, changed_by_name=None) -> dict:
        return {
            "report": self.report.to_dict(),
            "log": self.log_entry.to_dict(changed_by_name=changed_by_name),
        }


class ReportLifecycle:
    """Status Transition Engine: authorize, write, log, notify."""

    def __init__(self, store=None, log=None, notifier=None,
                 policy: TransitionPolicy | None = None):
        self.store = store or ReportStore()
        self.log = log or StatusChangeLog()
        self.notifier = notifier or default_dispatcher
        self._policy = policy

    @property
    def policy(self) -> TransitionPolicy:
        return self._policy or get_policy()

    def authorize(self, actor: ActingUser, report, requested_status: str) -> Decision:
        return self.policy.authorize(actor, report.status, requested_status)

    def available_transitions(self, actor: ActingUser, report) -> list[str]:
        if report.is_deleted:
            return []
        return self.policy.available_transitions(actor, report.status)

    def apply(self, actor: ActingUser, report_id, requested_status: str) -> TransitionResult:
        """
        Execute a status transition.

        Returns:
            TransitionResult(report, log_entry)

        Raises:
            InvalidStatusError, NotFoundError, ForbiddenError,
            ConflictError, StoreUnavailableError
        """
        check_status(requested_status)

        report = self.store.get(report_id)
        if report.is_deleted:
            raise ForbiddenError("Cannot change the status of a deleted report", reason="deleted")

        old_status = report.status
        context = {
            "report_id": report_id,
            "user_id": actor.id,
            "old_status": old_status,
            "new_status": requested_status,
        }
        decision = self.authorize(actor, report, requested_status)
        if not decision.allowed:
            logger.info(
                "Status change denied: report=%s %s → %s actor=%s role=%s reason=%s",
                report_id, old_status, requested_status, actor.id, actor.role,
                decision.reason.value,
                extra=dict(context, reason=decision.reason.value),
            )
            raise ForbiddenError(decision.message, reason=decision.reason.value)

        try:
            report = self.store.update_status(report_id, requested_status, expected_status=old_status)
        except ConflictError:
            logger.warning(
                "Status change lost a race: report=%s expected %s", report_id, old_status,
                extra=dict(context, reason="conflict"),
            )
            raise
        entry = self.log.append(report.id, actor.id, old_status, requested_status)
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Commit failed for status change on report=%s", report_id,
                         exc_info=True, extra=context)
            raise StoreUnavailableError("commit") from exc

        logger.info(
            "Report %s status %s → %s by %s (%s)",
            report.id, old_status, requested_status, actor.id,
            "admin" if actor.is_admin else actor.role,
            extra=context,
        )

        self.notifier.report_status_changed(report, old_status, requested_status, actor)
        return TransitionResult(report=report, log_entry=entry)


def transition_report(actor: ActingUser, report_id, requested_status: str) -> TransitionResult:
    """Apply a status change with the default store, log, notifier and policy."""
    return ReportLifecycle().apply(actor, report_id, requested_status)
