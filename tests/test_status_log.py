"""
Status Change Log Tests — append, chronological reads, write-once rows.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from pms.core.exceptions import ImmutableRecordError, StoreUnavailableError
from pms.models import db
from pms.models.report import ReportStatusLog
from pms.services.status_log import StatusChangeLog


@pytest.fixture()
def log():
    return StatusChangeLog()


class TestAppend:

    def test_append_flushes_entry(self, log, report, people):
        entry = log.append(report.id, people["dev"].id, "open", "in_progress")
        assert entry.id is not None
        assert entry.changed_at is not None
        assert entry.report_id == report.id

    def test_append_does_not_commit(self, log, report, people):
        log.append(report.id, people["dev"].id, "open", "in_progress")
        db.session.rollback()
        assert log.list_for_report(report.id) == []

    def test_append_failure_is_store_unavailable(self, log, report, people, monkeypatch):
        def boom():
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db.session, "flush", boom)
        with pytest.raises(StoreUnavailableError) as exc_info:
            log.append(report.id, people["dev"].id, "open", "in_progress")
        assert exc_info.value.operation == "status_log.append"


class TestRead:

    def test_oldest_first(self, log, report, people):
        base = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        # Inserted out of order on purpose.
        for minutes, (old, new) in ((20, ("do_qc", "resolved")),
                                    (0, ("open", "in_progress")),
                                    (10, ("in_progress", "do_qc"))):
            db.session.add(ReportStatusLog(
                report_id=report.id, changed_by=people["dev"].id,
                old_status=old, new_status=new,
                changed_at=base + timedelta(minutes=minutes),
            ))
        db.session.commit()

        entries = log.list_for_report(report.id)
        assert [e.new_status for e in entries] == ["in_progress", "do_qc", "resolved"]

    def test_same_timestamp_keeps_insert_order(self, log, report, people):
        for old, new in (("open", "in_progress"), ("in_progress", "do_qc")):
            log.append(report.id, people["dev"].id, old, new)
        db.session.commit()
        assert [e.new_status for e in log.list_for_report(report.id)] == ["in_progress", "do_qc"]

    def test_scoped_to_report(self, log, make_report, project, people):
        a = make_report(project, people["qa"], title="A")
        b = make_report(project, people["qa"], title="B")
        log.append(a.id, people["dev"].id, "open", "in_progress")
        log.append(b.id, people["pm"].id, "open", "wont_fix")
        db.session.commit()
        assert [e.new_status for e in log.list_for_report(b.id)] == ["wont_fix"]

    def test_dicts_carry_actor_name(self, log, report, people):
        log.append(report.id, people["dev"].id, "open", "in_progress")
        db.session.commit()
        [row] = log.list_dicts_for_report(report.id)
        assert row["changed_by_name"] == "Dana Dev"
        assert row["old_status"] == "open"
        assert row["new_status"] == "in_progress"

    def test_unknown_actor_name_is_none(self, log, report):
        log.append(report.id, "removed-user", "open", "in_progress")
        db.session.commit()
        [row] = log.list_dicts_for_report(report.id)
        assert row["changed_by_name"] is None


class TestImmutability:

    def test_update_refused(self, log, report, people):
        entry = log.append(report.id, people["dev"].id, "open", "in_progress")
        db.session.commit()

        entry.new_status = "resolved"
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()
        assert log.list_for_report(report.id)[0].new_status == "in_progress"

    def test_delete_refused(self, log, report, people):
        entry = log.append(report.id, people["dev"].id, "open", "in_progress")
        db.session.commit()

        db.session.delete(entry)
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()
        assert len(log.list_for_report(report.id)) == 1

    def test_no_mutators_exposed(self, log):
        assert not hasattr(log, "update")
        assert not hasattr(log, "delete")
