"""
Reports API Tests — HTTP contract for the reports and notifications
blueprints: status codes, error codes, user-facing messages.
"""

import pytest

from pms.services.report_store import ReportStore
from pms.core.exceptions import StoreUnavailableError


def _patch_status(client, report_id, status, headers):
    return client.patch(f"/api/v1/reports/{report_id}/status", json={"status": status}, headers=headers)


# ═══════════════════════════════════════════════════════════════════════════
# Caller resolution
# ═══════════════════════════════════════════════════════════════════════════


class TestCurrentUser:

    def test_missing_user_is_401(self, client, report):
        res = client.get(f"/api/v1/reports/{report.id}")
        assert res.status_code == 401
        assert res.get_json() == {"error": "Unauthorized", "code": "ERR_UNAUTHORIZED"}

    def test_unknown_user_is_401(self, client, report):
        res = client.get(f"/api/v1/reports/{report.id}", headers={"X-User-Id": "nobody"})
        assert res.status_code == 401

    def test_signed_session_identifies_user(self, client, report, people):
        with client.session_transaction() as sess:
            sess["user_id"] = people["qa"].id
        res = client.get(f"/api/v1/reports/{report.id}")
        assert res.status_code == 200

    def test_unsigned_cookie_is_not_an_identity(self, client, report, people):
        client.set_cookie("user_id", people["admin"].id)
        res = client.get(f"/api/v1/reports/{report.id}")
        assert res.status_code == 401

    def test_header_ignored_unless_trusted(self, app, client, report, people, auth, monkeypatch):
        monkeypatch.setitem(app.config, "TRUST_USER_HEADER", False)
        res = client.get(f"/api/v1/reports/{report.id}", headers=auth(people["admin"]))
        assert res.status_code == 401

        with client.session_transaction() as sess:
            sess["user_id"] = people["consultant"].id
        res = _patch_status(client, report.id, "in_progress", auth(people["admin"]))
        assert res.status_code == 403

    def test_health_needs_no_user(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_health_live(self, client):
        body = client.get("/api/v1/health/live").get_json()
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["notifications"]["mode"] == "inline"


# ═══════════════════════════════════════════════════════════════════════════
# Report CRUD
# ═══════════════════════════════════════════════════════════════════════════


class TestReportCrud:

    def test_create(self, client, project, people, auth):
        res = client.post(f"/api/v1/projects/{project.id}/reports", headers=auth(people["qa"]), json={
            "title": "Crash on logout", "description": "Every time", "type": "bug", "priority": "high",
        })
        assert res.status_code == 201
        body = res.get_json()["report"]
        assert body["status"] == "open"
        assert body["status_label"] == "Open"
        assert body["reported_by_name"] == "Quinn QA"

    def test_create_missing_fields(self, client, project, people, auth):
        res = client.post(f"/api/v1/projects/{project.id}/reports", headers=auth(people["qa"]),
                          json={"title": "only a title"})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["error"] == "Title, description, and type are required"

    def test_create_with_list_type_is_422(self, client, project, people, auth):
        res = client.post(f"/api/v1/projects/{project.id}/reports", headers=auth(people["qa"]),
                          json={"title": "t", "description": "d", "type": ["bug"]})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert "type" in body["details"]

    def test_create_with_non_object_body_is_422(self, client, project, people, auth):
        res = client.post(f"/api/v1/projects/{project.id}/reports", headers=auth(people["qa"]),
                          json=["bug"])
        assert res.status_code == 422

    def test_pm_cannot_rewrite_title(self, client, report, people, auth):
        res = client.put(f"/api/v1/reports/{report.id}", headers=auth(people["pm"]), json={"title": "x"})
        assert res.status_code == 403
        assert res.get_json()["error"] == "Only the report creator can edit this report"

    def test_list_with_filter(self, client, make_report, project, people, auth):
        make_report(project, people["qa"], status="do_qc")
        make_report(project, people["qa"])
        res = client.get(f"/api/v1/projects/{project.id}/reports?status=do_qc", headers=auth(people["dev"]))
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["reports"][0]["status"] == "do_qc"

    def test_detail_has_available_transitions(self, client, report, people, auth):
        res = client.get(f"/api/v1/reports/{report.id}", headers=auth(people["dev"]))
        assert res.get_json()["report"]["available_transitions"] == ["in_progress"]

        res = client.get(f"/api/v1/reports/{report.id}", headers=auth(people["qa"]))
        assert res.get_json()["report"]["available_transitions"] == []

    def test_missing_report_404(self, client, people, auth):
        res = client.get("/api/v1/reports/nope", headers=auth(people["pm"]))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_edit_by_non_owner_403(self, client, report, people, auth):
        res = client.put(f"/api/v1/reports/{report.id}", headers=auth(people["dev"]), json={"title": "x"})
        assert res.status_code == 403
        assert res.get_json()["error"] == "Only the report creator can edit this report"

    def test_delete_then_404(self, client, report, people, auth):
        res = client.delete(f"/api/v1/reports/{report.id}", headers=auth(people["qa"]))
        assert res.status_code == 200
        assert res.get_json()["message"] == "Report deleted successfully"
        assert client.get(f"/api/v1/reports/{report.id}", headers=auth(people["qa"])).status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Status changes
# ═══════════════════════════════════════════════════════════════════════════


class TestStatusEndpoint:

    def test_success_body(self, client, report, people, auth):
        res = _patch_status(client, report.id, "in_progress", auth(people["dev"]))
        assert res.status_code == 200
        body = res.get_json()
        assert body["message"] == "Status updated successfully"
        assert body["report"]["status"] == "in_progress"
        assert body["report"]["available_transitions"] == ["do_qc", "resolved"]
        assert body["log"]["old_status"] == "open"
        assert body["log"]["new_status"] == "in_progress"
        assert body["log"]["changed_by_name"] == "Dana Dev"

    def test_forbidden_message_verbatim(self, client, report, people, auth):
        res = _patch_status(client, report.id, "in_progress", auth(people["qa"]))
        assert res.status_code == 403
        assert res.get_json() == {
            "error": "Only Developer, PM, or CTO can change status to In Progress",
            "code": "ERR_FORBIDDEN",
        }

    def test_invalid_status_400(self, client, report, people, auth):
        res = _patch_status(client, report.id, "archived", auth(people["pm"]))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_STATUS"
        assert "archived" in res.get_json()["error"]

    def test_missing_status_400(self, client, report, people, auth):
        res = client.patch(f"/api/v1/reports/{report.id}/status", json={}, headers=auth(people["pm"]))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    @pytest.mark.parametrize("status", ["", "archived", ["open"]])
    def test_invalid_status_checked_before_lookup(self, client, people, auth, status):
        res = _patch_status(client, "no-such-report", status, auth(people["pm"]))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_STATUS"

    def test_invalid_status_checked_before_access(self, client, report, make_user, auth):
        res = _patch_status(client, report.id, "archived", auth(make_user("developer")))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_STATUS"

    def test_deleted_report_403(self, client, make_report, project, people, auth):
        r = make_report(project, people["qa"], is_deleted=True)
        res = _patch_status(client, r.id, "in_progress", auth(people["admin"]))
        assert res.status_code == 403
        assert res.get_json()["error"] == "Cannot change the status of a deleted report"

    def test_outsider_403_before_policy(self, client, report, make_user, auth):
        outsider = make_user("developer")
        res = _patch_status(client, report.id, "in_progress", auth(outsider))
        assert res.status_code == 403
        assert res.get_json()["error"] == "Access denied"

    def test_conflict_409_generic_message(self, client, report, people, auth, monkeypatch):
        from pms.core.exceptions import ConflictError

        def lost(self, report_id, new_status, expected_status):
            raise ConflictError("Report", report_id, expected=expected_status)

        monkeypatch.setattr(ReportStore, "update_status", lost)
        res = _patch_status(client, report.id, "in_progress", auth(people["dev"]))
        assert res.status_code == 409
        assert res.get_json() == {
            "error": "This report was updated by someone else. Please reload and try again.",
            "code": "ERR_CONFLICT_STATE",
        }

    def test_store_unavailable_503(self, client, report, people, auth, monkeypatch):
        def down(self, report_id, new_status, expected_status):
            raise StoreUnavailableError("update_status")

        monkeypatch.setattr(ReportStore, "update_status", down)
        res = _patch_status(client, report.id, "in_progress", auth(people["dev"]))
        assert res.status_code == 503
        assert res.get_json()["code"] == "ERR_STORE_UNAVAILABLE"
        assert "temporarily unavailable" in res.get_json()["error"]

    def test_status_log_endpoint(self, client, report, people, auth):
        _patch_status(client, report.id, "in_progress", auth(people["dev"]))
        _patch_status(client, report.id, "do_qc", auth(people["dev"]))
        res = client.get(f"/api/v1/reports/{report.id}/status-log", headers=auth(people["consultant"]))
        assert res.status_code == 200
        entries = res.get_json()["entries"]
        assert [(e["old_status"], e["new_status"]) for e in entries] == [
            ("open", "in_progress"), ("in_progress", "do_qc"),
        ]

    def test_consultant_can_read_but_not_move(self, client, report, people, auth):
        assert client.get(f"/api/v1/reports/{report.id}", headers=auth(people["consultant"])).status_code == 200
        res = _patch_status(client, report.id, "in_progress", auth(people["consultant"]))
        assert res.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# Notifications
# ═══════════════════════════════════════════════════════════════════════════


class TestNotificationEndpoints:

    def test_inbox_after_transition(self, client, report, people, auth):
        _patch_status(client, report.id, "in_progress", auth(people["dev"]))

        res = client.get("/api/v1/notifications?unread_only=1", headers=auth(people["qa"]))
        body = res.get_json()
        assert body["total"] == 1
        assert body["unread_count"] == 1
        notif_id = body["items"][0]["id"]

        res = client.post(f"/api/v1/notifications/{notif_id}/read", headers=auth(people["qa"]))
        assert res.status_code == 200
        assert client.get("/api/v1/notifications/unread-count",
                          headers=auth(people["qa"])).get_json()["unread_count"] == 0

    def test_cannot_read_someone_elses(self, client, report, people, auth):
        _patch_status(client, report.id, "in_progress", auth(people["dev"]))
        items = client.get("/api/v1/notifications", headers=auth(people["qa"])).get_json()["items"]
        res = client.post(f"/api/v1/notifications/{items[0]['id']}/read", headers=auth(people["pm"]))
        assert res.status_code == 404

    def test_requires_user(self, client):
        assert client.get("/api/v1/notifications").status_code == 401


# ═══════════════════════════════════════════════════════════════════════════
# Replies
# ═══════════════════════════════════════════════════════════════════════════


class TestReplyEndpoints:

    def test_developer_reply_picks_up_report(self, client, report, people, auth):
        res = client.post(f"/api/v1/reports/{report.id}/replies", headers=auth(people["dev"]),
                          json={"content": "On it"})
        assert res.status_code == 201
        body = res.get_json()
        assert body["reply"]["content"] == "On it"
        assert body["reply"]["user"]["full_name"] == "Dana Dev"
        assert body["status_changed"] is True
        assert body["report"]["status"] == "in_progress"

        log = client.get(f"/api/v1/reports/{report.id}/status-log", headers=auth(people["qa"])).get_json()
        assert [(e["old_status"], e["new_status"]) for e in log["entries"]] == [("open", "in_progress")]

    def test_tester_reply_keeps_status(self, client, report, people, auth):
        res = client.post(f"/api/v1/reports/{report.id}/replies", headers=auth(people["qa"]),
                          json={"content": "Still happening"})
        body = res.get_json()
        assert body["status_changed"] is False
        assert body["report"]["status"] == "open"

    def test_empty_reply_422(self, client, report, people, auth):
        res = client.post(f"/api/v1/reports/{report.id}/replies", headers=auth(people["qa"]),
                          json={"content": "  "})
        assert res.status_code == 422
        assert res.get_json()["error"] == "Reply content is required"

    def test_list_and_unread_counts(self, client, report, project, people, auth):
        client.post(f"/api/v1/reports/{report.id}/replies", headers=auth(people["pm"]),
                    json={"content": "Which build?"})

        thread = client.get(f"/api/v1/reports/{report.id}/replies", headers=auth(people["qa"])).get_json()
        assert thread["total"] == 1

        url = f"/api/v1/projects/{project.id}/reports/unread-replies"
        assert client.get(url, headers=auth(people["qa"])).get_json()["counts"] == {report.id: 1}

        res = client.post(f"/api/v1/reports/{report.id}/replies/read", headers=auth(people["qa"]))
        assert res.status_code == 200
        assert client.get(url, headers=auth(people["qa"])).get_json()["counts"] == {}

    def test_replies_need_user(self, client, report):
        assert client.get(f"/api/v1/reports/{report.id}/replies").status_code == 401
