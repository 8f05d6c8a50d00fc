"""
Shared pytest fixtures for the PMS test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_project / make_report: entity factories
    - auth: request headers that identify a user
    - people / project / report: a populated project with one user per role
"""

import pytest

from pms import create_app
from pms.models import db as _db
from pms.models.auth import UserProfile
from pms.models.project import Project, ProjectMember
from pms.models.report import Report
from pms.services.notification import dispatcher


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        dispatcher.failures = 0
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


_counter = {"n": 0}


def _seq():
    _counter["n"] += 1
    return _counter["n"]


@pytest.fixture()
def make_user():
    def _make(role="developer", *, is_admin=False, full_name=None):
        n = _seq()
        user = UserProfile(
            full_name=full_name or f"{role.title()} {n}",
            email=f"user{n}@pms.test",
            role=role,
            is_admin=is_admin,
        )
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make


@pytest.fixture()
def make_project():
    def _make(*, name="Mobile App", members=(), created_by=None):
        project = Project(name=name, created_by=created_by)
        _db.session.add(project)
        _db.session.flush()
        for user in members:
            _db.session.add(ProjectMember(project_id=project.id, user_id=user.id))
        _db.session.commit()
        return project
    return _make


@pytest.fixture()
def make_report():
    def _make(project, reporter, *, status="open", assigned_to=None,
              title="Login button does nothing", report_type="bug", is_deleted=False):
        number = Report.query.filter_by(project_id=project.id).count() + 1
        report = Report(
            project_id=project.id,
            report_number=number,
            reported_by=reporter.id,
            assigned_to=assigned_to.id if assigned_to else None,
            title=title,
            description="Steps: tap login. Expected: dashboard.",
            type=report_type,
            status=status,
        )
        if is_deleted:
            report.soft_delete()
        _db.session.add(report)
        _db.session.commit()
        return report
    return _make


@pytest.fixture()
def auth():
    """``client.get(url, headers=auth(user))``"""
    def _headers(user):
        return {"X-User-Id": user.id}
    return _headers


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def people(make_user):
    """One user per role group, plus an admin and an outsider role."""
    return {
        "dev": make_user("developer", full_name="Dana Dev"),
        "rn_dev": make_user("react_native_developer"),
        "qa": make_user("tester", full_name="Quinn QA"),
        "pm": make_user("project_manager", full_name="Pat PM"),
        "cto": make_user("cto"),
        "consultant": make_user("consultant"),
        "admin": make_user("other", is_admin=True, full_name="Ada Admin"),
    }


@pytest.fixture()
def project(make_project, people):
    """A project every non-admin test user is a member of."""
    members = [u for key, u in people.items() if key != "admin"]
    return make_project(members=members)


@pytest.fixture()
def report(make_report, project, people):
    """An open bug filed by the tester and assigned to the developer."""
    return make_report(project, people["qa"], assigned_to=people["dev"])
