"""
Current User Middleware — resolves the caller, sets g.current_user / g.actor.

Authentication happens upstream (login in the web app); by the time a
request reaches the API the user id travels in one of:
  1. ``session["user_id"]``  signed Flask session cookie (browser)
  2. ``X-User-Id`` header    only when ``TRUST_USER_HEADER`` is on

The header carries no proof of identity. Turn it on only for tests, local
development, or when the API sits behind a proxy that authenticates the
caller and sets the header itself.

The id is looked up in ``user_profiles``. Unknown or missing ids leave
``g.actor`` unset; ``login_required`` turns that into a 401.
"""

import functools

from flask import current_app, g, request, session

from pms.models import db
from pms.models.auth import UserProfile
from pms.services.status_policy import ActingUser
from pms.utils.errors import E, api_error

USER_HEADER = "X-User-Id"
SESSION_KEY = "user_id"

# Paths that never need a caller
SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def _requested_user_id():
    if current_app.config.get("TRUST_USER_HEADER"):
        header = request.headers.get(USER_HEADER)
        if header:
            return header
    user_id = session.get(SESSION_KEY)
    return user_id if isinstance(user_id, str) else None


def init_current_user(app):
    """Register the user resolver as a before_request hook."""

    @app.before_request
    def _resolve_current_user():
        g.current_user = None
        g.actor = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        user_id = _requested_user_id()
        if not user_id:
            return
        profile = db.session.get(UserProfile, user_id)
        if profile is None:
            return
        g.current_user = profile
        g.actor = ActingUser.from_profile(profile)


def login_required(f):
    """Reject the request with 401 unless a known user was resolved."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "actor", None) is None:
            return api_error(E.UNAUTHORIZED, "Unauthorized")
        return f(*args, **kwargs)

    return decorated
