"""
PMS — Project Management System
Identity model.

Models:
    - UserProfile: a team member with a job role and an admin flag.

Authentication itself happens upstream; the report workflow only reads the
profile to build an ``ActingUser`` and to resolve display names.
"""

import uuid
from datetime import datetime, timezone

from pms.models import db


# ── Constants ────────────────────────────────────────────────────────────────

USER_ROLES = {
    "developer", "react_native_developer",
    "tester", "qa", "quality_assurance",
    "project_manager", "cto",
    "consultant", "other",
}


class UserProfile(db.Model):
    __tablename__ = "user_profiles"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    full_name = db.Column(db.String(200), default="")
    email = db.Column(db.String(200), nullable=False, unique=True)
    role = db.Column(
        db.String(40), nullable=False, default="other",
        comment="developer | react_native_developer | tester | qa | quality_assurance | "
                "project_manager | cto | consultant | other",
    )
    is_admin = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    project_memberships = db.relationship(
        "ProjectMember", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role,
            "is_admin": bool(self.is_admin),
        }

    def __repr__(self):
        return f"<UserProfile {self.id}: {self.email} [{self.role}]>"
