"""
Soft Delete Mixin

Adds an ``is_deleted`` flag plus ``deleted_at`` timestamp and query helpers.
Models that include this mixin are flagged rather than physically removed.
There is no restore: once flagged, a record stays deleted.

Usage:
    class MyModel(SoftDeleteMixin, db.Model):
        ...

    obj.soft_delete()
    db.session.commit()

    MyModel.query_active().all()    # excludes flagged rows
    MyModel.query.all()             # everything
"""

from datetime import datetime, timezone

from pms.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None)

    def soft_delete(self):
        """Flag this record as deleted."""
        self.is_deleted = True
        self.deleted_at = datetime.now(timezone.utc)

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.is_deleted.is_(False))
