"""
Corporate CRM Workflow
User profile model.

Models:
    - UserProfile: actor / recipient record (role + contact address)
"""

import uuid
from datetime import datetime, timezone

from crm_workflow.models import db


ROLE_ADMIN = "admin"
ROLE_USER = "user"
USER_ROLES = {ROLE_ADMIN, ROLE_USER}


def _uuid():
    return str(uuid.uuid4())


class UserProfile(db.Model):
    """
    A platform user.

    Authentication lives elsewhere; this row only carries what the
    workflow needs: who acts, who owns an application, who is an admin.
    """

    __tablename__ = "user_profiles"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), nullable=True, index=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER, comment="admin | user")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def active_admins(cls):
        """Return all active administrator profiles."""
        return cls.query.filter_by(role=ROLE_ADMIN, is_active=True).order_by(cls.name).all()

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<UserProfile {self.id}: {self.name} ({self.role})>"
