"""
Corporate CRM Workflow
Status history model.

Models:
    - StatusChange: immutable, append-only record of one status transition.
"""

from datetime import datetime, timezone

from crm_workflow.models import db


class StatusChange(db.Model):
    """
    One row per committed transition.

    ``id`` doubles as the transition id: callers may supply it as an
    idempotency key, and notifications reference it.
    """

    __tablename__ = "status_changes"
    __table_args__ = (
        db.Index("idx_status_change_app_ts", "application_id", "created_at"),
        db.Index("idx_status_change_actor", "changed_by"),
    )

    id = db.Column(db.String(36), primary_key=True)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    previous_status = db.Column(db.String(30), nullable=True)
    new_status = db.Column(db.String(30), nullable=False)

    changed_by = db.Column(db.String(36), nullable=False, comment="Actor id")
    changed_by_name = db.Column(db.String(150), nullable=True)
    changed_by_role = db.Column(db.String(20), nullable=False, comment="admin | user")
    comment = db.Column(db.Text, nullable=True)
    is_override = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "changed_by": self.changed_by,
            "changed_by_name": self.changed_by_name,
            "changed_by_role": self.changed_by_role,
            "comment": self.comment,
            "is_override": self.is_override,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<StatusChange {self.id}: {self.previous_status} → {self.new_status}>"
