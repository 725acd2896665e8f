"""
Corporate CRM Workflow
Application domain model.

Models:
    - Application: a customer application moving through the status workflow
    - ApplicationDocument: a document requirement attached to an application

Lifecycle:
    Draft → Submitted → Sent to Bank → Complete → Paid
    with Returned / Need More Info / Rejected side branches.
"""

import uuid
from datetime import datetime, timezone

from crm_workflow.models import db


__all__ = [
    "STATUS_DRAFT",
    "STATUS_SUBMITTED",
    "STATUS_RETURNED",
    "STATUS_SENT_TO_BANK",
    "STATUS_NEED_MORE_INFO",
    "STATUS_COMPLETE",
    "STATUS_REJECTED",
    "STATUS_PAID",
    "APPLICATION_STATUSES",
    "ADMIN_TRANSITIONS",
    "USER_TRANSITIONS",
    "COMMENT_REQUIRED_STATUSES",
    "STATUS_DESCRIPTIONS",
    "Application",
    "ApplicationDocument",
]


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_DRAFT = "Draft"
STATUS_SUBMITTED = "Submitted"
STATUS_RETURNED = "Returned"
STATUS_SENT_TO_BANK = "Sent to Bank"
STATUS_NEED_MORE_INFO = "Need More Info"
STATUS_COMPLETE = "Complete"
STATUS_REJECTED = "Rejected"
STATUS_PAID = "Paid"

APPLICATION_STATUSES = (
    STATUS_DRAFT,
    STATUS_SUBMITTED,
    STATUS_RETURNED,
    STATUS_SENT_TO_BANK,
    STATUS_NEED_MORE_INFO,
    STATUS_COMPLETE,
    STATUS_REJECTED,
    STATUS_PAID,
)

# Admin-initiated transitions: current → allowed targets
ADMIN_TRANSITIONS = {
    STATUS_DRAFT: frozenset(),
    STATUS_SUBMITTED: frozenset({STATUS_RETURNED, STATUS_SENT_TO_BANK}),
    STATUS_RETURNED: frozenset({STATUS_SENT_TO_BANK}),
    STATUS_SENT_TO_BANK: frozenset({STATUS_COMPLETE, STATUS_REJECTED, STATUS_NEED_MORE_INFO}),
    STATUS_NEED_MORE_INFO: frozenset({STATUS_SENT_TO_BANK, STATUS_RETURNED}),
    STATUS_COMPLETE: frozenset({STATUS_PAID}),
    STATUS_REJECTED: frozenset({STATUS_SENT_TO_BANK}),
    STATUS_PAID: frozenset(),
}

# Owner-initiated transitions (submission and resubmission)
USER_TRANSITIONS = {
    STATUS_DRAFT: frozenset({STATUS_SUBMITTED}),
    STATUS_RETURNED: frozenset({STATUS_SUBMITTED}),
}

COMMENT_REQUIRED_STATUSES = frozenset({STATUS_RETURNED, STATUS_REJECTED, STATUS_NEED_MORE_INFO})

STATUS_DESCRIPTIONS = {
    STATUS_DRAFT: "Application is being prepared",
    STATUS_SUBMITTED: "Application submitted for review",
    STATUS_RETURNED: "Application returned for corrections",
    STATUS_SENT_TO_BANK: "Application sent to bank for processing",
    STATUS_NEED_MORE_INFO: "Additional information required",
    STATUS_COMPLETE: "Application approved and complete",
    STATUS_REJECTED: "Application rejected",
    STATUS_PAID: "Payment received",
}

_STATUS_CHECK_SQL = "status IN ({})".format(", ".join(f"'{s}'" for s in APPLICATION_STATUSES))


class Application(db.Model):
    """
    Customer application undergoing the status workflow.

    ``status`` changes only through services.status_workflow so that every
    change is paired with a StatusChange row.
    """

    __tablename__ = "applications"
    __table_args__ = (
        db.CheckConstraint(_STATUS_CHECK_SQL, name="ck_applications_status"),
        db.Index("idx_app_status", "status"),
        db.Index("idx_app_owner", "user_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    customer_name = db.Column(db.String(200), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    company = db.Column(db.String(200), nullable=True)
    status = db.Column(db.String(30), nullable=False, default=STATUS_DRAFT)

    user_id = db.Column(
        db.String(36), db.ForeignKey("user_profiles.id", ondelete="SET NULL"),
        nullable=True, comment="Owning user",
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    owner = db.relationship("UserProfile", foreign_keys=[user_id])
    documents = db.relationship(
        "ApplicationDocument", backref="application",
        cascade="all, delete-orphan", order_by="ApplicationDocument.id",
    )
    status_changes = db.relationship(
        "StatusChange", backref="application", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_documents=False):
        d = {
            "id": self.id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "company": self.company,
            "status": self.status,
            "status_description": STATUS_DESCRIPTIONS.get(self.status, "Unknown status"),
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_documents:
            d["documents"] = [doc.to_dict() for doc in self.documents]
        return d

    def __repr__(self):
        return f"<Application {self.id}: {self.customer_name} [{self.status}]>"


class ApplicationDocument(db.Model):
    """A document an application needs; mandatory ones gate submission."""

    __tablename__ = "application_documents"

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(50), default="mandatory")
    is_mandatory = db.Column(db.Boolean, nullable=False, default=False)
    is_uploaded = db.Column(db.Boolean, nullable=False, default=False)
    file_path = db.Column(db.String(500), nullable=True)
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def mark_uploaded(self, file_path=None):
        self.is_uploaded = True
        self.uploaded_at = _utcnow()
        if file_path:
            self.file_path = file_path

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "name": self.name,
            "category": self.category,
            "is_mandatory": self.is_mandatory,
            "is_uploaded": self.is_uploaded,
            "file_path": self.file_path,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    def __repr__(self):
        return f"<ApplicationDocument {self.id}: {self.name}>"
