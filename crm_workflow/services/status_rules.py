"""
Status Workflow: Validation Gate

Pure predicates over an application's current status, its documents and
the static transition tables in ``crm_workflow.models.application``.
No session access, no side effects: safe to call repeatedly to preview a
transition before committing it.

Usage:
    from crm_workflow.services.status_rules import can_transition

    gate = can_transition(application, "Sent to Bank", "admin")
    if not gate.allowed:
        print(gate.reason, gate.missing_documents)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from crm_workflow.models.application import (
    ADMIN_TRANSITIONS,
    APPLICATION_STATUSES,
    COMMENT_REQUIRED_STATUSES,
    STATUS_COMPLETE,
    STATUS_DRAFT,
    STATUS_PAID,
    STATUS_REJECTED,
    STATUS_RETURNED,
    STATUS_SENT_TO_BANK,
    STATUS_SUBMITTED,
    USER_TRANSITIONS,
)
from crm_workflow.models.profile import ROLE_ADMIN


_NOTIFICATION_TYPES = {
    STATUS_COMPLETE: "success",
    "Approved": "success",
    STATUS_REJECTED: "error",
    STATUS_RETURNED: "warning",
}

_IRREVERSIBLE_WARNING = "This status change cannot be reversed once applied."
_TRANSITION_WARNINGS = {
    STATUS_COMPLETE: _IRREVERSIBLE_WARNING,
    STATUS_PAID: _IRREVERSIBLE_WARNING,
    STATUS_REJECTED: (
        "Rejected applications cannot be reopened. Consider using \"Need More Info\" "
        "if the application can still be processed."
    ),
}


@dataclass
class GateResult:
    """Outcome of a transition preview."""

    allowed: bool
    missing_documents: list[str] = field(default_factory=list)
    reason: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "missing_documents": list(self.missing_documents),
            "reason": self.reason,
            "warnings": list(self.warnings),
        }


def is_known_status(status: str | None) -> bool:
    return status in APPLICATION_STATUSES


def allowed_targets(current_status: str, role: str) -> frozenset[str]:
    """Targets reachable from *current_status* for the given role."""
    table = ADMIN_TRANSITIONS if role == ROLE_ADMIN else USER_TRANSITIONS
    return table.get(current_status, frozenset())


def is_final_status(status: str) -> bool:
    """True when no role can move the application any further."""
    return not ADMIN_TRANSITIONS.get(status) and not USER_TRANSITIONS.get(status)


def requires_comment(target_status: str) -> bool:
    return target_status in COMMENT_REQUIRED_STATUSES


def transition_warnings(target_status: str) -> list[str]:
    """Warnings to show before moving into a status that cannot be undone."""
    warning = _TRANSITION_WARNINGS.get(target_status)
    return [warning] if warning else []


def requires_documents(current_status: str, target_status: str, role: str) -> bool:
    """Whether the document-completeness invariant applies to this move."""
    if target_status == STATUS_SENT_TO_BANK:
        return True
    if current_status == STATUS_DRAFT and target_status != STATUS_DRAFT:
        return True
    return target_status == STATUS_SUBMITTED and role != ROLE_ADMIN


def missing_documents(documents) -> list[str]:
    """Names of mandatory documents that are not uploaded yet."""
    return [doc.name for doc in documents or [] if doc.is_mandatory and not doc.is_uploaded]


def can_transition(application, target_status: str, actor_role: str) -> GateResult:
    """
    Check role permission and document completeness for a transition.

    Comment requirements are not evaluated here; the comment is only known
    when the transition is actually requested.

    Returns:
        GateResult(allowed, missing_documents, reason, warnings)
    """
    current = application.status
    if not is_known_status(target_status):
        return GateResult(False, [], f"Unknown status: {target_status}")

    missing = []
    if requires_documents(current, target_status, actor_role):
        missing = missing_documents(application.documents)

    if target_status not in allowed_targets(current, actor_role):
        if is_final_status(current):
            reason = f"{current} is a final status"
        else:
            reason = f"Cannot change status from {current} to {target_status} as {actor_role}"
        return GateResult(False, missing, reason)

    if missing:
        return GateResult(
            False, missing,
            "All mandatory documents must be uploaded before changing status to "
            f"{target_status}",
        )

    return GateResult(True, [], None, transition_warnings(target_status))


def available_transitions(application, role: str) -> list[str]:
    """Targets the role could move the application to right now."""
    return [
        status for status in APPLICATION_STATUSES
        if status in allowed_targets(application.status, role)
        and can_transition(application, status, role).allowed
    ]


def notification_type_for(status: str) -> str:
    """Map a target status to an in-app notification type."""
    return _NOTIFICATION_TYPES.get(status, "info")
