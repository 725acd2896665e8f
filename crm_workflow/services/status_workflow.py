"""
Status Workflow: Transition Engine

Executes application status transitions:
  - Role-gated transition table (status_rules)
  - Comment requirement for Returned / Rejected / Need More Info
  - Mandatory-document gate for leaving Draft, entering Submitted
    (owner) and entering Sent to Bank
  - Status write + history append committed together
  - Best-effort notification fan-out after the commit

Usage:
    from crm_workflow.services.status_workflow import Actor, request_transition

    outcome = request_transition(
        application_id="abc",
        target_status="Sent to Bank",
        actor=Actor(id="u-1", role="admin", name="Layla"),
    )
    outcome.primary.new_status      # "Sent to Bank"
    outcome.side_effects            # [SideEffectResult(...)]
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.attributes import set_committed_value

from crm_workflow.core.exceptions import (
    IncompleteDocumentsError,
    InvalidTransitionError,
    MissingCommentError,
    NotFoundError,
    PersistenceError,
    StaleStatusError,
    TransitionError,
    ValidationError,
)
from crm_workflow.models import db
from crm_workflow.models.application import Application
from crm_workflow.models.profile import ROLE_ADMIN, USER_ROLES
from crm_workflow.models.status_change import StatusChange
from crm_workflow.services import status_rules
from crm_workflow.services.notification import StatusNotificationDispatcher, TransitionEvent
from crm_workflow.services.status_history import StatusHistoryRecorder

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Value types
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Actor:
    """Who is requesting the transition. Passed explicitly by callers."""

    id: str
    role: str
    name: str | None = None
    email: str | None = None

    @classmethod
    def from_profile(cls, profile) -> "Actor":
        return cls(id=profile.id, role=profile.role, name=profile.name, email=profile.email)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id


@dataclass(frozen=True)
class StatusSnapshot:
    """Pre-transition state captured by apply_optimistic()."""

    application_id: str
    status: str
    updated_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "application_id": self.application_id,
            "status": self.status,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class TransitionResult:
    application: Application
    change: StatusChange

    @property
    def previous_status(self) -> str | None:
        return self.change.previous_status

    @property
    def new_status(self) -> str:
        return self.change.new_status

    @property
    def transition_id(self) -> str:
        return self.change.id

    def to_dict(self) -> dict:
        return {
            "application_id": self.application.id,
            "transition_id": self.transition_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "application": self.application.to_dict(),
        }


@dataclass
class SideEffectResult:
    name: str
    ok: bool
    error: str | None = None
    detail: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"name": self.name, "ok": self.ok, "error": self.error, "detail": self.detail}


@dataclass
class TransitionOutcome:
    """
    Result of a committed transition.

    ``primary`` always describes a committed status change; failures of
    the follow-up steps only show up in ``side_effects``.
    """

    primary: TransitionResult
    side_effects: list[SideEffectResult] = field(default_factory=list)
    replayed: bool = False

    @property
    def side_effects_ok(self) -> bool:
        return all(se.ok for se in self.side_effects)

    def to_dict(self) -> dict:
        d = self.primary.to_dict()
        d["replayed"] = self.replayed
        d["side_effects"] = [se.to_dict() for se in self.side_effects]
        return d


# ═══════════════════════════════════════════════════════════════════════════
# Optimistic two-phase helpers
# ═══════════════════════════════════════════════════════════════════════════


def apply_optimistic(application: Application, target_status: str) -> StatusSnapshot:
    """Set the new status in memory and return the state to roll back to."""
    snapshot = StatusSnapshot(
        application_id=application.id,
        status=application.status,
        updated_at=application.updated_at,
    )
    application.status = target_status
    application.updated_at = datetime.now(timezone.utc)
    return snapshot


def rollback(application: Application, snapshot: StatusSnapshot) -> None:
    """Restore the in-memory application to *snapshot* without a DB round-trip."""
    set_committed_value(application, "status", snapshot.status)
    set_committed_value(application, "updated_at", snapshot.updated_at)


# ═══════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════


def request_transition(
    application_id: str,
    target_status: str,
    actor: Actor,
    comment: str | None = None,
    *,
    transition_id: str | None = None,
    expected_status: str | None = None,
) -> TransitionOutcome:
    """
    Execute one status transition.

    Args:
        application_id: UUID of the application
        target_status: one of APPLICATION_STATUSES
        actor: who is performing the change
        comment: required for Returned / Rejected / Need More Info
        transition_id: optional idempotency key (UUID); a retry with the
            same key does not repeat the status change
        expected_status: optional guard; reject if the stored status differs

    Returns:
        TransitionOutcome

    Raises:
        NotFoundError, ValidationError, StaleStatusError,
        InvalidTransitionError, MissingCommentError,
        IncompleteDocumentsError, PersistenceError
    """
    application = _load_application(application_id)
    _check_actor(actor)
    transition_id = _check_transition_id(transition_id)

    if transition_id:
        replay = _replay(application, transition_id, target_status, actor, comment)
        if replay is not None:
            return replay

    current = application.status
    if expected_status and expected_status != current:
        raise StaleStatusError(application.id, expected_status, current)

    # Role permission and document gate
    gate = status_rules.can_transition(application, target_status, actor.role)
    if target_status not in status_rules.allowed_targets(current, actor.role):
        raise InvalidTransitionError(application.id, current, target_status, gate.reason)
    if not actor.is_admin and application.user_id and application.user_id != actor.id:
        raise InvalidTransitionError(application.id, current, target_status,
                                     "You can only modify your own applications")

    # Comment requirement
    comment = (comment or "").strip() or None
    if status_rules.requires_comment(target_status) and not comment:
        raise MissingCommentError(application.id, current, target_status)

    if gate.missing_documents:
        raise IncompleteDocumentsError(application.id, current, target_status, gate.missing_documents)

    _warn_on_history_mismatch(application)

    result = _commit_transition(
        application, target_status, actor, comment,
        transition_id=transition_id,
    )
    return TransitionOutcome(primary=result, side_effects=_run_side_effects(result))


def manual_override(
    application_id: str,
    target_status: str,
    actor: Actor,
    comment: str | None = None,
) -> TransitionOutcome:
    """
    Admin override that bypasses the per-state transition table.

    The document invariant still applies. Without a comment the history
    records "Manual override by <actor name>".
    """
    application = _load_application(application_id)
    _check_actor(actor)
    current = application.status

    if not actor.is_admin:
        raise InvalidTransitionError(application.id, current, target_status,
                                     "Only administrators can override status")
    if not status_rules.is_known_status(target_status):
        raise InvalidTransitionError(application.id, current, target_status,
                                     f"Unknown status: {target_status}")
    if target_status == current:
        raise InvalidTransitionError(application.id, current, target_status,
                                     "Application already has this status")

    if status_rules.requires_documents(current, target_status, actor.role):
        missing = status_rules.missing_documents(application.documents)
        if missing:
            raise IncompleteDocumentsError(application.id, current, target_status, missing)

    comment = (comment or "").strip() or f"Manual override by {actor.display_name}"
    result = _commit_transition(application, target_status, actor, comment, is_override=True)
    logger.warning(
        "Manual status override: %s %s → %s by %s",
        application.id, current, target_status, actor.display_name,
        extra={"application_id": application.id, "transition_id": result.transition_id},
    )
    return TransitionOutcome(primary=result, side_effects=_run_side_effects(result))


def batch_transition(
    application_ids: list[str],
    target_status: str,
    actor: Actor,
    comment: str | None = None,
) -> dict:
    """
    Transition several applications. Partial success allowed.

    Returns:
        {"success": [...], "errors": [...]}
    """
    results = {"success": [], "errors": []}

    for app_id in application_ids:
        try:
            outcome = request_transition(app_id, target_status, actor, comment)
            results["success"].append(outcome.to_dict())
        except (TransitionError, ValidationError, NotFoundError,
                StaleStatusError, PersistenceError) as e:
            results["errors"].append({
                "application_id": app_id,
                "error": str(e),
                "error_type": type(e).__name__,
            })
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Batch transition failed for %r: %s", app_id, e)
            results["errors"].append({
                "application_id": app_id,
                "error": "Database error",
                "error_type": type(e).__name__,
            })

    logger.info(
        "Batch transition to %s: %d ok, %d failed",
        target_status, len(results["success"]), len(results["errors"]),
    )
    return results


def redeliver_side_effects(transition_id: str) -> TransitionOutcome:
    """Re-run the notification fan-out of a committed transition."""
    change = StatusHistoryRecorder.get(transition_id)
    if change is None:
        raise NotFoundError(resource="StatusChange", resource_id=transition_id)
    result = TransitionResult(application=change.application, change=change)
    return TransitionOutcome(primary=result, side_effects=_run_side_effects(result), replayed=True)


def get_available_transitions(application: Application, actor: Actor) -> list[str]:
    """Targets the actor could pick for this application right now."""
    return status_rules.available_transitions(application, actor.role)


# ═══════════════════════════════════════════════════════════════════════════
# Internals
# ═══════════════════════════════════════════════════════════════════════════


def _load_application(application_id: str) -> Application:
    application = db.session.get(Application, application_id)
    if application is None:
        raise NotFoundError(resource="Application", resource_id=application_id)
    return application


def _check_actor(actor: Actor) -> None:
    if not actor or not actor.id:
        raise ValidationError("actor is required")
    if actor.role not in USER_ROLES:
        raise ValidationError(f"Invalid actor role: {actor.role}", details={"role": actor.role})


def _check_transition_id(transition_id: str | None) -> str | None:
    if not transition_id:
        return None
    try:
        return str(uuid.UUID(str(transition_id)))
    except ValueError:
        raise ValidationError("transition_id must be a UUID",
                              details={"transition_id": transition_id}) from None


def _replay(
    application: Application,
    transition_id: str,
    target_status: str,
    actor: Actor,
    comment: str | None,
) -> TransitionOutcome | None:
    change = StatusHistoryRecorder.get(transition_id)
    if change is None:
        return None
    if change.application_id != application.id:
        raise ValidationError("transition_id belongs to another application",
                              details={"transition_id": transition_id})
    requested = (target_status, actor.id, (comment or "").strip() or None)
    if requested != (change.new_status, change.changed_by, change.comment):
        raise ValidationError(
            "transition_id already used for a different transition",
            details={"transition_id": transition_id, "recorded_status": change.new_status},
        )
    logger.info("Replaying transition %s, status change not repeated", transition_id,
                extra={"transition_id": transition_id, "application_id": application.id})
    result = TransitionResult(application=application, change=change)
    return TransitionOutcome(primary=result, side_effects=_run_side_effects(result), replayed=True)


def _warn_on_history_mismatch(application: Application) -> None:
    latest = StatusHistoryRecorder.latest(application.id)
    if latest is not None and latest.new_status != application.status:
        logger.warning(
            "Application %s status %r differs from latest history entry %r",
            application.id, application.status, latest.new_status,
            extra={"application_id": application.id},
        )


def _commit_transition(
    application: Application,
    target_status: str,
    actor: Actor,
    comment: str | None,
    *,
    transition_id: str | None = None,
    is_override: bool = False,
) -> TransitionResult:
    """Write the status and its history row in one transaction."""
    previous_status = application.status
    snapshot = apply_optimistic(application, target_status)
    try:
        change = StatusHistoryRecorder.append(
            application.id, previous_status, target_status,
            actor.id, actor.role, comment,
            transition_id=transition_id or str(uuid.uuid4()),
            actor_name=actor.name,
            is_override=is_override,
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        rollback(application, snapshot)
        logger.error(
            "Status change %s → %s failed for application %s: %s",
            previous_status, target_status, snapshot.application_id, exc,
            extra={"application_id": snapshot.application_id},
        )
        raise PersistenceError("Status change could not be saved, please try again",
                               snapshot=snapshot) from exc

    logger.info(
        "Status changed: application=%s %s → %s by %s (%s)",
        application.id, previous_status, target_status, actor.display_name, actor.role,
        extra={"application_id": application.id, "transition_id": change.id},
    )
    return TransitionResult(application=application, change=change)


def _run_side_effects(result: TransitionResult) -> list[SideEffectResult]:
    event = TransitionEvent.from_change(result.change, result.application)
    dispatch = StatusNotificationDispatcher.dispatch(event)
    return [SideEffectResult(
        name="notifications",
        ok=not dispatch.errors,
        error="; ".join(dispatch.errors) or None,
        detail=dispatch.to_dict(),
    )]
