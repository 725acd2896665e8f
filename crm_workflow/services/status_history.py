"""
Status Workflow: History Recorder

Append-only log of status transitions plus read-back helpers.

  - append():         insert one StatusChange (flush only; caller commits)
  - list_for():       newest-first history for display
  - validate_chain(): oldest→newest consistency walk, warnings only
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from crm_workflow.models import db
from crm_workflow.models.application import Application
from crm_workflow.models.status_change import StatusChange

logger = logging.getLogger(__name__)


@dataclass
class ChainWarning:
    """A history inconsistency found on read-back."""

    code: str
    message: str
    status_change_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "status_change_id": self.status_change_id,
        }


class StatusHistoryRecorder:
    """Stateless service for the status_changes table."""

    @staticmethod
    def append(
        application_id: str,
        previous_status: str | None,
        new_status: str,
        actor_id: str,
        actor_role: str,
        comment: str | None = None,
        *,
        transition_id: str | None = None,
        actor_name: str | None = None,
        is_override: bool = False,
    ) -> StatusChange:
        """
        Insert one StatusChange row.

        Idempotent per ``transition_id``: when a row with that id already
        exists it is returned untouched, so a retried follow-up never
        duplicates history.
        """
        if transition_id:
            existing = db.session.get(StatusChange, transition_id)
            if existing is not None:
                logger.debug("StatusChange %s already recorded, skipping append", transition_id)
                return existing

        change = StatusChange(
            id=transition_id or str(uuid.uuid4()),
            application_id=application_id,
            previous_status=previous_status,
            new_status=new_status,
            changed_by=actor_id,
            changed_by_name=actor_name,
            changed_by_role=actor_role,
            comment=comment or None,
            is_override=is_override,
        )
        db.session.add(change)
        db.session.flush()
        return change

    @staticmethod
    def get(transition_id: str) -> StatusChange | None:
        return db.session.get(StatusChange, transition_id)

    @staticmethod
    def list_for(application_id: str) -> list[StatusChange]:
        """Return the application's history, newest first."""
        return (
            StatusChange.query
            .filter_by(application_id=application_id)
            .order_by(StatusChange.created_at.desc())
            .all()
        )

    @staticmethod
    def latest(application_id: str) -> StatusChange | None:
        return (
            StatusChange.query
            .filter_by(application_id=application_id)
            .order_by(StatusChange.created_at.desc())
            .first()
        )

    @classmethod
    def validate_chain(cls, application_id: str) -> list[ChainWarning]:
        """
        Walk the history oldest→newest and flag inconsistencies.

        A broken chain (a record whose ``previous_status`` differs from the
        prior record's ``new_status``) and a current status that differs
        from the newest record are reported as warnings; nothing raises.
        """
        history = list(reversed(cls.list_for(application_id)))
        warnings: list[ChainWarning] = []

        for earlier, later in zip(history, history[1:]):
            if later.previous_status != earlier.new_status:
                warnings.append(ChainWarning(
                    code="chain_broken",
                    message=(
                        f"Status history chain is broken: {earlier.new_status} "
                        f"followed by a change from {later.previous_status}"
                    ),
                    status_change_id=later.id,
                ))
                break

        application = db.session.get(Application, application_id)
        if application is not None and history and history[-1].new_status != application.status:
            warnings.append(ChainWarning(
                code="status_mismatch",
                message="Current status does not match latest status history entry",
                status_change_id=history[-1].id,
            ))

        for w in warnings:
            logger.warning("History check %s: %s", application_id, w.message,
                           extra={"application_id": application_id})
        return warnings
