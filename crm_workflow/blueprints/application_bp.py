"""
Corporate CRM Workflow
Application Blueprint: applications, documents, status transitions, history.

Endpoints:
  - POST   /applications
  - GET    /applications/<id>?actor_id=
  - POST   /applications/<id>/documents
  - POST   /applications/<id>/documents/<doc_id>/upload
  - GET    /applications/<id>/transition-preview?target=&actor_id=
  - POST   /applications/<id>/transition
  - POST   /applications/<id>/override
  - POST   /applications/batch-transition
  - GET    /applications/<id>/history
  - POST   /transitions/<transition_id>/redeliver

The acting user is passed as ``actor_id`` and resolved to a UserProfile here;
services receive an explicit Actor.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from crm_workflow.core.exceptions import (
    IncompleteDocumentsError,
    InvalidTransitionError,
    MissingCommentError,
    NotFoundError,
    PersistenceError,
    StaleStatusError,
    ValidationError,
)
from crm_workflow.models import db
from crm_workflow.models.application import Application, ApplicationDocument
from crm_workflow.models.profile import UserProfile
from crm_workflow.services import status_rules
from crm_workflow.services.status_history import StatusHistoryRecorder
from crm_workflow.services.status_workflow import (
    Actor,
    batch_transition,
    get_available_transitions,
    manual_override,
    redeliver_side_effects,
    request_transition,
)
from crm_workflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

application_bp = Blueprint("application_bp", __name__, url_prefix="/api/v1")


# ── Helpers ─────────────────────────────────────────────────────────────────


def _resolve_actor(actor_id):
    """Return (Actor, None) or (None, error_response)."""
    if not actor_id:
        return None, api_error(E.VALIDATION_REQUIRED, "actor_id is required")
    profile = db.session.get(UserProfile, actor_id)
    if profile is None or not profile.is_active:
        return None, api_error(E.FORBIDDEN, "Unknown or inactive user")
    return Actor.from_profile(profile), None


def _workflow_error(exc):
    """Translate a workflow exception into a standard error response."""
    if isinstance(exc, NotFoundError):
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")
    if isinstance(exc, MissingCommentError):
        return api_error(E.VALIDATION_REQUIRED, str(exc))
    if isinstance(exc, IncompleteDocumentsError):
        return api_error(E.DOCUMENTS_INCOMPLETE, str(exc),
                         details={"missing_documents": exc.missing_documents})
    if isinstance(exc, InvalidTransitionError):
        return api_error(E.TRANSITION_INVALID, str(exc))
    if isinstance(exc, StaleStatusError):
        return api_error(E.CONFLICT_STATE, "Application status has changed, reload and try again",
                         details={"expected_status": exc.expected_status,
                                  "current_status": exc.actual_status})
    if isinstance(exc, ValidationError):
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details or None)
    if isinstance(exc, PersistenceError):
        details = {"snapshot": exc.snapshot.to_dict()} if exc.snapshot else None
        return api_error(E.DATABASE, str(exc), details=details)
    raise exc


_WORKFLOW_ERRORS = (NotFoundError, ValidationError, StaleStatusError, PersistenceError)


def _get_application_or_404(application_id):
    application = db.session.get(Application, application_id)
    if application is None:
        return None, api_error(E.NOT_FOUND, "Application not found")
    return application, None


# ═══════════════════════════════════════════════════════════════════════════
#  APPLICATIONS
# ═══════════════════════════════════════════════════════════════════════════


@application_bp.route("/applications", methods=["POST"])
def create_application():
    """Create an application in Draft, optionally with document requirements."""
    data = request.get_json(silent=True) or {}

    customer_name = (data.get("customer_name") or "").strip()
    if not customer_name:
        return api_error(E.VALIDATION_REQUIRED, "customer_name is required")

    user_id = data.get("user_id")
    if user_id and db.session.get(UserProfile, user_id) is None:
        return api_error(E.VALIDATION_INVALID, "user_id does not match a known user")

    documents = data.get("documents") or []
    if not isinstance(documents, list):
        return api_error(E.VALIDATION_INVALID, "documents must be a list")

    application = Application(
        customer_name=customer_name,
        customer_email=data.get("customer_email"),
        company=data.get("company"),
        user_id=user_id,
    )
    db.session.add(application)
    for doc in documents:
        name = (doc.get("name") or "").strip() if isinstance(doc, dict) else ""
        if not name:
            db.session.rollback()
            return api_error(E.VALIDATION_REQUIRED, "each document needs a name")
        application.documents.append(ApplicationDocument(
            name=name,
            category=doc.get("category", "mandatory"),
            is_mandatory=bool(doc.get("is_mandatory", False)),
            is_uploaded=bool(doc.get("is_uploaded", False)),
        ))

    try:
        db.session.commit()
    except SQLAlchemyError:
        logger.exception("Database error creating application")
        db.session.rollback()
        return api_error(E.DATABASE, "Database error")

    logger.info("Application created: %s (%s)", application.id, customer_name,
                extra={"application_id": application.id})
    return jsonify(application.to_dict(include_documents=True)), 201


@application_bp.route("/applications/<application_id>", methods=["GET"])
def get_application(application_id):
    """Application detail with documents; adds available_transitions for ?actor_id=."""
    application, err = _get_application_or_404(application_id)
    if err:
        return err

    d = application.to_dict(include_documents=True)
    d["missing_documents"] = status_rules.missing_documents(application.documents)

    actor_id = request.args.get("actor_id")
    if actor_id:
        actor, err = _resolve_actor(actor_id)
        if err:
            return err
        d["available_transitions"] = get_available_transitions(application, actor)
    return jsonify(d)


# ═══════════════════════════════════════════════════════════════════════════
#  DOCUMENTS
# ═══════════════════════════════════════════════════════════════════════════


@application_bp.route("/applications/<application_id>/documents", methods=["POST"])
def add_document(application_id):
    """Add a document requirement to an application."""
    application, err = _get_application_or_404(application_id)
    if err:
        return err

    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return api_error(E.VALIDATION_REQUIRED, "name is required")

    doc = ApplicationDocument(
        application_id=application.id,
        name=name,
        category=data.get("category", "mandatory"),
        is_mandatory=bool(data.get("is_mandatory", False)),
    )
    db.session.add(doc)
    try:
        db.session.commit()
    except SQLAlchemyError:
        logger.exception("Database error adding document")
        db.session.rollback()
        return api_error(E.DATABASE, "Database error")
    return jsonify(doc.to_dict()), 201


@application_bp.route("/applications/<application_id>/documents/<int:doc_id>/upload",
                      methods=["POST"])
def upload_document(application_id, doc_id):
    """Mark a document as uploaded."""
    doc = db.session.get(ApplicationDocument, doc_id)
    if doc is None or doc.application_id != application_id:
        return api_error(E.NOT_FOUND, "Document not found")

    data = request.get_json(silent=True) or {}
    doc.mark_uploaded(file_path=data.get("file_path"))
    try:
        db.session.commit()
    except SQLAlchemyError:
        logger.exception("Database error uploading document")
        db.session.rollback()
        return api_error(E.DATABASE, "Database error")
    return jsonify(doc.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  STATUS TRANSITIONS
# ═══════════════════════════════════════════════════════════════════════════


@application_bp.route("/applications/<application_id>/transition-preview", methods=["GET"])
def preview_transition(application_id):
    """Evaluate the gate for ?target= without changing anything."""
    application, err = _get_application_or_404(application_id)
    if err:
        return err
    target = request.args.get("target")
    if not target:
        return api_error(E.VALIDATION_REQUIRED, "target is required")
    actor, err = _resolve_actor(request.args.get("actor_id"))
    if err:
        return err

    gate = status_rules.can_transition(application, target, actor.role)
    d = gate.to_dict()
    d["requires_comment"] = status_rules.requires_comment(target)
    return jsonify(d)


@application_bp.route("/applications/<application_id>/transition", methods=["POST"])
def transition_application(application_id):
    """Execute a status transition."""
    data = request.get_json(silent=True) or {}
    target_status = data.get("target_status")
    if not target_status:
        return api_error(E.VALIDATION_REQUIRED, "target_status is required")
    actor, err = _resolve_actor(data.get("actor_id"))
    if err:
        return err

    try:
        outcome = request_transition(
            application_id,
            target_status,
            actor,
            data.get("comment"),
            transition_id=data.get("transition_id"),
            expected_status=data.get("expected_status"),
        )
    except _WORKFLOW_ERRORS as e:
        return _workflow_error(e)

    return jsonify(outcome.to_dict()), 200


@application_bp.route("/applications/<application_id>/override", methods=["POST"])
def override_status(application_id):
    """Admin manual override of the status."""
    data = request.get_json(silent=True) or {}
    target_status = data.get("target_status")
    if not target_status:
        return api_error(E.VALIDATION_REQUIRED, "target_status is required")
    actor, err = _resolve_actor(data.get("actor_id"))
    if err:
        return err
    if not actor.is_admin:
        return api_error(E.FORBIDDEN, "Only administrators can override status")

    try:
        outcome = manual_override(application_id, target_status, actor, data.get("comment"))
    except _WORKFLOW_ERRORS as e:
        return _workflow_error(e)

    return jsonify(outcome.to_dict()), 200


@application_bp.route("/applications/batch-transition", methods=["POST"])
def batch_transition_endpoint():
    """Transition several applications to the same target."""
    data = request.get_json(silent=True) or {}
    application_ids = data.get("application_ids")
    if not application_ids or not isinstance(application_ids, list):
        return api_error(E.VALIDATION_REQUIRED, "application_ids list is required")
    if not all(isinstance(app_id, str) and app_id for app_id in application_ids):
        return api_error(E.VALIDATION_INVALID, "application_ids must be a list of id strings")
    target_status = data.get("target_status")
    if not target_status:
        return api_error(E.VALIDATION_REQUIRED, "target_status is required")
    actor, err = _resolve_actor(data.get("actor_id"))
    if err:
        return err

    result = batch_transition(application_ids, target_status, actor, data.get("comment"))
    return jsonify(result), 200


@application_bp.route("/applications/<application_id>/history", methods=["GET"])
def get_history(application_id):
    """Status history newest-first, with consistency warnings."""
    application, err = _get_application_or_404(application_id)
    if err:
        return err

    history = StatusHistoryRecorder.list_for(application.id)
    warnings = StatusHistoryRecorder.validate_chain(application.id)
    return jsonify({
        "application_id": application.id,
        "status": application.status,
        "items": [c.to_dict() for c in history],
        "total": len(history),
        "warnings": [w.to_dict() for w in warnings],
    })


@application_bp.route("/transitions/<transition_id>/redeliver", methods=["POST"])
def redeliver(transition_id):
    """Re-run notification fan-out for a committed transition. Admins only."""
    data = request.get_json(silent=True) or {}
    actor, err = _resolve_actor(data.get("actor_id"))
    if err:
        return err
    if not actor.is_admin:
        return api_error(E.FORBIDDEN, "Only administrators can redeliver notifications")

    try:
        outcome = redeliver_side_effects(transition_id)
    except NotFoundError as e:
        return _workflow_error(e)
    return jsonify(outcome.to_dict()), 200
