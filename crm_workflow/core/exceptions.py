"""
Platform-wide exception hierarchy.

Services raise these types; blueprints translate them to HTTP responses
through ``crm_workflow.utils.errors.api_error``.

Usage:
    from crm_workflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Application", resource_id=app_id)
    raise MissingCommentError(app_id, current="Submitted", target="Returned")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Application").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    The data was well-formed but violated a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with the current stored state.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} conflicts with current state"
        super().__init__(msg)


# ── Status workflow ──────────────────────────────────────────────────────────


class TransitionError(ValidationError):
    """Base class for rejected status transitions (checked before any write)."""

    def __init__(self, application_id: str, current: str, target: str, reason: str,
                 details: dict | None = None) -> None:
        self.application_id = application_id
        self.current_status = current
        self.target_status = target
        self.reason = reason
        super().__init__(
            f"Cannot change status from {current} to {target}: {reason}",
            details=details,
        )


class InvalidTransitionError(TransitionError):
    """Target status is not reachable from the current status for the actor's role."""


class MissingCommentError(TransitionError):
    """A comment-requiring transition was attempted without one."""

    def __init__(self, application_id: str, current: str, target: str) -> None:
        super().__init__(
            application_id, current, target,
            f"A comment is required when changing status to {target}",
        )


class IncompleteDocumentsError(TransitionError):
    """Mandatory documents are missing; carries their names for display."""

    def __init__(self, application_id: str, current: str, target: str,
                 missing_documents: list[str]) -> None:
        self.missing_documents = list(missing_documents)
        super().__init__(
            application_id, current, target,
            "Missing mandatory documents - " + ", ".join(self.missing_documents),
            details={"missing_documents": self.missing_documents},
        )


class StaleStatusError(ConflictError):
    """The application moved on since the caller last read it."""

    def __init__(self, application_id: str, expected: str, actual: str) -> None:
        self.application_id = application_id
        self.expected_status = expected
        self.actual_status = actual
        super().__init__("Application", "status", actual)


class PersistenceError(Exception):
    """The underlying write failed; nothing was committed.

    ``snapshot`` holds the pre-transition state so callers can revert any
    optimistic local state.
    """

    def __init__(self, message: str, snapshot=None) -> None:
        self.snapshot = snapshot
        super().__init__(message)


class NotificationDispatchError(Exception):
    """An in-app insert or email failed after the transition committed.

    Logged and reported as a side-effect failure; never propagated as a
    failure of the transition itself.
    """

    def __init__(self, channel: str, message: str) -> None:
        self.channel = channel
        super().__init__(f"{channel}: {message}")
