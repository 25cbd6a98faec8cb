"""
Workflow exception hierarchy.

Every service in the workflow core raises one of these types. Blueprints
register handlers against the three classes (authorization, validation,
concurrency) once and get consistent HTTP status codes everywhere.

Each exception carries:
  - ``code``:     machine-readable kind, e.g. ``NOT_ELIGIBLE``
  - ``message``:  human-readable explanation (``str(exc)``)
  - ``details``:  entity ids and current vs. attempted state

Usage:
    from ptms.core.exceptions import InvalidTransition, NotFoundError

    raise NotFoundError(resource="Application", resource_id=app_id)
    raise InvalidTransition("Application", app.id, current="DRAFT", requested="approve")
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for every error surfaced by the workflow core."""

    code = "WORKFLOW_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


# ── Lookup ───────────────────────────────────────────────────────────────────


class NotFoundError(WorkflowError):
    """Raised when a requested entity does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Application", "Document").
        resource_id: The identifier that was looked up.
    """

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, resource: str, resource_id: str | int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg, {"resource": resource, "resource_id": resource_id})


# ── Authorization class (403) ────────────────────────────────────────────────


class AuthorizationError(WorkflowError):
    """Actor may not perform the operation. Surfaced as access denied."""

    code = "FORBIDDEN"
    http_status = 403


class NotEnrolled(AuthorizationError):
    code = "NOT_ENROLLED"

    def __init__(self, user_id: str, operation: str | None = None) -> None:
        super().__init__(
            "You are not enrolled in any active session. Please contact your coordinator.",
            {"user_id": user_id, "operation": operation},
        )


class NotEligible(AuthorizationError):
    code = "NOT_ELIGIBLE"

    def __init__(
        self,
        user_id: str,
        session_id: str,
        credits_earned: int | None = None,
        min_credits: int | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(
            "You are not eligible for this session due to insufficient credits.",
            {
                "user_id": user_id,
                "session_id": session_id,
                "credits_earned": credits_earned,
                "min_credits": min_credits,
                "operation": operation,
            },
        )


class SessionInactive(AuthorizationError):
    code = "SESSION_INACTIVE"

    def __init__(self, session_id: str | None, operation: str | None = None) -> None:
        msg = "Training session is not active"
        if session_id is None:
            msg = "There is no active training session"
        super().__init__(msg, {"session_id": session_id, "operation": operation})


class PermissionDenied(AuthorizationError):
    """Actor's role (or ownership) does not allow the operation."""

    code = "PERMISSION_DENIED"

    def __init__(self, user_id: str | None, operation: str, reason: str | None = None) -> None:
        msg = f"User {user_id} may not perform '{operation}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"user_id": user_id, "operation": operation})


# ── Validation class (422 / 409) ─────────────────────────────────────────────


class ValidationError(WorkflowError):
    """Input was well-formed but violated a business rule."""

    code = "VALIDATION_FAILED"
    http_status = 422


class InvalidTransition(ValidationError):
    """The requested event is not legal from the entity's current status."""

    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(
        self,
        entity: str,
        entity_id: str | None,
        current: str,
        requested: str,
        reason: str | None = None,
    ) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.current_status = str(getattr(current, "value", current))
        self.requested = str(getattr(requested, "value", requested))
        msg = f"Cannot '{self.requested}' {entity} {entity_id} (status={self.current_status})"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg,
            {
                "entity": entity,
                "entity_id": entity_id,
                "current_status": self.current_status,
                "requested": self.requested,
            },
        )


class DuplicateActiveDocument(ValidationError):
    code = "DUPLICATE_ACTIVE_DOCUMENT"

    def __init__(self, application_id: str, document_type: str) -> None:
        super().__init__(
            f"Application {application_id} already holds an active {document_type} document",
            {"application_id": application_id, "document_type": document_type},
        )


class MissingRequiredComment(ValidationError):
    code = "MISSING_REQUIRED_COMMENT"

    def __init__(self, document_id: str, decision: str) -> None:
        super().__init__(
            f"Comments are required when the decision is {decision}",
            {"document_id": document_id, "decision": decision},
        )


class ConflictError(ValidationError):
    """An operation would create a second instance of a unique resource."""

    code = "CONFLICT"
    http_status = 409

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(
            f"{resource} with {field}={value!r} already exists",
            {"resource": resource, "field": field, "value": value},
        )


# ── Concurrency class (409, retry once) ──────────────────────────────────────


class StorageConflict(WorkflowError):
    """Another operation mutated the same entity concurrently."""

    code = "STORAGE_CONFLICT"
    http_status = 409
    retryable = True

    def __init__(
        self,
        entity: str,
        entity_id: str | None,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        super().__init__(
            f"{entity} {entity_id} was modified by another operation; reload and retry",
            {
                "entity": entity,
                "entity_id": entity_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
