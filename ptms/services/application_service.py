"""
Application State Machine: service layer.

Applies ``APPLICATION_TRANSITIONS`` to persisted applications with:
  - Enrollment Gate check before every mutation
  - Side effects per event (timestamps, document status on open_review)
  - One commit per operation (``atomic``), hooks fired after commit

Usage:
    from ptms.services.application_service import submit_application

    result = submit_application(application_id, actor)
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError

from ptms.core.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    StorageConflict,
    ValidationError,
)
from ptms.models import db
from ptms.models.application import (
    TERMINAL_STATUSES,
    Application,
    ApplicationEvent,
    ApplicationStatus,
    Company,
    DocumentStatus,
    Review,
    available_events,
    next_application_status,
)
from ptms.services import document_ledger, enrollment_gate
from ptms.services.helpers.transaction import atomic
from ptms.services.hooks import fire_transition_hooks

logger = logging.getLogger(__name__)

_PLACEMENT_EDITABLE = frozenset({
    ApplicationStatus.DRAFT,
    ApplicationStatus.SUBMITTED,
    ApplicationStatus.UNDER_REVIEW,
    ApplicationStatus.CHANGES_REQUESTED,
})


# ── Shared helpers ───────────────────────────────────────────────────────────


def get_application_or_raise(application_id: str) -> Application:
    application = db.session.get(Application, application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    return application


def check_expected_version(entity: str, obj, expected_version) -> None:
    """Reject a write based on a stale read of ``obj``."""
    if expected_version is None:
        return
    if int(expected_version) != obj.version:
        raise StorageConflict(entity, obj.id, int(expected_version), obj.version)


def apply_event(application: Application, event, *, actor_id=None, reason=None):
    """Move ``application`` along ``event`` and apply its side effects.

    Does not commit. Returns (previous_status, new_status).
    """
    event = ApplicationEvent(event)
    previous = ApplicationStatus(application.status)
    target = next_application_status(previous, event, application.id)
    now = datetime.now(timezone.utc)

    application.status = target
    if event == ApplicationEvent.SUBMIT:
        application.submitted_at = now
    elif event == ApplicationEvent.OPEN_REVIEW:
        for doc in application.active_documents():
            if doc.status == DocumentStatus.SUBMITTED:
                doc.status = DocumentStatus.UNDER_REVIEW
    elif event == ApplicationEvent.APPROVE:
        application.approved_at = now
    elif target in TERMINAL_STATUSES:
        application.closed_at = now
        application.closed_by = actor_id
        application.closed_reason = reason
    return previous, target


def _log_transition(application_id, previous, current, event, actor):
    logger.info(
        "Application %s: %s → %s (%s)", application_id, previous.value, current.value, event,
        extra={
            "application_id": application_id,
            "user_id": actor.user_id,
            "event_type": f"application_{event}",
        },
    )


def _can_read(actor, application) -> bool:
    if actor.is_student:
        return application.user_id == actor.user_id
    return actor.is_reviewer or actor.is_admin


def get_readable_application(application_id, actor, operation):
    application = get_application_or_raise(application_id)
    if not _can_read(actor, application):
        raise PermissionDenied(actor.user_id, operation, "not the application owner")
    return application


def open_application_for(enrollment_id: str) -> Application | None:
    return (
        Application.query
        .filter(Application.enrollment_id == enrollment_id)
        .filter(Application.status.notin_(list(TERMINAL_STATUSES)))
        .first()
    )


# ── Lifecycle operations ─────────────────────────────────────────────────────


def create_application(actor) -> dict:
    """Open a DRAFT application for the actor's active enrollment."""
    if not actor.is_student:
        raise PermissionDenied(actor.user_id, "create_application", "students only")
    enrollment = enrollment_gate.authorize(actor.user_id, "create_application")

    if open_application_for(enrollment.id) is not None:
        raise ConflictError("Application", "enrollment_id", enrollment.id)

    application = Application(
        enrollment_id=enrollment.id,
        session_id=enrollment.session_id,
        user_id=actor.user_id,
        status=ApplicationStatus.DRAFT,
    )
    try:
        with atomic("Application"):
            db.session.add(application)
    except IntegrityError as exc:
        # A concurrent create for the same enrollment won the unique index
        raise ConflictError("Application", "enrollment_id", enrollment.id) from exc

    logger.info(
        "Application %s created", application.id,
        extra={"application_id": application.id, "user_id": actor.user_id,
               "session_id": enrollment.session_id, "event_type": "application_created"},
    )
    return application.to_dict(include_documents=True)


def submit_application(application_id: str, actor, expected_version=None) -> dict:
    """DRAFT → SUBMITTED; gate-checked for the owning student."""
    application = get_application_or_raise(application_id)
    enrollment_gate.authorize_application(actor, application, "submit_application")
    check_expected_version("Application", application, expected_version)

    with atomic("Application", application_id):
        previous, current = apply_event(application, ApplicationEvent.SUBMIT, actor_id=actor.user_id)

    _log_transition(application_id, previous, current, "submit", actor)
    fire_transition_hooks(application_id, previous, current, user_id=application.user_id)
    return application.to_dict()


def start_review(application_id: str, actor, expected_version=None) -> dict:
    """SUBMITTED → UNDER_REVIEW; the reviewer's explicit "open" action."""
    if not actor.is_reviewer:
        raise PermissionDenied(actor.user_id, "start_review", "reviewers only")
    application = get_application_or_raise(application_id)
    enrollment_gate.check_application(application, "start_review")
    check_expected_version("Application", application, expected_version)

    with atomic("Application", application_id):
        previous, current = apply_event(application, ApplicationEvent.OPEN_REVIEW, actor_id=actor.user_id)

    _log_transition(application_id, previous, current, "open_review", actor)
    fire_transition_hooks(application_id, previous, current, user_id=application.user_id)
    return application.to_dict(include_documents=True)


def reject_application(application_id: str, actor, outcome="REJECTED", reason=None) -> dict:
    """Administrative override: any non-terminal status → REJECTED / OFFER_REJECTED.

    Not gate-checked, so ineligible or inactive-session applications can be closed.
    Students may only decline their own offer (OFFER_REJECTED).
    """
    outcome = ApplicationStatus(outcome)
    if outcome == ApplicationStatus.REJECTED:
        event = ApplicationEvent.REJECT
    elif outcome == ApplicationStatus.OFFER_REJECTED:
        event = ApplicationEvent.REJECT_OFFER
    else:
        raise ValidationError(
            f"Outcome must be REJECTED or OFFER_REJECTED, got {outcome.value}",
            {"field": "outcome"},
        )

    application = get_application_or_raise(application_id)
    if actor.is_student:
        if event != ApplicationEvent.REJECT_OFFER or application.user_id != actor.user_id:
            raise PermissionDenied(actor.user_id, "reject_application")
    elif not actor.is_admin:
        raise PermissionDenied(actor.user_id, "reject_application", "coordinators only")

    with atomic("Application", application_id):
        previous, current = apply_event(application, event, actor_id=actor.user_id, reason=reason)

    _log_transition(application_id, previous, current, event.value, actor)
    fire_transition_hooks(application_id, previous, current, user_id=application.user_id)
    return application.to_dict()


def set_placement(application_id: str, actor, data: dict) -> dict:
    """Attach host company and training dates to an open application.

    Args:
        data: {"company": {"name", "address", "contact_name"?, "contact_email"?,
               "contact_phone"?, "fax"?}, "start_date": date, "end_date": date}
    """
    application = get_application_or_raise(application_id)
    enrollment_gate.authorize_application(actor, application, "set_placement")
    if ApplicationStatus(application.status) not in _PLACEMENT_EDITABLE:
        raise InvalidTransition(
            "Application", application_id, application.status.value, "set_placement",
            "placement is fixed once the application is approved or closed",
        )

    company_data = data.get("company") or {}
    name = (company_data.get("name") or "").strip()
    address = (company_data.get("address") or "").strip()
    if not name or not address:
        raise ValidationError("Company name and address are required", {"field": "company"})

    contact_email = (company_data.get("contact_email") or "").strip() or None
    if contact_email:
        try:
            contact_email = validate_email(contact_email, check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ValidationError(str(exc), {"field": "company.contact_email"}) from exc

    start, end = data.get("start_date"), data.get("end_date")
    if start is None or end is None:
        raise ValidationError("start_date and end_date are required", {"field": "start_date"})
    if end <= start:
        raise ValidationError("end_date must be after start_date", {"field": "end_date"})

    session = application.session
    weeks = (end - start).days / 7
    if weeks < session.min_weeks or weeks > session.max_weeks:
        raise ValidationError(
            f"Training duration must be between {session.min_weeks} and {session.max_weeks} weeks",
            {"field": "end_date", "weeks": round(weeks, 1),
             "min_weeks": session.min_weeks, "max_weeks": session.max_weeks},
        )

    with atomic("Application", application_id):
        company = Company.query.filter_by(name=name, address=address).first()
        if company is None:
            company = Company(name=name, address=address)
            db.session.add(company)
        for field in ("contact_name", "contact_phone", "fax"):
            if company_data.get(field):
                setattr(company, field, company_data[field])
        if contact_email:
            company.contact_email = contact_email
        application.company = company
        application.start_date = start
        application.end_date = end

    return application.to_dict()


# ── Queries ──────────────────────────────────────────────────────────────────


def get_application(application_id: str, actor) -> dict:
    application = get_readable_application(application_id, actor, "get_application")
    data = application.to_dict(include_documents=True)
    data["available_events"] = available_events(application.status)
    return data


def get_application_summary(application_id: str, actor) -> dict:
    application = get_readable_application(application_id, actor, "get_application_summary")
    summary = document_ledger.summarize(application)
    summary["available_events"] = available_events(application.status)
    return summary


def list_reviews(application_id: str, actor, document_id=None) -> list[dict]:
    application = get_readable_application(application_id, actor, "list_reviews")
    q = Review.query.filter_by(application_id=application.id)
    if document_id:
        q = q.filter_by(document_id=document_id)
    return [r.to_dict() for r in q.order_by(Review.decided_at).all()]


def list_applications(actor, session_id=None, status=None) -> list[dict]:
    """Students see their own applications; staff see all, optionally filtered."""
    q = Application.query
    if actor.is_student:
        q = q.filter_by(user_id=actor.user_id)
    elif not (actor.is_reviewer or actor.is_admin):
        raise PermissionDenied(actor.user_id, "list_applications")
    if session_id:
        q = q.filter_by(session_id=session_id)
    if status:
        q = q.filter(Application.status == ApplicationStatus(status))
    return [a.to_dict() for a in q.order_by(Application.created_at.desc()).all()]
