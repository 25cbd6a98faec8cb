"""
Session Enrollment Gate.

Guard evaluated before every workflow mutation. The cached eligibility flag
is read as-is; it is never recomputed here.

    authorize(user_id, op)                 student-initiated operations
    authorize_application(actor, app, op)  student acting on their own application
    check_application(app, op)             reviewer/coordinator operations
"""

import logging

from ptms.core.exceptions import NotEligible, NotEnrolled, PermissionDenied, SessionInactive
from ptms.models import db
from ptms.models.session import StudentSessionEnrollment, TrainingSession

logger = logging.getLogger(__name__)


def find_active_enrollment(user_id: str) -> StudentSessionEnrollment | None:
    """The user's enrollment in an active session, if any."""
    return (
        db.session.query(StudentSessionEnrollment)
        .join(TrainingSession, StudentSessionEnrollment.session_id == TrainingSession.id)
        .filter(
            StudentSessionEnrollment.user_id == user_id,
            TrainingSession.is_active.is_(True),
        )
        .order_by(StudentSessionEnrollment.created_at.desc())
        .first()
    )


def _deny(exc, operation):
    logger.info(
        "Gate denied %s: %s", operation, exc.code,
        extra={"event_type": "gate_denied", "user_id": exc.details.get("user_id")},
    )
    raise exc


def authorize(user_id: str, operation: str) -> StudentSessionEnrollment:
    """Return the active enrollment or raise the gate's authorization error."""
    enrollment = find_active_enrollment(user_id)
    if enrollment is None:
        any_active = db.session.query(TrainingSession.id).filter_by(is_active=True).first()
        if any_active is None:
            _deny(SessionInactive(None, operation), operation)
        _deny(NotEnrolled(user_id, operation), operation)
    if not enrollment.is_eligible:
        _deny(NotEligible(
            user_id, enrollment.session_id,
            credits_earned=enrollment.credits_earned,
            min_credits=enrollment.session.min_credits,
            operation=operation,
        ), operation)
    return enrollment


def check_application(application, operation: str) -> StudentSessionEnrollment:
    """Verify the enrollment that owns ``application`` still passes the gate."""
    enrollment = application.enrollment
    session = enrollment.session
    if not session.is_active:
        _deny(SessionInactive(session.id, operation), operation)
    if not enrollment.is_eligible:
        _deny(NotEligible(
            enrollment.user_id, session.id,
            credits_earned=enrollment.credits_earned,
            min_credits=session.min_credits,
            operation=operation,
        ), operation)
    return enrollment


def authorize_application(actor, application, operation: str) -> StudentSessionEnrollment:
    """Gate for a student operating on their own application."""
    if application.user_id != actor.user_id:
        _deny(PermissionDenied(actor.user_id, operation, "not the application owner"), operation)
    enrollment = authorize(actor.user_id, operation)
    if enrollment.id != application.enrollment_id:
        # Application belongs to an enrollment whose session is no longer active
        _deny(SessionInactive(application.session_id, operation), operation)
    return enrollment


def authorize_actor(actor, application, operation: str) -> StudentSessionEnrollment:
    """Route to the student or staff variant of the gate by role."""
    if actor.is_student:
        return authorize_application(actor, application, operation)
    if actor.is_reviewer or actor.is_admin:
        return check_application(application, operation)
    _deny(PermissionDenied(actor.user_id, operation), operation)
