"""
Training session and enrollment administration.

Covers the coordinator side of the workflow: sessions, thresholds, student
enrollments (single and CSV bulk) and the coordinator signature. Every
change to credits or to a threshold re-invokes the Eligibility Evaluator and
persists the cached flag in the same transaction.

Threshold policy: editing ``min_credits`` retroactively recomputes every
enrollment of that session.
"""

import csv
import io
import logging
from datetime import date, datetime, timezone

from flask import current_app

from ptms.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    SessionInactive,
    ValidationError,
)
from ptms.models import db
from ptms.models.application import Application
from ptms.models.session import (
    DEADLINE_KEYS,
    ENROLLMENT_STATUSES,
    StudentSessionEnrollment,
    TrainingSession,
)
from ptms.models.user import User, UserRole
from ptms.services import document_ledger, eligibility, enrollment_gate
from ptms.services.file_store import validate_upload
from ptms.services.helpers.transaction import atomic

logger = logging.getLogger(__name__)

SIGNATURE_MEDIA_TYPES = {"image/png", "image/jpeg", "image/svg+xml"}


# ── Guards ───────────────────────────────────────────────────────────────────


def get_session_or_raise(session_id: str) -> TrainingSession:
    session = db.session.get(TrainingSession, session_id)
    if session is None:
        raise NotFoundError("TrainingSession", session_id)
    return session


def _get_enrollment_or_raise(enrollment_id: str) -> StudentSessionEnrollment:
    enrollment = db.session.get(StudentSessionEnrollment, enrollment_id)
    if enrollment is None:
        raise NotFoundError("StudentSessionEnrollment", enrollment_id)
    return enrollment


def _require_admin(actor, operation):
    if not actor.is_admin:
        raise PermissionDenied(actor.user_id, operation, "coordinators only")


def _require_owner(actor, session, operation):
    """Sessions are mutated only by their coordinator (or an administrator)."""
    _require_admin(actor, operation)
    if actor.role == UserRole.COORDINATOR and session.coordinator_id not in (None, actor.user_id):
        raise PermissionDenied(actor.user_id, operation, "not the session coordinator")


def _ensure_mutable(session, operation):
    if session.has_ended():
        raise ValidationError(
            "Training session has ended and can no longer be modified",
            {"session_id": session.id, "operation": operation,
             "training_end_date": session.training_end_date.isoformat()},
        )


def _non_negative_int(value, field):
    if value is None or value == "":
        return None
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{field} must be a whole number", {"field": field})
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer", {"field": field}) from exc
    if isinstance(value, bool) or number < 0:
        raise ValidationError(f"{field} must be a non-negative integer", {"field": field})
    return number


# ── Sessions ─────────────────────────────────────────────────────────────────


def _clean_session_fields(data: dict, current: TrainingSession | None = None) -> dict:
    cfg = current_app.config
    cleaned = {}

    if "name" in data or current is None:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", {"field": "name"})
        cleaned["name"] = name
    if "year" in data or current is None:
        year = _non_negative_int(data.get("year"), "year")
        if year is None:
            raise ValidationError("year is required", {"field": "year"})
        cleaned["year"] = year
    if "semester" in data or current is None:
        semester = _non_negative_int(data.get("semester"), "semester")
        if semester not in (1, 2):
            raise ValidationError("semester must be 1 or 2", {"field": "semester"})
        cleaned["semester"] = semester

    for field, default in (
        ("min_credits", cfg["DEFAULT_MIN_CREDITS"]),
        ("min_weeks", cfg["DEFAULT_MIN_WEEKS"]),
        ("max_weeks", cfg["DEFAULT_MAX_WEEKS"]),
    ):
        if field in data:
            value = _non_negative_int(data[field], field)
            cleaned[field] = default if value is None else value
        elif current is None:
            cleaned[field] = default

    min_weeks = cleaned.get("min_weeks", current.min_weeks if current else None)
    max_weeks = cleaned.get("max_weeks", current.max_weeks if current else None)
    if min_weeks < 1 or min_weeks > max_weeks:
        raise ValidationError(
            "min_weeks must be at least 1 and not exceed max_weeks",
            {"field": "min_weeks", "min_weeks": min_weeks, "max_weeks": max_weeks},
        )

    for field in ("training_start_date", "training_end_date"):
        if field in data:
            cleaned[field] = data[field]
    start = cleaned.get("training_start_date", current.training_start_date if current else None)
    end = cleaned.get("training_end_date", current.training_end_date if current else None)
    if start and end and start > end:
        raise ValidationError(
            "training_start_date must not be after training_end_date",
            {"field": "training_start_date"},
        )

    if "deadlines" in data:
        deadlines = data.get("deadlines") or {}
        unknown = set(deadlines) - set(DEADLINE_KEYS)
        if unknown:
            raise ValidationError(
                f"Unknown deadline keys: {', '.join(sorted(unknown))}",
                {"field": "deadlines", "allowed": list(DEADLINE_KEYS)},
            )
        for key, value in deadlines.items():
            try:
                date.fromisoformat(str(value))
            except ValueError as exc:
                raise ValidationError(f"{key} must be an ISO date", {"field": key}) from exc
        cleaned["deadlines"] = {k: str(v) for k, v in deadlines.items()}

    if "is_active" in data:
        cleaned["is_active"] = bool(data["is_active"])
    return cleaned


def create_session(actor, data: dict) -> dict:
    _require_admin(actor, "create_session")
    fields = _clean_session_fields(data)
    session = TrainingSession(**fields)
    if actor.role == UserRole.COORDINATOR:
        session.coordinator_id = actor.user_id
    elif data.get("coordinator_id"):
        session.coordinator_id = data["coordinator_id"]

    with atomic("TrainingSession"):
        db.session.add(session)

    logger.info("Session %s created", session.name,
                extra={"session_id": session.id, "user_id": actor.user_id,
                       "event_type": "session_created"})
    return session.to_dict()


def update_session(session_id: str, actor, data: dict) -> dict:
    session = get_session_or_raise(session_id)
    _require_owner(actor, session, "update_session")
    _ensure_mutable(session, "update_session")
    fields = _clean_session_fields(data, current=session)
    if fields.get("is_active") and not session.is_active:
        _ensure_no_double_enrollment(session)

    result = None
    with atomic("TrainingSession", session_id):
        threshold_changed = "min_credits" in fields and fields["min_credits"] != session.min_credits
        for key, value in fields.items():
            setattr(session, key, value)
        if threshold_changed:
            result = eligibility.refresh_session(session)

    data = session.to_dict()
    if result is not None:
        data["eligibility"] = result
    return data


def get_session(session_id: str) -> dict:
    session = get_session_or_raise(session_id)
    data = session.to_dict()
    data["enrollment_count"] = session.enrollments.count()
    return data


def list_sessions(active_only: bool = False) -> list[dict]:
    q = TrainingSession.query
    if active_only:
        q = q.filter_by(is_active=True)
    q = q.order_by(TrainingSession.year.desc(), TrainingSession.semester.desc())
    return [s.to_dict() for s in q.all()]


def deactivate_session(session_id: str, actor) -> dict:
    session = get_session_or_raise(session_id)
    _require_owner(actor, session, "deactivate_session")
    with atomic("TrainingSession", session_id):
        session.is_active = False
    logger.info("Session %s deactivated", session_id,
                extra={"session_id": session_id, "user_id": actor.user_id,
                       "event_type": "session_deactivated"})
    return session.to_dict()


def delete_session(session_id: str, actor) -> None:
    session = get_session_or_raise(session_id)
    _require_owner(actor, session, "delete_session")
    if session.enrollments.count():
        raise ValidationError(
            "Session has enrollments; deactivate it instead",
            {"session_id": session_id},
        )
    with atomic("TrainingSession", session_id):
        db.session.delete(session)


def _ensure_no_double_enrollment(session):
    """Reactivating a session must not give a student two active enrollments."""
    for enrollment in session.enrollments:
        other = enrollment_gate.find_active_enrollment(enrollment.user_id)
        if other is not None and other.session_id != session.id:
            raise ConflictError("StudentSessionEnrollment", "user_id", enrollment.user_id)


# ── Eligibility threshold ────────────────────────────────────────────────────


def get_eligibility_threshold(session_id: str) -> dict:
    session = get_session_or_raise(session_id)
    total = session.enrollments.count()
    eligible = session.enrollments.filter_by(is_eligible=True).count()
    return {
        "session_id": session.id,
        "min_credits": session.min_credits,
        "enrollment_count": total,
        "eligible_count": eligible,
    }


def update_eligibility_threshold(session_id: str, actor, min_credits) -> dict:
    """Set ``min_credits`` and recompute every enrollment flag of the session.

    Returns:
        {"session_id", "min_credits", "previous_min_credits",
         "recomputed", "changed", "now_eligible", "now_ineligible"}
    """
    session = get_session_or_raise(session_id)
    _require_owner(actor, session, "update_eligibility_threshold")
    _ensure_mutable(session, "update_eligibility_threshold")
    min_credits = _non_negative_int(min_credits, "min_credits")
    if min_credits is None:
        raise ValidationError("min_credits is required", {"field": "min_credits"})

    previous = session.min_credits
    with atomic("TrainingSession", session_id):
        session.min_credits = min_credits
        result = eligibility.refresh_session(session)

    logger.info(
        "Session %s threshold %s → %s; %d of %d flags changed",
        session_id, previous, min_credits, result["changed"], result["recomputed"],
        extra={"session_id": session_id, "user_id": actor.user_id,
               "event_type": "threshold_updated"},
    )
    return {"session_id": session_id, "min_credits": min_credits,
            "previous_min_credits": previous, **result}


def upload_coordinator_signature(session_id: str, actor, payload: bytes, *,
                                 media_type: str | None, file_store) -> dict:
    session = get_session_or_raise(session_id)
    _require_owner(actor, session, "upload_coordinator_signature")
    _ensure_mutable(session, "upload_coordinator_signature")
    validate_upload(payload, media_type, allowed=SIGNATURE_MEDIA_TYPES)

    ref = file_store.save(payload, f"session_{session_id}_signature", media_type,
                          namespace="signatures")
    with atomic("TrainingSession", session_id):
        session.coordinator_signature_ref = ref
        session.coordinator_signature_media_type = media_type
        session.coordinator_signed_at = datetime.now(timezone.utc)
        if session.coordinator_id is None and actor.role == UserRole.COORDINATOR:
            session.coordinator_id = actor.user_id
    return session.to_dict()


# ── Enrollments ──────────────────────────────────────────────────────────────


def _upsert_enrollment(session, user, credits_earned, status="active"):
    """Create or update one enrollment and refresh its flag. Caller commits."""
    if user.role != UserRole.STUDENT:
        raise ValidationError("Only students can be enrolled", {"user_id": user.id})
    if status not in ENROLLMENT_STATUSES:
        raise ValidationError(
            f"status must be one of {', '.join(sorted(ENROLLMENT_STATUSES))}",
            {"field": "status"},
        )
    other = enrollment_gate.find_active_enrollment(user.id)
    if other is not None and other.session_id != session.id:
        raise ConflictError("StudentSessionEnrollment", "user_id", user.id)

    enrollment = StudentSessionEnrollment.query.filter_by(
        session_id=session.id, user_id=user.id,
    ).first()
    created = enrollment is None
    if created:
        enrollment = StudentSessionEnrollment(session_id=session.id, user_id=user.id)
        db.session.add(enrollment)

    if credits_earned is not None:
        user.credits_earned = credits_earned
    enrollment.credits_earned = credits_earned if credits_earned is not None else user.credits_earned
    enrollment.status = status
    enrollment.session = session
    eligibility.refresh_enrollment(enrollment, session)
    return enrollment, created


def enroll_student(session_id: str, actor, data: dict) -> dict:
    """Enroll a student (by ``user_id`` or ``matric_no``) into a session."""
    session = get_session_or_raise(session_id)
    _require_owner(actor, session, "enroll_student")
    _ensure_mutable(session, "enroll_student")
    if not session.is_active:
        raise SessionInactive(session_id, "enroll_student")

    user = None
    if data.get("user_id"):
        user = db.session.get(User, data["user_id"])
    elif data.get("matric_no"):
        user = User.query.filter_by(matric_no=str(data["matric_no"]).strip()).first()
    if user is None:
        raise NotFoundError("User", data.get("user_id") or data.get("matric_no"))

    credits_earned = _non_negative_int(data.get("credits_earned"), "credits_earned")
    with atomic("StudentSessionEnrollment"):
        enrollment, created = _upsert_enrollment(
            session, user, credits_earned, data.get("status") or "active",
        )

    logger.info(
        "Enrollment %s %s (eligible=%s)", enrollment.id, "created" if created else "updated",
        enrollment.is_eligible,
        extra={"session_id": session_id, "user_id": user.id, "event_type": "enrollment_upserted"},
    )
    result = enrollment.to_dict()
    result["created"] = created
    return result


def update_enrollment_credits(enrollment_id: str, actor, credits_earned) -> dict:
    enrollment = _get_enrollment_or_raise(enrollment_id)
    session = enrollment.session
    _require_owner(actor, session, "update_enrollment_credits")
    _ensure_mutable(session, "update_enrollment_credits")
    credits_earned = _non_negative_int(credits_earned, "credits_earned")

    with atomic("StudentSessionEnrollment", enrollment_id):
        enrollment.credits_earned = credits_earned
        enrollment.user.credits_earned = credits_earned
        changed = eligibility.refresh_enrollment(enrollment, session)

    result = enrollment.to_dict()
    result["eligibility_changed"] = changed
    return result


def remove_enrollment(enrollment_id: str, actor) -> None:
    enrollment = _get_enrollment_or_raise(enrollment_id)
    _require_owner(actor, enrollment.session, "remove_enrollment")
    if Application.query.filter_by(enrollment_id=enrollment_id).first() is not None:
        raise ValidationError(
            "Enrollment has an application and cannot be removed",
            {"enrollment_id": enrollment_id},
        )
    with atomic("StudentSessionEnrollment", enrollment_id):
        db.session.delete(enrollment)


def list_session_enrollments(session_id: str, actor, eligible=None) -> list[dict]:
    if not (actor.is_admin or actor.is_reviewer):
        raise PermissionDenied(actor.user_id, "list_session_enrollments")
    session = get_session_or_raise(session_id)
    q = session.enrollments
    if eligible is not None:
        q = q.filter_by(is_eligible=bool(eligible))
    rows = []
    for enrollment in q.order_by(StudentSessionEnrollment.created_at).all():
        row = enrollment.to_dict()
        row["student"] = enrollment.user.to_dict() if enrollment.user else None
        rows.append(row)
    return rows


def _current_applications(session_id: str) -> dict:
    """enrollment_id → the open application, else the most recent closed one."""
    current = {}
    apps = (
        Application.query
        .filter_by(session_id=session_id)
        .order_by(Application.created_at)
        .all()
    )
    for application in apps:
        held = current.get(application.enrollment_id)
        if held is None or held.is_terminal:
            current[application.enrollment_id] = application
    return current


def session_progress(session_id: str, actor) -> dict:
    """Per-student progress roster for one session.

    Each enrolled student gets one row with their cached eligibility and the
    derived label/progress of their current application ("Not Started", 0%
    when they have none).
    """
    if not (actor.is_admin or actor.is_reviewer):
        raise PermissionDenied(actor.user_id, "session_progress")
    session = get_session_or_raise(session_id)
    applications = _current_applications(session.id)

    rows = []
    by_label = {}
    for enrollment in session.enrollments.order_by(StudentSessionEnrollment.created_at).all():
        application = applications.get(enrollment.id)
        if application is None:
            summary = {"application_id": None, "status": None,
                       "label": document_ledger.LABEL_NOT_STARTED, "progress": 0}
        else:
            summary = document_ledger.summarize(application)
        rows.append({
            "enrollment_id": enrollment.id,
            "student": enrollment.user.to_dict() if enrollment.user else None,
            "credits_earned": enrollment.credits_earned,
            "is_eligible": enrollment.is_eligible,
            "application_id": summary["application_id"],
            "application_status": summary["status"],
            "label": summary["label"],
            "progress": summary["progress"],
        })
        by_label[summary["label"]] = by_label.get(summary["label"], 0) + 1

    return {
        "session_id": session.id,
        "min_credits": session.min_credits,
        "items": rows,
        "total": len(rows),
        "by_label": by_label,
    }


def get_my_enrollment(actor) -> dict | None:
    """The actor's enrollment in an active session, with gate status."""
    enrollment = enrollment_gate.find_active_enrollment(actor.user_id)
    if enrollment is None:
        return None
    data = enrollment.to_dict()
    data["session"] = enrollment.session.to_dict()
    data["min_credits"] = enrollment.session.min_credits
    return data


# ── CSV import ───────────────────────────────────────────────────────────────


def parse_enrollment_csv(file_content: str | bytes) -> list[dict]:
    """
    Parse an enrollment CSV into row dicts.
    Required columns: matric_no, credits_earned. Optional: status.
    """
    if isinstance(file_content, bytes):
        file_content = file_content.decode("utf-8-sig")

    reader = csv.DictReader(io.StringIO(file_content))
    headers = [f.strip().lower() for f in (reader.fieldnames or [])]
    missing = [h for h in ("matric_no", "credits_earned") if h not in headers]
    if missing:
        raise ValidationError(
            f"CSV is missing columns: {', '.join(missing)}",
            {"found": headers},
        )

    rows = []
    for i, row in enumerate(reader, start=2):
        normalized = {k.strip().lower(): (v or "").strip() for k, v in row.items() if k}
        rows.append({
            "row_num": i,
            "matric_no": normalized.get("matric_no", ""),
            "credits_earned": normalized.get("credits_earned", ""),
            "status": normalized.get("status", "") or "active",
        })
    return rows


def import_enrollments_csv(session_id: str, actor, file_content: str | bytes) -> dict:
    """Bulk upsert enrollments; valid rows commit together, bad rows are reported.

    Returns:
        {"imported": int, "created": int, "updated": int,
         "eligible": int, "ineligible": int, "errors": [{"row", "error"}]}
    """
    session = get_session_or_raise(session_id)
    _require_owner(actor, session, "import_enrollments")
    _ensure_mutable(session, "import_enrollments")
    if not session.is_active:
        raise SessionInactive(session_id, "import_enrollments")
    rows = parse_enrollment_csv(file_content)

    summary = {"imported": 0, "created": 0, "updated": 0,
               "eligible": 0, "ineligible": 0, "errors": []}
    seen = set()
    with atomic("StudentSessionEnrollment"):
        for row in rows:
            matric = row["matric_no"]
            if not matric:
                summary["errors"].append({"row": row["row_num"], "error": "matric_no is empty"})
                continue
            if matric in seen:
                summary["errors"].append({"row": row["row_num"], "error": f"duplicate matric_no {matric}"})
                continue
            seen.add(matric)
            user = User.query.filter_by(matric_no=matric).first()
            if user is None:
                summary["errors"].append({"row": row["row_num"], "error": f"unknown matric_no {matric}"})
                continue
            try:
                credits_earned = _non_negative_int(row["credits_earned"], "credits_earned")
                enrollment, created = _upsert_enrollment(session, user, credits_earned, row["status"])
            except (ValidationError, ConflictError) as exc:
                summary["errors"].append({"row": row["row_num"], "error": exc.message})
                continue
            summary["imported"] += 1
            summary["created" if created else "updated"] += 1
            summary["eligible" if enrollment.is_eligible else "ineligible"] += 1

    logger.info(
        "Imported %d enrollments into session %s (%d errors)",
        summary["imported"], session_id, len(summary["errors"]),
        extra={"session_id": session_id, "user_id": actor.user_id,
               "event_type": "enrollments_imported"},
    )
    return summary
