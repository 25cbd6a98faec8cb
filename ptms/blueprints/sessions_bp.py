"""
Training Session Blueprint.

Coordinator-facing administration of sessions, eligibility thresholds and
student enrollments.

Endpoints:
    POST   /api/v1/sessions                           create session
    GET    /api/v1/sessions?active=true               list sessions
    GET    /api/v1/sessions/<sid>                     session detail
    PUT    /api/v1/sessions/<sid>                     update session
    DELETE /api/v1/sessions/<sid>                     delete (no enrollments only)
    POST   /api/v1/sessions/<sid>/deactivate          soft-retire
    GET    /api/v1/sessions/<sid>/eligibility         threshold + counts
    PUT    /api/v1/sessions/<sid>/eligibility         Body: {"min_credits": int}
    POST   /api/v1/sessions/<sid>/coordinator-signature   multipart ``file``
    GET    /api/v1/sessions/<sid>/progress            per-student progress roster
    GET    /api/v1/sessions/<sid>/enrollments?eligible=true|false
    POST   /api/v1/sessions/<sid>/enrollments         Body: {"user_id"|"matric_no", "credits_earned"}
    POST   /api/v1/sessions/<sid>/enrollments/import  CSV (multipart ``file`` or text/csv body)
    PUT    /api/v1/enrollments/<eid>/credits          Body: {"credits_earned": int|null}
    DELETE /api/v1/enrollments/<eid>
    GET    /api/v1/me/enrollment

Layer contract:
    - Blueprint: parse + validate input shape, call service, return JSON.
    - NO db.session calls here; all writes owned by session_service.
"""

import logging

from flask import Blueprint, jsonify, request

from ptms.services import session_service
from ptms.services.file_store import get_file_store
from ptms.utils.errors import E, api_error, register_error_handlers
from ptms.utils.helpers import parse_date_input, read_upload, require_actor

logger = logging.getLogger(__name__)

sessions_bp = Blueprint("sessions", __name__, url_prefix="/api/v1")
register_error_handlers(sessions_bp)

_DATE_FIELDS = ("training_start_date", "training_end_date")


def _session_payload():
    """Request body with date fields parsed. Returns (data, err)."""
    data = dict(request.get_json(silent=True) or {})
    for field in _DATE_FIELDS:
        if field in data:
            try:
                data[field] = parse_date_input(data[field])
            except ValueError as exc:
                return None, api_error(E.VALIDATION_INVALID, f"{field}: {exc}")
    return data, None


def _bool_arg(name):
    raw = request.args.get(name)
    if raw is None:
        return None
    return raw.lower() in ("1", "true", "yes")


# ── Sessions ───────────────────────────────────────────────────────────────────


@sessions_bp.route("/sessions", methods=["POST"])
def create_session():
    actor, err = require_actor()
    if err:
        return err
    data, err = _session_payload()
    if err:
        return err
    return jsonify(session_service.create_session(actor, data)), 201


@sessions_bp.route("/sessions", methods=["GET"])
def list_sessions():
    actor, err = require_actor()
    if err:
        return err
    return jsonify({"items": session_service.list_sessions(active_only=bool(_bool_arg("active")))})


@sessions_bp.route("/sessions/<session_id>", methods=["GET"])
def get_session(session_id):
    actor, err = require_actor()
    if err:
        return err
    return jsonify(session_service.get_session(session_id))


@sessions_bp.route("/sessions/<session_id>", methods=["PUT"])
def update_session(session_id):
    actor, err = require_actor()
    if err:
        return err
    data, err = _session_payload()
    if err:
        return err
    return jsonify(session_service.update_session(session_id, actor, data))


@sessions_bp.route("/sessions/<session_id>", methods=["DELETE"])
def delete_session(session_id):
    actor, err = require_actor()
    if err:
        return err
    session_service.delete_session(session_id, actor)
    return "", 204


@sessions_bp.route("/sessions/<session_id>/deactivate", methods=["POST"])
def deactivate_session(session_id):
    actor, err = require_actor()
    if err:
        return err
    return jsonify(session_service.deactivate_session(session_id, actor))


# ── Eligibility threshold ──────────────────────────────────────────────────────


@sessions_bp.route("/sessions/<session_id>/eligibility", methods=["GET"])
def get_eligibility(session_id):
    actor, err = require_actor()
    if err:
        return err
    return jsonify(session_service.get_eligibility_threshold(session_id))


@sessions_bp.route("/sessions/<session_id>/eligibility", methods=["PUT"])
def update_eligibility(session_id):
    actor, err = require_actor()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if "min_credits" not in data:
        return api_error(E.VALIDATION_REQUIRED, "Field 'min_credits' is required.")
    return jsonify(session_service.update_eligibility_threshold(session_id, actor, data["min_credits"]))


@sessions_bp.route("/sessions/<session_id>/coordinator-signature", methods=["POST"])
def upload_coordinator_signature(session_id):
    actor, err = require_actor()
    if err:
        return err
    upload = read_upload()
    if upload is None:
        return api_error(E.VALIDATION_REQUIRED, "A signature file is required.")
    payload, _filename, media_type = upload
    result = session_service.upload_coordinator_signature(
        session_id, actor, payload, media_type=media_type, file_store=get_file_store(),
    )
    return jsonify(result), 201


# ── Enrollments ────────────────────────────────────────────────────────────────


@sessions_bp.route("/sessions/<session_id>/progress", methods=["GET"])
def session_progress(session_id):
    actor, err = require_actor()
    if err:
        return err
    return jsonify(session_service.session_progress(session_id, actor))


@sessions_bp.route("/sessions/<session_id>/enrollments", methods=["GET"])
def list_enrollments(session_id):
    actor, err = require_actor()
    if err:
        return err
    items = session_service.list_session_enrollments(session_id, actor, eligible=_bool_arg("eligible"))
    return jsonify({"items": items, "total": len(items)})


@sessions_bp.route("/sessions/<session_id>/enrollments", methods=["POST"])
def enroll_student(session_id):
    actor, err = require_actor()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if not data.get("user_id") and not data.get("matric_no"):
        return api_error(E.VALIDATION_REQUIRED, "Field 'user_id' or 'matric_no' is required.")
    result = session_service.enroll_student(session_id, actor, data)
    return jsonify(result), 201 if result["created"] else 200


@sessions_bp.route("/sessions/<session_id>/enrollments/import", methods=["POST"])
def import_enrollments(session_id):
    actor, err = require_actor()
    if err:
        return err
    upload = read_upload()
    if upload is None:
        return api_error(E.VALIDATION_REQUIRED, "A CSV file is required.")
    result = session_service.import_enrollments_csv(session_id, actor, upload[0])
    return jsonify(result), 200


@sessions_bp.route("/enrollments/<enrollment_id>/credits", methods=["PUT"])
def update_credits(enrollment_id):
    actor, err = require_actor()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if "credits_earned" not in data:
        return api_error(E.VALIDATION_REQUIRED, "Field 'credits_earned' is required.")
    return jsonify(session_service.update_enrollment_credits(enrollment_id, actor, data["credits_earned"]))


@sessions_bp.route("/enrollments/<enrollment_id>", methods=["DELETE"])
def remove_enrollment(enrollment_id):
    actor, err = require_actor()
    if err:
        return err
    session_service.remove_enrollment(enrollment_id, actor)
    return "", 204


@sessions_bp.route("/me/enrollment", methods=["GET"])
def my_enrollment():
    actor, err = require_actor()
    if err:
        return err
    enrollment = session_service.get_my_enrollment(actor)
    if enrollment is None:
        return api_error(E.NOT_FOUND, "No enrollment in an active session")
    return jsonify(enrollment)
