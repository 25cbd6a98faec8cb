"""
Application Workflow Blueprint.

HTTP surface of the workflow core: application lifecycle, document
uploads, reviews and signatures.

Endpoints:
    POST   /api/v1/applications                               open DRAFT
    GET    /api/v1/applications?session_id=&status=           list
    GET    /api/v1/applications/<aid>                         detail
    POST   /api/v1/applications/<aid>/submit                  DRAFT → SUBMITTED
    PUT    /api/v1/applications/<aid>/placement               company + dates
    POST   /api/v1/applications/<aid>/documents/<type>        upload / resubmit
    GET    /api/v1/applications/<aid>/documents/<type>/history
    GET    /api/v1/applications/<aid>/progress                ledger summary
    POST   /api/v1/applications/<aid>/review                  open review, or Body: {"decisions": [...]}
    POST   /api/v1/applications/<aid>/reject                  Body: {"outcome", "reason"}
    GET    /api/v1/applications/<aid>/reviews                 audit trail
    POST   /api/v1/documents/<did>/reviews                    Body: {"decision", "comments", "expected_version"}
    POST   /api/v1/documents/<did>/signatures                 multipart ``file``

Layer contract:
    - Blueprint: parse + validate input shape, call service, return JSON.
    - Every business guard (gate, role, transition) lives in the services.
"""

import logging

from flask import Blueprint, jsonify, request

from ptms.services import application_service, document_service, review_protocol
from ptms.services.file_store import get_file_store
from ptms.utils.errors import E, api_error, register_error_handlers
from ptms.utils.helpers import optional_int, parse_date_input, read_upload, require_actor

logger = logging.getLogger(__name__)

applications_bp = Blueprint("applications", __name__, url_prefix="/api/v1")
register_error_handlers(applications_bp)


def _expected_version(data):
    """expected_version from body, query string or If-Match. Returns (value, err)."""
    raw = data.get("expected_version")
    if raw is None:
        raw = request.args.get("expected_version") or request.headers.get("If-Match", "").strip('"') or None
    try:
        return optional_int(raw, "expected_version"), None
    except ValueError as exc:
        return None, api_error(E.VALIDATION_INVALID, str(exc))


# ── Lifecycle ──────────────────────────────────────────────────────────────────


@applications_bp.route("/applications", methods=["POST"])
def create_application():
    actor, err = require_actor()
    if err:
        return err
    return jsonify(application_service.create_application(actor)), 201


@applications_bp.route("/applications", methods=["GET"])
def list_applications():
    actor, err = require_actor()
    if err:
        return err
    items = application_service.list_applications(
        actor,
        session_id=request.args.get("session_id"),
        status=request.args.get("status"),
    )
    return jsonify({"items": items, "total": len(items)})


@applications_bp.route("/applications/<application_id>", methods=["GET"])
def get_application(application_id):
    actor, err = require_actor()
    if err:
        return err
    return jsonify(application_service.get_application(application_id, actor))


@applications_bp.route("/applications/<application_id>/submit", methods=["POST"])
def submit_application(application_id):
    actor, err = require_actor()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    expected, err = _expected_version(data)
    if err:
        return err
    return jsonify(application_service.submit_application(application_id, actor, expected))


@applications_bp.route("/applications/<application_id>/placement", methods=["PUT"])
def set_placement(application_id):
    actor, err = require_actor()
    if err:
        return err
    data = dict(request.get_json(silent=True) or {})
    if not isinstance(data.get("company"), dict):
        return api_error(E.VALIDATION_REQUIRED, "Field 'company' is required.")
    try:
        data["start_date"] = parse_date_input(data.get("start_date"))
        data["end_date"] = parse_date_input(data.get("end_date"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    return jsonify(application_service.set_placement(application_id, actor, data))


@applications_bp.route("/applications/<application_id>/reject", methods=["POST"])
def reject_application(application_id):
    actor, err = require_actor()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    outcome = (data.get("outcome") or "REJECTED").strip().upper()
    if outcome not in ("REJECTED", "OFFER_REJECTED"):
        return api_error(E.VALIDATION_INVALID, "outcome must be REJECTED or OFFER_REJECTED")
    result = application_service.reject_application(
        application_id, actor, outcome=outcome, reason=data.get("reason"),
    )
    return jsonify(result)


# ── Documents ──────────────────────────────────────────────────────────────────


@applications_bp.route("/applications/<application_id>/documents/<doc_type>", methods=["POST"])
def upload_document(application_id, doc_type):
    actor, err = require_actor()
    if err:
        return err
    upload = read_upload()
    if upload is None:
        return api_error(E.VALIDATION_REQUIRED, "A document file is required.")
    payload, filename, media_type = upload
    result = document_service.upload_document(
        application_id, actor, doc_type, payload,
        filename=filename, media_type=media_type, file_store=get_file_store(),
    )
    return jsonify(result), 201


@applications_bp.route("/applications/<application_id>/documents/<doc_type>/history", methods=["GET"])
def document_history(application_id, doc_type):
    actor, err = require_actor()
    if err:
        return err
    items = document_service.list_document_history(application_id, actor, doc_type)
    return jsonify({"items": items, "total": len(items)})


@applications_bp.route("/applications/<application_id>/progress", methods=["GET"])
def application_progress(application_id):
    actor, err = require_actor()
    if err:
        return err
    return jsonify(application_service.get_application_summary(application_id, actor))


@applications_bp.route("/documents/<document_id>/signatures", methods=["POST"])
def sign_document(document_id):
    actor, err = require_actor()
    if err:
        return err
    upload = read_upload()
    if upload is None:
        return api_error(E.VALIDATION_REQUIRED, "A signature file is required.")
    expected, err = _expected_version({})
    if err:
        return err
    payload, _filename, media_type = upload
    result = document_service.sign_document(
        document_id, actor, payload,
        media_type=media_type, file_store=get_file_store(), expected_version=expected,
    )
    return jsonify(result), 201


# ── Reviews ────────────────────────────────────────────────────────────────────


@applications_bp.route("/applications/<application_id>/review", methods=["POST"])
def review_application(application_id):
    """Without ``decisions`` this opens the application for review."""
    actor, err = require_actor()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    decisions = data.get("decisions")
    if decisions is None:
        expected, err = _expected_version(data)
        if err:
            return err
        return jsonify(application_service.start_review(application_id, actor, expected))
    if not isinstance(decisions, list) or not decisions:
        return api_error(E.VALIDATION_INVALID, "Field 'decisions' must be a non-empty list.")
    results = review_protocol.review_application(application_id, actor, decisions)
    return jsonify({"items": results, "application_status": results[-1]["application_status"]}), 201


@applications_bp.route("/applications/<application_id>/reviews", methods=["GET"])
def list_reviews(application_id):
    actor, err = require_actor()
    if err:
        return err
    items = application_service.list_reviews(
        application_id, actor, document_id=request.args.get("document_id"),
    )
    return jsonify({"items": items, "total": len(items)})


@applications_bp.route("/documents/<document_id>/reviews", methods=["POST"])
def review_document(document_id):
    actor, err = require_actor()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    decision = (data.get("decision") or "").strip()
    if not decision:
        return api_error(E.VALIDATION_REQUIRED, "Field 'decision' is required.")
    expected, err = _expected_version(data)
    if err:
        return err
    result = review_protocol.apply_review(
        document_id, actor, decision,
        comments=data.get("comments"), expected_version=expected,
    )
    return jsonify(result), 201
