"""Standardised API error responses.

Usage
-----
    from ptms.utils.errors import api_error, E

    return api_error(E.VALIDATION_REQUIRED, "min_credits is required")
    return workflow_error_response(exc)   # any ptms.core.exceptions.WorkflowError
"""

from __future__ import annotations

import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from ptms.core.exceptions import WorkflowError

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error codes for request-shape problems.

    Workflow rule violations carry their own codes on the exception class
    (``NOT_ELIGIBLE``, ``INVALID_TRANSITION``, ...).
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Authentication – HTTP 401
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Payload – HTTP 413
    PAYLOAD_TOO_LARGE = "ERR_PAYLOAD_TOO_LARGE"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHENTICATED: 401,
    E.NOT_FOUND: 404,
    E.PAYLOAD_TOO_LARGE: 413,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)``, a drop-in for Flask views.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def workflow_error_response(exc):
    """Map a WorkflowError onto its HTTP status with the standard body."""
    if exc.http_status >= 500:
        logger.error("Workflow error %s: %s", exc.code, exc.message)
    else:
        logger.info("Workflow error %s: %s", exc.code, exc.message,
                    extra={"event_type": exc.code.lower()})
    body = exc.to_dict()
    if exc.retryable:
        body["retryable"] = True
    return jsonify(body), exc.http_status


def register_error_handlers(bp):
    """Attach the workflow and fallback error handlers to a blueprint."""
    @bp.errorhandler(WorkflowError)
    def _handle_workflow_error(exc):
        return workflow_error_response(exc)

    @bp.errorhandler(Exception)
    def _handle_unexpected(exc):
        if isinstance(exc, HTTPException):
            code = E.PAYLOAD_TOO_LARGE if exc.code == 413 else E.VALIDATION_INVALID
            return api_error(code, exc.description or exc.name, status=exc.code)
        logger.exception("Unhandled error in %s", bp.name)
        return api_error(E.INTERNAL, "Internal server error")
