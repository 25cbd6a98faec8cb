"""
Request timing middleware.

Stamps every API response with ``X-Request-ID`` (propagated from the caller
when present) and ``X-Request-Duration-Ms``, and writes one access-log line
per request carrying the workflow ids found in the URL.

    >= 500               ERROR
    > SLOW_REQUEST_MS    WARNING
    401 / 403 / 409      INFO (denied or conflicting workflow operations)
    everything else      DEBUG
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

_QUIET_PATHS = frozenset({"/api/v1/health"})

DEFAULT_SLOW_REQUEST_MS = 1000

_WORKFLOW_ARGS = ("application_id", "document_id", "session_id")


def _access_extra(response, duration_ms):
    view_args = request.view_args or {}
    extra = {
        "method": request.method,
        "path": request.path,
        "status": response.status_code,
        "duration_ms": duration_ms,
        "remote_addr": request.remote_addr,
        "request_id": g.request_id,
        "event_type": "http_request",
    }
    for key in _WORKFLOW_ARGS:
        if view_args.get(key):
            extra[key] = view_args[key]
    return extra


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""
    slow_ms = app.config.get("SLOW_REQUEST_MS", DEFAULT_SLOW_REQUEST_MS)

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish_timer(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        if request.path in _QUIET_PATHS:
            return response

        extra = _access_extra(response, duration_ms)
        args = (request.method, request.path, response.status_code, duration_ms)
        if response.status_code >= 500:
            logger.error("Server error: %s %s %d (%.0fms)", *args, extra=extra)
        elif duration_ms > slow_ms:
            logger.warning("Slow request: %s %s %d (%.0fms)", *args, extra=extra)
        elif response.status_code in (401, 403, 409):
            logger.info("Refused: %s %s %d (%.0fms)", *args, extra=extra)
        else:
            logger.debug("Request: %s %s %d (%.0fms)", *args, extra=extra)
        return response
