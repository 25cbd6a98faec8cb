"""
Tests for the structured log formatters and the request context filter.
"""

import json
import logging

from flask import g

from ptms.core.actor import Actor
from ptms.middleware.logging_config import JSONFormatter, ReadableFormatter, WorkflowContextFilter


def _record(**extra):
    record = logging.LogRecord("ptms.services.review_protocol", logging.INFO, __file__, 10,
                               "Review %s applied", ("APPROVE",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_includes_workflow_ids():
    line = JSONFormatter().format(_record(application_id="app-1", event_type="review_applied"))
    entry = json.loads(line)
    assert entry["message"] == "Review APPROVE applied"
    assert entry["application_id"] == "app-1"
    assert entry["event_type"] == "review_applied"
    assert "document_id" not in entry


def test_readable_shortens_ids():
    line = ReadableFormatter().format(_record(document_id="0123456789abcdef"))
    assert "document=01234567" in line


def test_filter_fills_request_context(app):
    with app.test_request_context("/api/v1/applications"):
        g.request_id = "req-7"
        g.actor = Actor.of("user-9", "STUDENT")
        record = _record()
        assert WorkflowContextFilter().filter(record) is True
    assert record.request_id == "req-7"
    assert record.user_id == "user-9"


def test_filter_keeps_explicit_user(app):
    with app.test_request_context("/api/v1/applications"):
        g.request_id = "req-8"
        g.actor = None
        record = _record(user_id="explicit")
        WorkflowContextFilter().filter(record)
    assert record.user_id == "explicit"
