"""Shared request-parsing helpers for blueprints.

parse_date_input:  raises ValueError on bad input (blueprints turn it into 400)
require_actor:     tuple-return pattern, like the other helpers here
"""
import logging
from datetime import date, datetime

from flask import request

from ptms.middleware.identity import current_actor
from ptms.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, DD.MM.YYYY, date objects.
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        try:
            return datetime.strptime(str(value), "%d.%m.%Y").date()
        except ValueError as exc:
            raise ValueError(
                "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
            ) from exc


def require_actor():
    """Return the acting principal or a 401 error tuple.

        actor, err = require_actor()
        if err:
            return err
    """
    actor = current_actor()
    if actor is None:
        return None, api_error(E.UNAUTHENTICATED, "Authentication required")
    return actor, None


def optional_int(value, field):
    """Parse an optional integer query/body value, raising ValueError with the field name."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field} must be an integer") from exc


def read_upload():
    """Pull (payload, filename, media_type) from a multipart ``file`` part or a raw body.

    Returns None when the request carries no payload.
    """
    upload = request.files.get("file")
    if upload is not None:
        return upload.read(), upload.filename, upload.mimetype
    if request.data:
        return request.data, request.headers.get("X-Filename"), request.mimetype
    return None
