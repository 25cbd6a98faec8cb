"""
Identity middleware: resolves the acting principal, sets ``g.actor``.

Credential verification belongs to the identity collaborator; this layer
only reads what it asserts. Priority order:
  1. Authorization: Bearer <JWT>          →  sub + role claims
  2. X-User-Id / X-User-Role headers      →  only when TRUST_IDENTITY_HEADERS
"""

import logging

import jwt as pyjwt
from flask import g, request

from ptms.core.actor import Actor
from ptms.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip identity resolution entirely
SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def _actor_from_claims(user_id, role):
    if not user_id or not role:
        return None
    try:
        return Actor.of(user_id, role)
    except ValueError:
        logger.warning("Unknown role %r for user %s", role, user_id)
        return None


def init_identity_middleware(app):
    """Register identity resolution as a before_request hook."""

    @app.before_request
    def _resolve_identity():
        g.actor = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            try:
                payload = decode_access_token(auth_header[7:])
            except pyjwt.ExpiredSignatureError:
                logger.info("Expired access token", extra={"event_type": "token_expired"})
                return
            except pyjwt.InvalidTokenError:
                logger.info("Invalid access token", extra={"event_type": "token_invalid"})
                return
            g.actor = _actor_from_claims(payload.get("sub"), payload.get("role"))
            return

        if app.config.get("TRUST_IDENTITY_HEADERS"):
            g.actor = _actor_from_claims(
                request.headers.get("X-User-Id"), request.headers.get("X-User-Role"),
            )


def current_actor():
    """The resolved Actor for this request, or None."""
    return getattr(g, "actor", None)
