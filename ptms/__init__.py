"""
Practical Training Management System
Flask Application Factory.

Usage:
    from ptms import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from ptms.config import config
from ptms.middleware.identity import init_identity_middleware
from ptms.middleware.logging_config import configure_logging
from ptms.middleware.rate_limiter import init_rate_limits
from ptms.middleware.timing import init_request_timing
from ptms.models import db
from ptms.services.file_store import init_file_store
from ptms.utils.errors import E, api_error

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    app.config.setdefault("RATELIMIT_ENABLED", True)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)
    init_identity_middleware(app)
    init_file_store(app)

    # Register models with SQLAlchemy metadata
    from ptms.models import application as _application_models  # noqa: F401
    from ptms.models import notification as _notification_models  # noqa: F401
    from ptms.models import session as _session_models  # noqa: F401
    from ptms.models import user as _user_models  # noqa: F401

    if config_name != "production":
        with app.app_context():
            db.create_all()

    from ptms.blueprints.applications_bp import applications_bp
    from ptms.blueprints.health_bp import health_bp
    from ptms.blueprints.notifications_bp import notifications_bp
    from ptms.blueprints.sessions_bp import sessions_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(sessions_bp)
    app.register_blueprint(applications_bp)
    app.register_blueprint(notifications_bp)

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Resource not found")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def payload_too_large(e):
        return api_error(E.PAYLOAD_TOO_LARGE, "Request body too large")

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def internal_error(e):
        return api_error(E.INTERNAL, "Internal server error")

    init_rate_limits(app, limiter)

    # Registers the default post-commit transition hooks
    importlib.import_module("ptms.services.notification")

    return app
