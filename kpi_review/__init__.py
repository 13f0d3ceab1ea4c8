"""
KPI Review Engine
Flask application factory.

Usage:
    from kpi_review import create_app
    app = create_app()           # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as sa_engine
from sqlalchemy import event as sa_event

from kpi_review.config import config
from kpi_review.middleware.jwt_auth import init_jwt_middleware
from kpi_review.middleware.logging_config import configure_logging
from kpi_review.middleware.rate_limiter import init_rate_limits
from kpi_review.middleware.timing import init_request_timing
from kpi_review.models import db
from kpi_review.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # limits are applied per blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)

_BODY_TYPES = ("json", "multipart/form-data")


@sa_event.listens_for(sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    origins = app.config.get("CORS_ORIGINS") or ""
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _register_blueprints(app):
    from kpi_review.blueprints.discrepancy_bp import discrepancy_bp
    from kpi_review.blueprints.health_bp import health_bp
    from kpi_review.blueprints.kpi_bp import kpi_bp

    for bp in (kpi_bp, discrepancy_bp, health_bp):
        app.register_blueprint(bp)


def _register_app_errors(app):
    """Envelope errors raised outside any blueprint (routing, body size, limits)."""

    @app.errorhandler(404)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _bad_method(exc):
        return api_error(E.BAD_REQUEST, "Method not allowed", status=405)

    @app.errorhandler(413)
    def _too_large(exc):
        limit_mb = (app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        return api_error(E.BAD_REQUEST, f"Request body exceeds {limit_mb} MB", status=413)

    @app.errorhandler(429)
    def _rate_limited(exc):
        return api_error(E.BAD_REQUEST, "Too many requests", status=429, details={"limit": exc.description})

    @app.errorhandler(500)
    def _server_error(exc):
        logger.error("Unhandled server error: %s", exc, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def create_app(config_name=None):
    """Build the application for ``config_name`` ("development", "testing", "production")."""
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name or os.getenv("APP_ENV", "development")]())

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    init_jwt_middleware(app)

    @app.before_request
    def _require_known_body():
        if request.method not in ("POST", "PUT", "PATCH") or not request.path.startswith("/api/"):
            return None
        content_type = request.content_type or ""
        if request.content_length and not any(t in content_type for t in _BODY_TYPES):
            return api_error(
                E.BAD_REQUEST, "Content-Type must be application/json or multipart/form-data", status=415,
            )
        return None

    # Model modules must be imported before create_all / flask db migrate
    from kpi_review.models import auth, discrepancy, kpi  # noqa: F401

    if not app.testing:
        with app.app_context():
            db.create_all()

    _register_blueprints(app)
    _register_app_errors(app)
    init_rate_limits(app, limiter)
    return app
