"""
Institutional Reference Portal.

    from refportal import create_app
    app = create_app("testing")

``create_app`` falls back to $APP_ENV, then "development".
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from refportal.config import config
from refportal.core.exceptions import ImmutableHistoryError
from refportal.middleware.jwt_auth import init_jwt_middleware
from refportal.middleware.logging_config import configure_logging
from refportal.middleware.rate_limiter import init_rate_limits
from refportal.middleware.timing import init_request_timing
from refportal.models import db
from refportal.utils.errors import E, error_body

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(key_func=get_remote_address, default_limits=[])


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, _record):
    if "sqlite" not in type(dbapi_conn).__module__:
        return
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins == "*":
        CORS(app)
    elif origins:
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])


def _create_local_schema(app):
    """Development and tests run without migrations."""
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    with app.app_context():
        if uri.startswith("sqlite:///") and ":memory:" not in uri:
            os.makedirs(app.instance_path, exist_ok=True)
        db.create_all()


def _register_blueprints(app):
    from refportal.blueprints.form_template_bp import form_template_bp
    from refportal.blueprints.form_workflow_bp import form_workflow_bp
    from refportal.blueprints.health_bp import health_bp
    from refportal.blueprints.notification_bp import notification_bp

    for bp in (health_bp, form_template_bp, form_workflow_bp, notification_bp):
        app.register_blueprint(bp)


def _register_app_errors(app):
    @app.errorhandler(404)
    def _not_found(_e):
        body = error_body(E.NOT_FOUND, "Not found", {"path": request.path})
        return body, 404

    @app.errorhandler(405)
    def _bad_method(_e):
        return error_body(E.VALIDATION_INVALID, "Method not allowed"), 405

    @app.errorhandler(413)
    def _too_large(_e):
        return error_body(E.VALIDATION_INVALID, "Request body too large"), 413

    @app.errorhandler(429)
    def _throttled(e):
        return error_body("ERR_RATE_LIMITED", "Too many requests", {"retry_after": e.description}), 429

    @app.errorhandler(ImmutableHistoryError)
    def _ledger_rewrite(e):
        db.session.rollback()
        logger.error("Custody ledger rewrite blocked: %s", e, exc_info=True)
        return error_body(E.INTERNAL, "Internal server error"), 500

    @app.errorhandler(500)
    def _server_error(e):
        db.session.rollback()
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return error_body(E.INTERNAL, "Internal server error"), 500


def create_app(config_name=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name or os.getenv("APP_ENV", "development")]())

    configure_logging(app)
    _init_extensions(app)

    init_request_timing(app)
    init_jwt_middleware(app)

    # Model modules register their tables on db.metadata for create_all and Alembic
    from refportal.models import audit, auth, form, notification, system_config, workflow  # noqa: F401

    if app.config.get("DEBUG") or app.config.get("TESTING"):
        _create_local_schema(app)

    _register_blueprints(app)
    _register_app_errors(app)
    init_rate_limits(app, limiter)

    return app
