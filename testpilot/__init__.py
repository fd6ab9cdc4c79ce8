"""
TestPilot: QA test-management API.

    from testpilot import create_app
    app = create_app()            # APP_ENV, else "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event

from testpilot.config import config
from testpilot.middleware.logging_config import configure_logging
from testpilot.middleware.timing import init_request_timing
from testpilot.models import db
from testpilot.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
# No default limit; the LLM-backed routes share one named limit
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)

_HTTP_ERRORS = {
    404: (E.NOT_FOUND, "Not found"),
    405: (E.METHOD_NOT_ALLOWED, "Method not allowed"),
    413: (E.PAYLOAD_TOO_LARGE, "Request body too large"),
    429: (E.RATE_LIMITED, "Too many requests"),
}


def create_app(config_name=None):
    """Build the application for ``config_name`` (development, testing, production)."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # ProductionConfig validates its environment in __init__
    app.config.from_object(config[config_name]())
    configure_logging(app)

    _init_extensions(app)
    init_request_timing(app)
    _create_tables(app)
    _register_blueprints(app)
    _register_http_errors(app)

    @app.get("/api/v1/health")
    def health():
        return {"status": "ok", "app": "TestPilot"}

    logger.debug("TestPilot app created (config=%s)", config_name)
    return app


def _enable_sqlite_foreign_keys(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _init_extensions(app):
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        os.makedirs(app.instance_path, exist_ok=True)

    db.init_app(app)
    if uri.startswith("sqlite"):
        # Cascades on project/story deletion rely on FK enforcement
        with app.app_context():
            event.listen(db.engine, "connect", _enable_sqlite_foreign_keys)

    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = [o.strip() for o in app.config.get("CORS_ORIGINS", "*").split(",") if o.strip()]
    if not origins or origins == ["*"]:
        CORS(app)
    else:
        CORS(app, origins=origins)


def _create_tables(app):
    # Registers every table on db.metadata before create_all / Alembic autogenerate
    from testpilot.models import ai, project, story, testing  # noqa: F401

    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:
            app.logger.warning("Could not create tables at startup: %s", exc)


def _register_blueprints(app):
    from testpilot.blueprints.ai_bp import ai_bp
    from testpilot.blueprints.project_bp import project_bp
    from testpilot.blueprints.story_bp import story_bp
    from testpilot.blueprints.testing_bp import testing_bp

    for bp in (project_bp, story_bp, testing_bp, ai_bp):
        app.register_blueprint(bp)


def _register_http_errors(app):
    def _handler(status, code, message):
        def handle(exc):
            details = {"path": request.path}
            if status == 429:
                details["retry_after"] = exc.description
            return api_error(code, message, status=status, details=details)
        return handle

    for status, (code, message) in _HTTP_ERRORS.items():
        app.register_error_handler(status, _handler(status, code, message))

    @app.errorhandler(500)
    def internal_error(exc):
        logger.error("Unhandled error on %s %s: %s", request.method, request.path, exc, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
