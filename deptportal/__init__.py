"""
Department Portal
Flask application factory.

Usage:
    from deptportal import create_app
    app = create_app()           # APP_ENV, then "development"
    app = create_app("testing")
"""

import importlib
import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as sa_engine
from sqlalchemy import event as sa_event

from deptportal.config import config
from deptportal.middleware.jwt_auth import init_jwt_middleware
from deptportal.middleware.logging_config import configure_logging
from deptportal.middleware.rate_limiter import init_rate_limits
from deptportal.middleware.timing import init_request_timing
from deptportal.models import db
from deptportal.services.moderation import init_moderation
from deptportal.services.submission_limiter import init_submission_limiter

logger = logging.getLogger(__name__)

migrate = Migrate()
# limits are attached per blueprint in init_rate_limits
limiter = Limiter(key_func=get_remote_address, default_limits=[])

MAX_BODY_BYTES = 2 * 1024 * 1024


@sa_event.listens_for(sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """Build the app for ``config_name`` ("development", "testing", "production")."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # instantiated so ProductionConfig can refuse a missing DATABASE_URL / SECRET_KEY
    app.config.from_object(config[config_name]())
    app.config.setdefault("MAX_CONTENT_LENGTH", MAX_BODY_BYTES)

    configure_logging(app)
    _init_extensions(app)

    init_request_timing(app)
    init_jwt_middleware(app)
    init_submission_limiter(app)
    init_moderation(app)
    _init_json_guard(app)

    _init_models(app)
    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cli(app)
    init_rate_limits(app, limiter)
    _init_scheduler(app)

    logger.debug("App created", extra={"config": config_name})
    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins == "*":
        CORS(app)
    elif origins:
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        logger.info("CORS_ORIGINS empty; cross-origin requests are not allowed")


def _init_json_guard(app):
    @app.before_request
    def _require_json_body():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            if request.data and "json" not in (request.content_type or ""):
                abort(415, description="Content-Type must be application/json")


def _init_models(app):
    # imported for their table definitions
    for module in ("auth", "department", "form", "scheduling"):
        importlib.import_module(f"deptportal.models.{module}")
    with app.app_context():
        db.create_all()


def _register_blueprints(app):
    from deptportal.blueprints.department_bp import department_bp
    from deptportal.blueprints.form_bp import form_bp
    from deptportal.blueprints.health_bp import health_bp
    from deptportal.blueprints.jobs_bp import jobs_bp
    from deptportal.blueprints.response_bp import response_bp

    for bp in (health_bp, form_bp, response_bp, department_bp, jobs_bp):
        app.register_blueprint(bp)


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled 500: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500


def _register_cli(app):
    from deptportal.services.scheduler_service import SchedulerService

    @app.cli.command("run-job")
    @click.argument("name")
    @click.option("--force", is_flag=True, help="Run even if the job is paused.")
    def run_job_cmd(name, force):
        """Run one registered job (for an external cron)."""
        result = SchedulerService.run_job(name.replace("-", "_"), force=force)
        click.echo(f"{result['job_name']}: {result['status']}")
        if result["status"] in ("failed", "error"):
            raise SystemExit(1)

    @app.cli.command("run-expiry-sweep")
    def run_expiry_sweep_cmd():
        """Revert expired leaves of absence, warnings and suspensions."""
        result = SchedulerService.run_job("expiry_sweep")
        click.echo(f"expiry_sweep: {result['status']} {result.get('result') or ''}".rstrip())
        if result["status"] in ("failed", "error"):
            raise SystemExit(1)


def _init_scheduler(app):
    # importing registers the @register_job functions
    importlib.import_module("deptportal.services.scheduled_jobs")
    from deptportal.services.scheduler_service import SchedulerService

    SchedulerService.init_app(app)
    SchedulerService.ensure_jobs_registered()
