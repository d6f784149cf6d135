"""
Liveness and readiness checks. Both are public.

    GET /api/v1/health        database round trip + scheduler job summary
    GET /api/v1/health/ready  200 once the app has booted
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from deptportal.models import db
from deptportal.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _check_database() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": exc.__class__.__name__}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _check_jobs() -> dict:
    rows = ScheduledJob.query.all()
    return {
        "status": "ok",
        "registered": len(rows),
        "paused": sorted(r.job_name for r in rows if not r.is_enabled),
        "failing": sorted(r.job_name for r in rows if r.last_run_status == "failed"),
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("", methods=["GET"])
def live():
    checks = {"database": _check_database()}
    healthy = checks["database"]["status"] == "ok"
    if healthy:
        checks["jobs"] = _check_jobs()
    checks["app"] = {
        "environment": "testing" if current_app.testing else ("debug" if current_app.debug else "production"),
        "submission_limit_storage": current_app.config.get("SUBMISSION_LIMIT_STORAGE"),
    }
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503
