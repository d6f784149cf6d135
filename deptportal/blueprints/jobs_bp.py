"""Scheduled job endpoints (admin).

Endpoints:
  GET  /api/v1/jobs                 registered jobs + last run
  POST /api/v1/jobs/<name>/run      run one job now (``expiry-sweep`` or
                                    ``expiry_sweep`` both work)
  PUT  /api/v1/jobs/<name>          {is_enabled: bool}

An external cron can hit the run endpoint with an admin token, or call
``flask run-job <name>`` directly; that path skips paused jobs,
the endpoint always runs them.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from deptportal.core.exceptions import ForbiddenError, NotFoundError
from deptportal.middleware.jwt_auth import current_principal
from deptportal.services.scheduler_service import SchedulerService, get_registered_jobs
from deptportal.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

jobs_bp = Blueprint("jobs", __name__, url_prefix="/api/v1/jobs")
register_error_handlers(jobs_bp)


@jobs_bp.before_request
def _require_admin():
    principal = current_principal()
    if principal is None or not principal.is_admin:
        raise ForbiddenError("Admin access required.",
                             user_id=principal.user_id if principal else None)


def _job_name(raw: str) -> str:
    name = raw.replace("-", "_")
    if name not in get_registered_jobs():
        raise NotFoundError(resource="Job", resource_id=raw)
    return name


@jobs_bp.route("", methods=["GET"])
def list_jobs():
    return jsonify({"items": SchedulerService.list_jobs()}), 200


@jobs_bp.route("/<job_name>/run", methods=["POST"])
def run_job(job_name):
    name = _job_name(job_name)
    logger.info("Manual job run requested: %s by %s", name, current_principal().user_id)
    result = SchedulerService.run_job(name, force=True)
    return jsonify(result), 200 if result["status"] == "success" else 500


@jobs_bp.route("/<job_name>", methods=["PUT"])
def toggle_job(job_name):
    name = _job_name(job_name)
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get("is_enabled"), bool):
        return api_error(E.VALIDATION_INVALID, "is_enabled must be true or false")
    job = SchedulerService.toggle_job(name, data["is_enabled"])
    if job is None:
        raise NotFoundError(resource="Job", resource_id=job_name)
    return jsonify(job), 200
