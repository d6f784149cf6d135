"""Department roster endpoints: shifts and performance reviews.

Endpoints:
  POST /api/v1/members/<id>/shift-conflicts      {start_time, end_time}
  POST /api/v1/departments/<id>/shifts           {member_id, start_time, end_time,
                                                  shift_type?, notes?}
  POST /api/v1/members/<id>/performance-reviews  {overall_rating,
                                                  recommended_actions?, comments?}

Times are ISO-8601; naive values are taken as UTC.  Scheduling and
performance reviews require an admin principal.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from deptportal.core.exceptions import BadRequestError, ForbiddenError
from deptportal.middleware.jwt_auth import current_principal
from deptportal.models.department import Department, Member, ShiftType
from deptportal.services.performance_review_service import record_performance_review
from deptportal.services.shift_service import check_shift_conflicts, schedule_shift
from deptportal.utils.errors import register_error_handlers
from deptportal.utils.helpers import get_or_404, parse_datetime

logger = logging.getLogger(__name__)

department_bp = Blueprint("departments", __name__, url_prefix="/api/v1")
register_error_handlers(department_bp)


def _require_admin():
    principal = current_principal()
    if not principal.is_admin:
        raise ForbiddenError("Admin access required.", user_id=principal.user_id)
    return principal


def _window(data: dict):
    try:
        start = parse_datetime(data.get("start_time"))
        end = parse_datetime(data.get("end_time"))
    except ValueError as exc:
        raise BadRequestError(str(exc))
    return start, end


# ── Shifts ───────────────────────────────────────────────────────────────────


@department_bp.route("/members/<int:member_id>/shift-conflicts", methods=["POST"])
def shift_conflicts(member_id):
    member, err = get_or_404(Member, member_id)
    if err:
        return err
    start, end = _window(request.get_json(silent=True) or {})
    conflicts = check_shift_conflicts(member.id, start, end)
    return jsonify({
        "has_conflicts": bool(conflicts),
        "conflicts": [c.to_dict() for c in conflicts],
    }), 200


@department_bp.route("/departments/<int:department_id>/shifts", methods=["POST"])
def create_shift(department_id):
    principal = _require_admin()
    department, err = get_or_404(Department, department_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get("member_id"), int):
        raise BadRequestError("member_id is required")
    start, end = _window(data)

    shift = schedule_shift(
        department.id,
        data["member_id"],
        start,
        end,
        shift_type=data.get("shift_type") or ShiftType.PATROL,
        notes=data.get("notes"),
        scheduled_by=principal.user_id,
    )
    return jsonify(shift.to_dict()), 201


# ── Performance reviews ──────────────────────────────────────────────────────


@department_bp.route("/members/<int:member_id>/performance-reviews", methods=["POST"])
def create_performance_review(member_id):
    principal = _require_admin()
    data = request.get_json(silent=True) or {}
    if "overall_rating" not in data:
        raise BadRequestError("overall_rating is required")

    review = record_performance_review(
        member_id,
        principal.user_id,
        data["overall_rating"],
        recommended_actions=data.get("recommended_actions"),
        comments=data.get("comments"),
    )
    return jsonify(review.to_dict()), 201
