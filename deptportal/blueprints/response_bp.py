"""Form responses: review, final approval and listings.

Endpoints:
  GET  /api/v1/responses/mine              caller's submissions
  GET  /api/v1/responses/review-queue      pending review for the caller
  GET  /api/v1/responses/approval-queue    pending final approval for the caller
  GET  /api/v1/responses/<id>              one response with display names
  POST /api/v1/responses/<id>/review       {decision: yes|no, comments?}
  POST /api/v1/responses/<id>/approval     {decision: bool, comments?}

Listings take ``limit`` and ``cursor`` query params and return
{"items": [...], "next_cursor": ...}.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import deptportal.services.form_response_service as responses
from deptportal.middleware.jwt_auth import current_principal
from deptportal.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

response_bp = Blueprint("responses", __name__, url_prefix="/api/v1/responses")
register_error_handlers(response_bp)


def _page_args():
    return {
        "limit": request.args.get("limit", responses.DEFAULT_PAGE_SIZE, type=int),
        "cursor": request.args.get("cursor") or None,
    }


# ── Listings ─────────────────────────────────────────────────────────────────


@response_bp.route("/mine", methods=["GET"])
def my_submissions():
    return jsonify(responses.list_user_submissions(current_principal(), **_page_args())), 200


@response_bp.route("/review-queue", methods=["GET"])
def review_queue():
    return jsonify(responses.list_pending_reviews(current_principal(), **_page_args())), 200


@response_bp.route("/approval-queue", methods=["GET"])
def approval_queue():
    return jsonify(responses.list_pending_approvals(current_principal(), **_page_args())), 200


# ── Single response ──────────────────────────────────────────────────────────


@response_bp.route("/<int:response_id>", methods=["GET"])
def get_response(response_id):
    return jsonify(responses.get_response(response_id, current_principal())), 200


@response_bp.route("/<int:response_id>/review", methods=["POST"])
def review_response(response_id):
    data = request.get_json(silent=True) or {}
    if "decision" not in data:
        return api_error(E.VALIDATION_REQUIRED, "decision is required")
    response = responses.review(
        response_id, data["decision"], current_principal(), comments=data.get("comments")
    )
    return jsonify(response.to_dict()), 200


@response_bp.route("/<int:response_id>/approval", methods=["POST"])
def approve_response(response_id):
    data = request.get_json(silent=True) or {}
    if "decision" not in data:
        return api_error(E.VALIDATION_REQUIRED, "decision is required")
    response = responses.approve(
        response_id, data["decision"], current_principal(), comments=data.get("comments")
    )
    return jsonify(response.to_dict()), 200
