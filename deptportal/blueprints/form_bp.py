"""Form definitions, categories, submission and drafts.

Endpoint groups:
  Categories (admin)     GET/POST   /api/v1/form-categories
                         DELETE     /api/v1/form-categories/<id>
  Forms                  GET/POST   /api/v1/forms
                         GET/PUT/DELETE /api/v1/forms/<id>
  Question ordering      POST       /api/v1/forms/<id>/questions/reorder
  Submission             POST       /api/v1/forms/<id>/responses
  Drafts                 GET/PUT    /api/v1/forms/<id>/draft

The principal comes from the JWT middleware (g.principal).
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import deptportal.services.form_response_service as responses
import deptportal.services.form_service as forms
from deptportal.middleware.jwt_auth import current_principal
from deptportal.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

form_bp = Blueprint("forms", __name__, url_prefix="/api/v1")
register_error_handlers(form_bp)


# ═════════════════════════════════════════════════════════════════════════
# Categories
# ═════════════════════════════════════════════════════════════════════════


@form_bp.route("/form-categories", methods=["GET"])
def list_categories():
    return jsonify({"items": forms.list_categories(current_principal())}), 200


@form_bp.route("/form-categories", methods=["POST"])
def create_category():
    data = request.get_json(silent=True) or {}
    category = forms.create_category(current_principal(), data.get("name"), data.get("description"))
    return jsonify(category.to_dict()), 201


@form_bp.route("/form-categories/<int:category_id>", methods=["DELETE"])
def delete_category(category_id):
    forms.delete_category(current_principal(), category_id)
    return jsonify({"success": True}), 200


# ═════════════════════════════════════════════════════════════════════════
# Forms
# ═════════════════════════════════════════════════════════════════════════


@form_bp.route("/forms", methods=["GET"])
def list_forms():
    """Live forms, newest first.

    Query params: category_id?, limit (default 20, max 100), offset
    """
    limit = request.args.get("limit", 20, type=int)
    offset = request.args.get("offset", 0, type=int)
    category_id = request.args.get("category_id", type=int)
    return jsonify(forms.list_forms(category_id=category_id, limit=limit, offset=offset)), 200


@form_bp.route("/forms", methods=["POST"])
def create_form():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    form = forms.create_form(current_principal(), data)
    return jsonify(form.to_dict()), 201


@form_bp.route("/forms/<int:form_id>", methods=["GET"])
def get_form(form_id):
    form = forms.get_form(form_id, current_principal())
    return jsonify(form.to_dict()), 200


@form_bp.route("/forms/<int:form_id>", methods=["PUT"])
def edit_form(form_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    form = forms.edit_form(current_principal(), form_id, data)
    return jsonify(form.to_dict()), 200


@form_bp.route("/forms/<int:form_id>", methods=["DELETE"])
def delete_form(form_id):
    forms.delete_form(current_principal(), form_id)
    return jsonify({"success": True}), 200


@form_bp.route("/forms/<int:form_id>/questions/reorder", methods=["POST"])
def reorder_questions(form_id):
    """Apply one reorder operation to a form's questions.

    Body: {operation: up|down|top|bottom|to_index|full_order,
           question_id?, target_index?, order?}
    Returns: the updated form.
    """
    data = request.get_json(silent=True) or {}
    operation = data.get("operation")
    if not operation:
        return api_error(E.VALIDATION_REQUIRED, "operation is required")
    form = forms.reorder_questions(
        current_principal(),
        form_id,
        operation,
        question_id=data.get("question_id"),
        target_index=data.get("target_index"),
        order=data.get("order"),
    )
    return jsonify(form.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Submission + drafts
# ═════════════════════════════════════════════════════════════════════════


@form_bp.route("/forms/<int:form_id>/responses", methods=["POST"])
def submit_form(form_id):
    """Body: {answers: [{question_id, answer}, ...]}"""
    data = request.get_json(silent=True) or {}
    response = responses.submit(form_id, data.get("answers"), current_principal())
    return jsonify(response.to_dict()), 201


@form_bp.route("/forms/<int:form_id>/draft", methods=["PUT"])
def save_draft(form_id):
    """Body: {answers: [...], draft_id?}"""
    data = request.get_json(silent=True) or {}
    draft = responses.save_draft(
        form_id,
        data.get("answers", []),
        current_principal(),
        existing_draft_id=data.get("draft_id"),
    )
    return jsonify(draft.to_dict()), 200


@form_bp.route("/forms/<int:form_id>/draft", methods=["GET"])
def get_draft(form_id):
    draft = responses.get_user_draft(form_id, current_principal())
    return jsonify({"draft": draft.to_dict() if draft else None}), 200
