"""
Department Portal
Form definition store: categories, form CRUD, question schema + ordering.

Rules:
  - Mutations are admin-only; ``get_form`` is gated by the form's access roles.
  - Deleting a form only stamps ``deleted_at``; deleted forms are NotFound
    for every operation here and in the response workflow.
  - Question ids are stable.  Reordering moves dicts around, it never
    renumbers or drops a question.
  - db.session.commit() for form definitions happens only in this file.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func

from deptportal.core.exceptions import BadRequestError, ForbiddenError, NotFoundError
from deptportal.models import db
from deptportal.models.form import QUESTION_TYPES, FormCategory, FormDefinition
from deptportal.services.role_gate import Principal, has_required_role

logger = logging.getLogger(__name__)

REORDER_OPERATIONS = frozenset({"up", "down", "top", "bottom", "to_index", "full_order"})

_ROLE_LIST_FIELDS = ("access_role_ids", "reviewer_role_ids", "final_approver_role_ids")


def _require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise ForbiddenError("Admin access required.", user_id=principal.user_id)


def get_active_form(form_id: int) -> FormDefinition:
    """Load a non-deleted form or raise NotFoundError."""
    form = FormDefinition.active().filter(FormDefinition.id == form_id).first()
    if form is None:
        raise NotFoundError(resource="Form", resource_id=form_id)
    return form


# ═════════════════════════════════════════════════════════════════════════
# Question + answer schema
# ═════════════════════════════════════════════════════════════════════════


def normalize_questions(questions: Any) -> list[dict]:
    """Validate a question list and return it in canonical form.

    Raises:
        BadRequestError: listing every problem found.
    """
    if not isinstance(questions, list):
        raise BadRequestError("questions must be a list")

    errors: list[str] = []
    seen: set[str] = set()
    normalized: list[dict] = []

    for pos, raw in enumerate(questions):
        if not isinstance(raw, dict):
            errors.append(f"Question #{pos + 1}: must be an object")
            continue
        qid = str(raw.get("id") or "").strip()
        if not qid:
            errors.append(f"Question #{pos + 1}: id is required")
            continue
        if qid in seen:
            errors.append(f"Question {qid}: duplicate id")
            continue
        seen.add(qid)

        qtype = raw.get("type")
        if qtype not in QUESTION_TYPES:
            errors.append(f"Question {qid}: type must be one of {', '.join(sorted(QUESTION_TYPES))}")
            continue

        question = {
            "id": qid,
            "text": str(raw.get("text") or ""),
            "type": qtype,
            "required": bool(raw.get("required", False)),
        }
        if qtype == "multiple_choice":
            options = raw.get("options")
            if not isinstance(options, list) or not options or not all(isinstance(o, str) for o in options):
                errors.append(f"Question {qid}: multiple_choice needs at least one text option")
                continue
            question["options"] = list(options)
            question["allow_multiple"] = bool(raw.get("allow_multiple", False))
        elif qtype in ("short_answer", "long_answer"):
            max_length = raw.get("max_length")
            if max_length is not None:
                if isinstance(max_length, bool) or not isinstance(max_length, int) or max_length <= 0:
                    errors.append(f"Question {qid}: max_length must be a positive integer")
                    continue
                question["max_length"] = max_length
            if qtype == "long_answer":
                question["supports_markdown"] = bool(raw.get("supports_markdown", False))

        normalized.append(question)

    if errors:
        raise BadRequestError("; ".join(errors), details={"errors": errors})
    return normalized


def _answer_error(question: dict, value: Any) -> str | None:
    qtype = question["type"]
    if qtype == "true_false":
        if not isinstance(value, bool):
            return "answer must be true or false"
    elif qtype == "multiple_choice":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            return "answer must be a list of options"
        unknown = [v for v in value if v not in question.get("options", [])]
        if unknown:
            return f"unknown option(s): {', '.join(unknown)}"
        if len(value) > 1 and not question.get("allow_multiple"):
            return "only one option may be selected"
    else:
        if not isinstance(value, str):
            return "answer must be text"
        max_length = question.get("max_length")
        if max_length and len(value) > max_length:
            return f"answer exceeds {max_length} characters"
    return None


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list):
        return not value
    return False


def validate_answers(form: FormDefinition, answers: Any) -> list[dict]:
    """Check submitted answers against the form's questions.

    Unknown or repeated question ids, wrong value types and missing required
    answers are all reported together.  Returns the answers as
    ``[{"question_id", "answer"}]`` in question order.
    """
    if not isinstance(answers, list):
        raise BadRequestError("answers must be a list")

    questions = {q["id"]: q for q in (form.questions or [])}
    errors: list[str] = []
    given: dict[str, Any] = {}

    for item in answers:
        if not isinstance(item, dict) or "question_id" not in item:
            errors.append("Each answer needs a question_id")
            continue
        qid = str(item["question_id"])
        if qid not in questions:
            errors.append(f"Question {qid}: not part of this form")
            continue
        if qid in given:
            errors.append(f"Question {qid}: answered more than once")
            continue
        value = item.get("answer")
        given[qid] = value
        if _is_blank(value):
            continue
        problem = _answer_error(questions[qid], value)
        if problem:
            errors.append(f"Question {qid}: {problem}")

    for qid, question in questions.items():
        if question.get("required") and _is_blank(given.get(qid)):
            errors.append(f"Question {qid}: an answer is required")

    if errors:
        raise BadRequestError("; ".join(errors), details={"errors": errors})

    return [{"question_id": qid, "answer": given[qid]} for qid in questions if qid in given]


# ═════════════════════════════════════════════════════════════════════════
# Categories
# ═════════════════════════════════════════════════════════════════════════


def create_category(principal: Principal, name: str, description: str | None = None) -> FormCategory:
    _require_admin(principal)
    name = (name or "").strip()
    if not name:
        raise BadRequestError("name is required")
    if len(name) > 256:
        raise BadRequestError("name must be ≤ 256 characters")
    if FormCategory.query.filter_by(name=name).first():
        raise BadRequestError(f"Category '{name}' already exists")

    category = FormCategory(name=name, description=description)
    db.session.add(category)
    db.session.commit()
    logger.info("Form category created", extra={"category_id": category.id})
    return category


def delete_category(principal: Principal, category_id: int) -> None:
    """Delete a category; its forms are detached, not deleted."""
    _require_admin(principal)
    category = db.session.get(FormCategory, category_id)
    if category is None:
        raise NotFoundError(resource="FormCategory", resource_id=category_id)

    FormDefinition.query.filter_by(category_id=category_id).update(
        {"category_id": None}, synchronize_session="fetch"
    )
    db.session.delete(category)
    db.session.commit()
    logger.info("Form category deleted", extra={"category_id": category_id})


def list_categories(principal: Principal) -> list[dict]:
    """Categories, newest first, each with its count of live forms."""
    _require_admin(principal)
    counts = dict(
        db.session.query(FormDefinition.category_id, func.count(FormDefinition.id))
        .filter(FormDefinition.deleted_at.is_(None), FormDefinition.category_id.isnot(None))
        .group_by(FormDefinition.category_id)
        .all()
    )
    categories = FormCategory.query.order_by(FormCategory.created_at.desc(), FormCategory.id.desc()).all()
    return [{**c.to_dict(), "forms_count": counts.get(c.id, 0)} for c in categories]


# ═════════════════════════════════════════════════════════════════════════
# Forms
# ═════════════════════════════════════════════════════════════════════════


def _role_list(data: dict, key: str) -> list[str]:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise BadRequestError(f"{key} must be a list of role ids")
    return [str(v) for v in value]


def _required_reviewers(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise BadRequestError("required_reviewers must be an integer ≥ 0")
    return value


def _check_category(category_id) -> None:
    if category_id is not None and db.session.get(FormCategory, category_id) is None:
        raise NotFoundError(resource="FormCategory", resource_id=category_id)


def create_form(principal: Principal, data: dict) -> FormDefinition:
    _require_admin(principal)
    title = (data.get("title") or "").strip()
    if not title:
        raise BadRequestError("title is required")
    if len(title) > 256:
        raise BadRequestError("title must be ≤ 256 characters")
    _check_category(data.get("category_id"))

    form = FormDefinition(
        title=title,
        description=data.get("description"),
        questions=normalize_questions(data.get("questions") or []),
        category_id=data.get("category_id"),
        access_role_ids=_role_list(data, "access_role_ids"),
        reviewer_role_ids=_role_list(data, "reviewer_role_ids"),
        final_approver_role_ids=_role_list(data, "final_approver_role_ids"),
        required_reviewers=_required_reviewers(data.get("required_reviewers", 1)),
        requires_final_approval=bool(data.get("requires_final_approval", True)),
    )
    db.session.add(form)
    db.session.commit()
    logger.info("Form created", extra={"form_id": form.id, "created_by": principal.user_id})
    return form


def edit_form(principal: Principal, form_id: int, data: dict) -> FormDefinition:
    """Partial update; only keys present in ``data`` change."""
    _require_admin(principal)
    form = get_active_form(form_id)

    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            raise BadRequestError("title cannot be empty")
        form.title = title
    if "description" in data:
        form.description = data["description"]
    if "questions" in data:
        form.questions = normalize_questions(data["questions"])
    if "category_id" in data:
        _check_category(data["category_id"])
        form.category_id = data["category_id"]
    for key in _ROLE_LIST_FIELDS:
        if key in data:
            setattr(form, key, _role_list(data, key))
    if "required_reviewers" in data:
        form.required_reviewers = _required_reviewers(data["required_reviewers"])
    if "requires_final_approval" in data:
        form.requires_final_approval = bool(data["requires_final_approval"])

    db.session.commit()
    logger.info("Form edited", extra={"form_id": form.id, "fields": sorted(data)})
    return form


def delete_form(principal: Principal, form_id: int) -> None:
    _require_admin(principal)
    form = get_active_form(form_id)
    form.soft_delete()
    db.session.commit()
    logger.info("Form soft-deleted", extra={"form_id": form_id})


def list_forms(category_id: int | None = None, limit: int = 20, offset: int = 0) -> dict:
    """Offset-paginated listing of live forms, newest first."""
    limit = max(1, min(int(limit), 100))
    offset = max(0, int(offset))
    q = FormDefinition.active()
    if category_id:
        q = q.filter(FormDefinition.category_id == category_id)
    items = (
        q.order_by(FormDefinition.created_at.desc(), FormDefinition.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    next_cursor = offset + len(items) if len(items) == limit else None
    return {"items": [f.to_dict() for f in items], "next_cursor": next_cursor}


def get_form(form_id: int, principal: Principal) -> FormDefinition:
    form = get_active_form(form_id)
    if not (principal.is_admin or has_required_role(principal.role_ids, form.access_role_ids)):
        raise ForbiddenError("You do not have permission to view this form.", user_id=principal.user_id)
    return form


# ═════════════════════════════════════════════════════════════════════════
# Question ordering
# ═════════════════════════════════════════════════════════════════════════


def _index_of(questions: list[dict], question_id) -> int:
    for idx, question in enumerate(questions):
        if question["id"] == question_id:
            return idx
    raise BadRequestError(f"Question {question_id} is not part of this form")


def reorder(questions: list[dict], operation: str, *, question_id=None,
            target_index=None, order=None) -> list[dict]:
    """Return a new question list with one reorder operation applied.

    Pure; ``questions`` is not modified.
    """
    if operation not in REORDER_OPERATIONS:
        raise BadRequestError(
            f"Unknown reorder operation '{operation}'. "
            f"Use one of: {', '.join(sorted(REORDER_OPERATIONS))}"
        )

    result = list(questions)
    last = len(result) - 1

    if operation == "full_order":
        if not isinstance(order, list):
            raise BadRequestError("order must be a list of question ids")
        current = [q["id"] for q in result]
        if len(order) != len(current) or sorted(map(str, order)) != sorted(current):
            raise BadRequestError("order must list every question id exactly once")
        by_id = {q["id"]: q for q in result}
        return [by_id[str(qid)] for qid in order]

    idx = _index_of(result, question_id)

    if operation == "up":
        if idx == 0:
            raise BadRequestError("Question is already first")
        result[idx - 1], result[idx] = result[idx], result[idx - 1]
    elif operation == "down":
        if idx == last:
            raise BadRequestError("Question is already last")
        result[idx + 1], result[idx] = result[idx], result[idx + 1]
    elif operation == "top":
        result.insert(0, result.pop(idx))
    elif operation == "bottom":
        result.append(result.pop(idx))
    else:  # to_index
        if isinstance(target_index, bool) or not isinstance(target_index, int) or not 0 <= target_index <= last:
            raise BadRequestError(f"target_index must be between 0 and {last}")
        result.insert(target_index, result.pop(idx))

    return result


def reorder_questions(principal: Principal, form_id: int, operation: str, *,
                      question_id=None, target_index=None, order=None) -> FormDefinition:
    _require_admin(principal)
    form = get_active_form(form_id)
    reordered = reorder(
        form.questions or [],
        operation,
        question_id=str(question_id) if question_id is not None else None,
        target_index=target_index,
        order=order,
    )
    # new list object so the JSON column is flagged dirty
    form.questions = reordered
    db.session.commit()
    logger.info("Questions reordered", extra={"form_id": form_id, "operation": operation})
    return form
