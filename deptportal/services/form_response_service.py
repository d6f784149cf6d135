"""
Department Portal
Form response state machine: submission, drafts, peer review and final approval.

    draft ──► pending_review ──► pending_approval ──► approved
                   │                    │
                   ▼                    ▼
            denied_by_review    denied_by_approval

Every transition follows the same shape:
    1. load the response row (SELECT … FOR UPDATE where supported) + its form
    2. validate every precondition against that snapshot
    3. a single write, guarded by the row's ``version`` column

A write that matches no row (another writer got there first) raises
InternalError; nothing ever silently no-ops.

Usage:
    from deptportal.services import form_response_service as frs

    response = frs.submit(form_id, answers, principal)
    response = frs.review(response.id, "yes", reviewer)
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import and_, or_
from sqlalchemy.orm.exc import StaleDataError

from deptportal.core.exceptions import BadRequestError, ForbiddenError, InternalError, NotFoundError
from deptportal.models import db
from deptportal.models.form import (
    RESPONSE_TRANSITIONS,
    FormDefinition,
    FormResponse,
    FormResponseStatus,
    ReviewerDecision,
)
from deptportal.services.form_service import get_active_form, validate_answers
from deptportal.services.moderation import get_moderator
from deptportal.services.role_gate import Principal, PrincipalResolver, has_required_role
from deptportal.services.submission_limiter import get_submission_limiter
from deptportal.utils.helpers import as_utc, parse_datetime, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50


# ── Internals ────────────────────────────────────────────────────────────────


def _transition(response: FormResponse, new_status: FormResponseStatus) -> None:
    current = response.status
    if new_status != current and new_status not in RESPONSE_TRANSITIONS[current]:
        raise BadRequestError(
            f"Invalid status transition: {current.value} → {new_status.value}",
            details={"from": current.value, "to": new_status.value},
        )
    response.status = new_status


def _resolved_status(form: FormDefinition) -> FormResponseStatus:
    """Status a response lands in once review is passed (or skipped)."""
    if form.requires_final_approval:
        return FormResponseStatus.PENDING_APPROVAL
    return FormResponseStatus.APPROVED


def _initial_status(form: FormDefinition) -> FormResponseStatus:
    if form.required_reviewers == 0:
        return _resolved_status(form)
    return FormResponseStatus.PENDING_REVIEW


def _commit(action: str, response_id) -> None:
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.error("Concurrent write lost on response %s during %s", response_id, action)
        raise InternalError(f"Failed to {action}: response {response_id} was modified concurrently.") from exc


def _lock_response(response_id: int) -> FormResponse:
    response = (
        FormResponse.query.filter(FormResponse.id == response_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if response is None:
        raise NotFoundError(resource="FormResponse", resource_id=response_id)
    if response.form is None:
        raise InternalError(f"Form for response {response_id} could not be loaded.")
    return response


def _find_draft(form_id: int, user_id: str, lock: bool = False) -> FormResponse | None:
    q = FormResponse.query.filter_by(form_id=form_id, user_id=user_id, status=FormResponseStatus.DRAFT)
    if lock:
        q = q.with_for_update().populate_existing()
    return q.order_by(FormResponse.id).first()


def _page_size(limit) -> int:
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise BadRequestError("limit must be an integer")
    return max(1, min(limit, MAX_PAGE_SIZE))


def _require_access(form: FormDefinition, principal: Principal, message: str) -> None:
    if not has_required_role(principal.role_ids, form.access_role_ids):
        raise ForbiddenError(message, user_id=principal.user_id)


# ═════════════════════════════════════════════════════════════════════════
# Submission + drafts
# ═════════════════════════════════════════════════════════════════════════


def submit(form_id: int, answers, principal: Principal, now: datetime | None = None) -> FormResponse:
    """Submit answers; promotes the caller's draft in place when one exists.

    Raises:
        NotFoundError:   form missing or deleted
        ForbiddenError:  caller lacks the form's access roles
        BadRequestError: malformed answers, blocked content or rate limit
    """
    now = as_utc(now) if now else utcnow()
    form = get_active_form(form_id)
    _require_access(form, principal, "You do not have the required role to submit this form.")

    cleaned = validate_answers(form, answers)

    validation = get_moderator().validate_form_content(
        cleaned, principal.user_id, form.id, limiter=get_submission_limiter()
    )
    if not validation.is_valid:
        raise BadRequestError(
            "; ".join(validation.errors),
            details={"errors": validation.errors, "warnings": validation.warnings},
        )
    if validation.warnings:
        logger.info(
            "Submission accepted with moderation warnings",
            extra={"form_id": form.id, "user_id": principal.user_id, "warnings": validation.warnings},
        )

    status = _initial_status(form)
    response = _find_draft(form.id, principal.user_id, lock=True)
    if response is not None:
        response.answers = cleaned
        _transition(response, status)
        response.submitted_at = now
        response.updated_at = now
    else:
        response = FormResponse(
            form_id=form.id,
            user_id=principal.user_id,
            answers=cleaned,
            status=status,
            submitted_at=now,
            updated_at=now,
        )
        db.session.add(response)

    _commit("submit form response", response.id)
    logger.info(
        "Form response submitted",
        extra={"form_id": form.id, "response_id": response.id, "status": status.value},
    )
    return response


def save_draft(form_id: int, answers, principal: Principal,
               existing_draft_id: int | None = None, now: datetime | None = None) -> FormResponse:
    """Create or overwrite the caller's single draft for a form.

    Drafts are not moderated and not rate limited; only submission is.
    """
    now = as_utc(now) if now else utcnow()
    form = get_active_form(form_id)
    _require_access(form, principal, "You do not have permission to interact with this form.")
    if not isinstance(answers, list):
        raise BadRequestError("answers must be a list")

    if existing_draft_id is not None:
        draft = (
            FormResponse.query.filter_by(
                id=existing_draft_id,
                user_id=principal.user_id,
                form_id=form.id,
                status=FormResponseStatus.DRAFT,
            )
            .with_for_update()
            .populate_existing()
            .first()
        )
        if draft is None:
            raise NotFoundError(resource="Draft", resource_id=existing_draft_id)
    else:
        draft = _find_draft(form.id, principal.user_id, lock=True)

    if draft is not None:
        draft.answers = list(answers)
        draft.updated_at = now
    else:
        draft = FormResponse(
            form_id=form.id,
            user_id=principal.user_id,
            answers=list(answers),
            status=FormResponseStatus.DRAFT,
            submitted_at=now,
            updated_at=now,
        )
        db.session.add(draft)

    _commit("save draft", draft.id)
    logger.debug("Draft saved", extra={"form_id": form.id, "response_id": draft.id})
    return draft


def get_user_draft(form_id: int, principal: Principal) -> FormResponse | None:
    return _find_draft(form_id, principal.user_id)


# ═════════════════════════════════════════════════════════════════════════
# Review + final approval
# ═════════════════════════════════════════════════════════════════════════


def review(response_id: int, decision, principal: Principal,
           comments: str | None = None, now: datetime | None = None) -> FormResponse:
    """Record one reviewer's yes/no and resolve the response when enough are in.

    Resolution happens once approved + denied reaches ``required_reviewers``.
    Approvals must strictly outnumber denials to pass; a tie denies.
    """
    try:
        decision = ReviewerDecision(decision)
    except ValueError:
        raise BadRequestError("decision must be 'yes' or 'no'")
    now = as_utc(now) if now else utcnow()

    response = _lock_response(response_id)
    form = response.form

    if response.status is not FormResponseStatus.PENDING_REVIEW:
        raise BadRequestError("This response is not currently pending review.")
    if not has_required_role(principal.role_ids, form.reviewer_role_ids):
        raise ForbiddenError("You do not have the required role to review this form.", user_id=principal.user_id)
    if response.decision_by(principal.user_id) is not None:
        raise BadRequestError("You have already reviewed this response.")

    reviewer_name = principal.display_name or PrincipalResolver().display_name(principal.user_id)
    response.reviewer_decisions = list(response.reviewer_decisions or []) + [{
        "user_id": principal.user_id,
        "reviewer_name": reviewer_name,
        "decision": decision.value,
        "reviewed_at": now.isoformat(),
        "comments": comments,
    }]
    reviewer_ids = list(response.reviewer_ids or [])
    if principal.user_id not in reviewer_ids:
        reviewer_ids.append(principal.user_id)
    response.reviewer_ids = reviewer_ids

    if decision is ReviewerDecision.YES:
        response.reviewers_approved_count += 1
    else:
        response.reviewers_denied_count += 1

    approved = response.reviewers_approved_count
    denied = response.reviewers_denied_count
    if approved + denied >= form.required_reviewers:
        if approved > denied:
            _transition(response, _resolved_status(form))
        else:
            _transition(response, FormResponseStatus.DENIED_BY_REVIEW)
    response.updated_at = now

    _commit("record review", response_id)
    logger.info(
        "Review recorded",
        extra={
            "response_id": response_id,
            "reviewer": principal.user_id,
            "decision": decision.value,
            "status": response.status.value,
            "approved": approved,
            "denied": denied,
        },
    )
    return response


def approve(response_id: int, decision, principal: Principal,
            comments: str | None = None, now: datetime | None = None) -> FormResponse:
    """Final approver's accept (True) or reject (False)."""
    if not isinstance(decision, bool):
        raise BadRequestError("decision must be true or false")
    now = as_utc(now) if now else utcnow()

    response = _lock_response(response_id)
    form = response.form

    if response.status is not FormResponseStatus.PENDING_APPROVAL:
        raise BadRequestError("This response is not currently pending final approval.")
    if not has_required_role(principal.role_ids, form.final_approver_role_ids):
        raise ForbiddenError("You do not have the required role to approve/deny this form.",
                             user_id=principal.user_id)

    response.final_approver_id = principal.user_id
    response.final_approval_decision = decision
    response.final_approved_at = now
    response.final_approval_comments = comments
    _transition(
        response,
        FormResponseStatus.APPROVED if decision else FormResponseStatus.DENIED_BY_APPROVAL,
    )
    response.updated_at = now

    _commit("record final approval", response_id)
    logger.info(
        "Final approval recorded",
        extra={"response_id": response_id, "approver": principal.user_id, "status": response.status.value},
    )
    return response


# ═════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════


def get_response(response_id: int, principal: Principal) -> dict:
    """Response + form, with display names for everyone involved.

    Visible to the submitter, to reviewers while pending review, and to the
    form's final approvers at any stage.
    """
    response = db.session.get(FormResponse, response_id)
    if response is None:
        raise NotFoundError(resource="FormResponse", resource_id=response_id)
    form = response.form

    can_view = response.user_id == principal.user_id
    if not can_view:
        is_reviewer = has_required_role(principal.role_ids, form.reviewer_role_ids)
        is_approver = has_required_role(principal.role_ids, form.final_approver_role_ids)
        can_view = is_approver or (is_reviewer and response.status is FormResponseStatus.PENDING_REVIEW)
    if not can_view:
        raise ForbiddenError("You do not have permission to view this specific form response.",
                             user_id=principal.user_id)

    ids = {response.user_id, response.final_approver_id}
    ids.update(d.get("user_id") for d in response.reviewer_decisions or [])
    people = PrincipalResolver().resolve_many(ids)

    def _name(user_id):
        return people[user_id].display_name if user_id in people else None

    def _discord(user_id):
        return people[user_id].discord_id if user_id in people else None

    data = response.to_dict()
    data["form"] = form.to_dict()
    data["submitter_name"] = _name(response.user_id)
    data["submitter_discord_id"] = _discord(response.user_id)
    data["final_approver_name"] = _name(response.final_approver_id)
    data["final_approver_discord_id"] = _discord(response.final_approver_id)
    data["reviewer_decisions"] = [
        {
            **d,
            "reviewer_full_name": (
                _name(d.get("user_id"))
                if d.get("user_id") in people and people[d["user_id"]].resolved
                else d.get("reviewer_name")
            ),
            "reviewer_discord_id": _discord(d.get("user_id")),
        }
        for d in response.reviewer_decisions or []
    ]
    return data


def list_user_submissions(principal: Principal, limit=DEFAULT_PAGE_SIZE, cursor: str | None = None) -> dict:
    """Caller's submitted responses, newest first.  ``cursor`` is an ISO ``submitted_at``.

    Drafts are left out; ``get_user_draft`` returns them.
    """
    limit = _page_size(limit)
    q = FormResponse.query.filter(
        FormResponse.user_id == principal.user_id,
        FormResponse.status != FormResponseStatus.DRAFT,
    )
    if cursor:
        try:
            before = parse_datetime(cursor)
        except ValueError as exc:
            raise BadRequestError(str(exc))
        q = q.filter(FormResponse.submitted_at < before)

    rows = q.order_by(FormResponse.submitted_at.desc(), FormResponse.id.desc()).limit(limit + 1).all()
    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = as_utc(rows[-1].submitted_at).isoformat()
    return {"items": [r.to_dict(include_form=True) for r in rows], "next_cursor": next_cursor}


def _queue(status: FormResponseStatus, role_attr: str, principal: Principal,
           limit, cursor, exclude_reviewed: bool) -> dict:
    limit = _page_size(limit)
    q = (
        FormResponse.query.join(FormDefinition, FormResponse.form_id == FormDefinition.id)
        .filter(FormResponse.status == status)
    )
    if cursor:
        try:
            anchor = db.session.get(FormResponse, int(cursor))
        except (TypeError, ValueError):
            raise BadRequestError("cursor must be a response id")
        if anchor is not None:
            q = q.filter(
                or_(
                    FormResponse.submitted_at < anchor.submitted_at,
                    and_(FormResponse.submitted_at == anchor.submitted_at, FormResponse.id < anchor.id),
                )
            )

    items: list[FormResponse] = []
    for response in q.order_by(FormResponse.submitted_at.desc(), FormResponse.id.desc()):
        if not has_required_role(principal.role_ids, getattr(response.form, role_attr)):
            continue
        if exclude_reviewed and response.decision_by(principal.user_id) is not None:
            continue
        items.append(response)
        if len(items) > limit:
            break

    next_cursor = None
    if len(items) > limit:
        items = items[:limit]
        next_cursor = str(items[-1].id)
    return {"items": [r.to_dict(include_form=True) for r in items], "next_cursor": next_cursor}


def list_pending_reviews(principal: Principal, limit=DEFAULT_PAGE_SIZE, cursor: str | None = None) -> dict:
    """``pending_review`` responses the caller may review and has not yet reviewed."""
    return _queue(FormResponseStatus.PENDING_REVIEW, "reviewer_role_ids", principal,
                  limit, cursor, exclude_reviewed=True)


def list_pending_approvals(principal: Principal, limit=DEFAULT_PAGE_SIZE, cursor: str | None = None) -> dict:
    """``pending_approval`` responses the caller may finally approve."""
    return _queue(FormResponseStatus.PENDING_APPROVAL, "final_approver_role_ids", principal,
                  limit, cursor, exclude_reviewed=False)
