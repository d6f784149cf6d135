"""
Department Portal
Performance review recording + recommended-action dispatch.

Each recommended action is routed through ``ACTION_HANDLERS``, keyed by
``RecommendedAction``.  A member without a handler fails at import, so
adding an enum value forces a handler to be written.
"""

from __future__ import annotations

import logging
from typing import Callable

from deptportal.core.exceptions import BadRequestError, NotFoundError
from deptportal.models import db
from deptportal.models.department import Member, PerformanceReview, RecommendedAction

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5

ActionHandler = Callable[[PerformanceReview, Member], None]


# ── Handlers ─────────────────────────────────────────────────────────────────


def _handle_promotion(review: PerformanceReview, member: Member) -> None:
    logger.info("Promotion recommended", extra={"review_id": review.id, "member_id": member.id})


def _handle_training(review: PerformanceReview, member: Member) -> None:
    logger.info("Additional training recommended",
                extra={"review_id": review.id, "member_id": member.id})


def _handle_mentoring(review: PerformanceReview, member: Member) -> None:
    logger.info("Mentoring recommended", extra={"review_id": review.id, "member_id": member.id})


def _handle_disciplinary(review: PerformanceReview, member: Member) -> None:
    logger.warning("Disciplinary follow-up recommended",
                   extra={"review_id": review.id, "member_id": member.id})


def _handle_no_action(review: PerformanceReview, member: Member) -> None:
    logger.debug("No follow-up action for review %s", review.id)


ACTION_HANDLERS: dict[RecommendedAction, ActionHandler] = {
    RecommendedAction.PROMOTION: _handle_promotion,
    RecommendedAction.TRAINING: _handle_training,
    RecommendedAction.MENTORING: _handle_mentoring,
    RecommendedAction.DISCIPLINARY: _handle_disciplinary,
    RecommendedAction.NO_ACTION: _handle_no_action,
}

_missing = set(RecommendedAction) - set(ACTION_HANDLERS)
if _missing:
    raise RuntimeError(
        "No handler for recommended action(s): "
        + ", ".join(sorted(action.value for action in _missing))
    )


# ── Service ──────────────────────────────────────────────────────────────────


def parse_recommended_actions(values) -> list[RecommendedAction]:
    if values is None:
        return []
    if not isinstance(values, list):
        raise BadRequestError("recommended_actions must be a list")
    parsed, unknown = [], []
    for value in values:
        try:
            action = RecommendedAction(value)
        except ValueError:
            unknown.append(str(value))
            continue
        if action not in parsed:
            parsed.append(action)
    if unknown:
        raise BadRequestError(
            f"Unknown recommended action(s): {', '.join(unknown)}",
            details={"allowed": [a.value for a in RecommendedAction]},
        )
    return parsed


def dispatch_recommended_actions(review: PerformanceReview, member: Member) -> int:
    """Run the handler for every action on the review.  Returns handlers run."""
    actions = review.recommended_actions or [RecommendedAction.NO_ACTION.value]
    for value in actions:
        ACTION_HANDLERS[RecommendedAction(value)](review, member)
    return len(actions)


def record_performance_review(
    member_id: int,
    reviewer_id: str,
    overall_rating: int,
    recommended_actions=None,
    comments: str | None = None,
) -> PerformanceReview:
    member = db.session.get(Member, member_id)
    if member is None:
        raise NotFoundError(resource="Member", resource_id=member_id)

    if isinstance(overall_rating, bool) or not isinstance(overall_rating, int):
        raise BadRequestError("overall_rating must be an integer")
    if not MIN_RATING <= overall_rating <= MAX_RATING:
        raise BadRequestError(f"overall_rating must be between {MIN_RATING} and {MAX_RATING}")

    actions = parse_recommended_actions(recommended_actions)

    review = PerformanceReview(
        member_id=member.id,
        reviewer_id=str(reviewer_id),
        overall_rating=overall_rating,
        recommended_actions=[a.value for a in actions],
        comments=comments,
    )
    db.session.add(review)
    db.session.commit()

    dispatch_recommended_actions(review, member)
    logger.info(
        "Performance review recorded",
        extra={"review_id": review.id, "member_id": member.id, "rating": overall_rating},
    )
    return review
