"""
Department Portal
Disciplinary / LOA expiry sweep.

Run periodically (hourly by default, see scheduled_jobs).  For each of
leave_of_absence, warning and suspension, in that order, every action with
``is_active`` and ``expires_at <= now`` is reverted:

    leave_of_absence → member active, action off, ``loa_returned`` audit row,
                       roles restored
    suspension       → member active, action off, ``unsuspended`` audit row,
                       roles restored
    warning          → action off, member stepped down exactly one notch
                       (warned_3 → warned_2 → warned_1 → active),
                       ``warning_dismissed`` audit row

Each action is processed in its own savepoint.  A failing row is rolled
back, logged and counted; the rest of the sweep carries on.  Re-running is
safe: reverted actions are inactive and never selected again.
"""

from __future__ import annotations

import logging
from datetime import datetime

from deptportal.models import db
from deptportal.models.department import (
    EXPIRING_ACTION_TYPES,
    WARNING_STEP_DOWN,
    ActionType,
    DisciplinaryAction,
    Member,
    MemberStatus,
)
from deptportal.services.role_restoration import restore_roles
from deptportal.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

SYSTEM_ISSUER = "system"

_AUDIT = {
    ActionType.LEAVE_OF_ABSENCE: (
        ActionType.LOA_RETURNED,
        "Automatic return from LOA",
        "Member automatically returned to active status after LOA expired.",
    ),
    ActionType.SUSPENSION: (
        ActionType.UNSUSPENDED,
        "Automatic unsuspension after suspension expired",
        "Member automatically unsuspended after suspension expired.",
    ),
    ActionType.WARNING: (
        ActionType.WARNING_DISMISSED,
        "Warning expired and was dismissed automatically",
        "Member warning expired and was dismissed by the expiry sweep.",
    ),
}


def _expired(action_type: str, now: datetime) -> list[DisciplinaryAction]:
    return (
        DisciplinaryAction.query.filter(
            DisciplinaryAction.action_type == action_type,
            DisciplinaryAction.is_active.is_(True),
            DisciplinaryAction.expires_at.isnot(None),
            DisciplinaryAction.expires_at <= now,
        )
        .order_by(DisciplinaryAction.expires_at, DisciplinaryAction.id)
        .all()
    )


def _write_audit(member: Member, expired_type: str, now: datetime) -> DisciplinaryAction:
    audit_type, reason, description = _AUDIT[expired_type]
    audit = DisciplinaryAction(
        member_id=member.id,
        action_type=audit_type,
        reason=reason,
        description=description,
        issued_by=SYSTEM_ISSUER,
        issued_at=now,
        is_active=False,
    )
    db.session.add(audit)
    return audit


def _expire_one(action: DisciplinaryAction, now: datetime) -> Member | None:
    """Revert one action.  Returns the member when roles need restoring."""
    member = db.session.get(Member, action.member_id, with_for_update=True)
    if member is None:
        raise LookupError(f"Member {action.member_id} for action {action.id} not found")

    action.is_active = False
    action.updated_at = now
    previous = member.status

    if action.action_type == ActionType.WARNING:
        stepped = WARNING_STEP_DOWN.get(member.status)
        if stepped is not None:
            member.status = stepped
            member.updated_at = now
        restore = None
    else:
        member.status = MemberStatus.ACTIVE
        member.updated_at = now
        restore = member

    _write_audit(member, action.action_type, now)
    db.session.flush()

    logger.info(
        "Expired %s reverted",
        action.action_type,
        extra={
            "action_id": action.id,
            "member_id": member.id,
            "from_status": previous.value if previous else None,
            "to_status": member.status.value,
        },
    )
    return restore


def run_expiry_sweep(now: datetime | None = None, restorer=None) -> dict[str, int]:
    """Revert every expired LOA, warning and suspension as of ``now``.

    Returns per-category counts of reverted actions plus ``failed``.
    Role restoration runs after the commit; its failures are logged and
    do not undo status changes.
    """
    now = as_utc(now) if now else utcnow()
    results = {action_type: 0 for action_type in EXPIRING_ACTION_TYPES}
    results["failed"] = 0
    to_restore: list[Member] = []

    for action_type in EXPIRING_ACTION_TYPES:
        for action in _expired(action_type, now):
            action_id = action.id
            try:
                with db.session.begin_nested():
                    member = _expire_one(action, now)
            except Exception:
                results["failed"] += 1
                logger.exception("Expiry sweep failed for disciplinary action %s", action_id)
                continue
            results[action_type] += 1
            if member is not None:
                to_restore.append(member)

    db.session.commit()

    if to_restore:
        restore_roles(to_restore, restorer)

    logger.info("Expiry sweep finished: %s", results)
    return results
