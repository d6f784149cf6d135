"""
Department Portal
Shift conflict checking + scheduling.

A proposed window [start, end) is checked against the member's existing,
non-cancelled shifts:
    - overlap:            start < other.end and end > other.start
    - insufficient_rest:  the gap between the two shifts is under
                          SHIFT_MIN_REST_HOURS (8h).  Overlapping shifts
                          have a negative gap, so they report both.

Candidates are the member's shifts that overlap the window or sit within
24 hours either side of it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app

from deptportal.core.exceptions import BadRequestError, NotFoundError
from deptportal.models import db
from deptportal.models.department import Member, MemberStatus, Shift, ShiftStatus, ShiftType
from deptportal.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_MIN_REST_HOURS = 8
CANDIDATE_WINDOW = timedelta(hours=24)

OVERLAP = "overlap"
INSUFFICIENT_REST = "insufficient_rest"


@dataclass(frozen=True)
class ShiftConflict:
    conflict_type: str
    shift: Shift
    message: str
    rest_hours: float | None = None

    def to_dict(self) -> dict:
        return {
            "conflict_type": self.conflict_type,
            "message": self.message,
            "rest_hours": self.rest_hours,
            "existing_shift": self.shift.to_dict(),
        }


def _min_rest() -> timedelta:
    hours = current_app.config.get("SHIFT_MIN_REST_HOURS", DEFAULT_MIN_REST_HOURS)
    return timedelta(hours=hours)


def _candidates(member_id: int, start: datetime, end: datetime) -> list[Shift]:
    return (
        Shift.query.filter(
            Shift.member_id == member_id,
            Shift.status != ShiftStatus.CANCELLED,
            Shift.start_time <= end + CANDIDATE_WINDOW,
            Shift.end_time >= start - CANDIDATE_WINDOW,
        )
        .order_by(Shift.start_time, Shift.id)
        .all()
    )


def check_shift_conflicts(member_id: int, start: datetime, end: datetime) -> list[ShiftConflict]:
    """Every overlap and rest-period conflict for a proposed shift."""
    start, end = as_utc(start), as_utc(end)
    if start >= end:
        raise BadRequestError("Start time must be before end time")

    min_rest = _min_rest()
    conflicts: list[ShiftConflict] = []

    for shift in _candidates(member_id, start, end):
        other_start, other_end = as_utc(shift.start_time), as_utc(shift.end_time)
        kind = shift.shift_type.value if shift.shift_type else "shift"

        if start < other_end and end > other_start:
            conflicts.append(ShiftConflict(
                conflict_type=OVERLAP,
                shift=shift,
                message=(
                    f"Overlaps with existing {kind} shift from "
                    f"{other_start.isoformat()} to {other_end.isoformat()}"
                ),
            ))

        gap = max(start - other_end, other_start - end)
        if gap < min_rest:
            rest_hours = round(max(gap, timedelta(0)).total_seconds() / 3600, 1)
            conflicts.append(ShiftConflict(
                conflict_type=INSUFFICIENT_REST,
                shift=shift,
                message=f"Insufficient rest period ({rest_hours:.1f} hours) between shifts",
                rest_hours=rest_hours,
            ))

    return conflicts


def schedule_shift(
    department_id: int,
    member_id: int,
    start: datetime,
    end: datetime,
    shift_type: str | ShiftType = ShiftType.PATROL,
    notes: str | None = None,
    scheduled_by: str | None = None,
    now: datetime | None = None,
) -> Shift:
    """Create a ``scheduled`` shift once every check passes.

    Raises:
        BadRequestError: bad times, ineligible member, or conflicts
                         (listed in ``details["conflicts"]``)
        NotFoundError:   member is not in the department
    """
    start, end = as_utc(start), as_utc(end)
    now = as_utc(now) if now else utcnow()

    try:
        shift_type = ShiftType(shift_type)
    except ValueError:
        raise BadRequestError(
            f"shift_type must be one of: {', '.join(t.value for t in ShiftType)}"
        )
    if start >= end:
        raise BadRequestError("Start time must be before end time")
    if start < now:
        raise BadRequestError("Cannot schedule shifts in the past")

    member = Member.query.filter_by(id=member_id, department_id=department_id).first()
    if member is None:
        raise NotFoundError(resource="Member", resource_id=member_id)
    if not member.is_active:
        raise BadRequestError("Cannot schedule shifts for inactive members")
    if member.status is not MemberStatus.ACTIVE:
        raise BadRequestError(f"Cannot schedule shifts for members with status: {member.status.value}")

    conflicts = check_shift_conflicts(member_id, start, end)
    if conflicts:
        raise BadRequestError(
            "Scheduling conflicts detected: " + "; ".join(c.message for c in conflicts),
            details={"conflicts": [c.to_dict() for c in conflicts]},
        )

    shift = Shift(
        department_id=department_id,
        member_id=member_id,
        start_time=start,
        end_time=end,
        shift_type=shift_type,
        status=ShiftStatus.SCHEDULED,
        notes=notes,
        scheduled_by=scheduled_by or "system",
    )
    db.session.add(shift)
    db.session.commit()
    logger.info(
        "Shift scheduled",
        extra={"shift_id": shift.id, "member_id": member_id, "department_id": department_id},
    )
    return shift
