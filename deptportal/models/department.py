"""
Department Portal
Department roster models.

Models:
    - Department: a simulated police/fire/staff department
    - Member: one person's membership in a department (status machine)
    - DisciplinaryAction: warnings, suspensions, LOAs and their audit rows
    - Shift: scheduled duty window for a member
    - PerformanceReview: periodic rating with recommended follow-up actions
"""

import enum
from datetime import datetime, timezone

from deptportal.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _enum_column(enum_cls, length=30):
    return db.Enum(enum_cls, native_enum=False, length=length,
                   values_callable=_enum_values, validate_strings=True)


# ── Enums ────────────────────────────────────────────────────────────────────


class MemberStatus(str, enum.Enum):
    IN_TRAINING = "in_training"
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    LEAVE_OF_ABSENCE = "leave_of_absence"
    WARNED_1 = "warned_1"
    WARNED_2 = "warned_2"
    WARNED_3 = "warned_3"
    SUSPENDED = "suspended"
    BLACKLISTED = "blacklisted"


# One notch down the warning ladder.  Statuses not listed are unaffected
# when a warning expires.
WARNING_STEP_DOWN = {
    MemberStatus.WARNED_3: MemberStatus.WARNED_2,
    MemberStatus.WARNED_2: MemberStatus.WARNED_1,
    MemberStatus.WARNED_1: MemberStatus.ACTIVE,
}


class ActionType:
    """Disciplinary action_type values.  The column stays free-form text."""

    WARNING = "warning"
    SUSPENSION = "suspension"
    LEAVE_OF_ABSENCE = "leave_of_absence"
    # audit rows written by the expiry sweep
    LOA_RETURNED = "loa_returned"
    WARNING_DISMISSED = "warning_dismissed"
    UNSUSPENDED = "unsuspended"


EXPIRING_ACTION_TYPES = (ActionType.LEAVE_OF_ABSENCE, ActionType.WARNING, ActionType.SUSPENSION)


class ShiftStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class ShiftType(str, enum.Enum):
    PATROL = "patrol"
    TRAINING = "training"
    ADMINISTRATIVE = "administrative"
    SPECIAL_OPS = "special_ops"
    COURT_DUTY = "court_duty"


class RecommendedAction(str, enum.Enum):
    PROMOTION = "promotion"
    TRAINING = "training"
    MENTORING = "mentoring"
    DISCIPLINARY = "disciplinary"
    NO_ACTION = "no_action"


# ── Models ───────────────────────────────────────────────────────────────────


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(256), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    members = db.relationship("Member", back_populates="department", lazy="dynamic")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
        }


class Member(db.Model):
    """
    Department membership.

    ``user_id`` is the member's stable principal id; the role-restoration
    hook uses it to re-grant external roles after an LOA or suspension ends.
    """

    __tablename__ = "department_members"

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(
        db.Integer,
        db.ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(db.String(64), nullable=False, index=True)
    roleplay_name = db.Column(db.String(100), nullable=True)
    status = db.Column(_enum_column(MemberStatus), nullable=False,
                       default=MemberStatus.IN_TRAINING, index=True)
    rank_id = db.Column(db.Integer, nullable=True)
    primary_team_id = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    department = db.relationship("Department", back_populates="members")

    @property
    def display_name(self) -> str:
        return self.roleplay_name or f"Member {self.id}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "user_id": self.user_id,
            "roleplay_name": self.roleplay_name,
            "status": self.status.value if self.status else None,
            "rank_id": self.rank_id,
            "primary_team_id": self.primary_team_id,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        status = self.status.value if self.status else None
        return f"<Member #{self.id} dept={self.department_id} {status}>"


class DisciplinaryAction(db.Model):
    """
    Disciplinary record.

    Only the expiry sweep flips ``is_active`` from True to False, and only
    for rows whose ``expires_at`` has passed.  Audit rows written by the
    sweep are created inactive.
    """

    __tablename__ = "disciplinary_actions"
    __table_args__ = (
        db.Index("ix_disciplinary_type_active_expiry", "action_type", "is_active", "expires_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(
        db.Integer,
        db.ForeignKey("department_members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action_type = db.Column(db.String(50), nullable=False, index=True)
    reason = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text, nullable=True)
    issued_by = db.Column(db.String(64), nullable=False)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    member = db.relationship("Member")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "action_type": self.action_type,
            "reason": self.reason,
            "description": self.description,
            "issued_by": self.issued_by,
            "issued_at": _iso(self.issued_at),
            "expires_at": _iso(self.expires_at),
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<DisciplinaryAction #{self.id} member={self.member_id} {self.action_type}>"


class Shift(db.Model):
    __tablename__ = "department_shifts"
    __table_args__ = (
        db.CheckConstraint("start_time < end_time", name="ck_shift_start_before_end"),
        db.Index("ix_shift_member_window", "member_id", "start_time", "end_time"),
    )

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(
        db.Integer,
        db.ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    member_id = db.Column(
        db.Integer,
        db.ForeignKey("department_members.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=False)
    shift_type = db.Column(_enum_column(ShiftType), nullable=False, default=ShiftType.PATROL)
    status = db.Column(_enum_column(ShiftStatus), nullable=False, default=ShiftStatus.SCHEDULED)
    notes = db.Column(db.Text, nullable=True)
    scheduled_by = db.Column(db.String(64), nullable=False, default="system")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "department_id": self.department_id,
            "member_id": self.member_id,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "shift_type": self.shift_type.value if self.shift_type else None,
            "status": self.status.value if self.status else None,
            "notes": self.notes,
            "scheduled_by": self.scheduled_by,
        }

    def __repr__(self) -> str:
        return f"<Shift #{self.id} member={self.member_id} {self.start_time}–{self.end_time}>"


class PerformanceReview(db.Model):
    __tablename__ = "performance_reviews"

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(
        db.Integer,
        db.ForeignKey("department_members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reviewer_id = db.Column(db.String(64), nullable=False)
    overall_rating = db.Column(db.Integer, nullable=False)
    recommended_actions = db.Column(db.JSON, nullable=False, default=list)
    comments = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "reviewer_id": self.reviewer_id,
            "overall_rating": self.overall_rating,
            "recommended_actions": list(self.recommended_actions or []),
            "comments": self.comments,
            "created_at": _iso(self.created_at),
        }
