"""
Department Portal
Form domain models.

Models:
    - FormCategory: admin-managed grouping of forms
    - FormDefinition: question schema + role lists + review policy
    - FormResponse: one submitter's answers moving through the approval
      workflow (draft → review → final approval)

Status values are modelled as ``str`` enums so transition code compares
members, never raw strings.  The database column stores the enum *value*.
"""

import enum
from datetime import datetime, timezone

from deptportal.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ─────────────────────────────────────────────────────────────────

QUESTION_TYPES = frozenset({"true_false", "multiple_choice", "short_answer", "long_answer"})


class FormResponseStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    DENIED_BY_REVIEW = "denied_by_review"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    DENIED_BY_APPROVAL = "denied_by_approval"


class ReviewerDecision(str, enum.Enum):
    YES = "yes"
    NO = "no"


# Allowed edges of the response state machine.  Terminal states map to an
# empty set.  DRAFT may jump past review when the form needs no reviewers.
RESPONSE_TRANSITIONS = {
    FormResponseStatus.DRAFT: frozenset({
        FormResponseStatus.PENDING_REVIEW,
        FormResponseStatus.PENDING_APPROVAL,
        FormResponseStatus.APPROVED,
    }),
    FormResponseStatus.PENDING_REVIEW: frozenset({
        FormResponseStatus.PENDING_APPROVAL,
        FormResponseStatus.APPROVED,
        FormResponseStatus.DENIED_BY_REVIEW,
    }),
    FormResponseStatus.PENDING_APPROVAL: frozenset({
        FormResponseStatus.APPROVED,
        FormResponseStatus.DENIED_BY_APPROVAL,
    }),
    FormResponseStatus.APPROVED: frozenset(),
    FormResponseStatus.DENIED_BY_REVIEW: frozenset(),
    FormResponseStatus.DENIED_BY_APPROVAL: frozenset(),
}


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class FormCategory(db.Model):
    """Named bucket for forms.  Deleting a category detaches its forms."""

    __tablename__ = "form_categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(256), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    forms = db.relationship("FormDefinition", back_populates="category")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<FormCategory #{self.id} {self.name}>"


class FormDefinition(db.Model):
    """
    A form's schema and review policy.

    Business rules:
    - ``questions`` is an ordered JSON list; each question carries a stable
      ``id`` that answers reference, so reordering never renumbers anything.
    - Empty role lists mean "open to everyone" for that capability.
    - ``required_reviewers == 0`` skips peer review entirely.
    - Deleting only stamps ``deleted_at``; responses keep their parent row.
    """

    __tablename__ = "form_definitions"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(256), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    questions = db.Column(db.JSON, nullable=False, default=list)
    category_id = db.Column(
        db.Integer,
        db.ForeignKey("form_categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    access_role_ids = db.Column(db.JSON, nullable=False, default=list,
                                comment="Role ids allowed to view/submit; empty = everyone")
    reviewer_role_ids = db.Column(db.JSON, nullable=False, default=list,
                                  comment="Role ids allowed to cast reviewer decisions")
    final_approver_role_ids = db.Column(db.JSON, nullable=False, default=list,
                                        comment="Role ids allowed to give final approval")
    required_reviewers = db.Column(db.Integer, nullable=False, default=1)
    requires_final_approval = db.Column(db.Boolean, nullable=False, default=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    category = db.relationship("FormCategory", back_populates="forms")
    responses = db.relationship("FormResponse", back_populates="form", lazy="dynamic")

    @classmethod
    def active(cls):
        return cls.query.filter(cls.deleted_at.is_(None))

    def soft_delete(self) -> None:
        self.deleted_at = _utcnow()

    def question_ids(self) -> list[str]:
        return [q["id"] for q in (self.questions or [])]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "questions": list(self.questions or []),
            "category_id": self.category_id,
            "access_role_ids": list(self.access_role_ids or []),
            "reviewer_role_ids": list(self.reviewer_role_ids or []),
            "final_approver_role_ids": list(self.final_approver_role_ids or []),
            "required_reviewers": self.required_reviewers,
            "requires_final_approval": self.requires_final_approval,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "deleted_at": _iso(self.deleted_at),
        }

    def __repr__(self) -> str:
        return f"<FormDefinition #{self.id} {self.title}>"


class FormResponse(db.Model):
    """
    One submitter's response to a form.

    Business rules:
    - reviewers_approved_count + reviewers_denied_count == len(reviewer_decisions)
    - a user id appears at most once in reviewer_decisions
    - status only moves along RESPONSE_TRANSITIONS; rows are never deleted
    - ``version`` is the optimistic-concurrency counter: every flush issues
      ``UPDATE ... WHERE id = :id AND version = :seen`` so two writers that
      read the same snapshot cannot both succeed.
    """

    __tablename__ = "form_responses"

    id = db.Column(db.Integer, primary_key=True)
    form_id = db.Column(
        db.Integer,
        db.ForeignKey("form_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(db.String(64), nullable=False, index=True,
                        comment="Stable principal id of the submitter")
    answers = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(
        db.Enum(FormResponseStatus, native_enum=False, length=30,
                values_callable=_enum_values, validate_strings=True),
        nullable=False,
        default=FormResponseStatus.PENDING_REVIEW,
        index=True,
    )

    reviewer_decisions = db.Column(db.JSON, nullable=False, default=list)
    reviewer_ids = db.Column(db.JSON, nullable=False, default=list)
    reviewers_approved_count = db.Column(db.Integer, nullable=False, default=0)
    reviewers_denied_count = db.Column(db.Integer, nullable=False, default=0)

    final_approver_id = db.Column(db.String(64), nullable=True)
    final_approval_decision = db.Column(db.Boolean, nullable=True)
    final_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    final_approval_comments = db.Column(db.Text, nullable=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    version = db.Column(db.Integer, nullable=False)

    form = db.relationship("FormDefinition", back_populates="responses")

    __mapper_args__ = {"version_id_col": version}

    def decision_by(self, user_id: str) -> dict | None:
        for decision in self.reviewer_decisions or []:
            if decision.get("user_id") == user_id:
                return decision
        return None

    def to_dict(self, include_form: bool = False) -> dict:
        data = {
            "id": self.id,
            "form_id": self.form_id,
            "user_id": self.user_id,
            "answers": list(self.answers or []),
            "status": self.status.value if self.status else None,
            "reviewer_decisions": list(self.reviewer_decisions or []),
            "reviewer_ids": list(self.reviewer_ids or []),
            "reviewers_approved_count": self.reviewers_approved_count,
            "reviewers_denied_count": self.reviewers_denied_count,
            "final_approver_id": self.final_approver_id,
            "final_approval_decision": self.final_approval_decision,
            "final_approved_at": _iso(self.final_approved_at),
            "final_approval_comments": self.final_approval_comments,
            "submitted_at": _iso(self.submitted_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_form and self.form is not None:
            data["form"] = {"id": self.form.id, "title": self.form.title}
        return data

    def __repr__(self) -> str:
        status = self.status.value if self.status else None
        return f"<FormResponse #{self.id} form={self.form_id} {status}>"
