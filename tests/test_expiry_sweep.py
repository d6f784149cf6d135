"""
Expiry sweep tests.

Tests cover:
  - LOA and suspension expiry → member active, audit row, roles restored
  - warning expiry steps the member down exactly one notch
  - unexpired / already inactive actions are untouched
  - a failing row is isolated; the rest of the sweep commits
  - restorer failures never undo status changes
  - re-running is a no-op
"""

from datetime import datetime, timedelta, timezone

import pytest

from deptportal.models import db
from deptportal.models.department import (
    ActionType,
    Department,
    DisciplinaryAction,
    Member,
    MemberStatus,
)
from deptportal.services import expiry_sweep
from deptportal.services.expiry_sweep import run_expiry_sweep
from deptportal.services.role_restoration import set_role_restorer

NOW = datetime(2026, 4, 10, 12, 0, tzinfo=timezone.utc)
PAST = NOW - timedelta(hours=1)
FUTURE = NOW + timedelta(days=2)


def _make_member(status=MemberStatus.ACTIVE, user_id="member-1"):
    dept = Department.query.filter_by(name="LSPD").first()
    if dept is None:
        dept = Department(name="LSPD")
        db.session.add(dept)
        db.session.flush()
    member = Member(department_id=dept.id, user_id=user_id, status=status)
    db.session.add(member)
    db.session.flush()
    return member


def _make_action(member, action_type, expires_at=PAST, is_active=True):
    action = DisciplinaryAction(
        member_id=member.id,
        action_type=action_type,
        reason="test",
        issued_by="admin-1",
        issued_at=NOW - timedelta(days=7),
        expires_at=expires_at,
        is_active=is_active,
    )
    db.session.add(action)
    db.session.flush()
    return action


def _audit_rows(member, action_type):
    return DisciplinaryAction.query.filter_by(member_id=member.id, action_type=action_type).all()


class _Recorder:
    def __init__(self, fail_for=()):
        self.seen = []
        self.fail_for = set(fail_for)

    def __call__(self, member):
        self.seen.append(member.id)
        if member.id in self.fail_for:
            raise RuntimeError("role sync unavailable")


# ═══════════════════════════════════════════════════════════════
# Reverting each category
# ═══════════════════════════════════════════════════════════════

class TestExpiryReverts:

    def test_loa_returns_member(self):
        member = _make_member(MemberStatus.LEAVE_OF_ABSENCE)
        action = _make_action(member, ActionType.LEAVE_OF_ABSENCE)
        recorder = _Recorder()

        result = run_expiry_sweep(now=NOW, restorer=recorder)

        assert result[ActionType.LEAVE_OF_ABSENCE] == 1
        assert result["failed"] == 0
        assert db.session.get(Member, member.id).status is MemberStatus.ACTIVE
        assert db.session.get(DisciplinaryAction, action.id).is_active is False
        audit = _audit_rows(member, ActionType.LOA_RETURNED)
        assert len(audit) == 1
        assert audit[0].issued_by == "system"
        assert audit[0].is_active is False
        assert recorder.seen == [member.id]

    def test_suspension_unsuspends(self):
        member = _make_member(MemberStatus.SUSPENDED)
        _make_action(member, ActionType.SUSPENSION)
        recorder = _Recorder()

        result = run_expiry_sweep(now=NOW, restorer=recorder)

        assert result[ActionType.SUSPENSION] == 1
        assert db.session.get(Member, member.id).status is MemberStatus.ACTIVE
        assert len(_audit_rows(member, ActionType.UNSUSPENDED)) == 1
        assert recorder.seen == [member.id]

    @pytest.mark.parametrize("before,after", [
        (MemberStatus.WARNED_3, MemberStatus.WARNED_2),
        (MemberStatus.WARNED_2, MemberStatus.WARNED_1),
        (MemberStatus.WARNED_1, MemberStatus.ACTIVE),
    ])
    def test_warning_steps_down_one_notch(self, before, after):
        member = _make_member(before)
        _make_action(member, ActionType.WARNING)
        recorder = _Recorder()

        result = run_expiry_sweep(now=NOW, restorer=recorder)

        assert result[ActionType.WARNING] == 1
        assert db.session.get(Member, member.id).status is after
        assert len(_audit_rows(member, ActionType.WARNING_DISMISSED)) == 1
        # warnings never trigger role restoration
        assert recorder.seen == []

    def test_warning_on_unwarned_member_leaves_status(self):
        member = _make_member(MemberStatus.IN_TRAINING)
        action = _make_action(member, ActionType.WARNING)

        run_expiry_sweep(now=NOW, restorer=_Recorder())

        assert db.session.get(Member, member.id).status is MemberStatus.IN_TRAINING
        assert db.session.get(DisciplinaryAction, action.id).is_active is False

    def test_two_warnings_step_down_twice(self):
        member = _make_member(MemberStatus.WARNED_3)
        _make_action(member, ActionType.WARNING)
        _make_action(member, ActionType.WARNING, expires_at=PAST - timedelta(hours=1))

        result = run_expiry_sweep(now=NOW, restorer=_Recorder())

        assert result[ActionType.WARNING] == 2
        assert db.session.get(Member, member.id).status is MemberStatus.WARNED_1


# ═══════════════════════════════════════════════════════════════
# Selection
# ═══════════════════════════════════════════════════════════════

class TestExpirySelection:

    def test_future_and_inactive_are_untouched(self):
        member = _make_member(MemberStatus.SUSPENDED)
        future = _make_action(member, ActionType.SUSPENSION, expires_at=FUTURE)
        inactive = _make_action(member, ActionType.LEAVE_OF_ABSENCE, is_active=False)
        permanent = _make_action(member, ActionType.WARNING, expires_at=None)

        result = run_expiry_sweep(now=NOW, restorer=_Recorder())

        assert result == {
            ActionType.LEAVE_OF_ABSENCE: 0,
            ActionType.WARNING: 0,
            ActionType.SUSPENSION: 0,
            "failed": 0,
        }
        assert db.session.get(Member, member.id).status is MemberStatus.SUSPENDED
        assert db.session.get(DisciplinaryAction, future.id).is_active is True
        assert db.session.get(DisciplinaryAction, inactive.id).is_active is False
        assert db.session.get(DisciplinaryAction, permanent.id).is_active is True

    def test_expiry_exactly_now_is_reverted(self):
        member = _make_member(MemberStatus.LEAVE_OF_ABSENCE)
        _make_action(member, ActionType.LEAVE_OF_ABSENCE, expires_at=NOW)
        assert run_expiry_sweep(now=NOW, restorer=_Recorder())[ActionType.LEAVE_OF_ABSENCE] == 1

    def test_rerun_is_noop(self):
        member = _make_member(MemberStatus.LEAVE_OF_ABSENCE)
        _make_action(member, ActionType.LEAVE_OF_ABSENCE)
        run_expiry_sweep(now=NOW, restorer=_Recorder())

        recorder = _Recorder()
        result = run_expiry_sweep(now=NOW, restorer=recorder)
        assert result[ActionType.LEAVE_OF_ABSENCE] == 0
        assert recorder.seen == []
        assert len(_audit_rows(member, ActionType.LOA_RETURNED)) == 1


# ═══════════════════════════════════════════════════════════════
# Failure isolation
# ═══════════════════════════════════════════════════════════════

class TestExpiryFailures:

    def test_failing_row_is_isolated(self, monkeypatch):
        broken = _make_member(MemberStatus.SUSPENDED, user_id="broken")
        healthy = _make_member(MemberStatus.SUSPENDED, user_id="healthy")
        broken_action = _make_action(broken, ActionType.SUSPENSION)
        _make_action(healthy, ActionType.SUSPENSION)

        real_write_audit = expiry_sweep._write_audit

        def _flaky(member, expired_type, now):
            if member.id == broken.id:
                raise RuntimeError("audit insert failed")
            return real_write_audit(member, expired_type, now)

        monkeypatch.setattr(expiry_sweep, "_write_audit", _flaky)
        recorder = _Recorder()

        result = run_expiry_sweep(now=NOW, restorer=recorder)

        assert result[ActionType.SUSPENSION] == 1
        assert result["failed"] == 1
        assert db.session.get(Member, healthy.id).status is MemberStatus.ACTIVE
        assert db.session.get(Member, broken.id).status is MemberStatus.SUSPENDED
        assert db.session.get(DisciplinaryAction, broken_action.id).is_active is True
        assert recorder.seen == [healthy.id]

    def test_restorer_failure_keeps_status(self):
        first = _make_member(MemberStatus.LEAVE_OF_ABSENCE, user_id="first")
        second = _make_member(MemberStatus.LEAVE_OF_ABSENCE, user_id="second")
        _make_action(first, ActionType.LEAVE_OF_ABSENCE)
        _make_action(second, ActionType.LEAVE_OF_ABSENCE)
        recorder = _Recorder(fail_for={first.id})

        result = run_expiry_sweep(now=NOW, restorer=recorder)

        assert result[ActionType.LEAVE_OF_ABSENCE] == 2
        assert result["failed"] == 0
        assert sorted(recorder.seen) == sorted([first.id, second.id])
        assert db.session.get(Member, first.id).status is MemberStatus.ACTIVE

    def test_default_restorer_is_used(self, app):
        calls = []
        set_role_restorer(app, lambda member: calls.append(member.user_id))

        member = _make_member(MemberStatus.LEAVE_OF_ABSENCE, user_id="returning")
        _make_action(member, ActionType.LEAVE_OF_ABSENCE)
        run_expiry_sweep(now=NOW)

        assert calls == ["returning"]
