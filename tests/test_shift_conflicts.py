"""
Shift conflict + scheduling tests.

Tests cover:
  - overlap and insufficient-rest detection, rest hours rounding
  - cancelled and distant shifts are ignored
  - exactly the minimum rest is fine
  - schedule_shift eligibility checks and conflict details
  - department endpoints: conflict check, scheduling (admin only)
"""

from datetime import datetime, timedelta, timezone

import pytest

from deptportal.core.exceptions import BadRequestError, NotFoundError
from deptportal.models import db
from deptportal.models.department import Department, Member, MemberStatus, Shift, ShiftStatus, ShiftType
from deptportal.services.shift_service import INSUFFICIENT_REST, OVERLAP, check_shift_conflicts, schedule_shift

DAY = datetime(2031, 1, 6, tzinfo=timezone.utc)
NOW = DAY - timedelta(days=1)


def _at(hour, day_offset=0):
    return DAY + timedelta(days=day_offset, hours=hour)


def _make_department(name="LSPD"):
    dept = Department(name=name)
    db.session.add(dept)
    db.session.flush()
    return dept


def _make_member(dept, status=MemberStatus.ACTIVE, is_active=True, user_id="officer-1"):
    member = Member(department_id=dept.id, user_id=user_id, status=status, is_active=is_active)
    db.session.add(member)
    db.session.flush()
    return member


def _make_shift(member, start, end, status=ShiftStatus.SCHEDULED, shift_type=ShiftType.PATROL):
    shift = Shift(department_id=member.department_id, member_id=member.id,
                  start_time=start, end_time=end, status=status, shift_type=shift_type)
    db.session.add(shift)
    db.session.flush()
    return shift


@pytest.fixture()
def member():
    return _make_member(_make_department())


# ═══════════════════════════════════════════════════════════════
# check_shift_conflicts
# ═══════════════════════════════════════════════════════════════

class TestCheckShiftConflicts:

    def test_no_shifts_no_conflicts(self, member):
        assert check_shift_conflicts(member.id, _at(9), _at(17)) == []

    def test_overlap(self, member):
        existing = _make_shift(member, _at(9), _at(17))
        conflicts = check_shift_conflicts(member.id, _at(16), _at(20))
        kinds = [c.conflict_type for c in conflicts]
        assert OVERLAP in kinds
        overlap = conflicts[kinds.index(OVERLAP)]
        assert overlap.shift.id == existing.id
        assert overlap.message.startswith("Overlaps with existing patrol shift from ")

    def test_overlap_also_reports_zero_rest(self, member):
        _make_shift(member, _at(9), _at(17))
        conflicts = check_shift_conflicts(member.id, _at(16), _at(20))
        rest = [c for c in conflicts if c.conflict_type == INSUFFICIENT_REST]
        assert rest[0].rest_hours == 0.0

    def test_insufficient_rest(self, member):
        _make_shift(member, _at(9), _at(17))
        conflicts = check_shift_conflicts(member.id, _at(23), _at(7, day_offset=1))
        assert len(conflicts) == 1
        conflict = conflicts[0]
        assert conflict.conflict_type == INSUFFICIENT_REST
        assert conflict.rest_hours == 6.0
        assert conflict.message == "Insufficient rest period (6.0 hours) between shifts"

    def test_rest_before_existing_shift(self, member):
        _make_shift(member, _at(9), _at(17))
        conflicts = check_shift_conflicts(member.id, _at(0), _at(4))
        assert [c.conflict_type for c in conflicts] == [INSUFFICIENT_REST]
        assert conflicts[0].rest_hours == 5.0

    def test_rest_hours_rounded(self, member):
        _make_shift(member, _at(9), _at(17))
        start = _at(17) + timedelta(hours=2, minutes=20)
        conflicts = check_shift_conflicts(member.id, start, start + timedelta(hours=4))
        assert conflicts[0].rest_hours == 2.3

    def test_exact_minimum_rest_is_fine(self, member):
        _make_shift(member, _at(9), _at(17))
        assert check_shift_conflicts(member.id, _at(1, day_offset=1), _at(5, day_offset=1)) == []

    def test_adjacent_shift_is_not_overlap(self, member):
        _make_shift(member, _at(9), _at(17))
        conflicts = check_shift_conflicts(member.id, _at(17), _at(20))
        assert [c.conflict_type for c in conflicts] == [INSUFFICIENT_REST]

    def test_cancelled_shift_ignored(self, member):
        _make_shift(member, _at(9), _at(17), status=ShiftStatus.CANCELLED)
        assert check_shift_conflicts(member.id, _at(10), _at(12)) == []

    def test_distant_shift_ignored(self, member):
        _make_shift(member, _at(9, day_offset=3), _at(17, day_offset=3))
        assert check_shift_conflicts(member.id, _at(9), _at(17)) == []

    def test_other_members_shifts_ignored(self, member):
        other = _make_member(member.department, user_id="officer-2")
        _make_shift(other, _at(9), _at(17))
        assert check_shift_conflicts(member.id, _at(9), _at(17)) == []

    def test_start_must_precede_end(self, member):
        with pytest.raises(BadRequestError, match="Start time must be before end time"):
            check_shift_conflicts(member.id, _at(17), _at(9))

    def test_min_rest_from_config(self, app, member):
        _make_shift(member, _at(9), _at(17))
        app.config["SHIFT_MIN_REST_HOURS"] = 4
        try:
            assert check_shift_conflicts(member.id, _at(23), _at(7, day_offset=1)) == []
        finally:
            app.config["SHIFT_MIN_REST_HOURS"] = 8


# ═══════════════════════════════════════════════════════════════
# schedule_shift
# ═══════════════════════════════════════════════════════════════

class TestScheduleShift:

    def test_creates_scheduled_shift(self, member):
        shift = schedule_shift(member.department_id, member.id, _at(9), _at(17),
                               shift_type="training", notes="Range day", now=NOW)
        assert shift.id is not None
        assert shift.status is ShiftStatus.SCHEDULED
        assert shift.shift_type is ShiftType.TRAINING
        assert shift.scheduled_by == "system"
        assert shift.notes == "Range day"

    def test_conflict_rejected_with_details(self, member):
        _make_shift(member, _at(9), _at(17))
        with pytest.raises(BadRequestError) as exc:
            schedule_shift(member.department_id, member.id, _at(16), _at(20), now=NOW)
        assert str(exc.value).startswith("Scheduling conflicts detected: ")
        types = {c["conflict_type"] for c in exc.value.details["conflicts"]}
        assert types == {OVERLAP, INSUFFICIENT_REST}
        assert Shift.query.count() == 1

    def test_past_start_rejected(self, member):
        with pytest.raises(BadRequestError, match="in the past"):
            schedule_shift(member.department_id, member.id, _at(9), _at(17), now=_at(10))

    def test_unknown_shift_type(self, member):
        with pytest.raises(BadRequestError, match="shift_type"):
            schedule_shift(member.department_id, member.id, _at(9), _at(17), shift_type="nap", now=NOW)

    def test_member_of_other_department(self, member):
        other_dept = _make_department("BCSO")
        with pytest.raises(NotFoundError):
            schedule_shift(other_dept.id, member.id, _at(9), _at(17), now=NOW)

    def test_inactive_member(self):
        member = _make_member(_make_department(), is_active=False)
        with pytest.raises(BadRequestError, match="inactive members"):
            schedule_shift(member.department_id, member.id, _at(9), _at(17), now=NOW)

    @pytest.mark.parametrize("status", [MemberStatus.SUSPENDED, MemberStatus.LEAVE_OF_ABSENCE,
                                        MemberStatus.WARNED_1])
    def test_status_must_be_active(self, status):
        member = _make_member(_make_department(), status=status)
        with pytest.raises(BadRequestError, match=f"status: {status.value}"):
            schedule_shift(member.department_id, member.id, _at(9), _at(17), now=NOW)


# ═══════════════════════════════════════════════════════════════
# HTTP
# ═══════════════════════════════════════════════════════════════

class TestShiftApi:

    def _setup(self):
        dept = _make_department()
        member = _make_member(dept)
        _make_shift(member, _at(9), _at(17))
        db.session.commit()
        return dept.id, member.id

    def test_conflict_check(self, client, auth_headers):
        _, member_id = self._setup()
        res = client.post(f"/api/v1/members/{member_id}/shift-conflicts",
                          json={"start_time": _at(23).isoformat(),
                                "end_time": _at(7, day_offset=1).isoformat()},
                          headers=auth_headers("officer-1"))
        assert res.status_code == 200
        body = res.get_json()
        assert body["has_conflicts"] is True
        assert body["conflicts"][0]["rest_hours"] == 6.0
        assert body["conflicts"][0]["existing_shift"]["member_id"] == member_id

    def test_conflict_check_bad_timestamp(self, client, auth_headers):
        _, member_id = self._setup()
        res = client.post(f"/api/v1/members/{member_id}/shift-conflicts",
                          json={"start_time": "tomorrow", "end_time": "later"},
                          headers=auth_headers())
        assert res.status_code == 400

    def test_conflict_check_unknown_member(self, client, auth_headers):
        res = client.post("/api/v1/members/999/shift-conflicts",
                          json={"start_time": _at(9).isoformat(), "end_time": _at(17).isoformat()},
                          headers=auth_headers())
        assert res.status_code == 404

    def test_schedule(self, client, auth_headers):
        dept_id, member_id = self._setup()
        res = client.post(f"/api/v1/departments/{dept_id}/shifts", json={
            "member_id": member_id,
            "start_time": _at(9, day_offset=1).isoformat(),
            "end_time": _at(17, day_offset=1).isoformat(),
            "shift_type": "court_duty",
        }, headers=auth_headers("sgt-1", admin=True))
        assert res.status_code == 201
        body = res.get_json()
        assert body["scheduled_by"] == "sgt-1"
        assert body["shift_type"] == "court_duty"

    def test_schedule_conflict(self, client, auth_headers):
        dept_id, member_id = self._setup()
        res = client.post(f"/api/v1/departments/{dept_id}/shifts", json={
            "member_id": member_id,
            "start_time": _at(12).isoformat(),
            "end_time": _at(20).isoformat(),
        }, headers=auth_headers("sgt-1", admin=True))
        assert res.status_code == 400
        assert res.get_json()["details"]["conflicts"]

    def test_schedule_requires_admin(self, client, auth_headers):
        dept_id, member_id = self._setup()
        res = client.post(f"/api/v1/departments/{dept_id}/shifts", json={
            "member_id": member_id,
            "start_time": _at(9, day_offset=1).isoformat(),
            "end_time": _at(17, day_offset=1).isoformat(),
        }, headers=auth_headers("officer-1"))
        assert res.status_code == 403

    def test_schedule_requires_member_id(self, client, auth_headers):
        dept_id, _ = self._setup()
        res = client.post(f"/api/v1/departments/{dept_id}/shifts", json={
            "start_time": _at(9, day_offset=1).isoformat(),
            "end_time": _at(17, day_offset=1).isoformat(),
        }, headers=auth_headers("sgt-1", admin=True))
        assert res.status_code == 400
        assert res.get_json()["error"] == "member_id is required"

    def test_schedule_unknown_department(self, client, auth_headers):
        res = client.post("/api/v1/departments/999/shifts", json={"member_id": 1},
                          headers=auth_headers("sgt-1", admin=True))
        assert res.status_code == 404
