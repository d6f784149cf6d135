"""
Department Portal
Scheduling models.

Models:
    - ScheduledJob: one row per registered job; its default cron schedule,
      pause flag and run history
    - SubmissionCounter: shared backing store for the form submission
      rate limiter when SUBMISSION_LIMIT_STORAGE="database"
"""

from datetime import datetime, timezone

from deptportal.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class JobStatus:
    ACTIVE = "active"
    PAUSED = "paused"


class RunStatus:
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


class ScheduledJob(db.Model):
    """
    Persisted state of a registered job.

    The row never drives execution by itself; an external cron triggers
    runs and ``is_enabled`` decides whether an unforced run proceeds.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), nullable=False, default="")
    schedule_config = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(20), nullable=False, default=JobStatus.ACTIVE)
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True)
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    run_count = db.Column(db.Integer, nullable=False, default=0)
    error_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def record_run(self, status: str, duration_ms: int, result: dict | None, error: str | None) -> None:
        self.last_run_at = _utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == RunStatus.FAILED:
            self.error_count = (self.error_count or 0) + 1
            self.last_error = error

    def to_dict(self) -> dict:
        return {
            "job_name": self.job_name,
            "description": self.description,
            "schedule_config": dict(self.schedule_config or {}),
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "error_count": self.error_count,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"


class SubmissionCounter(db.Model):
    """Per-(user, form) submission counter row."""

    __tablename__ = "form_submission_counters"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(200), unique=True, nullable=False)
    count = db.Column(db.Integer, nullable=False, default=0)
    last_submission_at = db.Column(db.DateTime(timezone=True), nullable=False)
    window_start_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<SubmissionCounter {self.key} count={self.count}>"
