"""
Department Portal
Job registry + runner.

There is no in-process clock.  An external cron calls
``flask run-job expiry_sweep`` (or ``POST /api/v1/jobs/<name>/run``) and
this module runs the job inside an app context and records the outcome on
its ScheduledJob row.

    @register_job("expiry_sweep", hour="*", minute="0", description="Hourly")
    def expiry_sweep(app): ...

A paused job (``is_enabled`` false) is skipped by the cron path; a manual
run passes ``force=True`` and always executes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from flask import Flask

from deptportal.models import db
from deptportal.models.scheduling import JobStatus, RunStatus, ScheduledJob

logger = logging.getLogger(__name__)

JobFn = Callable[[Flask], Any]


@dataclass(frozen=True)
class JobSpec:
    name: str
    fn: JobFn
    schedule: dict = field(default_factory=dict)

    @property
    def description(self) -> str:
        return (self.fn.__doc__ or f"Scheduled job: {self.name}").strip()


@dataclass
class JobRun:
    job_name: str
    status: str
    duration_ms: int = 0
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


_job_registry: dict[str, JobSpec] = {}


def register_job(name: str, *, hour: str = "0", minute: str = "0", description: str | None = None):
    """Register ``fn(app)`` under ``name`` with its default cron schedule."""
    schedule = {"hour": hour, "minute": minute, "description": description or f"{hour}:{minute}"}

    def decorator(fn: JobFn) -> JobFn:
        _job_registry[name] = JobSpec(name=name, fn=fn, schedule=schedule)
        return fn
    return decorator


def get_registered_jobs() -> dict[str, JobSpec]:
    return dict(_job_registry)


def _job_row(name: str) -> ScheduledJob | None:
    return ScheduledJob.query.filter_by(job_name=name).first()


class SchedulerService:
    """Runs registered jobs in their own app context and keeps run history."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("Scheduler ready: %s", ", ".join(sorted(_job_registry)) or "no jobs")

    @classmethod
    def ensure_jobs_registered(cls) -> list[str]:
        """Insert a ScheduledJob row for each registered job missing one.

        Returns the names that were created.
        """
        if cls._app is None:
            return []
        created = []
        with cls._app.app_context():
            for spec in _job_registry.values():
                if _job_row(spec.name) is not None:
                    continue
                db.session.add(ScheduledJob(
                    job_name=spec.name,
                    description=spec.description,
                    schedule_config=dict(spec.schedule),
                ))
                created.append(spec.name)
            if created:
                db.session.commit()
                logger.info("Registered job rows: %s", ", ".join(created))
        return created

    @classmethod
    def run_job(cls, job_name: str, force: bool = False) -> dict:
        """Run one job now.

        Returns a JobRun dict; ``status`` is ``success``, ``failed``,
        ``skipped`` (paused and not forced) or ``error`` (unknown job or
        scheduler not initialised).
        """
        spec = _job_registry.get(job_name)
        if spec is None:
            return JobRun(job_name, RunStatus.ERROR, error=f"Unknown job: {job_name}").to_dict()
        if cls._app is None:
            return JobRun(job_name, RunStatus.ERROR, error="Scheduler not initialized").to_dict()

        if not force:
            with cls._app.app_context():
                row = _job_row(job_name)
                paused = row is not None and not row.is_enabled
            if paused:
                logger.info("Job %s is paused, skipping", job_name)
                return JobRun(job_name, RunStatus.SKIPPED).to_dict()

        started = time.monotonic()
        run = JobRun(job_name, RunStatus.SUCCESS)
        try:
            with cls._app.app_context():
                run.result = spec.fn(cls._app)
        except Exception as exc:
            run.status = RunStatus.FAILED
            run.error = str(exc)
            logger.exception("Job %s failed", job_name)
        run.duration_ms = int((time.monotonic() - started) * 1000)

        cls._record(run)
        logger.info("Job %s finished: %s in %dms", job_name, run.status, run.duration_ms)
        return run.to_dict()

    @classmethod
    def _record(cls, run: JobRun) -> None:
        try:
            with cls._app.app_context():
                row = _job_row(run.job_name)
                if row is None:
                    return
                summary = run.result if isinstance(run.result, dict) else {"output": str(run.result)}
                row.record_run(run.status, run.duration_ms, summary, run.error)
                db.session.commit()
        except Exception:
            # run history must never mask the job's own outcome
            logger.exception("Could not record run of %s", run.job_name)

    @classmethod
    def list_jobs(cls) -> list[dict]:
        rows = {row.job_name: row for row in ScheduledJob.query.all()}
        return [
            {
                "job_name": name,
                "schedule": spec.schedule,
                "db_record": rows[name].to_dict() if name in rows else None,
            }
            for name, spec in sorted(_job_registry.items())
        ]

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        row = _job_row(job_name)
        return row.to_dict() if row else None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        row = _job_row(job_name)
        if row is None:
            return None
        row.is_enabled = enabled
        row.status = JobStatus.ACTIVE if enabled else JobStatus.PAUSED
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "paused")
        return row.to_dict()
