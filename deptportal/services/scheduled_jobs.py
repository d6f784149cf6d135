"""
Department Portal
Scheduled jobs.

    expiry_sweep                hourly   revert expired LOAs, warnings, suspensions
    submission_counter_cleanup  03:00    drop idle submission counter rows (database store)

Importing this module registers the jobs; create_app does that.
"""

from __future__ import annotations

import logging
from typing import Any

from deptportal.models import db
from deptportal.services.expiry_sweep import run_expiry_sweep
from deptportal.services.scheduler_service import register_job
from deptportal.services.submission_limiter import get_submission_limiter

logger = logging.getLogger(__name__)


@register_job("expiry_sweep", hour="*", minute="0", description="Hourly")
def expiry_sweep(app) -> dict[str, Any]:
    """Revert expired leaves of absence, warnings and suspensions."""
    return run_expiry_sweep()


@register_job("submission_counter_cleanup", hour="3", minute="0", description="Daily at 03:00")
def submission_counter_cleanup(app) -> dict[str, Any]:
    """Drop submission rate-limit counters idle for more than two windows."""
    removed = get_submission_limiter().cleanup()
    db.session.commit()
    logger.info("Submission counter cleanup removed %d entries", removed)
    return {"removed": removed}
