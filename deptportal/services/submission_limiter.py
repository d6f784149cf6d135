"""
Department Portal
Form submission rate limiter.

Rule per (user_id, form_id) key:
    - at least SUBMISSION_COOLDOWN_SECONDS between consecutive accepted
      submissions
    - at most SUBMISSION_MAX_PER_WINDOW accepted submissions per window;
      the window starts at the first submission and resets once more than
      SUBMISSION_WINDOW_SECONDS have elapsed

The algorithm is independent of where the counters live.  Two stores:
    - MemorySubmissionStore:   dict guarded by a threading.Lock, one process
    - DatabaseSubmissionStore: ``form_submission_counters`` rows, shared by
      every worker; the write joins the caller's transaction

Idle counters (window started more than two windows ago) are dropped by
``cleanup``.  For the memory store the limiter calls it itself, at most
once per DEFAULT_PRUNE_INTERVAL_SECONDS; database rows are left to the
``submission_counter_cleanup`` job.

Usage:
    from deptportal.services.submission_limiter import get_submission_limiter

    allowed, reason = get_submission_limiter().check(user_id, form_id)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from flask import Flask, current_app
from sqlalchemy.exc import IntegrityError

from deptportal.models import db
from deptportal.models.scheduling import SubmissionCounter
from deptportal.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 30
DEFAULT_MAX_PER_WINDOW = 5
DEFAULT_WINDOW_SECONDS = 3600
DEFAULT_PRUNE_INTERVAL_SECONDS = 1800


@dataclass
class SubmissionState:
    count: int
    last_submission_at: datetime
    window_start_at: datetime


# ── Stores ───────────────────────────────────────────────────────────────────


class MemorySubmissionStore:
    """Process-local counters.  Not shared between workers."""

    # nothing outside this process can reach the dict, so the limiter prunes it
    prunes_in_process = True

    def __init__(self) -> None:
        self._entries: dict[str, SubmissionState] = {}
        self.lock = threading.Lock()

    def get(self, key: str) -> SubmissionState | None:
        return self._entries.get(key)

    def put(self, key: str, state: SubmissionState) -> None:
        self._entries[key] = state

    def cleanup(self, cutoff: datetime) -> int:
        with self.lock:
            stale = [k for k, s in self._entries.items() if s.window_start_at < cutoff]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


class DatabaseSubmissionStore:
    """Counters in ``form_submission_counters``.

    ``get`` takes a row lock where the dialect supports it, so two workers
    checking the same key serialise on the row.  Nothing here commits.
    """

    # rows are pruned by the submission_counter_cleanup job
    prunes_in_process = False

    def __init__(self) -> None:
        # Serialises threads within this process; the row lock covers the rest.
        self.lock = threading.Lock()

    def get(self, key: str) -> SubmissionState | None:
        row = (
            SubmissionCounter.query.filter_by(key=key)
            .with_for_update()
            .first()
        )
        if row is None:
            return None
        return SubmissionState(
            count=row.count,
            last_submission_at=as_utc(row.last_submission_at),
            window_start_at=as_utc(row.window_start_at),
        )

    def put(self, key: str, state: SubmissionState) -> None:
        row = SubmissionCounter.query.filter_by(key=key).first()
        if row is not None:
            self._apply(row, state)
            db.session.flush()
            return

        try:
            with db.session.begin_nested():
                row = SubmissionCounter(key=key)
                self._apply(row, state)
                db.session.add(row)
        except IntegrityError:
            # another worker inserted the key first
            row = SubmissionCounter.query.filter_by(key=key).with_for_update().first()
            self._apply(row, state)
            db.session.flush()

    def cleanup(self, cutoff: datetime) -> int:
        removed = SubmissionCounter.query.filter(
            SubmissionCounter.window_start_at < cutoff
        ).delete(synchronize_session=False)
        return removed

    @staticmethod
    def _apply(row: SubmissionCounter, state: SubmissionState) -> None:
        row.count = state.count
        row.last_submission_at = state.last_submission_at
        row.window_start_at = state.window_start_at


# ── Limiter ──────────────────────────────────────────────────────────────────


class SubmissionRateLimiter:
    """Cooldown + windowed cap over a pluggable store."""

    def __init__(
        self,
        store=None,
        clock: Callable[[], datetime] = utcnow,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        max_per_window: int = DEFAULT_MAX_PER_WINDOW,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        prune_interval_seconds: int | None = DEFAULT_PRUNE_INTERVAL_SECONDS,
    ) -> None:
        self.store = store if store is not None else MemorySubmissionStore()
        self.clock = clock
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.max_per_window = max_per_window
        self.window = timedelta(seconds=window_seconds)
        self.prune_interval = timedelta(seconds=prune_interval_seconds) if prune_interval_seconds else None
        self._next_prune_at: datetime | None = None

    @staticmethod
    def key_for(user_id: str, form_id) -> str:
        return f"{user_id}:{form_id}"

    def check(self, user_id: str, form_id) -> tuple[bool, str | None]:
        """Check and, when allowed, record one submission.

        Returns ``(allowed, reason)``; ``reason`` is None when allowed.
        """
        key = self.key_for(user_id, form_id)
        now = as_utc(self.clock())

        self._maybe_prune(now)

        with self.store.lock:
            state = self.store.get(key)

            if state is None or now - state.window_start_at > self.window:
                self.store.put(key, SubmissionState(count=1, last_submission_at=now, window_start_at=now))
                return True, None

            if now - state.last_submission_at < self.cooldown:
                logger.info("Submission cooldown hit", extra={"user_id": user_id, "form_id": form_id})
                return False, (
                    "Submissions too frequent. Please wait at least "
                    f"{int(self.cooldown.total_seconds())} seconds between submissions."
                )

            if state.count >= self.max_per_window:
                logger.info("Submission window cap hit", extra={"user_id": user_id, "form_id": form_id})
                return False, (
                    f"Too many submissions. Maximum {self.max_per_window} submissions "
                    f"per {self._window_label()} allowed."
                )

            state.count += 1
            state.last_submission_at = now
            self.store.put(key, state)
            return True, None

    def cleanup(self, now: datetime | None = None) -> int:
        """Drop counters whose window started more than two windows ago."""
        now = as_utc(now or self.clock())
        removed = self.store.cleanup(now - self.window * 2)
        if removed:
            logger.info("Removed %d stale submission counters", removed)
        return removed

    def _maybe_prune(self, now: datetime) -> None:
        """Run ``cleanup`` at most once per prune interval for in-process stores."""
        if self.prune_interval is None or not getattr(self.store, "prunes_in_process", False):
            return
        if self._next_prune_at is None:
            self._next_prune_at = now + self.prune_interval
        elif now >= self._next_prune_at:
            self._next_prune_at = now + self.prune_interval
            self.cleanup(now)

    def _window_label(self) -> str:
        seconds = int(self.window.total_seconds())
        if seconds == 3600:
            return "hour"
        if seconds % 3600 == 0:
            return f"{seconds // 3600} hours"
        return f"{seconds} seconds"


# ── App wiring ───────────────────────────────────────────────────────────────


def build_submission_limiter(config) -> SubmissionRateLimiter:
    storage = (config.get("SUBMISSION_LIMIT_STORAGE") or "memory").lower()
    if storage == "database":
        store = DatabaseSubmissionStore()
    elif storage == "memory":
        store = MemorySubmissionStore()
    else:
        raise RuntimeError(f"Unknown SUBMISSION_LIMIT_STORAGE: {storage!r}")
    return SubmissionRateLimiter(
        store=store,
        cooldown_seconds=config.get("SUBMISSION_COOLDOWN_SECONDS", DEFAULT_COOLDOWN_SECONDS),
        max_per_window=config.get("SUBMISSION_MAX_PER_WINDOW", DEFAULT_MAX_PER_WINDOW),
        window_seconds=config.get("SUBMISSION_WINDOW_SECONDS", DEFAULT_WINDOW_SECONDS),
    )


def init_submission_limiter(app: Flask) -> SubmissionRateLimiter:
    limiter = build_submission_limiter(app.config)
    app.extensions["submission_limiter"] = limiter
    logger.debug("Submission limiter using %s", type(limiter.store).__name__)
    return limiter


def get_submission_limiter() -> SubmissionRateLimiter:
    return current_app.extensions["submission_limiter"]
