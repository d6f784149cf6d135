"""Shared utility functions used by services and blueprints.

get_or_404:      tuple-return lookup for blueprints (NOT abort)
as_utc:          normalise datetimes read back from SQLite (naive) to aware UTC
parse_datetime:  ISO-8601 request input → aware UTC datetime (raises ValueError)
utcnow:          the default time source
"""
from datetime import datetime, timezone

from deptportal.models import db
from deptportal.utils.errors import E, api_error


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, api_error 404 tuple)

        obj, err = get_or_404(Member, member_id)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, api_error(E.NOT_FOUND, f"{label} not found")
    return obj, None


def as_utc(value):
    """Return ``value`` as an aware UTC datetime.

    SQLite drops tzinfo on ``DateTime(timezone=True)`` columns, so anything
    read back from the database is normalised here before comparisons.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value):
    """Parse an ISO-8601 timestamp, raising ValueError on bad input.

    Naive input is taken to be UTC.  A trailing ``Z`` is accepted.
    """
    if value is None or value == "":
        raise ValueError("Timestamp is required")
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid timestamp: {value!r}. Use ISO-8601.") from exc
    return as_utc(parsed)
