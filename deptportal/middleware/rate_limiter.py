"""
Per-IP HTTP rate limits, attached to blueprints with Flask-Limiter.

Unrelated to the per-(user, form) submission limiter in
services/submission_limiter.py, which is a business rule and answers with
a validation error rather than a 429.
"""

import logging

logger = logging.getLogger(__name__)

BLUEPRINT_LIMITS = {
    "forms": "60/minute",
    "responses": "60/minute",
    "departments": "60/minute",
    "jobs": "10/minute",
}
EXEMPT_BLUEPRINTS = ("health",)


def init_rate_limits(app, limiter):
    """Apply ``BLUEPRINT_LIMITS``; skipped entirely under TESTING."""
    if app.config.get("TESTING"):
        logger.debug("HTTP rate limits disabled for testing")
        return

    for name, limit in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(name)
        if bp is not None:
            limiter.limit(limit)(bp)
    for name in EXEMPT_BLUEPRINTS:
        bp = app.blueprints.get(name)
        if bp is not None:
            limiter.exempt(bp)

    logger.info("HTTP rate limits applied", extra={"limits": BLUEPRINT_LIMITS})
