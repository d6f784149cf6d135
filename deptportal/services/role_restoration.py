"""
Department Portal
Role restoration hook.

When the expiry sweep returns a member to ``active`` (LOA over, suspension
over) the member's external roles need re-granting.  Role sync itself is
owned elsewhere; this module only defines the seam.

A restorer is any callable ``(member) -> None``.  The default one logs.
Install another with ``set_role_restorer(app, fn)``.
"""

from __future__ import annotations

import logging
from typing import Callable

from flask import Flask, current_app

logger = logging.getLogger(__name__)

RoleRestorer = Callable[[object], None]


def log_role_restoration(member) -> None:
    logger.info(
        "Role restoration requested",
        extra={
            "member_id": member.id,
            "department_id": member.department_id,
            "user_id": member.user_id,
        },
    )


def set_role_restorer(app: Flask, restorer: RoleRestorer) -> None:
    app.extensions["role_restorer"] = restorer


def get_role_restorer() -> RoleRestorer:
    return current_app.extensions.get("role_restorer", log_role_restoration)


def restore_roles(members, restorer: RoleRestorer | None = None) -> int:
    """Call the restorer for each member; failures are logged, never raised.

    Returns the number of members whose restoration failed.
    """
    restorer = restorer or get_role_restorer()
    failed = 0
    for member in members:
        try:
            restorer(member)
        except Exception:
            failed += 1
            logger.exception("Role restoration failed for member %s", member.id)
    return failed
