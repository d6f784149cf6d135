"""JSON error bodies and the service-exception → HTTP mapping.

Every error leaves the API as ``{"error": message, "code": E.*}`` plus
``details`` when there is structured context (violations, conflicts).

    from deptportal.utils.errors import api_error, register_error_handlers, E

    return api_error(E.NOT_FOUND, "Form not found")
    register_error_handlers(form_bp)
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from deptportal.core.exceptions import (
    BadRequestError,
    ForbiddenError,
    InternalError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


class E:
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    BAD_REQUEST = "ERR_BAD_REQUEST"
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    INTERNAL = "ERR_INTERNAL"


_STATUS_BY_CODE = {
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """``(jsonify({"error", "code", "details"?}), status)``.

    ``status`` defaults from the code; validation codes are 400.
    """
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)


def register_error_handlers(bp) -> None:
    """Map the service exception hierarchy onto a blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        logger.info("Forbidden: %s (user=%s)", error, error.user_id)
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(BadRequestError)
    def _handle_bad_request(error: BadRequestError):
        return api_error(E.BAD_REQUEST, str(error), details=error.details)

    @bp.errorhandler(InternalError)
    def _handle_internal(error: InternalError):
        logger.error("Invariant violation in %s: %s", request.endpoint, error)
        return api_error(E.INTERNAL, "Internal server error")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
