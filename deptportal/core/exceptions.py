"""
Platform-wide exception hierarchy.

Services raise these; blueprints register one handler per type and map
them to HTTP status codes.  Every operation fails synchronously with one
of the four kinds below, never with a silent no-op.

Usage:
    from deptportal.core.exceptions import NotFoundError, BadRequestError

    raise NotFoundError(resource="Form", resource_id=42)
    raise BadRequestError("Response is not pending review")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist or is soft-deleted.

    Args:
        resource: Human-readable entity name (e.g. "Form", "FormResponse").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ForbiddenError(Exception):
    """Raised when the principal's roles do not pass the role gate.

    Args:
        message: Human-readable explanation.
        user_id: The principal that was refused.  Logged, not returned.
    """

    def __init__(self, message: str, user_id: str | None = None) -> None:
        self.user_id = user_id
        super().__init__(message)


class BadRequestError(Exception):
    """Raised when input or the current state does not allow the operation.

    Covers invalid state transitions, duplicate reviewer decisions,
    invalid reorder indices, moderation-blocked content and exceeded
    submission limits.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional structured payload (violations, conflicts, ...).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InternalError(Exception):
    """Raised when a persistence write affected no row.

    This is a broken invariant, not a user-facing validation failure.
    """
