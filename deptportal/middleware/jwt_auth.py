"""
JWT auth middleware: parses the bearer token and sets ``g.principal``.

Every ``/api/v1/`` route except the skip list requires a valid access
token.  The principal's roles are the token's ``roles`` claim merged with
the role grants resolved from the database; admin comes from the ``admin``
claim, the account's ``is_admin`` flag or from holding one of
``ADMIN_ROLE_IDS``.
"""

import logging

import jwt as pyjwt
from flask import current_app, g, request

from deptportal.services.jwt_service import decode_access_token
from deptportal.services.role_gate import Principal, PrincipalResolver
from deptportal.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def principal_from_claims(payload: dict, resolver: PrincipalResolver | None = None) -> Principal:
    """Build the request principal from decoded token claims."""
    resolver = resolver or PrincipalResolver()
    user_id = str(payload["sub"])
    resolved = resolver.resolve(user_id)

    roles = frozenset(str(r) for r in payload.get("roles") or ()) | resolved.role_ids
    admin_roles = current_app.config.get("ADMIN_ROLE_IDS") or ()
    is_admin = bool(payload.get("admin")) or resolved.is_admin or not roles.isdisjoint(admin_roles)

    display_name = payload.get("name") or (resolved.display_name if resolved.resolved else None)
    return Principal(user_id=user_id, role_ids=roles, is_admin=is_admin, display_name=display_name)


def current_principal() -> Principal | None:
    return g.get("principal")


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.principal = None

        path = request.path
        if not path.startswith("/api/v1/") or request.method == "OPTIONS":
            return None
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return api_error(E.UNAUTHORIZED, "Authentication required")

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            return api_error(E.UNAUTHORIZED, "Token has expired")
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected bearer token: %s", exc)
            return api_error(E.UNAUTHORIZED, "Invalid token")

        g.principal = principal_from_claims(payload)
        return None
