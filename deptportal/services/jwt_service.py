"""
Bearer tokens (PyJWT, HS256).

Production tokens come from the external identity provider and share
JWT_SECRET_KEY with this service; ``generate_access_token`` is used by
tests and local tooling.

Claims read by the auth middleware:
    sub     user id (required, non-empty)
    roles   list of role ids; ints are accepted and stringified
    admin   bool, optional
    name    display name, optional
    type    must be "access"
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
TOKEN_TYPE = "access"


def _secret() -> str:
    cfg = current_app.config
    return cfg.get("JWT_SECRET_KEY") or cfg["SECRET_KEY"]


def generate_access_token(user_id, roles=None, admin: bool = False, name: str | None = None) -> str:
    issued = datetime.now(timezone.utc)
    lifetime = timedelta(seconds=current_app.config.get("JWT_ACCESS_EXPIRES", 900))
    claims = {
        "sub": str(user_id),
        "roles": [str(role) for role in roles or ()],
        "admin": bool(admin),
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + lifetime,
        "jti": uuid.uuid4().hex,
    }
    if name:
        claims["name"] = name
    return jwt.encode(claims, _secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature, expiry, token type and subject.

    Raises ``jwt.ExpiredSignatureError`` or ``jwt.InvalidTokenError``.
    """
    claims = jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    if claims.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"Not an access token: {claims.get('type')!r}")
    if not claims.get("sub"):
        raise jwt.InvalidTokenError("Token has no subject")
    claims["roles"] = [str(role) for role in claims.get("roles") or ()]
    return claims
