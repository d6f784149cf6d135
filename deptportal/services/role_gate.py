"""
Department Portal
Role authorization gate + principal resolution.

``has_required_role`` is the single check behind submit, view, review and
final-approval access.  Every caller goes through it so the three
capabilities cannot drift apart.

``PrincipalResolver`` reconciles the two identity domains (auth subject id
and Discord id) into a display name and a role set.  Unresolved ids get
fallback values instead of raising: listings and augmentation must never
fail because one account is missing.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import or_

from deptportal.models.auth import UserAccount, UserRoleGrant

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"


def has_required_role(user_roles: Iterable[str] | None, required_roles: Iterable[str] | None) -> bool:
    """True when ``required_roles`` is empty/None or shares a role with ``user_roles``."""
    if not required_roles:
        return True
    required = set(required_roles)
    if not required:
        return True
    return not required.isdisjoint(user_roles or ())


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as seen by the service layer."""

    user_id: str
    role_ids: frozenset[str] = field(default_factory=frozenset)
    is_admin: bool = False
    display_name: str | None = None

    def has_role(self, required_roles) -> bool:
        return has_required_role(self.role_ids, required_roles)


@dataclass(frozen=True)
class ResolvedPrincipal:
    """Normalised identity returned by the resolver."""

    user_id: str | None
    discord_id: str | None
    display_name: str
    role_ids: frozenset[str]
    resolved: bool = True
    is_admin: bool = False


class PrincipalResolver:
    """Resolve auth subject ids or Discord ids to a display name + role set."""

    def resolve(self, identifier: str | None) -> ResolvedPrincipal:
        if not identifier:
            return self._fallback(identifier)

        account = UserAccount.query.filter(
            or_(UserAccount.user_id == identifier, UserAccount.discord_id == identifier)
        ).first()
        if account is None:
            logger.debug("Principal %s not found, using fallback", identifier)
            return self._fallback(identifier)

        return ResolvedPrincipal(
            user_id=account.user_id,
            discord_id=account.discord_id,
            display_name=account.username or UNKNOWN_USER,
            role_ids=self._roles_for(account.discord_id),
            is_admin=bool(account.is_admin),
        )

    def resolve_many(self, identifiers: Iterable[str | None]) -> dict[str, ResolvedPrincipal]:
        """Resolve a batch of ids.  Keys are the ids as given."""
        wanted = {i for i in identifiers if i}
        if not wanted:
            return {}

        accounts = UserAccount.query.filter(
            or_(UserAccount.user_id.in_(wanted), UserAccount.discord_id.in_(wanted))
        ).all()
        discord_ids = [a.discord_id for a in accounts if a.discord_id]
        roles_by_discord: dict[str, set[str]] = {}
        if discord_ids:
            grants = UserRoleGrant.query.filter(UserRoleGrant.discord_id.in_(discord_ids)).all()
            for grant in grants:
                roles_by_discord.setdefault(grant.discord_id, set()).add(grant.role_id)

        by_id: dict[str, UserAccount] = {}
        for account in accounts:
            by_id[account.user_id] = account
            if account.discord_id:
                by_id[account.discord_id] = account

        result = {}
        for identifier in wanted:
            account = by_id.get(identifier)
            if account is None:
                result[identifier] = self._fallback(identifier)
                continue
            result[identifier] = ResolvedPrincipal(
                user_id=account.user_id,
                discord_id=account.discord_id,
                display_name=account.username or UNKNOWN_USER,
                role_ids=frozenset(roles_by_discord.get(account.discord_id, ())),
                is_admin=bool(account.is_admin),
            )
        return result

    def display_name(self, identifier: str | None) -> str:
        return self.resolve(identifier).display_name

    @staticmethod
    def _roles_for(discord_id: str | None) -> frozenset[str]:
        if not discord_id:
            return frozenset()
        rows = UserRoleGrant.query.filter_by(discord_id=discord_id).all()
        return frozenset(row.role_id for row in rows)

    @staticmethod
    def _fallback(identifier: str | None) -> ResolvedPrincipal:
        return ResolvedPrincipal(
            user_id=identifier,
            discord_id=None,
            display_name=UNKNOWN_USER,
            role_ids=frozenset(),
            resolved=False,
        )
