"""
Auth models: user accounts and external role grants.

Two identity domains meet here:
    - the auth provider's subject id (``UserAccount.user_id``), which is
      what bearer tokens carry and what form responses record, and
    - the Discord id (``UserAccount.discord_id``), which is what role
      grants synced from Discord are keyed by.

The PrincipalResolver in ``deptportal.services.role_gate`` joins the two.
"""

from datetime import datetime, timezone

from deptportal.models import db


# ═══════════════════════════════════════════════════════════════
# 1. USER ACCOUNTS
# ═══════════════════════════════════════════════════════════════
class UserAccount(db.Model):
    __tablename__ = "user_accounts"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), unique=True, nullable=False,
                        comment="Auth subject id carried in bearer tokens")
    discord_id = db.Column(db.String(30), unique=True, nullable=True)
    username = db.Column(db.String(150), nullable=True)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "discord_id": self.discord_id,
            "username": self.username,
            "is_admin": self.is_admin,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<UserAccount {self.user_id} discord={self.discord_id}>"


# ═══════════════════════════════════════════════════════════════
# 2. ROLE GRANTS (synced from Discord servers)
# ═══════════════════════════════════════════════════════════════
class UserRoleGrant(db.Model):
    __tablename__ = "user_role_grants"
    __table_args__ = (
        db.UniqueConstraint("discord_id", "server_id", "role_id", name="uq_role_grant"),
    )

    id = db.Column(db.Integer, primary_key=True)
    discord_id = db.Column(db.String(30), nullable=False, index=True)
    server_id = db.Column(db.String(30), nullable=False)
    role_id = db.Column(db.String(30), nullable=False)
    granted_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "discord_id": self.discord_id,
            "server_id": self.server_id,
            "role_id": self.role_id,
            "granted_at": self.granted_at.isoformat() if self.granted_at else None,
        }
