"""
Administrative view of the account store: filtered listing, profile edits,
activation and role assignment. Deletion goes through AuthService.delete_user
so the protected-account rule lives in one place.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

from sqlalchemy import or_

from models.base_model import utcnow
from models.refresh_token import RefreshToken
from models.role import Role
from models.user import User, normalize_email
from services.errors import AlreadyExists, NotFound, best_effort
from services.tokens import TokenService

logger = logging.getLogger(__name__)


class UserDirectory:
    def __init__(self, storage, tokens: TokenService):
        self.storage = storage
        self.tokens = tokens

    def get(self, user_id: str) -> User:
        user = self.storage.users().filter(User.id == user_id).first()
        if user is None:
            raise NotFound("User not found")
        return user

    def list_users(self, *, page: int = 1, limit: int = 10, search: Optional[str] = None,
                   role: Optional[str] = None, is_active: Optional[bool] = None,
                   email_verified: Optional[bool] = None) -> Tuple[list, int]:
        query = self.storage.users()
        if search:
            like = f"%{search.lower()}%"
            query = query.filter(
                or_(
                    User.email.ilike(like),
                    User.first_name.ilike(like),
                    User.last_name.ilike(like),
                )
            )
        if role:
            query = query.filter(User.roles.any(Role.name == role))
        if is_active is not None:
            query = query.filter(User.is_active.is_(is_active))
        if email_verified is not None:
            query = query.filter(User.email_verified.is_(email_verified))

        total = query.count()
        rows = (
            query.order_by(User.created_at.desc(), User.email.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

    def update(self, user_id: str, **changes) -> User:
        user = self.get(user_id)
        email = changes.get("email")
        with self.storage.transaction() as session:
            if email and normalize_email(email) != user.email:
                email = normalize_email(email)
                taken = session.query(User.id).filter(User.email == email, User.id != user.id).first()
                if taken is not None:
                    raise AlreadyExists("Email is already taken")
                user.email = email
            for field in ("first_name", "last_name", "avatar"):
                if changes.get(field):
                    setattr(user, field, changes[field])
        logger.info("User %s updated", user.id)
        return user

    def set_active(self, user_id: str, is_active: bool) -> User:
        user = self.get(user_id)
        with self.storage.transaction():
            user.is_active = is_active
        logger.info("User %s %s", user.id, "activated" if is_active else "deactivated")
        if not is_active:
            # Access tokens stop working at the next request; refresh sessions go now
            with best_effort("revoke sessions of deactivated user"):
                self.tokens.revoke_all(user.id)
        return user

    def assign_roles(self, user_id: str, role_ids: Iterable[str]) -> User:
        """Replace the user's roles. Every id must exist."""
        role_ids = list(dict.fromkeys(role_ids))
        user = self.get(user_id)
        with self.storage.transaction() as session:
            roles = session.query(Role).filter(Role.id.in_(role_ids)).all() if role_ids else []
            if len(roles) != len(role_ids):
                raise NotFound("One or more roles do not exist")
            user.roles = roles
        logger.info("Roles of user %s set to %s", user.id, ", ".join(r.name for r in roles) or "none")
        return user

    def remove_role(self, user_id: str, role_id: str) -> User:
        user = self.get(user_id)
        with self.storage.transaction():
            user.roles = [role for role in user.roles if role.id != role_id]
        logger.info("Role %s removed from user %s", role_id, user.id)
        return user

    def sessions(self, user_id: str) -> list:
        """Live (unrevoked, unexpired) refresh sessions, newest first."""
        self.get(user_id)
        return (
            self.storage.get_session()
            .query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked.is_(False),
                RefreshToken.expires_at > utcnow(),
            )
            .order_by(RefreshToken.created_at.desc())
            .all()
        )

    def roles(self) -> list:
        return self.storage.get_session().query(Role).order_by(Role.name.asc()).all()
