"""
Authentication flows: registration, email verification, login, session
refresh/logout, and password reset/change.

Ordering rules that matter:
- login validates credentials before looking at is_active / email_verified,
  and every credential failure (unknown email, OAuth-only account, wrong
  password) is the same InvalidCredentials.
- forgot_password / resend_verification look identical to the caller whether
  or not the address belongs to an account.
- a password change or reset revokes every refresh session of the user.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Iterable, Optional, Tuple

from models.base_model import utcnow
from models.role import find_default_role
from models.user import User, normalize_email
from services.authz import flatten_permissions
from services.errors import (
    AccountDisabled,
    AlreadyExists,
    EmailNotVerified,
    Forbidden,
    InvalidCredentials,
    InvalidOrExpiredToken,
    NotFound,
    best_effort,
)
from services.tokens import ClientMeta, TokenPair, TokenService
from utils.security import (
    burn_password_check,
    generate_opaque_token,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(
        self,
        storage,
        tokens: TokenService,
        mailer,
        *,
        verification_expires: timedelta = timedelta(hours=24),
        reset_expires: timedelta = timedelta(hours=1),
        protected_emails: Iterable[str] = (),
    ):
        self.storage = storage
        self.tokens = tokens
        self.mailer = mailer
        self.verification_expires = verification_expires
        self.reset_expires = reset_expires
        self.protected_emails = {normalize_email(e) for e in protected_emails}

    def _find_by_email(self, email: str) -> Optional[User]:
        return self.storage.users().filter(User.email == normalize_email(email)).first()

    def _get_user(self, user_id: str) -> User:
        user = self.storage.users().filter(User.id == user_id).first()
        if user is None:
            raise NotFound("User not found")
        return user

    def register(self, email: str, password: str, first_name: Optional[str] = None,
                 last_name: Optional[str] = None) -> User:
        email = normalize_email(email)
        if self._find_by_email(email) is not None:
            raise AlreadyExists("User with this email already exists")

        with self.storage.transaction() as session:
            user = User(
                email=email,
                password_hash=hash_password(password),
                first_name=first_name,
                last_name=last_name,
                is_active=True,
                email_verified=False,
                email_verification_token=generate_opaque_token(),
                email_verification_expires=utcnow() + self.verification_expires,
            )
            default_role = find_default_role(session)
            if default_role is not None:
                user.roles.append(default_role)
            session.add(user)

        with best_effort("send verification email"):
            self.mailer.send_verification_email(user.email, user.first_name, user.email_verification_token)

        logger.info("User registered: %s", user.id)
        return user

    def verify_email(self, token: str) -> User:
        if not token:
            raise InvalidOrExpiredToken("Invalid or expired verification token")
        with self.storage.transaction():
            user = (
                self.storage.users()
                .filter(User.email_verification_token == token,
                        User.email_verification_expires > utcnow())
                .first()
            )
            if user is None:
                raise InvalidOrExpiredToken("Invalid or expired verification token")
            user.email_verified = True
            user.email_verification_token = None
            user.email_verification_expires = None

        with best_effort("send welcome email"):
            self.mailer.send_welcome_email(user.email, user.first_name)

        logger.info("Email verified for user %s", user.id)
        return user

    def resend_verification(self, email: str) -> None:
        user = self._find_by_email(email)
        if user is None or user.email_verified:
            return
        if not user.is_active:
            logger.info("Verification resend requested for disabled user %s; ignored", user.id)
            return

        with self.storage.transaction():
            user.email_verification_token = generate_opaque_token()
            user.email_verification_expires = utcnow() + self.verification_expires

        # The email is the whole point of this call, so delivery errors propagate
        self.mailer.send_verification_email(user.email, user.first_name, user.email_verification_token)
        logger.info("Verification email resent for user %s", user.id)

    def login(self, email: str, password: str,
              client_meta: Optional[ClientMeta] = None) -> Tuple[User, TokenPair]:
        user = self._find_by_email(email)
        if user is None or not user.password_hash:
            burn_password_check(password)
            raise InvalidCredentials()
        if not verify_password(password, user.password_hash):
            raise InvalidCredentials()

        if not user.is_active:
            raise AccountDisabled()
        if not user.email_verified:
            raise EmailNotVerified()

        with self.storage.transaction():
            user.last_login_at = utcnow()

        tokens = self.tokens.issue_pair(
            user.id, user.email, user.role_names, flatten_permissions(user), client_meta
        )
        logger.info("User logged in: %s", user.id)
        return user, tokens

    def refresh_tokens(self, refresh_token: str) -> TokenPair:
        return self.tokens.refresh(refresh_token)

    def logout(self, access_token: Optional[str], refresh_token: Optional[str]) -> None:
        if access_token:
            self.tokens.blacklist_access(access_token)
        if refresh_token:
            self.tokens.revoke(refresh_token)
        logger.info("User logged out")

    def logout_all(self, user_id: str, current_refresh_token: Optional[str] = None) -> int:
        revoked = self.tokens.revoke_all(user_id, except_token=current_refresh_token)
        logger.info("All sessions logged out for user %s", user_id)
        return revoked

    def forgot_password(self, email: str) -> None:
        user = self._find_by_email(email)
        if user is None:
            return
        if not user.is_active:
            logger.info("Password reset requested for disabled user %s; ignored", user.id)
            return

        with self.storage.transaction():
            user.password_reset_token = generate_opaque_token()
            user.password_reset_expires = utcnow() + self.reset_expires

        self.mailer.send_password_reset_email(user.email, user.first_name, user.password_reset_token)
        logger.info("Password reset email sent for user %s", user.id)

    def reset_password(self, token: str, new_password: str) -> None:
        if not token:
            raise InvalidOrExpiredToken("Invalid or expired reset token")
        with self.storage.transaction():
            user = (
                self.storage.users()
                .filter(User.password_reset_token == token,
                        User.password_reset_expires > utcnow())
                .first()
            )
            if user is None:
                raise InvalidOrExpiredToken("Invalid or expired reset token")
            user.password_hash = hash_password(new_password)
            user.password_reset_token = None
            user.password_reset_expires = None

        self._after_password_change(user)
        logger.info("Password reset for user %s", user.id)

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self._get_user(user_id)
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect")

        with self.storage.transaction():
            user.password_hash = hash_password(new_password)

        self._after_password_change(user)
        logger.info("Password changed for user %s", user.id)

    def _after_password_change(self, user: User) -> None:
        with best_effort("revoke sessions after password change"):
            self.tokens.revoke_all(user.id)
        with best_effort("send password changed email"):
            self.mailer.send_password_changed_email(user.email, user.first_name)

    def update_profile(self, user_id: str, **changes) -> User:
        user = self._get_user(user_id)
        email = changes.pop("email", None)
        with self.storage.transaction() as session:
            if email:
                email = normalize_email(email)
                taken = (
                    session.query(User.id)
                    .filter(User.email == email, User.id != user.id)
                    .first()
                )
                if taken is not None:
                    raise AlreadyExists("Email is already taken")
                user.email = email
            for field in ("first_name", "last_name", "avatar"):
                if changes.get(field):
                    setattr(user, field, changes[field])
        logger.info("Profile updated for user %s", user.id)
        return user

    def delete_account(self, user_id: str, password: str) -> None:
        user = self._get_user(user_id)
        if not verify_password(password, user.password_hash):
            raise InvalidCredentials("Password is incorrect")
        self.delete_user(user)
        logger.info("User %s deleted their account", user_id)

    def delete_user(self, user: User) -> None:
        """Hard delete; refresh sessions go with the row."""
        if normalize_email(user.email) in self.protected_emails:
            raise Forbidden("This account cannot be deleted")
        with self.storage.transaction() as session:
            session.delete(user)

