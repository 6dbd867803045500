"""
Token authority: mints, verifies, rotates and revokes signed token pairs.

- Access and refresh tokens are HS256 JWTs (PyJWT) signed with *different*
  secrets and carrying an explicit `type` claim, so neither kind can stand in
  for the other even if one secret leaks.
- Every refresh token is mirrored by a RefreshToken row; its `expires_at` is
  read back from the token's own `exp` claim.
- Refresh is one-shot: the old row is claimed with a conditional update
  (revoked false -> true, exactly one row affected) in the same transaction
  that stores the new row, so two concurrent redemptions cannot both succeed.
- Logout-side cleanup (revoke, blacklist) is best-effort.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

import jwt

from models.base_model import as_utc, utcnow
from models.blacklisted_token import BlacklistedToken
from models.refresh_token import RefreshToken
from services.authz import flatten_permissions
from services.errors import (
    AccountDisabled,
    ExpiredToken,
    InvalidToken,
    RefreshTokenReused,
    best_effort,
)
from utils.security import generate_jti

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class ClientMeta:
    """Client details captured at issuance for audit."""
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class TokenSettings:
    access_secret: str
    refresh_secret: str
    access_expires: timedelta = timedelta(minutes=15)
    refresh_expires: timedelta = timedelta(days=7)
    algorithm: str = "HS256"
    issuer: str = "auth-server"
    audience: str = "auth-client"
    reuse_revokes_all: bool = False

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "TokenSettings":
        return cls(
            access_secret=config["JWT_ACCESS_SECRET"],
            refresh_secret=config["JWT_REFRESH_SECRET"],
            access_expires=config["JWT_ACCESS_EXPIRES"],
            refresh_expires=config["JWT_REFRESH_EXPIRES"],
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
            issuer=config.get("JWT_ISSUER", "auth-server"),
            audience=config.get("JWT_AUDIENCE", "auth-client"),
            reuse_revokes_all=bool(config.get("REFRESH_REUSE_REVOKES_ALL", False)),
        )


def _exp_datetime(token: str) -> Optional[datetime]:
    """Read `exp` without verifying anything."""
    claims = jwt.decode(token, options={"verify_signature": False})
    exp = claims.get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


class TokenService:
    def __init__(self, storage, settings: TokenSettings, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.settings = settings
        self.clock = clock

    def _key(self, kind: str):
        if kind == ACCESS:
            return self.settings.access_secret, self.settings.access_expires
        if kind == REFRESH:
            return self.settings.refresh_secret, self.settings.refresh_expires
        raise ValueError(f"Unknown token type: {kind!r}")

    def mint(self, user_id: str, email: str, roles: Iterable[str], permissions: Iterable[str], kind: str) -> str:
        secret, lifetime = self._key(kind)
        now = self.clock()
        payload = {
            "userId": str(user_id),
            "email": email,
            "roles": list(roles),
            "permissions": list(permissions),
            "type": kind,
            "iss": self.settings.issuer,
            "aud": self.settings.audience,
            "iat": int(now.timestamp()),
            "exp": int((now + lifetime).timestamp()),
            # Keeps two tokens minted in the same second for the same claims distinct
            "jti": generate_jti(),
        }
        return jwt.encode(payload, secret, algorithm=self.settings.algorithm)

    def _verify(self, token: str, kind: str) -> Dict[str, Any]:
        secret, _ = self._key(kind)
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[self.settings.algorithm],
                audience=self.settings.audience,
                issuer=self.settings.issuer,
                options={"require": ["exp", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise ExpiredToken(f"{kind.capitalize()} token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidToken(f"Invalid {kind} token") from exc

        if claims.get("type") != kind:
            raise InvalidToken("Invalid token type")
        return claims

    def verify_access(self, token: str) -> Dict[str, Any]:
        """Signature, iss, aud, exp and type == access. Blacklist is NOT consulted."""
        return self._verify(token, ACCESS)

    def verify_refresh(self, token: str) -> Dict[str, Any]:
        return self._verify(token, REFRESH)

    def _issue(self, session, user_id, email, roles, permissions, client_meta: Optional[ClientMeta]) -> TokenPair:
        client_meta = client_meta or ClientMeta()
        access_token = self.mint(user_id, email, roles, permissions, ACCESS)
        refresh_token = self.mint(user_id, email, roles, permissions, REFRESH)
        session.add(
            RefreshToken(
                token=refresh_token,
                user_id=user_id,
                expires_at=_exp_datetime(refresh_token),
                revoked=False,
                user_agent=client_meta.user_agent,
                ip_address=client_meta.ip_address,
            )
        )
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    def issue_pair(self, user_id, email, roles, permissions, client_meta: Optional[ClientMeta] = None) -> TokenPair:
        """Mint access + refresh tokens and persist the refresh session row."""
        with self.storage.transaction() as session:
            return self._issue(session, user_id, email, list(roles), list(permissions), client_meta)

    def refresh(self, refresh_token: str) -> TokenPair:
        """
        Redeem a refresh token exactly once for a new pair built from the
        user's *current* roles and permissions.
        """
        self.verify_refresh(refresh_token)
        try:
            with self.storage.transaction() as session:
                row = (
                    session.query(RefreshToken)
                    .filter(RefreshToken.token == refresh_token)
                    .populate_existing()
                    .first()
                )
                if row is None:
                    raise InvalidToken("Refresh token is invalid or revoked")
                if row.revoked:
                    raise RefreshTokenReused(row.user_id)
                if row.is_expired(self.clock()):
                    raise ExpiredToken("Refresh token expired")

                user = self.storage.users().filter_by(id=row.user_id).one()
                if not user.is_active:
                    raise AccountDisabled("User account is disabled")

                claimed = (
                    session.query(RefreshToken)
                    .filter(RefreshToken.id == row.id, RefreshToken.revoked.is_(False))
                    .update({RefreshToken.revoked: True})
                )
                if claimed != 1:
                    raise RefreshTokenReused(row.user_id)

                pair = self._issue(
                    session,
                    user.id,
                    user.email,
                    user.role_names,
                    flatten_permissions(user),
                    ClientMeta(row.user_agent, row.ip_address),
                )
        except RefreshTokenReused as exc:
            self._on_reuse(exc.user_id)
            raise
        return pair

    def _on_reuse(self, user_id: str) -> None:
        logger.warning("Refresh token reuse detected for user %s", user_id)
        if self.settings.reuse_revokes_all:
            with best_effort("revoke session family after refresh token reuse"):
                self.revoke_all(user_id)

    def revoke(self, refresh_token: str) -> None:
        """Idempotent; storage errors are logged, never raised."""
        with best_effort("revoke refresh token"):
            with self.storage.transaction() as session:
                (
                    session.query(RefreshToken)
                    .filter(RefreshToken.token == refresh_token, RefreshToken.revoked.is_(False))
                    .update({RefreshToken.revoked: True})
                )

    def revoke_all(self, user_id: str, except_token: Optional[str] = None) -> int:
        """Revoke every live session of the user, optionally sparing one."""
        with self.storage.transaction() as session:
            query = session.query(RefreshToken).filter(
                RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False)
            )
            if except_token:
                query = query.filter(RefreshToken.token != except_token)
            revoked = query.update({RefreshToken.revoked: True})
        logger.info("Revoked %d session(s) for user %s", revoked, user_id)
        return revoked

    def blacklist_access(self, access_token: str) -> None:
        """Deny one of our access tokens until its own expiry. Best-effort."""
        try:
            # Expiry is not enforced here: the token may already be at the edge of expiry
            claims = jwt.decode(
                access_token,
                self.settings.access_secret,
                algorithms=[self.settings.algorithm],
                audience=self.settings.audience,
                issuer=self.settings.issuer,
                options={"verify_exp": False, "require": ["exp", "iss", "aud"]},
            )
        except jwt.InvalidTokenError:
            logger.info("Ignoring logout for an access token that failed verification")
            return
        if claims.get("type") != ACCESS:
            return
        expires_at = datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
        if expires_at <= self.clock():
            return

        with best_effort("blacklist access token"):
            with self.storage.transaction() as session:
                exists = (
                    session.query(BlacklistedToken.id)
                    .filter(BlacklistedToken.token == access_token)
                    .first()
                )
                if exists is None:
                    session.add(BlacklistedToken(token=access_token, expires_at=expires_at))

    def is_blacklisted(self, access_token: str) -> bool:
        row = (
            self.storage.get_session()
            .query(BlacklistedToken)
            .filter(BlacklistedToken.token == access_token)
            .first()
        )
        return row is not None and self.clock() < as_utc(row.expires_at)

    def sweep_expired(self) -> tuple[int, int]:
        """Delete dead refresh sessions and prunable blacklist rows."""
        now = self.clock()
        with self.storage.transaction() as session:
            refresh_count = (
                session.query(RefreshToken)
                .filter(RefreshToken.expires_at < now)
                .delete(synchronize_session=False)
            )
            blacklist_count = (
                session.query(BlacklistedToken)
                .filter(BlacklistedToken.expires_at <= now)
                .delete(synchronize_session=False)
            )
        logger.info(
            "Expired tokens cleaned up: %d refresh, %d blacklisted", refresh_count, blacklist_count
        )
        return refresh_count, blacklist_count
