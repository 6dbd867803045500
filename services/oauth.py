"""
OAuth bridge for the two supported providers (Google, Facebook).

Providers turn an authorization-code callback into a normalized
OAuthProfile; OAuthService maps that profile onto a local account (link by
provider id or email, or create a verified account with the default role)
and then issues a token pair like any other login.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

import httpx
from sqlalchemy import case, or_

from models.base_model import utcnow
from models.role import find_default_role
from models.user import User, normalize_email
from services.authz import flatten_permissions
from services.errors import AccountDisabled, ExternalServiceFailure
from services.tokens import ClientMeta, TokenPair, TokenService

logger = logging.getLogger(__name__)

# provider name -> User column holding that provider's account id
PROVIDER_ID_FIELDS = {
    "google": "google_id",
    "facebook": "facebook_id",
}


@dataclass(frozen=True)
class OAuthProfile:
    provider: str
    provider_id: str
    email: Optional[str]
    first_name: str = ""
    last_name: str = ""
    avatar: Optional[str] = None


class OAuthService:
    def __init__(self, storage, tokens: TokenService):
        self.storage = storage
        self.tokens = tokens

    def resolve_user(self, profile: OAuthProfile) -> User:
        """Find (by provider id, then email) or create the local account."""
        id_field = PROVIDER_ID_FIELDS.get(profile.provider)
        if id_field is None:
            raise ValueError(f"Unsupported OAuth provider: {profile.provider!r}")
        id_column = getattr(User, id_field)
        email = normalize_email(profile.email) if profile.email else None

        criteria = [id_column == profile.provider_id]
        if email:
            criteria.append(User.email == email)

        with self.storage.transaction() as session:
            user = (
                self.storage.users()
                .filter(or_(*criteria))
                .order_by(case((id_column == profile.provider_id, 0), else_=1))
                .first()
            )
            if user is not None:
                if not user.is_active:
                    raise AccountDisabled()
                if not getattr(user, id_field):
                    setattr(user, id_field, profile.provider_id)
                user.avatar = profile.avatar or user.avatar
                user.last_login_at = utcnow()
            else:
                if not email:
                    raise ExternalServiceFailure(
                        f"{profile.provider} did not share an email address", service=profile.provider
                    )
                user = User(
                    email=email,
                    first_name=profile.first_name,
                    last_name=profile.last_name,
                    avatar=profile.avatar,
                    # Addresses asserted by the provider count as verified
                    email_verified=True,
                    is_active=True,
                    last_login_at=utcnow(),
                )
                setattr(user, id_field, profile.provider_id)
                default_role = find_default_role(session)
                if default_role is not None:
                    user.roles.append(default_role)
                session.add(user)
                logger.info("New user registered via %s: %s", profile.provider, user.id)
        return user

    def login(self, profile: OAuthProfile, client_meta: Optional[ClientMeta] = None) -> Tuple[User, TokenPair]:
        user = self.resolve_user(profile)
        tokens = self.tokens.issue_pair(
            user.id, user.email, user.role_names, flatten_permissions(user), client_meta
        )
        return user, tokens


class OAuthProvider:
    """Authorization-code flow against one provider."""

    name: str = ""
    authorize_endpoint: str = ""
    token_endpoint: str = ""
    profile_endpoint: str = ""
    scope: str = ""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str,
                 *, timeout: float = 10, transport: Optional[httpx.BaseTransport] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self.transport = transport

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": self.scope,
            "state": state,
        }
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    def fetch_profile(self, code: str) -> OAuthProfile:
        try:
            # One short-lived client per callback; closed before the profile is mapped
            with httpx.Client(timeout=self.timeout, transport=self.transport) as http:
                access_token = self._exchange_code(http, code)
                data = self._get_profile(http, access_token)
            return self.parse_profile(data)
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise ExternalServiceFailure(f"{self.name} sign-in failed", service=self.name) from exc

    def _exchange_code(self, http: httpx.Client, code: str) -> str:
        resp = http.post(
            self.token_endpoint,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
        )
        resp.raise_for_status()
        return resp.json()["access_token"]

    def _get_profile(self, http: httpx.Client, access_token: str) -> Dict[str, Any]:
        resp = http.get(
            self.profile_endpoint, headers={"Authorization": f"Bearer {access_token}"}
        )
        resp.raise_for_status()
        return resp.json()

    def parse_profile(self, data: Dict[str, Any]) -> OAuthProfile:
        raise NotImplementedError


class GoogleProvider(OAuthProvider):
    name = "google"
    authorize_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    profile_endpoint = "https://www.googleapis.com/oauth2/v2/userinfo"
    scope = "openid email profile"

    def parse_profile(self, data):
        return OAuthProfile(
            provider=self.name,
            provider_id=str(data["id"]),
            email=data.get("email"),
            first_name=data.get("given_name") or "",
            last_name=data.get("family_name") or "",
            avatar=data.get("picture"),
        )


class FacebookProvider(OAuthProvider):
    name = "facebook"
    authorize_endpoint = "https://www.facebook.com/v18.0/dialog/oauth"
    token_endpoint = "https://graph.facebook.com/v18.0/oauth/access_token"
    profile_endpoint = "https://graph.facebook.com/v18.0/me"
    scope = "email"

    def _get_profile(self, http, access_token):
        resp = http.get(
            self.profile_endpoint,
            params={"fields": "id,email,first_name,last_name,picture.type(large)"},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        resp.raise_for_status()
        return resp.json()

    def parse_profile(self, data):
        picture = (data.get("picture") or {}).get("data") or {}
        return OAuthProfile(
            provider=self.name,
            provider_id=str(data["id"]),
            email=data.get("email"),
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            avatar=picture.get("url"),
        )


def build_providers(config: Mapping[str, Any]) -> Dict[str, OAuthProvider]:
    """Providers whose client credentials are configured."""
    server_url = config.get("SERVER_URL", "http://localhost:8000").rstrip("/")
    timeout = float(config.get("OAUTH_HTTP_TIMEOUT", 10))
    providers: Dict[str, OAuthProvider] = {}
    if config.get("GOOGLE_CLIENT_ID") and config.get("GOOGLE_CLIENT_SECRET"):
        providers["google"] = GoogleProvider(
            config["GOOGLE_CLIENT_ID"],
            config["GOOGLE_CLIENT_SECRET"],
            f"{server_url}/api/v1/auth/google/callback",
            timeout=timeout,
        )
    if config.get("FACEBOOK_APP_ID") and config.get("FACEBOOK_APP_SECRET"):
        providers["facebook"] = FacebookProvider(
            config["FACEBOOK_APP_ID"],
            config["FACEBOOK_APP_SECRET"],
            f"{server_url}/api/v1/auth/facebook/callback",
            timeout=timeout,
        )
    return providers
