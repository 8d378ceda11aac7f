"""OAuth2 authorization-code login against an external provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from .errors import UsernameTaken
from .records import UserRecord
from .store import Store

logger = logging.getLogger("uvicorn.error")

HTTP_TIMEOUT = 10.0


class OAuthError(Exception):
    """Raised when the provider handshake fails."""


@dataclass(frozen=True)
class OAuthProvider:
    name: str
    client_id: str
    client_secret: str
    authorize_url: str
    token_url: str
    profile_url: str
    callback_url: str
    scope: str = "public"
    transport: httpx.BaseTransport | None = field(default=None, compare=False)

    def authorization_redirect(self, state: str) -> str:
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": self.callback_url,
                "response_type": "code",
                "scope": self.scope,
                "state": state,
            }
        )
        return f"{self.authorize_url}?{query}"

    def _client(self) -> httpx.Client:
        return httpx.Client(transport=self.transport, timeout=HTTP_TIMEOUT)

    def exchange_code(self, code: str) -> str:
        """Trade an authorization code for an access token."""
        data = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": self.callback_url,
        }
        try:
            with self._client() as client:
                response = client.post(
                    self.token_url, data=data, headers={"Accept": "application/json"}
                )
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise OAuthError(f"Token exchange with {self.name} failed") from exc
        token = payload.get("access_token")
        if not token:
            raise OAuthError(f"{self.name} returned no access token")
        return token

    def fetch_profile(self, access_token: str) -> dict[str, Any]:
        try:
            with self._client() as client:
                response = client.get(
                    self.profile_url,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                response.raise_for_status()
                profile = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise OAuthError(f"Profile lookup with {self.name} failed") from exc
        if not isinstance(profile, dict) or profile.get("id") is None or not profile.get("login"):
            raise OAuthError(f"{self.name} returned an incomplete profile")
        return profile


def providers_from_settings(app_settings) -> dict[str, OAuthProvider]:
    if not app_settings.oauth_enabled:
        return {}
    provider = OAuthProvider(
        name=app_settings.oauth_provider,
        client_id=app_settings.oauth_client_id,
        client_secret=app_settings.oauth_client_secret,
        authorize_url=app_settings.oauth_authorize_url,
        token_url=app_settings.oauth_token_url,
        profile_url=app_settings.oauth_profile_url,
        callback_url=app_settings.oauth_callback_url,
        scope=app_settings.oauth_scope,
    )
    return {provider.name: provider}


def link_or_create_user(store: Store, profile: dict[str, Any]) -> UserRecord:
    """Return the user linked to ``profile``, creating one on first login."""
    external_id = str(profile["id"])
    user = store.get_user_by_external_id(external_id)
    if user is not None:
        logger.info("Found existing OAuth user %s", user.username)
        return user

    login = str(profile["login"]).strip()
    fields = {
        "display_name": profile.get("displayname") or login,
        "email": profile.get("email"),
        "external_id": external_id,
        "password": None,
        "role": "user",
    }
    try:
        user = store.create_user(username=login, **fields)
    except UsernameTaken:
        user = store.create_user(username=f"{login}-{external_id}", **fields)
    logger.info("Created new user from OAuth: %s", user.username)
    return user
