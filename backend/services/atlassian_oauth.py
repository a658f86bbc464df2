"""
Atlassian OAuth 2.0 (3LO) client.

Handles:
- Building the authorize URL the browser is sent to on connect
- Exchanging the callback code for an access/refresh token pair
- Refreshing an access token
- Listing the Jira Cloud sites a token can reach, and the profile email
- Signing and verifying the OAuth state parameter
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional
from urllib.parse import urlencode
from uuid import UUID

import httpx
from jose import JWTError, jwt

from config import get_jira_oauth_scope, settings, utcnow
from services.jira_errors import AuthError, RemoteApiError

logger = logging.getLogger(__name__)

ATLASSIAN_AUTHORIZE_URL = "https://auth.atlassian.com/authorize"
ATLASSIAN_TOKEN_URL = "https://auth.atlassian.com/oauth/token"
ATLASSIAN_RESOURCES_URL = "https://api.atlassian.com/oauth/token/accessible-resources"
ATLASSIAN_PROFILE_URL = "https://api.atlassian.com/me"

_STATE_AUDIENCE = "jira-oauth-state"


@dataclass(frozen=True)
class TokenSet:
    """Tokens returned by the Atlassian token endpoint."""

    access_token: str
    # Atlassian does not always rotate the refresh token
    refresh_token: Optional[str]
    expires_in: int

    @classmethod
    def from_response(cls, payload: dict[str, Any]) -> "TokenSet":
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or None,
            expires_in=int(payload.get("expires_in") or 3600),
        )


class AtlassianOAuthClient:
    """Client for the Atlassian authorization server."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the OAuth client.

        Args:
            client_id: Atlassian app client ID. Falls back to settings if not provided.
            client_secret: Atlassian app secret. Falls back to settings.
            redirect_uri: Callback URL registered with the app. Falls back to settings.
            transport: Optional httpx transport (tests pass a MockTransport).
        """
        self.client_id = client_id or settings.ATLASSIAN_CLIENT_ID
        self.client_secret = client_secret or settings.ATLASSIAN_CLIENT_SECRET
        self.redirect_uri = redirect_uri or settings.JIRA_OAUTH_REDIRECT_URI
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=settings.JIRA_HTTP_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    def _require_credentials(self) -> tuple[str, str]:
        if not self.client_id or not self.client_secret:
            raise ValueError("ATLASSIAN_CLIENT_ID and ATLASSIAN_CLIENT_SECRET are required")
        return self.client_id, self.client_secret

    def build_authorize_url(self, state: str) -> str:
        """URL of the Atlassian consent screen for this app."""
        if not self.client_id:
            raise ValueError("ATLASSIAN_CLIENT_ID is required")
        query = urlencode({
            "audience": "api.atlassian.com",
            "client_id": self.client_id,
            "scope": get_jira_oauth_scope(),
            "redirect_uri": self.redirect_uri,
            "state": state,
            "response_type": "code",
            "prompt": "consent",
        })
        return f"{ATLASSIAN_AUTHORIZE_URL}?{query}"

    async def _post_token(self, body: dict[str, str]) -> httpx.Response:
        async with self._client() as client:
            return await client.post(
                ATLASSIAN_TOKEN_URL,
                json=body,
                headers={"Content-Type": "application/json"},
            )

    async def exchange_code(self, code: str) -> TokenSet:
        """Exchange an authorization code for tokens."""
        client_id, client_secret = self._require_credentials()
        response = await self._post_token({
            "grant_type": "authorization_code",
            "client_id": client_id,
            "client_secret": client_secret,
            "code": code,
            "redirect_uri": self.redirect_uri,
        })
        if not response.is_success:
            logger.error(
                "[atlassian_oauth] Code exchange failed (%d): %s",
                response.status_code,
                response.text,
            )
            raise RemoteApiError(response.status_code, response.text)
        return TokenSet.from_response(response.json())

    async def refresh(self, refresh_token: str) -> TokenSet:
        """
        Exchange a refresh token for a new token pair.

        Raises:
            AuthError: The refresh token was rejected (revoked or expired).
            RemoteApiError: The auth server failed for another reason.
        """
        client_id, client_secret = self._require_credentials()
        response = await self._post_token({
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
        })
        if response.is_success:
            return TokenSet.from_response(response.json())

        logger.error(
            "[atlassian_oauth] Token refresh failed (%d): %s",
            response.status_code,
            response.text,
        )
        if 400 <= response.status_code < 500:
            raise AuthError("Jira authorization expired or was revoked. Please reconnect.")
        raise RemoteApiError(response.status_code, response.text)

    async def _get_json(self, url: str, access_token: str) -> Any:
        async with self._client() as client:
            response = await client.get(
                url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        if not response.is_success:
            raise RemoteApiError(response.status_code, response.text)
        return response.json()

    async def get_accessible_resources(self, access_token: str) -> list[dict[str, Any]]:
        """Jira Cloud sites this token can reach."""
        resources = await self._get_json(ATLASSIAN_RESOURCES_URL, access_token)
        return resources if isinstance(resources, list) else []

    async def get_profile(self, access_token: str) -> dict[str, Any]:
        """Atlassian account profile of the token's owner."""
        profile = await self._get_json(ATLASSIAN_PROFILE_URL, access_token)
        return profile if isinstance(profile, dict) else {}


# =============================================================================
# OAuth state
# =============================================================================


def create_oauth_state(user_id: UUID, ttl_seconds: Optional[int] = None) -> str:
    """Sign the user id into a short-lived state token for the authorize URL."""
    ttl = ttl_seconds if ttl_seconds is not None else settings.JIRA_OAUTH_STATE_TTL_SECONDS
    now = utcnow()
    claims = {
        "sub": str(user_id),
        "aud": _STATE_AUDIENCE,
        "iat": now,
        "exp": now + timedelta(seconds=ttl),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm="HS256")


def verify_oauth_state(state: str) -> Optional[UUID]:
    """Return the user id carried by a valid state token, or None."""
    try:
        claims = jwt.decode(
            state,
            settings.SECRET_KEY,
            algorithms=["HS256"],
            audience=_STATE_AUDIENCE,
        )
        return UUID(claims["sub"])
    except (JWTError, KeyError, ValueError) as exc:
        logger.warning("[atlassian_oauth] Rejected OAuth state: %s", exc)
        return None
