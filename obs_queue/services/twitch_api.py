"""Twitch API client service.

All calls use the broadcaster's user access token (stored in DB, refreshed
by ``TokenService``). Failures raise instead of returning sentinels:

- 401 -> ``UnauthorizedError`` (token revoked or expired)
- 429, 5xx, transport errors, timeouts -> ``TwitchAPIError``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from obs_queue.core.config import BROADCASTER_SCOPES, HELIX_BASE, OAUTH_BASE
from obs_queue.core.errors import TwitchAPIError, UnauthorizedError
from obs_queue.shared.models.auth import Token

logger = logging.getLogger(__name__)

# Upper bound on pages followed when listing EventSub subscriptions
MAX_SUBSCRIPTION_PAGES = 50


@dataclass
class HelixUser:
    """Subset of a Helix /users record."""

    id: str
    login: str
    display_name: str
    profile_image_url: str


@dataclass
class HelixReward:
    """Custom channel point reward."""

    id: str
    title: str
    cost: int
    is_enabled: bool


class TwitchAPIClient:
    """Client for the Twitch OAuth and Helix APIs.

    Manages a shared httpx client for connection reuse. Pass *transport* to
    route requests elsewhere (e.g. ``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url

        # One pooled HTTP client for OAuth and Helix
        self._http = httpx.AsyncClient(timeout=10.0, transport=transport)

    async def close(self) -> None:
        """Close the shared HTTP client. Call on app shutdown."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _user_headers(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Client-Id": self.client_id}

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to ``TwitchAPIError``."""
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TwitchAPIError(f"{method} {url} timed out") from e
        except httpx.HTTPError as e:
            raise TwitchAPIError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, what: str) -> None:
        status = response.status_code
        if response.is_success:
            return
        if status == 401:
            raise UnauthorizedError(f"{what}: unauthorized")
        if status == 429:
            raise TwitchAPIError(f"{what}: rate limited", status_code=status)
        raise TwitchAPIError(f"{what}: HTTP {status} {response.text[:200]}", status_code=status)

    async def _helix(
        self,
        method: str,
        path: str,
        access_token: str,
        **kwargs: Any,
    ) -> httpx.Response:
        response = await self._send(
            method, f"{HELIX_BASE}/{path}", headers=self._user_headers(access_token), **kwargs
        )
        self._raise_for_status(response, f"Helix {method} /{path}")
        return response

    @staticmethod
    def _parse_token(data: dict[str, Any], fallback_refresh: str = "") -> Token:
        access_token = data.get("access_token")
        if not access_token:
            raise TwitchAPIError("No access_token in token response")
        expires_in = int(data.get("expires_in", 0))
        return Token(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or fallback_refresh,
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
        )

    @staticmethod
    def _first_user(data: dict[str, Any], what: str) -> HelixUser:
        users = data.get("data") or []
        if not users:
            raise TwitchAPIError(f"{what} returned empty data")
        u = users[0]
        return HelixUser(
            id=u["id"],
            login=u.get("login", ""),
            display_name=u.get("display_name", ""),
            profile_image_url=u.get("profile_image_url", ""),
        )

    # ------------------------------------------------------------------
    # OAuth flow
    # ------------------------------------------------------------------

    def generate_oauth_url(self, state: str) -> str:
        """Generate Twitch OAuth authorization URL."""
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": self.redirect_url,
                "response_type": "code",
                "scope": " ".join(BROADCASTER_SCOPES),
                "state": state,
            }
        )
        return f"{OAUTH_BASE}/authorize?{query}"

    async def exchange_code(self, code: str) -> Token:
        """Exchange an OAuth authorization code for a user token."""
        response = await self._send(
            "POST",
            f"{OAUTH_BASE}/token",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_url,
            },
        )
        self._raise_for_status(response, "Token exchange")
        return self._parse_token(response.json())

    async def refresh_token(self, refresh_token: str) -> Token:
        """Refresh the user access token.

        Twitch may rotate the refresh token; the old one is kept if the
        response omits it.
        """
        response = await self._send(
            "POST",
            f"{OAUTH_BASE}/token",
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )
        self._raise_for_status(response, "Token refresh")
        logger.debug("Successfully refreshed user access token")
        return self._parse_token(response.json(), fallback_refresh=refresh_token)

    # ------------------------------------------------------------------
    # User data
    # ------------------------------------------------------------------

    async def get_self(self, access_token: str) -> HelixUser:
        """The account that owns *access_token*."""
        response = await self._helix("GET", "users", access_token)
        return self._first_user(response.json(), "Helix /users")

    async def get_user_by_id(self, access_token: str, user_id: str) -> HelixUser:
        response = await self._helix("GET", "users", access_token, params={"id": user_id})
        return self._first_user(response.json(), f"Helix /users?id={user_id}")

    # ------------------------------------------------------------------
    # Channel Points
    # ------------------------------------------------------------------

    async def get_custom_rewards(self, access_token: str, broadcaster_id: str) -> list[HelixReward]:
        response = await self._helix(
            "GET",
            "channel_points/custom_rewards",
            access_token,
            params={"broadcaster_id": broadcaster_id, "only_manageable_rewards": "false"},
        )
        return [
            HelixReward(
                id=r["id"],
                title=r.get("title", ""),
                cost=int(r.get("cost", 0)),
                is_enabled=bool(r.get("is_enabled", False)),
            )
            for r in response.json().get("data", [])
        ]

    # ------------------------------------------------------------------
    # EventSub subscriptions
    # ------------------------------------------------------------------

    async def list_eventsub_subscriptions(self, access_token: str, sub_type: str) -> list[dict]:
        """All subscriptions of *sub_type*, following pagination cursors."""
        subscriptions: list[dict] = []
        cursor: str | None = None

        for _ in range(MAX_SUBSCRIPTION_PAGES):
            params = {"type": sub_type}
            if cursor:
                params["after"] = cursor
            response = await self._helix(
                "GET", "eventsub/subscriptions", access_token, params=params
            )
            body = response.json()
            subscriptions.extend(body.get("data", []))
            cursor = (body.get("pagination") or {}).get("cursor")
            if not cursor:
                break

        return subscriptions

    async def delete_eventsub_subscription(self, access_token: str, subscription_id: str) -> None:
        """Delete a subscription. Already-gone (404) counts as success."""
        response = await self._send(
            "DELETE",
            f"{HELIX_BASE}/eventsub/subscriptions",
            headers=self._user_headers(access_token),
            params={"id": subscription_id},
        )
        if response.status_code == 404:
            return
        self._raise_for_status(response, "Helix DELETE /eventsub/subscriptions")

    async def create_eventsub_subscription(
        self,
        access_token: str,
        sub_type: str,
        version: str,
        condition: dict[str, str],
        session_id: str,
    ) -> dict:
        """Create a websocket-transport subscription bound to *session_id*."""
        response = await self._helix(
            "POST",
            "eventsub/subscriptions",
            access_token,
            json={
                "type": sub_type,
                "version": version,
                "condition": condition,
                "transport": {"method": "websocket", "session_id": session_id},
            },
        )
        data = response.json().get("data") or [{}]
        return data[0]
