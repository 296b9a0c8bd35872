"""Token lifecycle: refresh-before-use access token and broadcaster identity."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from obs_queue.core.errors import MissingTokenError, QueueError, UnauthorizedError
from obs_queue.services.twitch_api import TwitchAPIClient
from obs_queue.shared.models.auth import Broadcaster, Token
from obs_queue.shared.repositories.app_state import AppStateRepository

logger = logging.getLogger(__name__)

# Refresh when the token expires within this margin
REFRESH_MARGIN = timedelta(seconds=60)
# has_usable_token() requires at least this much lifetime left
USABLE_MARGIN = timedelta(seconds=30)


class TokenService:
    """Hands out a valid broadcaster access token, refreshing when close to expiry.

    Concurrent callers share a single refresh: the lock is taken only when a
    refresh looks necessary, and the stored token is re-read under the lock
    so a refresh finished by another task is reused.
    """

    def __init__(self, repo: AppStateRepository, twitch: TwitchAPIClient) -> None:
        self.repo = repo
        self.twitch = twitch
        self._refresh_lock = asyncio.Lock()

    async def get_valid_token(self) -> Token:
        token = await self.repo.get_token()
        if token is None:
            raise MissingTokenError("No stored token; authorize via /auth/start")
        if not token.expires_within(REFRESH_MARGIN, datetime.now(UTC)):
            return token

        async with self._refresh_lock:
            # Double-check after acquiring lock
            token = await self.repo.get_token()
            if token is None:
                raise MissingTokenError("Token was removed during refresh")
            if not token.expires_within(REFRESH_MARGIN, datetime.now(UTC)):
                return token

            try:
                new_token = await self.twitch.refresh_token(token.refresh_token)
            except QueueError as e:
                logger.warning(f"Token refresh failed: {e}")
                raise UnauthorizedError(f"Token refresh failed: {e}") from e

            await self.repo.upsert_token(new_token)
            logger.info("Refreshed Twitch access token")
            return new_token

    async def store_token(self, token: Token) -> None:
        await self.repo.upsert_token(token)

    async def logout(self) -> None:
        await self.repo.delete_token()
        logger.info("Stored token deleted")

    async def has_usable_token(self) -> bool:
        token = await self.repo.get_token()
        return token is not None and not token.expires_within(USABLE_MARGIN, datetime.now(UTC))

    async def get_broadcaster(self) -> Broadcaster | None:
        return await self.repo.get_broadcaster()

    async def resolve_broadcaster(self, access_token: str) -> Broadcaster:
        """Stored broadcaster identity, fetched from Helix on first use."""
        broadcaster = await self.repo.get_broadcaster()
        if broadcaster is not None:
            return broadcaster
        return await self.identify(access_token)

    async def identify(self, access_token: str) -> Broadcaster:
        """Fetch the token owner from Helix and store it as the broadcaster."""
        me = await self.twitch.get_self(access_token)
        broadcaster = Broadcaster(id=me.id, login=me.login)
        await self.repo.set_broadcaster(broadcaster)
        logger.info(f"Resolved broadcaster: {me.login} ({me.id})")
        return broadcaster
