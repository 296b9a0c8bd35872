"""Profile image lookup backed by the user_cache table."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from obs_queue.core.errors import QueueError
from obs_queue.services.token_service import TokenService
from obs_queue.services.twitch_api import TwitchAPIClient
from obs_queue.shared.models.profile import CachedUserProfile
from obs_queue.shared.repositories.user_cache import UserCacheRepository

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(
        self,
        repo: UserCacheRepository,
        twitch: TwitchAPIClient,
        tokens: TokenService,
        ttl_secs: int,
    ) -> None:
        self.repo = repo
        self.twitch = twitch
        self.tokens = tokens
        self.ttl = timedelta(seconds=ttl_secs)

    async def get_profile_image_url(self, user_id: str) -> str:
        """Avatar URL for *user_id*.

        Served from cache while fresh (a TTL of 0 always refetches). On an
        upstream failure a stale cached value is used if there is one.
        """
        now = datetime.now(UTC)
        cached = await self.repo.get(user_id)
        if cached is not None and self.ttl and now - cached.updated_at <= self.ttl:
            return cached.profile_image_url

        try:
            token = await self.tokens.get_valid_token()
            user = await self.twitch.get_user_by_id(token.access_token, user_id)
        except QueueError as e:
            if cached is None:
                raise
            logger.warning(f"Helix user fetch failed for {user_id}, using cached avatar: {e}")
            return cached.profile_image_url

        try:
            await self.repo.upsert(
                CachedUserProfile(
                    user_id=user.id,
                    user_login=user.login,
                    display_name=user.display_name,
                    profile_image_url=user.profile_image_url,
                    updated_at=now,
                )
            )
        except Exception as e:
            logger.warning(f"Failed to upsert user cache for {user_id}: {e}")

        return user.profile_image_url
