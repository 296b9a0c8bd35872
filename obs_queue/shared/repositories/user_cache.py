"""Repository for the user_cache table."""

from __future__ import annotations

import asyncpg

from obs_queue.shared.models.profile import CachedUserProfile

_COLUMNS = "user_id, user_login, display_name, profile_image_url, updated_at"


class UserCacheRepository:
    """Pure SQL operations for cached Twitch profiles."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get(self, user_id: str) -> CachedUserProfile | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM user_cache WHERE user_id = $1", user_id
            )
            return CachedUserProfile(**dict(row)) if row else None

    async def upsert(self, profile: CachedUserProfile) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO user_cache ({_COLUMNS})
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (user_id) DO UPDATE SET
                    user_login        = EXCLUDED.user_login,
                    display_name      = EXCLUDED.display_name,
                    profile_image_url = EXCLUDED.profile_image_url,
                    updated_at        = EXCLUDED.updated_at
                """,
                profile.user_id,
                profile.user_login,
                profile.display_name,
                profile.profile_image_url,
                profile.updated_at,
            )
