"""Repository for oauth_tokens and app_kv tables."""

from __future__ import annotations

import logging

import asyncpg

from obs_queue.shared.cache import AsyncTTLCache, cached
from obs_queue.shared.models.auth import Broadcaster, Token

logger = logging.getLogger(__name__)

# Memory-first reads; every write in this process writes through.
_token_cache = AsyncTTLCache(maxsize=1, ttl=300)
_kv_cache = AsyncTTLCache(maxsize=16, ttl=300)

_TOKEN_KEY = "token"

BROADCASTER_ID_KEY = "broadcaster_id"
BROADCASTER_LOGIN_KEY = "broadcaster_login"


class AppStateRepository:
    """Pure SQL operations for the stored token and the KV table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    # ==================== Token Operations ====================

    @cached(cache=_token_cache, key_func=lambda self: _TOKEN_KEY)
    async def get_token(self) -> Token | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT access_token, refresh_token, expires_at FROM oauth_tokens WHERE id = 1"
            )
            return Token(**dict(row)) if row else None

    async def upsert_token(self, token: Token) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO oauth_tokens (id, access_token, refresh_token, expires_at)
                VALUES (1, $1, $2, $3)
                ON CONFLICT (id) DO UPDATE SET
                    access_token  = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    expires_at    = EXCLUDED.expires_at,
                    updated_at    = NOW()
                """,
                token.access_token,
                token.refresh_token,
                token.expires_at,
            )
        _token_cache.set(_TOKEN_KEY, token)

    async def delete_token(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute("DELETE FROM oauth_tokens WHERE id = 1")
        _token_cache.set(_TOKEN_KEY, None)

    # ==================== KV Operations ====================

    @cached(cache=_kv_cache, key_func=lambda self, key: f"kv:{key}")
    async def get_kv(self, key: str) -> str | None:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT value FROM app_kv WHERE key = $1", key)

    async def set_kv(self, key: str, value: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO app_kv (key, value) VALUES ($1, $2)
                ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
                """,
                key,
                value,
            )
        _kv_cache.set(f"kv:{key}", value)

    async def get_broadcaster(self) -> Broadcaster | None:
        broadcaster_id = await self.get_kv(BROADCASTER_ID_KEY)
        if not broadcaster_id:
            return None
        login = await self.get_kv(BROADCASTER_LOGIN_KEY)
        return Broadcaster(id=broadcaster_id, login=login or "")

    async def set_broadcaster(self, broadcaster: Broadcaster) -> None:
        """Store id and login together."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(
                    """
                    INSERT INTO app_kv (key, value) VALUES ($1, $2)
                    ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
                    """,
                    [
                        (BROADCASTER_ID_KEY, broadcaster.id),
                        (BROADCASTER_LOGIN_KEY, broadcaster.login),
                    ],
                )
        _kv_cache.set(f"kv:{BROADCASTER_ID_KEY}", broadcaster.id)
        _kv_cache.set(f"kv:{BROADCASTER_LOGIN_KEY}", broadcaster.login)
