"""asyncpg pool shared by the EventSub session, the ledger sweeper and HTTP handlers.

Queue mutations take their atomicity from transactions on this pool, so
every pooled connection runs with a server-side statement timeout.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)

_CONNECT_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError, TimeoutError)


@dataclass
class PoolConfig:
    min_size: int = 1
    max_size: int = 5
    acquire_timeout: float = 5.0
    statement_timeout: float = 15.0
    idle_lifetime: float = 300.0
    connect_attempts: int = 3
    backoff_base: float = 3.0
    ssl: str | None = None  # "require" for hosted Postgres


class DatabaseManager:
    """Owns the pool from startup to shutdown."""

    def __init__(self, database_url: str, config: PoolConfig | None = None):
        self.database_url = database_url
        self.config = config or PoolConfig()
        self._pool: asyncpg.Pool | None = None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("DatabaseManager.connect() has not completed")
        return self._pool

    async def _on_new_connection(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            f"SET statement_timeout = {int(self.config.statement_timeout * 1000)}"
        )

    async def _open_pool(self) -> asyncpg.Pool:
        cfg = self.config
        options: dict[str, Any] = {
            "min_size": cfg.min_size,
            "max_size": cfg.max_size,
            "timeout": cfg.acquire_timeout,
            "command_timeout": cfg.statement_timeout,
            "max_inactive_connection_lifetime": cfg.idle_lifetime,
            "init": self._on_new_connection,
        }
        if cfg.ssl:
            options["ssl"] = cfg.ssl

        pool = await asyncpg.create_pool(self.database_url, **options)
        try:
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except BaseException:
            await pool.close()
            raise
        return pool

    async def connect(self) -> None:
        """Open the pool, backing off exponentially between failed attempts."""
        if self._pool is not None:
            logger.warning("connect() called twice, keeping the existing pool")
            return

        cfg = self.config
        for attempt in range(1, cfg.connect_attempts + 1):
            try:
                self._pool = await self._open_pool()
            except _CONNECT_ERRORS as e:
                reason = f"{type(e).__name__}: {e or repr(e)}"
                if attempt == cfg.connect_attempts:
                    logger.error(f"Giving up on database after {attempt} attempts ({reason})")
                    raise
                delay = cfg.backoff_base * 2 ** (attempt - 1)
                logger.warning(
                    f"Database attempt {attempt}/{cfg.connect_attempts} failed ({reason}), "
                    f"next try in {delay:.0f}s"
                )
                await asyncio.sleep(delay)
            else:
                logger.info(f"Database ready (pool {cfg.min_size}-{cfg.max_size})")
                return

    async def disconnect(self) -> None:
        pool, self._pool = self._pool, None
        if pool is None:
            return
        try:
            await pool.close()
        except Exception:
            logger.exception("Closing the database pool failed")
        else:
            logger.info("Database pool closed")

    async def check_health(self) -> bool:
        """True when a pooled connection answers ``SELECT 1`` within two seconds."""
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire(timeout=2.0) as conn:
                await conn.fetchval("SELECT 1")
        except Exception:
            return False
        return True
