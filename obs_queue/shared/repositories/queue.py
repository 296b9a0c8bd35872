"""Repository for queue_items and participations tables."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

import asyncpg

from obs_queue.shared.models.queue import QueueEntry

logger = logging.getLogger(__name__)

_ENTRY_COLUMNS = (
    "id, user_id, user_login, display_name, profile_image_url, enqueued_at, position"
)


async def _participation_counts(
    conn: asyncpg.Connection, user_ids: list[str], since: datetime
) -> dict[str, int]:
    if not user_ids:
        return {}
    rows = await conn.fetch(
        "SELECT user_id, COUNT(*) AS c FROM participations "
        "WHERE user_id = ANY($1::text[]) AND completed_at >= $2 "
        "GROUP BY user_id",
        user_ids,
        since,
    )
    return {row["user_id"]: row["c"] for row in rows}


class QueueTransaction:
    """SQL operations bound to one open transaction.

    Obtained from ``QueueRepository.transaction()``; every statement runs on
    the same connection, and the queue table is write-locked for the whole
    transaction, so read-decide-write sequences see no concurrent mutation.
    """

    def __init__(self, conn: asyncpg.Connection) -> None:
        self.conn = conn

    async def get(self, entry_id: str) -> QueueEntry | None:
        row = await self.conn.fetchrow(
            f"SELECT {_ENTRY_COLUMNS} FROM queue_items WHERE id = $1", entry_id
        )
        return QueueEntry(**dict(row)) if row else None

    async def find_by_user(self, user_id: str) -> QueueEntry | None:
        row = await self.conn.fetchrow(
            f"SELECT {_ENTRY_COLUMNS} FROM queue_items WHERE user_id = $1", user_id
        )
        return QueueEntry(**dict(row)) if row else None

    async def get_at_position(self, position: int) -> QueueEntry | None:
        row = await self.conn.fetchrow(
            f"SELECT {_ENTRY_COLUMNS} FROM queue_items WHERE position = $1", position
        )
        return QueueEntry(**dict(row)) if row else None

    async def list_entries(self) -> list[QueueEntry]:
        rows = await self.conn.fetch(
            f"SELECT {_ENTRY_COLUMNS} FROM queue_items ORDER BY position ASC"
        )
        return [QueueEntry(**dict(row)) for row in rows]

    async def participation_counts(self, user_ids: list[str], since: datetime) -> dict[str, int]:
        return await _participation_counts(self.conn, user_ids, since)

    async def shift_positions(self, start: int, delta: int) -> None:
        """Add *delta* to the position of every entry at or after *start*."""
        await self.conn.execute(
            "UPDATE queue_items SET position = position + $2 WHERE position >= $1",
            start,
            delta,
        )

    async def insert_entry(self, entry: QueueEntry) -> None:
        await self.conn.execute(
            f"INSERT INTO queue_items ({_ENTRY_COLUMNS}) VALUES ($1, $2, $3, $4, $5, $6, $7)",
            entry.id,
            entry.user_id,
            entry.user_login,
            entry.display_name,
            entry.profile_image_url,
            entry.enqueued_at,
            entry.position,
        )

    async def delete_entry(self, entry_id: str) -> None:
        await self.conn.execute("DELETE FROM queue_items WHERE id = $1", entry_id)

    async def set_position(self, entry_id: str, position: int) -> None:
        await self.conn.execute(
            "UPDATE queue_items SET position = $2 WHERE id = $1", entry_id, position
        )

    async def add_participation(self, user_id: str, completed_at: datetime) -> None:
        await self.conn.execute(
            "INSERT INTO participations (user_id, completed_at) VALUES ($1, $2)",
            user_id,
            completed_at,
        )


class QueueRepository:
    """Pure SQL operations for queue_items / participations."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[QueueTransaction]:
        """Open a queue-mutating transaction.

        SHARE ROW EXCLUSIVE conflicts with itself and with every writer, but
        not with plain SELECTs: mutations serialize while readers keep seeing
        the last committed queue.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("LOCK TABLE queue_items IN SHARE ROW EXCLUSIVE MODE")
                yield QueueTransaction(conn)

    async def list_entries(self) -> list[QueueEntry]:
        """All entries ordered by position (single statement, consistent snapshot)."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_ENTRY_COLUMNS} FROM queue_items ORDER BY position ASC"
            )
            return [QueueEntry(**dict(row)) for row in rows]

    async def is_user_queued(self, user_id: str) -> bool:
        async with self.pool.acquire() as conn:
            return bool(
                await conn.fetchval(
                    "SELECT EXISTS (SELECT 1 FROM queue_items WHERE user_id = $1)", user_id
                )
            )

    async def participation_counts(self, user_ids: list[str], since: datetime) -> dict[str, int]:
        async with self.pool.acquire() as conn:
            return await _participation_counts(conn, user_ids, since)
