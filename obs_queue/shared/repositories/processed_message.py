"""Repository for the processed_messages dedup ledger."""

from __future__ import annotations

from datetime import datetime

import asyncpg


class ProcessedMessageRepository:
    """Append-only ledger of EventSub message ids already handled."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def is_processed(self, message_id: str) -> bool:
        async with self.pool.acquire() as conn:
            return bool(
                await conn.fetchval(
                    "SELECT EXISTS (SELECT 1 FROM processed_messages WHERE message_id = $1)",
                    message_id,
                )
            )

    async def mark_processed(self, message_id: str, received_at: datetime) -> bool:
        """Insert if absent. Returns True if this call recorded the id."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "INSERT INTO processed_messages (message_id, received_at) VALUES ($1, $2) "
                "ON CONFLICT (message_id) DO NOTHING",
                message_id,
                received_at,
            )
            # result is like "INSERT 0 N"
            return result.split()[-1] == "1"

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete ledger rows received before *cutoff*. Returns count deleted."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM processed_messages WHERE received_at < $1", cutoff
            )
            return int(result.split()[-1])
