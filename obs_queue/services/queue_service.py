"""Queue service: fairness ordering over the queue_items table.

Positions are zero-based and dense. Every mutation runs inside one
``QueueRepository.transaction()``, so concurrent callers serialize on the
table lock and readers only ever see committed orderings.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta

from obs_queue.core.errors import NotFoundError
from obs_queue.shared.models.queue import (
    Added,
    AlreadyQueued,
    DeleteMode,
    EnqueueOutcome,
    NewQueueUser,
    QueueEntry,
    QueueItem,
)
from obs_queue.shared.repositories.queue import QueueRepository, QueueTransaction

logger = logging.getLogger(__name__)


def compute_insert_position(counts_in_order: list[int], my_count: int) -> int:
    """Index of the first entry with strictly more recent participations.

    Ties keep the earlier arrival ahead. Returns ``len(counts_in_order)``
    (append) when nobody has played more than *my_count*.
    """
    for position, count in enumerate(counts_in_order):
        if count > my_count:
            return position
    return len(counts_in_order)


class QueueService:
    """Queue operations used by the admission pipeline and the admin API."""

    def __init__(self, repo: QueueRepository, participation_window_secs: int) -> None:
        self.repo = repo
        self.window = timedelta(seconds=participation_window_secs)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    # ── Reads ──

    async def list_queue(self) -> list[QueueItem]:
        entries = await self.repo.list_entries()
        if not entries:
            return []
        counts = await self.repo.participation_counts(
            [e.user_id for e in entries], self._now() - self.window
        )
        return [QueueItem.from_entry(e, counts.get(e.user_id, 0)) for e in entries]

    async def is_queued(self, user_id: str) -> bool:
        return await self.repo.is_user_queued(user_id)

    # ── Mutations ──

    async def enqueue(self, user: NewQueueUser) -> EnqueueOutcome:
        now = self._now()
        async with self.repo.transaction() as tx:
            if await tx.find_by_user(user.user_id) is not None:
                return AlreadyQueued()

            entries = await tx.list_entries()
            counts = await tx.participation_counts(
                [e.user_id for e in entries] + [user.user_id], now - self.window
            )
            my_count = counts.get(user.user_id, 0)
            position = compute_insert_position(
                [counts.get(e.user_id, 0) for e in entries], my_count
            )

            await tx.shift_positions(position, 1)
            entry = QueueEntry(
                id=str(uuid.uuid4()),
                user_id=user.user_id,
                user_login=user.user_login,
                display_name=user.display_name,
                profile_image_url=user.profile_image_url,
                enqueued_at=now,
                position=position,
            )
            await tx.insert_entry(entry)

        logger.debug(
            f"Enqueued {user.user_login} at {position} "
            f"(recent={my_count}, queue={len(entries) + 1})"
        )
        return Added(id=entry.id, position=position)

    async def move_up(self, entry_id: str) -> None:
        await self._swap(entry_id, -1)

    async def move_down(self, entry_id: str) -> None:
        await self._swap(entry_id, 1)

    async def _swap(self, entry_id: str, step: int) -> None:
        """Swap *entry_id* with its neighbour; no neighbour is a no-op."""
        async with self.repo.transaction() as tx:
            entry = await tx.get(entry_id)
            if entry is None:
                raise NotFoundError(f"Queue entry {entry_id} not found")

            target = entry.position + step
            if target < 0:
                return
            neighbour = await tx.get_at_position(target)
            if neighbour is None:
                return

            await tx.set_position(entry.id, target)
            await tx.set_position(neighbour.id, entry.position)

    async def delete(self, entry_id: str, mode: DeleteMode) -> None:
        async with self.repo.transaction() as tx:
            entry = await tx.get(entry_id)
            if entry is None:
                raise NotFoundError(f"Queue entry {entry_id} not found")
            await self._remove(tx, entry, mode)

        logger.info(f"Removed {entry.user_login} from queue ({mode.value})")

    async def cancel_by_user(self, user_id: str) -> bool:
        """Drop *user_id*'s entry as canceled. Returns False if not queued."""
        async with self.repo.transaction() as tx:
            entry = await tx.find_by_user(user_id)
            if entry is None:
                return False
            await self._remove(tx, entry, DeleteMode.CANCELED)

        logger.info(f"Canceled queue entry for {entry.user_login}")
        return True

    async def _remove(self, tx: QueueTransaction, entry: QueueEntry, mode: DeleteMode) -> None:
        await tx.delete_entry(entry.id)
        await tx.shift_positions(entry.position + 1, -1)
        if mode is DeleteMode.COMPLETED:
            await tx.add_participation(entry.user_id, self._now())
