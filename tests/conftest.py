"""Shared fixtures: in-memory stand-ins for the asyncpg repositories."""

from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime

import pytest

from obs_queue.services.queue_service import QueueService
from obs_queue.shared.models.auth import Broadcaster, Token
from obs_queue.shared.models.profile import CachedUserProfile
from obs_queue.shared.models.queue import QueueEntry


class ConstraintViolation(Exception):
    """Raised at commit when the deferred queue constraints would fail."""


class FakeQueueTransaction:
    def __init__(self, repo: FakeQueueRepository) -> None:
        self.repo = repo

    async def get(self, entry_id):
        entry = self.repo.entries.get(entry_id)
        return replace(entry) if entry else None

    async def find_by_user(self, user_id):
        for entry in self.repo.entries.values():
            if entry.user_id == user_id:
                return replace(entry)
        return None

    async def get_at_position(self, position):
        for entry in self.repo.entries.values():
            if entry.position == position:
                return replace(entry)
        return None

    async def list_entries(self):
        return self.repo.ordered()

    async def participation_counts(self, user_ids, since):
        return self.repo.counts(user_ids, since)

    async def shift_positions(self, start, delta):
        for entry in self.repo.entries.values():
            if entry.position >= start:
                entry.position += delta

    async def insert_entry(self, entry):
        if self.repo.fail_on_insert:
            raise RuntimeError("simulated storage failure")
        if any(e.user_id == entry.user_id for e in self.repo.entries.values()):
            raise ConstraintViolation(f"duplicate user_id {entry.user_id}")
        self.repo.entries[entry.id] = replace(entry)

    async def delete_entry(self, entry_id):
        self.repo.entries.pop(entry_id, None)

    async def set_position(self, entry_id, position):
        self.repo.entries[entry_id].position = position

    async def add_participation(self, user_id, completed_at):
        self.repo.participations.append((user_id, completed_at))


class FakeQueueRepository:
    """Transactional in-memory queue storage.

    A lock serializes transactions (like the table lock), position
    uniqueness is checked at commit (like the deferred constraint) and any
    exception restores the snapshot taken at BEGIN.
    """

    def __init__(self) -> None:
        self.entries: dict[str, QueueEntry] = {}
        self.participations: list[tuple[str, datetime]] = []
        self.fail_on_insert = False
        self._lock = asyncio.Lock()

    def ordered(self) -> list[QueueEntry]:
        return [replace(e) for e in sorted(self.entries.values(), key=lambda e: e.position)]

    def counts(self, user_ids, since) -> dict[str, int]:
        out: dict[str, int] = {}
        for user_id, completed_at in self.participations:
            if user_id in user_ids and completed_at >= since:
                out[user_id] = out.get(user_id, 0) + 1
        return out

    def _check_constraints(self) -> None:
        positions = sorted(e.position for e in self.entries.values())
        if positions != list(range(len(positions))):
            raise ConstraintViolation(f"positions not dense: {positions}")

    @asynccontextmanager
    async def transaction(self):
        async with self._lock:
            snapshot = (copy.deepcopy(self.entries), list(self.participations))
            try:
                yield FakeQueueTransaction(self)
                self._check_constraints()
            except BaseException:
                self.entries, self.participations = snapshot
                raise

    async def list_entries(self):
        return self.ordered()

    async def is_user_queued(self, user_id):
        return any(e.user_id == user_id for e in self.entries.values())

    async def participation_counts(self, user_ids, since):
        return self.counts(user_ids, since)

    # test helpers

    def logins(self) -> list[str]:
        return [e.user_login for e in self.ordered()]

    def add_history(self, user_id: str, completions: int, at: datetime | None = None) -> None:
        at = at or datetime.now(UTC)
        self.participations.extend((user_id, at) for _ in range(completions))


class FakeLedger:
    def __init__(self) -> None:
        self.rows: dict[str, datetime] = {}

    async def is_processed(self, message_id):
        return message_id in self.rows

    async def mark_processed(self, message_id, received_at):
        if message_id in self.rows:
            return False
        self.rows[message_id] = received_at
        return True

    async def delete_older_than(self, cutoff):
        stale = [m for m, at in self.rows.items() if at < cutoff]
        for message_id in stale:
            del self.rows[message_id]
        return len(stale)


class FakeAppStateRepository:
    def __init__(self, token: Token | None = None, broadcaster: Broadcaster | None = None):
        self.token = token
        self.broadcaster = broadcaster
        self.token_writes = 0

    async def get_token(self):
        return self.token

    async def upsert_token(self, token):
        self.token_writes += 1
        self.token = token

    async def delete_token(self):
        self.token = None

    async def get_broadcaster(self):
        return self.broadcaster

    async def set_broadcaster(self, broadcaster):
        self.broadcaster = broadcaster


class FakeUserCache:
    def __init__(self) -> None:
        self.rows: dict[str, CachedUserProfile] = {}
        self.fail_upsert = False

    async def get(self, user_id):
        return self.rows.get(user_id)

    async def upsert(self, profile):
        if self.fail_upsert:
            raise RuntimeError("cache write failed")
        self.rows[profile.user_id] = profile


@pytest.fixture
def queue_repo() -> FakeQueueRepository:
    return FakeQueueRepository()


@pytest.fixture
def queue_service(queue_repo) -> QueueService:
    return QueueService(queue_repo, participation_window_secs=24 * 60 * 60)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()
