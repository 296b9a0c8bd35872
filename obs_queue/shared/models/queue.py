"""Data models for queue_items and participations, plus queue outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass
class QueueEntry:
    """queue_items record."""

    id: str
    user_id: str
    user_login: str
    display_name: str
    profile_image_url: str
    enqueued_at: datetime
    position: int


@dataclass
class QueueItem:
    """Queue entry as listed, with its recent participation count."""

    id: str
    user_id: str
    user_login: str
    display_name: str
    profile_image_url: str
    enqueued_at: datetime
    position: int
    recent_participation_count: int = 0

    @classmethod
    def from_entry(cls, entry: QueueEntry, count: int) -> QueueItem:
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            user_login=entry.user_login,
            display_name=entry.display_name,
            profile_image_url=entry.profile_image_url,
            enqueued_at=entry.enqueued_at,
            position=entry.position,
            recent_participation_count=count,
        )


@dataclass
class NewQueueUser:
    """Participant about to be enqueued."""

    user_id: str
    user_login: str
    display_name: str
    profile_image_url: str


@dataclass(frozen=True)
class Added:
    """Enqueue outcome: a new entry was inserted."""

    id: str
    position: int


@dataclass(frozen=True)
class AlreadyQueued:
    """Enqueue outcome: the participant already had an entry; nothing changed."""


EnqueueOutcome = Added | AlreadyQueued


class DeleteMode(str, Enum):
    """Why an entry leaves the queue. Only COMPLETED counts toward fairness."""

    COMPLETED = "completed"
    CANCELED = "canceled"
