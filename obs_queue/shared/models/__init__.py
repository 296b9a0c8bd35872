"""Shared data models."""

from .auth import Broadcaster, Token
from .profile import CachedUserProfile
from .queue import (
    Added,
    AlreadyQueued,
    DeleteMode,
    EnqueueOutcome,
    NewQueueUser,
    QueueEntry,
    QueueItem,
)

__all__ = [
    "Added",
    "AlreadyQueued",
    "Broadcaster",
    "CachedUserProfile",
    "DeleteMode",
    "EnqueueOutcome",
    "NewQueueUser",
    "QueueEntry",
    "QueueItem",
    "Token",
]
