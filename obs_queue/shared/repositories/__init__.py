"""Shared repository layer (asyncpg)."""

from .app_state import AppStateRepository
from .processed_message import ProcessedMessageRepository
from .queue import QueueRepository, QueueTransaction
from .user_cache import UserCacheRepository

__all__ = [
    "AppStateRepository",
    "ProcessedMessageRepository",
    "QueueRepository",
    "QueueTransaction",
    "UserCacheRepository",
]
