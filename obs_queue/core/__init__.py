"""Core modules: settings, logging, errors."""

from .config import EVENTSUB_WS_URL, Settings, get_settings
from .errors import (
    MissingTokenError,
    NotFoundError,
    QueueError,
    TransientError,
    TwitchAPIError,
    UnauthorizedError,
)
from .logging import setup_logging

__all__ = [
    # Settings
    "EVENTSUB_WS_URL",
    "Settings",
    "get_settings",
    # Setup functions
    "setup_logging",
    # Errors
    "MissingTokenError",
    "NotFoundError",
    "QueueError",
    "TransientError",
    "TwitchAPIError",
    "UnauthorizedError",
]
