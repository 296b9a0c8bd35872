"""Error taxonomy shared by the queue engine, Twitch client and API layer.

``AlreadyQueued`` is an enqueue outcome (see ``obs_queue.shared.models.queue``),
not an error.
"""


class QueueError(Exception):
    """Base class for application errors."""


class NotFoundError(QueueError):
    """An operation referenced a queue entry that does not exist."""


class UnauthorizedError(QueueError):
    """No usable credential: missing token, or refresh failed."""


class TransientError(QueueError):
    """Network / upstream failure that may succeed on retry."""


class TwitchAPIError(TransientError):
    """Twitch Helix / OAuth request failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class MissingTokenError(UnauthorizedError):
    """No token has been stored yet (the broadcaster never authorized)."""
