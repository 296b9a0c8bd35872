"""obs-queue: fairness-ordered Twitch redemption queue."""

__version__ = "0.1.0"
