"""Data models for oauth_tokens and app_kv tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass
class Token:
    """OAuth token record (single row)."""

    access_token: str
    refresh_token: str
    expires_at: datetime

    def expires_within(self, margin: timedelta, now: datetime) -> bool:
        return self.expires_at <= now + margin


@dataclass
class Broadcaster:
    """The authorized account whose redemptions feed the queue."""

    id: str
    login: str
