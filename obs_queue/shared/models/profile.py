"""Data model for the user_cache table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class CachedUserProfile:
    """Cached Twitch user profile."""

    user_id: str
    user_login: str
    display_name: str
    profile_image_url: str
    updated_at: datetime
