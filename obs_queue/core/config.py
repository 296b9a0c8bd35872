"""Environment-driven settings (pydantic-settings, optional .env file)."""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# === Twitch endpoints ===
OAUTH_BASE = "https://id.twitch.tv/oauth2"
HELIX_BASE = "https://api.twitch.tv/helix"
EVENTSUB_WS_URL = "wss://eventsub.wss.twitch.tv/ws"

BROADCASTER_SCOPES = [
    "channel:read:redemptions",  # Channel points EventSub + custom rewards listing
]


class Settings(BaseSettings):
    """Every field maps to the upper-cased environment variable of the same name."""

    model_config = SettingsConfigDict(
        env_file=Path.cwd() / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Twitch OAuth
    client_id: str = Field(default="", description="Twitch OAuth Client ID")
    client_secret: str = Field(default="", description="Twitch OAuth Client Secret")
    redirect_url: str = Field(
        default="http://localhost:3000/auth/callback", description="OAuth redirect URL"
    )

    # Redemption handling
    target_reward_id: str = Field(
        default="", description="Reward that admits into the queue (empty = observe only)"
    )
    cancel_reward_id: str = Field(
        default="", description="Reward that leaves the queue (empty = disabled)"
    )
    user_cache_ttl_secs: int = Field(
        default=24 * 60 * 60, ge=0, description="Profile cache TTL in seconds (0 = always fetch)"
    )

    # Queue
    participation_window_secs: int = Field(
        default=24 * 60 * 60, ge=0, description="Fairness lookback window in seconds"
    )
    processed_message_ttl_secs: int = Field(
        default=24 * 60 * 60, ge=0, description="Dedup ledger retention in seconds"
    )

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")

    # Server
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=3000, description="Server port")
    static_dir: Path = Field(default=Path("static"), description="Overlay/admin asset directory")

    # EventSub
    eventsub_ws_url: str = Field(default=EVENTSUB_WS_URL, description="EventSub WebSocket URL")

    # Environment
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("database_url")
    @classmethod
    def require_postgres_dsn(cls, v: str) -> str:
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError("DATABASE_URL must be a postgresql:// DSN")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        name = v.strip().upper()
        if name not in _LOG_LEVELS:
            logger.warning(f"Unknown LOG_LEVEL {v!r}, using INFO")
            return "INFO"
        return name

    @field_validator("target_reward_id", "cancel_reward_id")
    @classmethod
    def strip_reward_id(cls, v: str) -> str:
        return v.strip()

    @property
    def has_twitch_credentials(self) -> bool:
        return bool(self.client_id.strip() and self.client_secret.strip())


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
