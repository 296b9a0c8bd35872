"""Pydantic models for EventSub WebSocket frames.

Only the fields the client reads are declared; everything else in a frame
is ignored.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

REDEMPTION_ADD = "channel.channel_points_custom_reward_redemption.add"


class _Frame(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Metadata(_Frame):
    message_id: str
    message_type: str
    message_timestamp: str | None = None
    subscription_type: str | None = None


class Envelope(_Frame):
    metadata: Metadata
    payload: dict[str, Any] = Field(default_factory=dict)


class SessionInfo(_Frame):
    id: str
    status: str | None = None
    keepalive_timeout_seconds: int | None = None
    reconnect_url: str | None = None


class SessionPayload(_Frame):
    """Payload of session_welcome and session_reconnect."""

    session: SessionInfo


class RewardInfo(_Frame):
    id: str
    title: str = ""
    cost: int = 0


class RedemptionEvent(_Frame):
    user_id: str
    user_login: str
    user_name: str
    reward: RewardInfo


class NotificationPayload(_Frame):
    subscription: dict[str, Any] = Field(default_factory=dict)
    event: RedemptionEvent
