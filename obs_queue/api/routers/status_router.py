"""Status and rewards API routes."""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from obs_queue.api.dependencies import get_app_settings, get_token_service, get_twitch_api
from obs_queue.core.config import Settings
from obs_queue.services import TokenService, TwitchAPIClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["status"])


# ============================================
# Response Models
# ============================================


class StatusResponse(BaseModel):
    authenticated: bool
    broadcaster_id: str | None = None
    broadcaster_login: str | None = None
    target_reward_id: str | None = None
    participation_window_secs: int
    server_time: datetime


class RewardResponse(BaseModel):
    id: str
    title: str
    cost: int
    is_enabled: bool


# ============================================
# Endpoints
# ============================================


@router.get("/status", response_model=StatusResponse)
async def get_status(
    settings: Settings = Depends(get_app_settings),
    tokens: TokenService = Depends(get_token_service),
) -> StatusResponse:
    """Auth state and queue configuration for the admin page."""
    broadcaster = await tokens.get_broadcaster()
    return StatusResponse(
        authenticated=await tokens.has_usable_token(),
        broadcaster_id=broadcaster.id if broadcaster else None,
        broadcaster_login=broadcaster.login if broadcaster else None,
        target_reward_id=settings.target_reward_id or None,
        participation_window_secs=settings.participation_window_secs,
        server_time=datetime.now(UTC),
    )


@router.get("/rewards", response_model=list[RewardResponse])
async def list_rewards(
    tokens: TokenService = Depends(get_token_service),
    twitch: TwitchAPIClient = Depends(get_twitch_api),
) -> list[RewardResponse]:
    """Broadcaster's custom rewards, for picking TARGET_REWARD_ID."""
    token = await tokens.get_valid_token()
    broadcaster = await tokens.resolve_broadcaster(token.access_token)
    rewards = await twitch.get_custom_rewards(token.access_token, broadcaster.id)
    return [
        RewardResponse(id=r.id, title=r.title, cost=r.cost, is_enabled=r.is_enabled)
        for r in rewards
    ]
