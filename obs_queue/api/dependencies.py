"""Dependency injection utilities for FastAPI.

Services are built once in the lifespan and parked on ``app.state``; these
accessors hand them to route handlers (and are what tests override).
"""

from cachetools import TTLCache  # type: ignore[import-untyped]
from fastapi import Request

from obs_queue.core.config import Settings
from obs_queue.services import QueueService, TokenService, TwitchAPIClient


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_oauth_states(request: Request) -> TTLCache:
    """Pending CSRF states for /auth/start -> /auth/callback."""
    return request.app.state.oauth_states


def get_queue_service(request: Request) -> QueueService:
    return request.app.state.queue_service


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_twitch_api(request: Request) -> TwitchAPIClient:
    return request.app.state.twitch_api
