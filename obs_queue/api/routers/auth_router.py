"""Broadcaster OAuth routes."""

import logging
import secrets

from cachetools import TTLCache  # type: ignore[import-untyped]
from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import RedirectResponse

from obs_queue.api.dependencies import (
    get_app_settings,
    get_oauth_states,
    get_token_service,
    get_twitch_api,
)
from obs_queue.core.config import Settings
from obs_queue.core.errors import QueueError
from obs_queue.services import TokenService, TwitchAPIClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/start")
async def auth_start(
    settings: Settings = Depends(get_app_settings),
    states: TTLCache = Depends(get_oauth_states),
    twitch: TwitchAPIClient = Depends(get_twitch_api),
) -> RedirectResponse:
    """Redirect the broadcaster to Twitch's consent page."""
    if not settings.has_twitch_credentials:
        raise HTTPException(
            status_code=400, detail="Set CLIENT_ID and CLIENT_SECRET before authorizing"
        )

    state = secrets.token_urlsafe(24)
    states[state] = True
    return RedirectResponse(twitch.generate_oauth_url(state), status_code=307)


@router.get("/callback")
async def auth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    states: TTLCache = Depends(get_oauth_states),
    twitch: TwitchAPIClient = Depends(get_twitch_api),
    tokens: TokenService = Depends(get_token_service),
) -> RedirectResponse:
    """Handle the OAuth redirect: exchange the code and remember the broadcaster."""
    if error:
        logger.warning(f"OAuth error: {error} {error_description or ''}")
        raise HTTPException(status_code=400, detail=f"OAuth error: {error}")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")
    if states.pop(state, None) is None:
        logger.warning("OAuth callback with unknown or expired state")
        raise HTTPException(status_code=400, detail="State mismatch")

    token = await twitch.exchange_code(code)
    await tokens.store_token(token)

    try:
        broadcaster = await tokens.identify(token.access_token)
        logger.info(f"Authorized as {broadcaster.login} ({broadcaster.id})")
    except QueueError as e:
        logger.error(f"Authorized but failed to resolve broadcaster: {e}")

    return RedirectResponse("/admin", status_code=307)


@router.post("/logout", status_code=204)
async def auth_logout(tokens: TokenService = Depends(get_token_service)) -> Response:
    await tokens.logout()
    return Response(status_code=204)
