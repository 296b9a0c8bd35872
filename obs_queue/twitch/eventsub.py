"""EventSub WebSocket session client.

One logical session at a time. Subscriptions are created only after a
welcome on a fresh session; a ``session_reconnect`` migrates them, so the
welcome that follows a migration subscribes nothing. Any other way out of
the read loop discards the session and the next welcome resubscribes.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aiohttp
from pydantic import ValidationError

from obs_queue.core.config import EVENTSUB_WS_URL
from obs_queue.core.errors import MissingTokenError, QueueError
from obs_queue.twitch.models import REDEMPTION_ADD, Envelope, SessionPayload

if TYPE_CHECKING:
    from obs_queue.services.admission_service import AdmissionService
    from obs_queue.services.token_service import TokenService
    from obs_queue.services.twitch_api import TwitchAPIClient


LOGGER: logging.Logger = logging.getLogger("EventSub")

# Retry delays (seconds)
NO_TOKEN_DELAY = 2.0
AUTH_RETRY_DELAY = 5.0
CONNECT_RETRY_DELAY = 3.0
DISCONNECT_DELAY = 2.0
MIGRATION_DELAY = 0.0

# Added to the session's keepalive_timeout_seconds before a silent socket is dropped
KEEPALIVE_GRACE = 10.0

SUBSCRIPTION_VERSION = "1"

Connector = Callable[[str], Awaitable[Any]]


@dataclass
class SessionState:
    """Session bookkeeping that outlives a single connection."""

    ws_url: str = EVENTSUB_WS_URL
    need_subscribe: bool = True
    received_reconnect: bool = False
    receive_timeout: float | None = None

    def reset(self, canonical_url: str) -> None:
        """Forget the session: next welcome must resubscribe."""
        self.ws_url = canonical_url
        self.need_subscribe = True


@dataclass
class _Credentials:
    access_token: str
    broadcaster_id: str


class EventSubClient:
    """Keeps one EventSub WebSocket session alive and feeds redemptions to admission."""

    def __init__(
        self,
        tokens: TokenService,
        twitch: TwitchAPIClient,
        admission: AdmissionService,
        *,
        ws_url: str = EVENTSUB_WS_URL,
        target_reward_id: str = "",
        cancel_reward_id: str = "",
        connect: Connector | None = None,
    ) -> None:
        self.tokens = tokens
        self.twitch = twitch
        self.admission = admission
        self.ws_url = ws_url
        self.target_reward_id = target_reward_id.strip()
        self.cancel_reward_id = cancel_reward_id.strip()
        self.state = SessionState(ws_url=ws_url)

        self._connect = connect
        self._session: aiohttp.ClientSession | None = None
        # Strong refs for detached cleanup tasks
        self._background: set[asyncio.Task] = set()

    # ── Lifecycle ──

    async def run_forever(self) -> None:
        """Connect, read, reconnect. Runs until cancelled."""
        try:
            while True:
                try:
                    delay = await self.run_once(self.state)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    LOGGER.exception(f"EventSub loop error: {e}")
                    delay = AUTH_RETRY_DELAY
                if delay:
                    await asyncio.sleep(delay)
        finally:
            await self.close()

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _open(self, url: str) -> Any:
        if self._connect is not None:
            return await self._connect(url)
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        # PINGs are answered by hand in the read loop
        return await self._session.ws_connect(url, autoping=False)

    async def run_once(self, state: SessionState) -> float:
        """One connection attempt and its read loop. Returns the delay before the next."""
        try:
            token = await self.tokens.get_valid_token()
        except MissingTokenError:
            return NO_TOKEN_DELAY
        except QueueError as e:
            LOGGER.warning(f"No usable token ({e}); re-authorization may be required")
            return AUTH_RETRY_DELAY

        try:
            broadcaster = await self.tokens.resolve_broadcaster(token.access_token)
        except QueueError as e:
            LOGGER.warning(f"Failed to resolve broadcaster ({e}); waiting")
            return AUTH_RETRY_DELAY

        LOGGER.info(f"Connecting to EventSub WebSocket: {state.ws_url}")
        try:
            ws = await self._open(state.ws_url)
        except (aiohttp.ClientError, OSError, TimeoutError) as e:
            LOGGER.warning(f"Failed to connect websocket ({e}); retrying")
            if state.ws_url != self.ws_url:
                # A migration target that refuses us is as good as gone
                state.reset(self.ws_url)
            return CONNECT_RETRY_DELAY

        state.received_reconnect = False
        state.receive_timeout = None
        creds = _Credentials(token.access_token, broadcaster.id)
        try:
            await self._read_loop(ws, state, creds)
        except Exception as e:
            LOGGER.warning(f"WebSocket read error: {e}")
        finally:
            await ws.close()

        if state.received_reconnect:
            return MIGRATION_DELAY
        state.reset(self.ws_url)
        return DISCONNECT_DELAY

    # ── Read loop ──

    async def _read_loop(self, ws: Any, state: SessionState, creds: _Credentials) -> None:
        while True:
            try:
                msg = await ws.receive(timeout=state.receive_timeout)
            except TimeoutError:
                LOGGER.warning(
                    f"No frame within {state.receive_timeout}s; treating session as dead"
                )
                return

            if msg.type == aiohttp.WSMsgType.TEXT:
                if await self._handle_text(msg.data, state, creds):
                    return
            elif msg.type == aiohttp.WSMsgType.PING:
                await ws.pong(msg.data)
            elif msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                LOGGER.info(f"WebSocket closed (code={ws.close_code})")
                return
            elif msg.type == aiohttp.WSMsgType.ERROR:
                LOGGER.warning(f"WebSocket error: {ws.exception()}")
                return

    async def _handle_text(self, text: str, state: SessionState, creds: _Credentials) -> bool:
        """Handle one JSON frame. Returns True when the read loop must end."""
        try:
            envelope = Envelope.model_validate(json.loads(text))
        except (ValueError, ValidationError) as e:
            LOGGER.debug(f"Unparseable frame ignored ({e}): {text[:200]}")
            return False

        message_type = envelope.metadata.message_type

        if message_type == "session_welcome":
            await self._on_welcome(envelope, state, creds)
            return False

        if message_type == "session_keepalive":
            return False

        if message_type == "notification":
            await self._on_notification(envelope)
            return False

        if message_type == "session_reconnect":
            try:
                url = SessionPayload.model_validate(envelope.payload).session.reconnect_url
            except ValidationError:
                url = None
            if not url:
                LOGGER.warning("session_reconnect without reconnect_url")
                return True
            LOGGER.info(f"Received session_reconnect -> {url}")
            state.ws_url = url
            state.received_reconnect = True
            return True

        if message_type == "revocation":
            LOGGER.warning(
                "Subscription revoked (token revoked or user no longer exists). Re-auth required."
            )
            state.need_subscribe = True
            return False

        LOGGER.debug(f"Unhandled message type: {message_type}")
        return False

    async def _on_welcome(
        self, envelope: Envelope, state: SessionState, creds: _Credentials
    ) -> None:
        session = SessionPayload.model_validate(envelope.payload).session
        LOGGER.info(f"EventSub session welcome: {session.id}")
        if session.keepalive_timeout_seconds:
            state.receive_timeout = session.keepalive_timeout_seconds + KEEPALIVE_GRACE

        if not state.need_subscribe:
            LOGGER.info("Reconnected; keeping existing subscriptions")
            return

        try:
            await self.twitch.create_eventsub_subscription(
                creds.access_token,
                REDEMPTION_ADD,
                SUBSCRIPTION_VERSION,
                self.subscription_condition(creds.broadcaster_id),
                session.id,
            )
        except QueueError as e:
            LOGGER.warning(f"Failed to create subscription: {e}")
            return

        LOGGER.info("Created redemption subscription")
        state.need_subscribe = False
        # After subscribing, so the cleanup never eats into the subscribe window
        self._spawn_cleanup(creds)

    async def _on_notification(self, envelope: Envelope) -> None:
        if envelope.metadata.subscription_type != REDEMPTION_ADD:
            return
        try:
            await self.admission.handle_notification(
                envelope.metadata.message_id, envelope.payload
            )
        except Exception as e:
            LOGGER.exception(f"Failed to admit notification {envelope.metadata.message_id}: {e}")

    def subscription_condition(self, broadcaster_id: str) -> dict[str, str]:
        condition = {"broadcaster_user_id": broadcaster_id}
        # A cancel reward needs every redemption, so no reward filter then
        if self.target_reward_id and not self.cancel_reward_id:
            condition["reward_id"] = self.target_reward_id
        return condition

    # ── Stale subscription cleanup ──

    def _spawn_cleanup(self, creds: _Credentials) -> None:
        task = asyncio.create_task(
            self.cleanup_stale_subscriptions(creds.access_token, creds.broadcaster_id)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def cleanup_stale_subscriptions(self, access_token: str, broadcaster_id: str) -> int:
        """Delete this broadcaster's websocket redemption subscriptions that are not enabled."""
        try:
            subscriptions = await self.twitch.list_eventsub_subscriptions(
                access_token, REDEMPTION_ADD
            )
            deleted = 0
            for sub in subscriptions:
                if sub.get("type") != REDEMPTION_ADD:
                    continue
                transport = sub.get("transport") or {}
                if transport.get("method") != "websocket":
                    continue
                if (sub.get("condition") or {}).get("broadcaster_user_id") != broadcaster_id:
                    continue
                if sub.get("status") == "enabled":
                    continue

                LOGGER.debug(
                    f"Deleting stale subscription {sub.get('id')} "
                    f"(status={sub.get('status')}, session={transport.get('session_id')})"
                )
                await self.twitch.delete_eventsub_subscription(access_token, sub["id"])
                deleted += 1
        except Exception as e:
            LOGGER.warning(f"Failed to clean up stale EventSub subscriptions: {e}")
            return 0

        if deleted:
            LOGGER.info(f"Cleaned {deleted} stale EventSub subscription(s)")
        return deleted
