"""Admission pipeline: redemption notification -> queue entry."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import ValidationError

from obs_queue.core.errors import QueueError
from obs_queue.services.profile_service import ProfileService
from obs_queue.services.queue_service import QueueService
from obs_queue.shared.models.queue import Added, NewQueueUser
from obs_queue.shared.repositories.processed_message import ProcessedMessageRepository
from obs_queue.twitch.models import NotificationPayload

LOGGER = logging.getLogger("Admission")


class AdmissionOutcome(str, Enum):
    """What happened to one notification."""

    DUPLICATE = "duplicate"
    INVALID = "invalid"
    CANCELED = "canceled"
    NOT_QUEUED = "not_queued"
    FILTERED = "filtered"
    OBSERVED = "observed"
    ALREADY_QUEUED = "already_queued"
    PROFILE_UNAVAILABLE = "profile_unavailable"
    ADDED = "added"


class AdmissionService:
    """Turns redemption notifications into queue admissions.

    The message id is recorded before any side effect, so a crash mid-way
    drops that one redemption instead of admitting it twice.
    """

    def __init__(
        self,
        ledger: ProcessedMessageRepository,
        queue: QueueService,
        profiles: ProfileService,
        target_reward_id: str = "",
        cancel_reward_id: str = "",
    ) -> None:
        self.ledger = ledger
        self.queue = queue
        self.profiles = profiles
        self.target_reward_id = target_reward_id.strip()
        self.cancel_reward_id = cancel_reward_id.strip()

    async def handle_notification(
        self, message_id: str, payload: dict[str, Any]
    ) -> AdmissionOutcome:
        if await self.ledger.is_processed(message_id):
            LOGGER.debug(f"Duplicate notification ignored: {message_id}")
            return AdmissionOutcome.DUPLICATE
        if not await self.ledger.mark_processed(message_id, datetime.now(UTC)):
            LOGGER.debug(f"Notification {message_id} recorded concurrently; ignored")
            return AdmissionOutcome.DUPLICATE

        try:
            event = NotificationPayload.model_validate(payload).event
        except ValidationError as e:
            LOGGER.warning(f"Malformed redemption payload in {message_id}: {e}")
            return AdmissionOutcome.INVALID

        reward = event.reward

        if self.cancel_reward_id and reward.id == self.cancel_reward_id:
            if await self.queue.cancel_by_user(event.user_id):
                LOGGER.info(f"{event.user_name} left the queue via '{reward.title}'")
                return AdmissionOutcome.CANCELED
            LOGGER.info(f"{event.user_name} redeemed cancel but was not queued")
            return AdmissionOutcome.NOT_QUEUED

        if not self.target_reward_id:
            LOGGER.info(
                f"Redemption '{reward.title}' ({reward.id}) by {event.user_name} "
                "(target_reward_id not set; not enqueuing)"
            )
            return AdmissionOutcome.OBSERVED
        if reward.id != self.target_reward_id:
            LOGGER.debug(f"Non-target reward ignored: {reward.title} ({reward.id})")
            return AdmissionOutcome.FILTERED

        # Skip the Helix round-trip for users already waiting
        if await self.queue.is_queued(event.user_id):
            LOGGER.info(f"{event.user_name} already queued; ignoring redemption")
            return AdmissionOutcome.ALREADY_QUEUED

        try:
            avatar = await self.profiles.get_profile_image_url(event.user_id)
        except QueueError as e:
            LOGGER.warning(f"Could not resolve avatar for {event.user_id}: {e}")
            return AdmissionOutcome.PROFILE_UNAVAILABLE

        outcome = await self.queue.enqueue(
            NewQueueUser(
                user_id=event.user_id,
                user_login=event.user_login,
                display_name=event.user_name,
                profile_image_url=avatar,
            )
        )
        if isinstance(outcome, Added):
            LOGGER.info(f"Enqueued {event.user_name} at position {outcome.position} ({outcome.id})")
            return AdmissionOutcome.ADDED

        LOGGER.info(f"{event.user_name} already queued; ignoring redemption")
        return AdmissionOutcome.ALREADY_QUEUED
