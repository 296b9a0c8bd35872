"""Business logic services."""

from .admission_service import AdmissionOutcome, AdmissionService
from .profile_service import ProfileService
from .queue_service import QueueService, compute_insert_position
from .token_service import TokenService
from .twitch_api import HelixReward, HelixUser, TwitchAPIClient

__all__ = [
    "AdmissionOutcome",
    "AdmissionService",
    "HelixReward",
    "HelixUser",
    "ProfileService",
    "QueueService",
    "TokenService",
    "TwitchAPIClient",
    "compute_insert_position",
]
