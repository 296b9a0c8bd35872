"""Queue API routes."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from obs_queue.api.dependencies import get_queue_service
from obs_queue.services import QueueService
from obs_queue.shared.models.queue import DeleteMode

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/queue", tags=["queue"])


# ============================================
# Response / Request Models
# ============================================


class QueueItemResponse(BaseModel):
    id: str
    user_id: str
    user_login: str
    display_name: str
    profile_image_url: str
    enqueued_at: datetime
    position: int
    recent_participation_count: int


class DeleteRequest(BaseModel):
    mode: DeleteMode


# ============================================
# Endpoints
# ============================================


@router.get("", response_model=list[QueueItemResponse])
async def list_queue(
    service: QueueService = Depends(get_queue_service),
) -> list[QueueItemResponse]:
    """Current queue in position order (polled by the overlay and admin page)."""
    items = await service.list_queue()
    return [QueueItemResponse.model_validate(item, from_attributes=True) for item in items]


@router.post("/{entry_id}/delete", status_code=204)
async def delete_entry(
    entry_id: str,
    body: DeleteRequest,
    service: QueueService = Depends(get_queue_service),
) -> Response:
    await service.delete(entry_id, body.mode)
    return Response(status_code=204)


@router.post("/{entry_id}/move_up", status_code=204)
async def move_up(
    entry_id: str,
    service: QueueService = Depends(get_queue_service),
) -> Response:
    await service.move_up(entry_id)
    logger.debug(f"Moved {entry_id} up")
    return Response(status_code=204)


@router.post("/{entry_id}/move_down", status_code=204)
async def move_down(
    entry_id: str,
    service: QueueService = Depends(get_queue_service),
) -> Response:
    await service.move_down(entry_id)
    logger.debug(f"Moved {entry_id} down")
    return Response(status_code=204)
