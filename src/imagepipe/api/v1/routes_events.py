"""Event ingestion and inspection endpoints.

Ingestion endpoints only publish; processing happens asynchronously in the
pipeline pollers, so they answer 202 Accepted.
"""

import json
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from imagepipe.models.events import CaptionUpdate
from imagepipe.pipeline import Pipeline
from imagepipe.services.consumers.table_updater import COMMENT_TYPE

logger = logging.getLogger(__name__)

router = APIRouter()


class CaptionRequest(CaptionUpdate):
    """Request model for publishing an image comment."""

    comment_type: str = Field("Caption", description="Comment kind, used for subscription filtering")


class AcceptedResponse(BaseModel):
    """Response model for accepted publications."""

    status: str = "accepted"
    published: int
    delivered_to: List[str] = Field(default_factory=list)


def _pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


@router.post("/notifications", status_code=status.HTTP_202_ACCEPTED, response_model=AcceptedResponse)
async def receive_bucket_notification(request: Request) -> AcceptedResponse:
    """Accept a bucket notification document and publish its records."""
    try:
        notification = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("Invalid bucket notification body", extra={"error": str(e)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")

    if not isinstance(notification, dict) or not isinstance(notification.get("Records"), list):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Notification must contain a 'Records' list",
        )

    events = await _pipeline(request).watcher.observe(notification)
    return AcceptedResponse(published=len(events))


@router.post("/captions", status_code=status.HTTP_202_ACCEPTED, response_model=AcceptedResponse)
async def publish_caption(body: CaptionRequest, request: Request) -> AcceptedResponse:
    """Publish an image comment to the delete/update topic."""
    update = CaptionUpdate(id=body.id, value=body.value)
    result = await _pipeline(request).delete_and_update_topic.publish_message(
        update.model_dump(), {COMMENT_TYPE: body.comment_type}
    )
    return AcceptedResponse(published=1, delivered_to=result.delivered)


@router.get("/images/{filename:path}")
async def get_image(filename: str, request: Request) -> Dict[str, Any]:
    """Return the stored record of an image."""
    record = await _pipeline(request).state_store.get(filename)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found")
    return record.to_item()


@router.get("/dead-letters")
async def list_dead_letters(request: Request) -> List[Dict[str, Any]]:
    """Pending dead-letter messages, for operator inspection."""
    return [
        {
            "message_id": message.message_id,
            "attributes": message.attributes,
            "body": message.body.decode("utf-8", errors="replace"),
            "enqueued_at": message.enqueued_at.isoformat(),
        }
        for message in _pipeline(request).dead_letter_queue.peek()
    ]
