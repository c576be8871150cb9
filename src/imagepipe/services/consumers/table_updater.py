"""Conditional table update consumer for image comments."""

import logging

from pydantic import ValidationError as ModelValidationError

from imagepipe.core.exceptions import PayloadError
from imagepipe.messaging.envelope import unwrap_notification
from imagepipe.messaging.filters import AllowListFilter
from imagepipe.models.events import CaptionUpdate, ImageRecord, Message
from imagepipe.services.consumers.base import BatchConsumer
from imagepipe.store.state_store import StateStore

logger = logging.getLogger(__name__)

COMMENT_TYPE = "comment_type"
CAPTION_FILTER = AllowListFilter(COMMENT_TYPE, ["Caption"])


class TableUpdater(BatchConsumer):
    """Stores a comment on an existing image record.

    The comment is stored under the lower-cased ``comment_type`` attribute
    (``Caption`` -> ``caption``). Comments for unknown images are dropped.
    """

    name = "update-table"

    def __init__(self, state_store: StateStore):
        self.state_store = state_store

    async def process_message(self, message: Message) -> None:
        payload = unwrap_notification(message.body)
        try:
            update = CaptionUpdate.model_validate(payload)
        except ModelValidationError as e:
            raise PayloadError(f"Invalid table update: {e}") from e

        comment_type = message.attributes.get(COMMENT_TYPE, "Caption")
        stored = await self.state_store.upsert(
            ImageRecord(filename=update.id, attributes={comment_type.lower(): update.value}),
            merge=True,
            only_if_exists=True,
            attributes={COMMENT_TYPE: comment_type},
        )
        logger.info(
            "Table update processed",
            extra={
                "filename": update.id,
                "comment_type": comment_type,
                "applied": stored is not None,
            },
        )
