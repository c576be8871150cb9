"""Delete consumer: removes the table record of a removed object."""

import logging

from imagepipe.core.exceptions import ValidationError
from imagepipe.core.logging import object_uri_context
from imagepipe.messaging.envelope import (
    extract_storage_objects,
    record_event_names,
    unwrap_notification,
)
from imagepipe.models.events import EventType, Message
from imagepipe.services.consumers.base import BatchConsumer
from imagepipe.store.state_store import StateStore

logger = logging.getLogger(__name__)


class DeleteProcessor(BatchConsumer):
    """Subscribed unfiltered to the delete/update topic."""

    name = "process-delete"

    def __init__(self, state_store: StateStore):
        self.state_store = state_store

    async def process_message(self, message: Message) -> None:
        payload = unwrap_notification(message.body)
        objects = extract_storage_objects(payload)
        if not objects:
            # Table updates share the topic; they carry no bucket records.
            logger.debug(
                "Ignoring non-bucket message",
                extra={"message_id": message.message_id},
            )
            return

        for storage_object, event_name in zip(objects, record_event_names(payload)):
            if EventType.from_event_name(event_name) is not EventType.REMOVED:
                logger.debug(
                    "Ignoring bucket record that is not a removal",
                    extra={"event_name": event_name, "key": storage_object.key},
                )
                continue

            object_uri_context.set(storage_object.uri)
            try:
                key = storage_object.decoded_key()
            except ValidationError as e:
                logger.warning(
                    "Cannot delete record for malformed key",
                    extra={"key": storage_object.key, "error": str(e)},
                )
                continue

            removed = await self.state_store.delete(key)
            logger.info(
                "Delete processed",
                extra={"key": key, "record_existed": removed is not None},
            )
