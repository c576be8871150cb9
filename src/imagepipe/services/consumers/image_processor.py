"""
Validate-and-record consumer for created images.

Consumes the image process queue. Each bucket record is decoded, checked for
a supported extension, fetched from the object store and upserted into the
images table. Unsupported objects are handled by the configured
``ValidationPolicy``.
"""

import logging
from enum import Enum
from typing import Iterable, List, Optional

from imagepipe.core.exceptions import ValidationError
from imagepipe.core.logging import object_uri_context
from imagepipe.messaging.envelope import extract_storage_objects, unwrap_notification
from imagepipe.messaging.queue import ERROR_TYPE, Queue
from imagepipe.models.events import DeadLetterBody, ImageRecord, Message, StorageObject
from imagepipe.services.consumers.base import BatchConsumer
from imagepipe.storage.base import ObjectStore
from imagepipe.store.state_store import StateStore

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = frozenset({"jpeg", "png"})
UNSUPPORTED_EXTENSION = "Unsupported file extension"


class ValidationPolicy(str, Enum):
    """What happens to an object that fails validation.

    DEAD_LETTER writes a structured entry to the dead-letter queue at once
    and acknowledges the message: one attempt, no retry cost.
    RETRY raises, so the queue redelivers the message until its redrive
    threshold moves it to the dead-letter queue: slower to fail, and each
    attempt costs an invocation.
    """

    DEAD_LETTER = "dead_letter"
    RETRY = "retry"


def file_extension(key: str) -> Optional[str]:
    """Lower-cased text after the final '.' of a key, or None without one."""
    if "." not in key:
        return None
    return key.rsplit(".", 1)[1].lower()


def validate_extension(key: str, allowed: Iterable[str] = DEFAULT_EXTENSIONS) -> str:
    """Return the extension of ``key`` or raise if it is not allowed.

    Raises:
        ValidationError: If the extension is missing or not allowed
    """
    extension = file_extension(key)
    if extension is None or extension not in allowed:
        raise ValidationError(UNSUPPORTED_EXTENSION)
    return extension


class ImageProcessor(BatchConsumer):
    """Accepts supported images and records them in the state store."""

    name = "process-image"

    def __init__(
        self,
        state_store: StateStore,
        object_store: ObjectStore,
        dead_letter_queue: Queue,
        policy: ValidationPolicy = ValidationPolicy.DEAD_LETTER,
        allowed_extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    ):
        self.state_store = state_store
        self.object_store = object_store
        self.dead_letter_queue = dead_letter_queue
        self.policy = ValidationPolicy(policy)
        self.allowed_extensions = frozenset(ext.lower() for ext in allowed_extensions)

    async def process_message(self, message: Message) -> None:
        """Record every acceptable object of a message.

        Dead-letter entries are written only after every record of the
        message was handled, so a redelivered message never repeats them.
        """
        payload = unwrap_notification(message.body)
        rejected: List[DeadLetterBody] = []
        for storage_object in extract_storage_objects(payload):
            object_uri_context.set(storage_object.uri)
            rejection = await self.process_object(storage_object)
            if rejection is not None:
                rejected.append(rejection)

        for body in rejected:
            await self.dead_letter_queue.send(
                body.model_dump_json().encode("utf-8"),
                {ERROR_TYPE: ValidationError.__name__},
            )

    async def process_object(self, storage_object: StorageObject) -> Optional[DeadLetterBody]:
        """Validate, fetch and record one object.

        Returns:
            The dead-letter entry for an unacceptable object, None otherwise
        """
        try:
            key = storage_object.decoded_key()
            validate_extension(key, self.allowed_extensions)
        except ValidationError as e:
            return self.reject(storage_object, str(e))

        content = await self.object_store.fetch(storage_object.bucket, key)
        await self.state_store.upsert(
            ImageRecord(
                filename=key,
                attributes={"bucket": storage_object.bucket, "size_bytes": len(content)},
            ),
            merge=True,
        )
        logger.info(
            "Image accepted",
            extra={"bucket": storage_object.bucket, "key": key, "size_bytes": len(content)},
        )
        return None

    def reject(self, storage_object: StorageObject, error: str) -> DeadLetterBody:
        """Apply the validation policy to an unacceptable object.

        Raises:
            ValidationError: Under the retry policy
        """
        try:
            key = storage_object.decoded_key()
        except ValidationError:
            key = storage_object.key

        logger.warning(
            "Image rejected",
            extra={
                "bucket": storage_object.bucket,
                "key": key,
                "error": error,
                "validation_policy": self.policy.value,
            },
        )
        if self.policy is ValidationPolicy.RETRY:
            raise ValidationError(error)
        return DeadLetterBody(bucket=storage_object.bucket, key=key, error=error)
