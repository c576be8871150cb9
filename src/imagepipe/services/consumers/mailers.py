"""
Terminal notification consumers.

Each consumer sends one outbound message per item. A failed send is logged
and the item acknowledged, unless the mailer marks the failure retryable, in
which case the item is reported failed so its source redelivers it.
"""

import json
import logging

from pydantic import ValidationError as ModelValidationError

from imagepipe.core.exceptions import DecodeError, MailerError, ValidationError
from imagepipe.messaging.envelope import (
    extract_storage_objects,
    record_event_names,
    unwrap_notification,
)
from imagepipe.messaging.queue import DEAD_LETTER_REASON
from imagepipe.models.events import ChangeEvent, ChangeType, DeadLetterBody, EventType, Message
from imagepipe.services.consumers.base import BatchConsumer, ChangeEventConsumer
from imagepipe.services.mailer import Mailer

logger = logging.getLogger(__name__)


async def send_notification(mailer: Mailer, to: str, subject: str, body: str) -> bool:
    """Send one message; swallow non-retryable failures.

    Returns:
        True if the message was sent

    Raises:
        MailerError: If the failure is retryable
    """
    try:
        await mailer.send(to, subject, body)
        return True
    except MailerError as e:
        if e.retryable:
            raise
        logger.error(
            "Notification delivery failed",
            extra={"to": to, "subject": subject, "error": str(e)},
        )
    except Exception as e:
        logger.error(
            "Notification delivery failed unexpectedly",
            extra={"to": to, "subject": subject, "error": str(e), "error_type": type(e).__name__},
            exc_info=True,
        )
    return False


def _display_key(storage_object) -> str:
    try:
        return storage_object.decoded_key()
    except ValidationError:
        return storage_object.key


class ConfirmationMailer(BatchConsumer):
    """Confirms each new upload; direct subscriber of the new image topic."""

    name = "confirmation-mailer"

    def __init__(self, mailer: Mailer, recipient: str):
        self.mailer = mailer
        self.recipient = recipient

    async def process_message(self, message: Message) -> None:
        payload = unwrap_notification(message.body)
        for storage_object, event_name in zip(
            extract_storage_objects(payload), record_event_names(payload)
        ):
            if EventType.from_event_name(event_name) is not EventType.CREATED:
                continue
            key = _display_key(storage_object)
            await send_notification(
                self.mailer,
                self.recipient,
                "New Image Upload",
                f"We received your image. Its URL is s3://{storage_object.bucket}/{key}",
            )


class RejectionMailer(BatchConsumer):
    """Reports every dead-lettered object; consumes the dead-letter queue.

    Two body shapes arrive here: the structured ``{bucket, key, error}``
    written by fail-fast validation, and original notification envelopes
    redriven by a queue, whose cause is in the ``dead_letter_reason``
    attribute.
    """

    name = "rejection-mailer"

    def __init__(self, mailer: Mailer, recipient: str):
        self.mailer = mailer
        self.recipient = recipient

    async def process_message(self, message: Message) -> None:
        for body in self.rejections(message):
            await send_notification(
                self.mailer,
                self.recipient,
                "Image Upload Rejected",
                f"Your upload {body.bucket}/{body.key} was rejected: {body.error}",
            )

    @staticmethod
    def rejections(message: Message) -> list[DeadLetterBody]:
        """Dead-letter entries described by one message."""
        try:
            return [DeadLetterBody.model_validate_json(message.body)]
        except ModelValidationError:
            pass

        reason = message.attributes.get(DEAD_LETTER_REASON, "Processing failed")
        try:
            payload = unwrap_notification(message.body)
            objects = extract_storage_objects(payload)
        except DecodeError as e:
            logger.error(
                "Undecodable dead-letter message",
                extra={
                    "message_id": message.message_id,
                    "error": str(e),
                    "body": message.body[:512].decode("utf-8", errors="replace"),
                    "dead_letter_reason": reason,
                },
            )
            return []

        return [
            DeadLetterBody(bucket=obj.bucket, key=_display_key(obj), error=reason)
            for obj in objects
        ]


class DeleteMailer(ChangeEventConsumer):
    """Reports removed images; consumes the images table change stream."""

    name = "delete-mailer"

    def __init__(self, mailer: Mailer, recipient: str):
        self.mailer = mailer
        self.recipient = recipient

    async def process_record(self, record: ChangeEvent) -> None:
        if record.event_type is not ChangeType.REMOVE:
            return
        await send_notification(
            self.mailer,
            self.recipient,
            "Image Deleted",
            f"Your image {record.filename} has been deleted: "
            f"{json.dumps(record.before.to_item() if record.before else {}, default=str)}",
        )
