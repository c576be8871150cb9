"""
Durable-style buffered queue with batched delivery and redrive.

Messages are delivered in batches of up to ``batch_size``; a delivered
message stays invisible to other batches until it is acked or failed. A
message that fails ``redrive_threshold`` deliveries is moved to the
dead-letter target with an annotation describing why.
"""

import asyncio
import logging
from typing import Dict, List, Mapping, Optional

from imagepipe.core.exceptions import PermanentError
from imagepipe.models.events import Message

logger = logging.getLogger(__name__)

DEAD_LETTER_REASON = "dead_letter_reason"
DEAD_LETTER_SOURCE = "dead_letter_source"
DEAD_LETTER_RECEIVE_COUNT = "receive_count"
ERROR_TYPE = "error_type"


def dead_letter_copy(message: Message, reason: str, source: str) -> Message:
    """Copy of an exhausted message annotated with why and where it failed.

    The message id and body are kept so the entry can be traced to the
    original delivery.
    """
    return Message(
        message_id=message.message_id,
        body=message.body,
        attributes={
            **message.attributes,
            DEAD_LETTER_REASON: reason,
            DEAD_LETTER_SOURCE: source,
            DEAD_LETTER_RECEIVE_COUNT: str(message.receive_count),
            ERROR_TYPE: PermanentError.__name__,
        },
        enqueued_at=message.enqueued_at,
    )


class Queue:
    """At-least-once, batch-oriented message buffer."""

    def __init__(
        self,
        name: str,
        batch_size: int = 5,
        max_wait: float = 10.0,
        redrive_threshold: int = 3,
        dead_letter_target: Optional["Queue"] = None,
    ):
        """Create a queue.

        Args:
            name: Queue name (used in logs and dead-letter annotations)
            batch_size: Maximum messages returned by one ``dequeue_batch``
            max_wait: Seconds ``dequeue_batch`` waits for a full batch
            redrive_threshold: Delivery attempts before dead-lettering
            dead_letter_target: Queue receiving exhausted messages
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if redrive_threshold < 1:
            raise ValueError("redrive_threshold must be at least 1")

        self.name = name
        self.batch_size = batch_size
        self.max_wait = max_wait
        self.redrive_threshold = redrive_threshold
        self.dead_letter_target = dead_letter_target

        self._pending: List[Message] = []
        self._in_flight: Dict[str, Message] = {}
        self._condition = asyncio.Condition()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def peek(self) -> List[Message]:
        """Snapshot of pending messages without delivering them."""
        return list(self._pending)

    async def enqueue(self, message: Message) -> None:
        """Append a message and wake any waiting consumer."""
        async with self._condition:
            self._pending.append(message)
            self._condition.notify_all()
        logger.debug(
            "Message enqueued",
            extra={"queue": self.name, "message_id": message.message_id},
        )

    async def send(self, body: bytes, attributes: Mapping[str, str] | None = None) -> Message:
        """Enqueue a new message built from a body and attributes."""
        message = Message(body=body, attributes=dict(attributes or {}))
        await self.enqueue(message)
        return message

    async def dequeue_batch(self, max_wait: float | None = None) -> List[Message]:
        """Deliver up to ``batch_size`` messages.

        Waits up to ``max_wait`` seconds for a full batch, then returns
        whatever is available (possibly nothing). ``receive_count`` of each
        returned message is incremented here, at delivery time.
        """
        wait = self.max_wait if max_wait is None else max_wait
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait

        async with self._condition:
            while len(self._pending) < self.batch_size:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    await asyncio.wait_for(self._condition.wait(), remaining)
                except asyncio.TimeoutError:
                    break

            batch = self._pending[: self.batch_size]
            del self._pending[: len(batch)]
            for message in batch:
                message.receive_count += 1
                self._in_flight[message.message_id] = message

        if batch:
            logger.debug(
                "Delivering batch",
                extra={"queue": self.name, "batch_size": len(batch)},
            )
        return batch

    async def ack(self, message: Message) -> None:
        """Permanently remove a delivered message."""
        async with self._condition:
            self._in_flight.pop(message.message_id, None)

    async def fail(self, message: Message, error: str = "Processing failed") -> None:
        """Record a failed delivery.

        Returns the message to pending, or moves it to the dead-letter target
        once ``receive_count`` reaches ``redrive_threshold``.
        """
        async with self._condition:
            if self._in_flight.pop(message.message_id, None) is None:
                logger.warning(
                    "Ignoring failure for message not in flight",
                    extra={"queue": self.name, "message_id": message.message_id},
                )
                return

            exhausted = message.receive_count >= self.redrive_threshold
            if not exhausted or self.dead_letter_target is None:
                self._pending.append(message)
                self._condition.notify_all()
                logger.info(
                    "Message returned for redelivery",
                    extra={
                        "queue": self.name,
                        "message_id": message.message_id,
                        "receive_count": message.receive_count,
                        "error": error,
                    },
                )
                return

        await self.dead_letter_target.enqueue(dead_letter_copy(message, error, self.name))
        logger.warning(
            "Message moved to dead-letter queue",
            extra={
                "queue": self.name,
                "dead_letter_queue": self.dead_letter_target.name,
                "message_id": message.message_id,
                "receive_count": message.receive_count,
                "error": error,
            },
        )
