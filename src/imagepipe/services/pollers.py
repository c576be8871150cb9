"""
Event source pollers.

``QueuePoller`` feeds queue batches to a batch consumer and settles every
delivered message with ack or fail. ``StreamPoller`` feeds change stream
records to a change event consumer, bisecting failing batches and sending
what cannot be resolved to a failure queue.
"""

import asyncio
import json
import logging
from typing import List, Optional, Sequence

from imagepipe.messaging.filters import FilterPolicy, accepts
from imagepipe.messaging.queue import Queue
from imagepipe.models.events import ChangeEvent, Message
from imagepipe.services.consumers.base import (
    BatchConsumer,
    BatchItemFailure,
    BatchResult,
    ChangeEventConsumer,
)
from imagepipe.store.change_stream import ChangeStream

logger = logging.getLogger(__name__)


class QueuePoller:
    """Delivers queue batches to a consumer."""

    def __init__(self, queue: Queue, consumer: BatchConsumer, invocation_timeout: float = 15.0):
        self.queue = queue
        self.consumer = consumer
        self.invocation_timeout = invocation_timeout
        self._stopping = asyncio.Event()

    async def run_once(self, max_wait: float | None = None) -> BatchResult | None:
        """Process one batch. Returns None if the queue had nothing to deliver."""
        batch = await self.queue.dequeue_batch(max_wait=max_wait)
        if not batch:
            return None

        try:
            result = await asyncio.wait_for(
                self.consumer.handle_batch(batch), self.invocation_timeout
            )
        except asyncio.TimeoutError:
            logger.error(
                "Consumer invocation timed out",
                extra={
                    "queue": self.queue.name,
                    "consumer": self.consumer.name,
                    "batch_size": len(batch),
                    "timeout": self.invocation_timeout,
                },
            )
            for message in batch:
                await self.queue.fail(message, "Consumer invocation timed out")
            return self._failed_batch(batch, "Consumer invocation timed out")
        except Exception as e:
            logger.error(
                "Consumer invocation crashed",
                extra={
                    "queue": self.queue.name,
                    "consumer": self.consumer.name,
                    "batch_size": len(batch),
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            error = str(e) or type(e).__name__
            for message in batch:
                await self.queue.fail(message, error)
            return self._failed_batch(batch, error)

        errors = {failure.message_id: failure.error for failure in result.failures}
        for message in batch:
            if message.message_id in errors:
                await self.queue.fail(message, errors[message.message_id])
            else:
                await self.queue.ack(message)

        logger.info(
            "Batch settled",
            extra={
                "queue": self.queue.name,
                "consumer": self.consumer.name,
                "batch_size": len(batch),
                "failed": len(errors),
            },
        )
        return result

    @staticmethod
    def _failed_batch(batch: Sequence[Message], error: str) -> BatchResult:
        return BatchResult(
            failures=[BatchItemFailure(message_id=m.message_id, error=error) for m in batch]
        )

    async def run(self) -> None:
        """Poll until ``stop()`` is called."""
        logger.info(
            "Queue poller started",
            extra={"queue": self.queue.name, "consumer": self.consumer.name},
        )
        while not self._stopping.is_set():
            await self.run_once()
        logger.info("Queue poller stopped", extra={"queue": self.queue.name})

    def stop(self) -> None:
        self._stopping.set()


class StreamPoller:
    """Delivers change stream batches to a consumer, oldest record first."""

    def __init__(
        self,
        stream: ChangeStream,
        consumer: ChangeEventConsumer,
        batch_size: int = 5,
        retry_attempts: int = 2,
        bisect_on_error: bool = True,
        failure_sink: Optional[Queue] = None,
        filter: Optional[FilterPolicy] = None,
        poll_interval: float = 1.0,
    ):
        self.stream = stream
        self.consumer = consumer
        self.batch_size = batch_size
        self.retry_attempts = retry_attempts
        self.bisect_on_error = bisect_on_error
        self.failure_sink = failure_sink
        self.filter = filter
        self.poll_interval = poll_interval
        self.position = stream.trim_horizon()
        self._stopping = asyncio.Event()

    async def run_once(self) -> int:
        """Process one batch from the current position.

        Returns:
            Number of stream records consumed (filtered ones included)
        """
        records = self.stream.read(self.position, self.batch_size)
        if not records:
            return 0

        selected = [r for r in records if accepts(self.filter, r.attributes)]
        if selected:
            unresolved = await self._process(selected, self.retry_attempts)
            if unresolved:
                await self._report_failures(unresolved)

        self.position = records[-1].sequence_number
        return len(records)

    async def _process(self, records: Sequence[ChangeEvent], attempts_left: int) -> List[ChangeEvent]:
        """Invoke the consumer; return the records that stayed failed."""
        result = await self.consumer.handle_records(records)
        failed = set(result.failed_sequence_numbers)
        if not failed:
            return []
        if attempts_left <= 0:
            return [r for r in records if r.sequence_number in failed]

        logger.warning(
            "Stream batch failed, retrying",
            extra={
                "consumer": self.consumer.name,
                "batch_size": len(records),
                "failed": len(failed),
                "attempts_left": attempts_left,
            },
        )
        if self.bisect_on_error and len(records) > 1:
            middle = len(records) // 2
            halves = [records[:middle], records[middle:]]
        else:
            halves = [records]

        unresolved: List[ChangeEvent] = []
        for half in halves:
            if any(r.sequence_number in failed for r in half):
                unresolved.extend(await self._process(half, attempts_left - 1))
        return unresolved

    async def _report_failures(self, records: Sequence[ChangeEvent]) -> None:
        logger.error(
            "Stream records failed permanently",
            extra={
                "consumer": self.consumer.name,
                "sequence_numbers": [r.sequence_number for r in records],
            },
        )
        if self.failure_sink is None:
            return
        body = {
            "consumer": self.consumer.name,
            "records": [json.loads(r.model_dump_json()) for r in records],
        }
        await self.failure_sink.send(
            json.dumps(body).encode("utf-8"),
            {"source": "change-stream", "consumer": self.consumer.name},
        )

    async def run(self) -> None:
        """Poll until ``stop()`` is called."""
        logger.info(
            "Stream poller started",
            extra={"consumer": self.consumer.name, "position": self.position},
        )
        while not self._stopping.is_set():
            consumed = await self.run_once()
            if not consumed:
                await self.stream.wait_for_records(self.position, self.poll_interval)
        logger.info("Stream poller stopped", extra={"consumer": self.consumer.name})

    def stop(self) -> None:
        self._stopping.set()
