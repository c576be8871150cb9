"""Batch consumer contract shared by every pipeline stage."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Sequence

from imagepipe.core.logging import object_uri_context
from imagepipe.models.events import ChangeEvent, Message

logger = logging.getLogger(__name__)


@dataclass
class BatchItemFailure:
    """A message that was not processed successfully."""

    message_id: str
    error: str


@dataclass
class BatchResult:
    """Per-message outcome of one consumer invocation."""

    failures: List[BatchItemFailure] = field(default_factory=list)
    processed: int = 0

    @property
    def failed_ids(self) -> set[str]:
        return {failure.message_id for failure in self.failures}


class BatchConsumer(ABC):
    """Processes each message of a batch in isolation.

    An exception raised for one message is logged and reported as a failure
    of that message only; the rest of the batch is still processed.
    """

    name: str = "consumer"

    async def handle_batch(self, messages: Sequence[Message]) -> BatchResult:
        result = BatchResult()
        for message in messages:
            token = object_uri_context.set(None)
            try:
                await self.process_message(message)
                result.processed += 1
            except Exception as e:
                logger.error(
                    "Message processing failed",
                    extra={
                        "consumer": self.name,
                        "message_id": message.message_id,
                        "receive_count": message.receive_count,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )
                result.failures.append(
                    BatchItemFailure(message_id=message.message_id, error=str(e) or type(e).__name__)
                )
            finally:
                object_uri_context.reset(token)
        return result

    async def __call__(self, messages: Sequence[Message]) -> BatchResult:
        return await self.handle_batch(messages)

    @abstractmethod
    async def process_message(self, message: Message) -> None:
        """Process one message; raise to report it as failed."""
        pass


@dataclass
class StreamBatchResult:
    """Per-record outcome of one change stream consumer invocation."""

    failed_sequence_numbers: List[int] = field(default_factory=list)
    processed: int = 0


class ChangeEventConsumer(ABC):
    """Processes change stream records one by one, isolating failures."""

    name: str = "stream-consumer"

    async def handle_records(self, records: Sequence[ChangeEvent]) -> StreamBatchResult:
        result = StreamBatchResult()
        for record in records:
            try:
                await self.process_record(record)
                result.processed += 1
            except Exception as e:
                logger.error(
                    "Change record processing failed",
                    extra={
                        "consumer": self.name,
                        "sequence_number": record.sequence_number,
                        "filename": record.filename,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )
                result.failed_sequence_numbers.append(record.sequence_number)
        return result

    @abstractmethod
    async def process_record(self, record: ChangeEvent) -> None:
        """Process one change record; raise to report it as failed."""
        pass
