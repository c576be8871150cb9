"""
Pipeline wiring.

Builds the topics, queues, table and consumers and connects them:

    new-image topic      -> confirmation mailer (direct)
                         -> image process queue -> image processor
    delete-update topic  -> delete processor (direct)
                         -> table updater (direct, comment_type in {Caption})
    image process queue  -> dead-letter queue after 3 failed deliveries
    dead-letter queue    -> rejection mailer
    images table stream  -> delete mailer (failures -> stream failure queue)
    direct subscribers   -> delivery failure queue after 3 failed invocations
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

from imagepipe.core.config import Settings
from imagepipe.messaging.queue import Queue
from imagepipe.messaging.topic import Topic
from imagepipe.services.consumers.delete_processor import DeleteProcessor
from imagepipe.services.consumers.image_processor import ImageProcessor, ValidationPolicy
from imagepipe.services.consumers.mailers import ConfirmationMailer, DeleteMailer, RejectionMailer
from imagepipe.services.consumers.table_updater import CAPTION_FILTER, TableUpdater
from imagepipe.services.mailer import Mailer
from imagepipe.services.pollers import QueuePoller, StreamPoller
from imagepipe.services.watcher import BucketWatcher
from imagepipe.storage.base import ObjectStore
from imagepipe.store.change_stream import ChangeStream
from imagepipe.store.state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Every component of a running pipeline, plus its poller tasks."""

    settings: Settings
    state_store: StateStore
    dead_letter_queue: Queue
    image_process_queue: Queue
    stream_failure_queue: Queue
    delivery_failure_queue: Queue
    new_image_topic: Topic
    delete_and_update_topic: Topic
    watcher: BucketWatcher
    image_processor: ImageProcessor
    queue_pollers: List[QueuePoller]
    stream_pollers: List[StreamPoller]
    _tasks: List[asyncio.Task] = field(default_factory=list)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """Start every poller as a background task on the running loop."""
        if self.running:
            return
        for poller in [*self.queue_pollers, *self.stream_pollers]:
            self._tasks.append(asyncio.create_task(poller.run()))
        logger.info("Pipeline started", extra={"pollers": len(self._tasks)})

    async def stop(self) -> None:
        """Stop pollers and wait for in-progress batches to settle."""
        for poller in [*self.queue_pollers, *self.stream_pollers]:
            poller.stop()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Pipeline stopped")

    async def drain(self, max_rounds: int = 100) -> None:
        """Run pollers until no queue or stream has work left (no waiting)."""
        for _ in range(max_rounds):
            progressed = False
            for poller in self.queue_pollers:
                if await poller.run_once(max_wait=0) is not None:
                    progressed = True
            for stream_poller in self.stream_pollers:
                if await stream_poller.run_once():
                    progressed = True
            if not progressed:
                return
        logger.warning("Pipeline drain stopped before queues emptied", extra={"max_rounds": max_rounds})


def build_pipeline(settings: Settings, object_store: ObjectStore, mailer: Mailer) -> Pipeline:
    """Create and connect every pipeline component.

    Args:
        settings: Pipeline configuration
        object_store: Object store collaborator used to fetch uploads
        mailer: Mailer collaborator used by notification consumers
    """
    policy = ValidationPolicy(settings.VALIDATION_POLICY)
    logger.warning(
        "Validation policy for unsupported files is active",
        extra={
            "validation_policy": policy.value,
            "detail": (
                "dead_letter rejects on first attempt without retries; "
                "retry redelivers until the redrive threshold"
            ),
            "redrive_threshold": settings.REDRIVE_THRESHOLD,
        },
    )

    state_store = StateStore(
        settings.TABLE_NAME, ChangeStream(retention=settings.STREAM_RETENTION)
    )

    dead_letter_queue = Queue(
        settings.DLQ_URL,
        batch_size=settings.QUEUE_BATCH_SIZE,
        max_wait=settings.QUEUE_MAX_WAIT_SECONDS,
        redrive_threshold=settings.REDRIVE_THRESHOLD,
    )
    image_process_queue = Queue(
        "img-created-queue",
        batch_size=settings.QUEUE_BATCH_SIZE,
        max_wait=settings.QUEUE_MAX_WAIT_SECONDS,
        redrive_threshold=settings.REDRIVE_THRESHOLD,
        dead_letter_target=dead_letter_queue,
    )
    stream_failure_queue = Queue(settings.STREAM_FAILURE_QUEUE)
    delivery_failure_queue = Queue(settings.DELIVERY_FAILURE_QUEUE)
    topic_options = {
        "delivery_attempts": settings.DIRECT_DELIVERY_ATTEMPTS,
        "retry_wait": settings.DIRECT_RETRY_WAIT_SECONDS,
        "delivery_timeout": settings.CONSUMER_TIMEOUT_SECONDS,
        "dead_letter_target": delivery_failure_queue,
    }

    image_processor = ImageProcessor(
        state_store,
        object_store,
        dead_letter_queue,
        policy=policy,
        allowed_extensions=settings.allowed_extensions,
    )

    new_image_topic = Topic("NewImageTopic", display_name="New Image topic", **topic_options)
    new_image_topic.subscribe(
        ConfirmationMailer(mailer, settings.DESTINATION_EMAIL), name="confirmation-mailer"
    )
    new_image_topic.subscribe(image_process_queue)

    delete_and_update_topic = Topic(
        "DeleteAndUpdateTopic", display_name="Delete and Update Topic", **topic_options
    )
    delete_and_update_topic.subscribe(DeleteProcessor(state_store), name="process-delete")
    delete_and_update_topic.subscribe(
        TableUpdater(state_store), filter=CAPTION_FILTER, name="update-table"
    )

    watcher = BucketWatcher(new_image_topic, delete_and_update_topic)

    queue_pollers = [
        QueuePoller(image_process_queue, image_processor, settings.CONSUMER_TIMEOUT_SECONDS),
        QueuePoller(
            dead_letter_queue,
            RejectionMailer(mailer, settings.DESTINATION_EMAIL),
            settings.CONSUMER_TIMEOUT_SECONDS,
        ),
    ]
    stream_pollers = [
        StreamPoller(
            state_store.stream,
            DeleteMailer(mailer, settings.DESTINATION_EMAIL),
            batch_size=settings.STREAM_BATCH_SIZE,
            retry_attempts=settings.STREAM_RETRY_ATTEMPTS,
            bisect_on_error=settings.STREAM_BISECT_ON_ERROR,
            failure_sink=stream_failure_queue,
            poll_interval=settings.STREAM_POLL_SECONDS,
        ),
    ]

    return Pipeline(
        settings=settings,
        state_store=state_store,
        dead_letter_queue=dead_letter_queue,
        image_process_queue=image_process_queue,
        stream_failure_queue=stream_failure_queue,
        delivery_failure_queue=delivery_failure_queue,
        new_image_topic=new_image_topic,
        delete_and_update_topic=delete_and_update_topic,
        watcher=watcher,
        image_processor=image_processor,
        queue_pollers=queue_pollers,
        stream_pollers=stream_pollers,
    )
