"""
Bucket watcher.

Turns bucket mutations into notification events and publishes them:
created objects to one topic, removed objects to another.
"""

import logging
from typing import Any, Dict, List, Mapping

from imagepipe.messaging.topic import PublishResult, Topic
from imagepipe.models.events import EventType, NotificationEvent, StorageObject

logger = logging.getLogger(__name__)


class BucketWatcher:
    """Routes bucket mutation notifications to their topics."""

    def __init__(self, created_topic: Topic, removed_topic: Topic):
        if created_topic is removed_topic:
            raise ValueError("Created and removed events must use different topics")
        self.created_topic = created_topic
        self.removed_topic = removed_topic

    def topic_for(self, event_type: EventType) -> Topic:
        return self.created_topic if event_type is EventType.CREATED else self.removed_topic

    async def emit(self, event: NotificationEvent) -> PublishResult:
        """Publish one notification event to the topic for its type."""
        topic = self.topic_for(event.type)
        logger.info(
            "Bucket mutation observed",
            extra={
                "event_type": event.type.value,
                "bucket": event.object.bucket,
                "key": event.object.key,
                "topic": topic.name,
            },
        )
        return await topic.publish(event)

    async def object_created(
        self, bucket: str, key: str, attributes: Mapping[str, str] | None = None
    ) -> PublishResult:
        """Publish a Created event for a real (unencoded) object key."""
        return await self.emit(
            NotificationEvent(
                type=EventType.CREATED,
                object=StorageObject.from_raw_key(bucket, key),
                attributes=dict(attributes or {}),
            )
        )

    async def object_removed(
        self, bucket: str, key: str, attributes: Mapping[str, str] | None = None
    ) -> PublishResult:
        """Publish a Removed event for a real (unencoded) object key."""
        return await self.emit(
            NotificationEvent(
                type=EventType.REMOVED,
                object=StorageObject.from_raw_key(bucket, key),
                attributes=dict(attributes or {}),
            )
        )

    async def observe(self, notification: Mapping[str, Any]) -> List[NotificationEvent]:
        """Ingest a bucket notification document.

        Keys are passed through in their encoded form; decoding happens in
        the consumers. Records with an unknown event name or missing object
        fields are skipped.

        Returns:
            Events that were published
        """
        published: List[NotificationEvent] = []
        for record in notification.get("Records") or []:
            event_name = record.get("eventName", "") if isinstance(record, dict) else ""
            event_type = EventType.from_event_name(event_name)
            if event_type is None:
                logger.warning(
                    "Skipping unsupported bucket event",
                    extra={"event_name": event_name},
                )
                continue

            try:
                s3: Dict[str, Any] = record["s3"]
                storage_object = StorageObject(
                    bucket=s3["bucket"]["name"], key=s3["object"]["key"]
                )
            except (KeyError, TypeError) as e:
                logger.warning(
                    "Skipping bucket event without object identity",
                    extra={"event_name": event_name, "error": str(e)},
                )
                continue

            event = NotificationEvent(type=event_type, object=storage_object)
            await self.emit(event)
            published.append(event)
        return published
