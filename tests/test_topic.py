"""Tests for the fan-out topic."""

import asyncio

import pytest

from imagepipe.messaging.envelope import unwrap_notification
from imagepipe.messaging.filters import AllowListFilter
from imagepipe.messaging.queue import DEAD_LETTER_REASON, DEAD_LETTER_SOURCE, Queue
from imagepipe.messaging.topic import Topic
from imagepipe.models.events import EventType, NotificationEvent, StorageObject
from imagepipe.services.consumers.base import BatchItemFailure, BatchResult


class CollectingSubscriber:
    def __init__(self, fail: bool = False, delay: float = 0):
        self.messages = []
        self.fail = fail
        self.delay = delay

    async def __call__(self, messages):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("subscriber down")
        self.messages.extend(messages)


def _event(key="photo.png", attributes=None):
    return NotificationEvent(
        type=EventType.CREATED,
        object=StorageObject(bucket="images", key=key),
        attributes=attributes or {},
    )


@pytest.mark.asyncio
async def test_publish_fans_out_to_every_subscriber():
    """Test that direct subscribers and queues each get a copy."""
    topic = Topic("NewImageTopic")
    direct = CollectingSubscriber()
    queue = Queue("img-created-queue")
    topic.subscribe(direct, name="mailer")
    topic.subscribe(queue)

    result = await topic.publish(_event())

    assert sorted(result.delivered) == ["img-created-queue", "mailer"]
    assert len(direct.messages) == 1
    assert queue.pending_count == 1

    queued = queue.peek()[0]
    assert queued.message_id != direct.messages[0].message_id
    payload = unwrap_notification(queued.body)
    assert payload["Records"][0]["s3"]["object"]["key"] == "photo.png"


@pytest.mark.asyncio
async def test_filtered_subscription_only_receives_matching_attributes():
    """Test attribute filtering per subscription."""
    topic = Topic("DeleteAndUpdateTopic")
    unfiltered = CollectingSubscriber()
    captions = CollectingSubscriber()
    topic.subscribe(unfiltered, name="delete")
    topic.subscribe(captions, filter=AllowListFilter("comment_type", ["Caption"]), name="update")

    await topic.publish_message({"id": "photo.png", "value": "Sunset"}, {"comment_type": "Caption"})
    result = await topic.publish_message({"id": "photo.png", "value": "x"}, {"comment_type": "Other"})
    await topic.publish(_event())

    assert len(unfiltered.messages) == 3
    assert len(captions.messages) == 1
    assert captions.messages[0].attributes == {"comment_type": "Caption"}
    assert result.filtered == ["update"]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others():
    """Test that one subscriber failure leaves other deliveries intact."""
    topic = Topic("NewImageTopic", retry_wait=0)
    broken = CollectingSubscriber(fail=True)
    slow = CollectingSubscriber(delay=0.01)
    queue = Queue("img-created-queue")
    topic.subscribe(broken, name="broken")
    topic.subscribe(slow, name="slow")
    topic.subscribe(queue)

    result = await topic.publish(_event())

    assert "broken" in result.failed
    assert sorted(result.delivered) == ["img-created-queue", "slow"]
    assert len(slow.messages) == 1
    assert queue.pending_count == 1


@pytest.mark.asyncio
async def test_publish_without_subscribers():
    """Test that publishing to an empty topic is a no-op."""
    result = await Topic("empty").publish(_event())
    assert result.delivered == []
    assert result.failed == {}


class FlakyBatchSubscriber:
    """Reports its message as failed for the first ``failures`` invocations."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0
        self.receive_counts = []

    async def __call__(self, messages):
        self.calls += 1
        self.receive_counts.append(messages[0].receive_count)
        if self.calls <= self.failures:
            return BatchResult(
                failures=[BatchItemFailure(message_id=messages[0].message_id, error="table unavailable")]
            )
        return BatchResult(processed=1)


@pytest.mark.asyncio
async def test_reported_failure_is_retried_until_success():
    """Test that a direct subscriber's batch item failure is redelivered."""
    topic = Topic("DeleteAndUpdateTopic", retry_wait=0)
    flaky = FlakyBatchSubscriber(failures=2)
    topic.subscribe(flaky, name="process-delete")

    result = await topic.publish(_event())

    assert result.delivered == ["process-delete"]
    assert result.failed == {}
    assert flaky.calls == 3
    assert flaky.receive_counts == [1, 2, 3]


@pytest.mark.asyncio
async def test_exhausted_direct_delivery_is_dead_lettered():
    """Test that a subscriber failing every attempt is reported and dead-lettered."""
    failures = Queue("delivery-failures")
    topic = Topic("DeleteAndUpdateTopic", retry_wait=0, dead_letter_target=failures)
    flaky = FlakyBatchSubscriber(failures=10)
    topic.subscribe(flaky, name="process-delete")

    result = await topic.publish(_event())

    assert result.delivered == []
    assert result.failed == {"process-delete": "table unavailable"}
    assert flaky.calls == 3
    entry = failures.peek()[0]
    assert entry.attributes[DEAD_LETTER_REASON] == "table unavailable"
    assert entry.attributes[DEAD_LETTER_SOURCE] == "process-delete"
    assert entry.attributes["receive_count"] == "3"
    assert unwrap_notification(entry.body)["Records"][0]["s3"]["object"]["key"] == "photo.png"


@pytest.mark.asyncio
async def test_hung_subscriber_is_bounded_by_timeout():
    """Test that a hung direct subscriber cannot block the publisher."""
    topic = Topic("NewImageTopic", retry_wait=0, delivery_attempts=2, delivery_timeout=0.05)
    hung = CollectingSubscriber(delay=10)
    queue = Queue("img-created-queue")
    topic.subscribe(hung, name="hung")
    topic.subscribe(queue)

    result = await asyncio.wait_for(topic.publish(_event()), 2)

    assert "timed out" in result.failed["hung"]
    assert result.delivered == ["img-created-queue"]


def test_delivery_attempts_must_be_positive():
    with pytest.raises(ValueError):
        Topic("t", delivery_attempts=0)
