"""
Fan-out topic.

One publish delivers an independent message copy to every subscription whose
filter accepts the message attributes. Subscribers are either queues
(buffered, retried by the queue) or coroutines invoked directly with a
one-message batch and retried in place.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_fixed

from imagepipe.core.exceptions import DeliveryError
from imagepipe.messaging.envelope import wrap_notification
from imagepipe.messaging.filters import FilterPolicy, accepts
from imagepipe.messaging.queue import Queue, dead_letter_copy
from imagepipe.models.events import Message, NotificationEvent
from imagepipe.services.consumers.base import BatchResult

logger = logging.getLogger(__name__)

DirectSubscriber = Callable[[Sequence[Message]], Awaitable[Any]]


@dataclass
class Subscription:
    """A subscriber and the optional filter guarding it.

    Direct subscribers are invoked up to ``max_attempts`` times, each
    attempt bounded by ``timeout``. An attempt fails when the subscriber
    raises, times out or returns a ``BatchResult`` with failures. After the
    last failed attempt the message goes to ``dead_letter_target`` and the
    error is raised to the publisher.
    """

    name: str
    subscriber: Union[Queue, DirectSubscriber]
    filter: Optional[FilterPolicy] = None
    max_attempts: int = 3
    retry_wait: float = 1.0
    timeout: Optional[float] = None
    dead_letter_target: Optional[Queue] = None

    async def deliver(self, message: Message) -> None:
        if isinstance(self.subscriber, Queue):
            await self.subscriber.enqueue(message)
            return

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_fixed(self.retry_wait),
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    await self._invoke(message)
        except Exception as e:
            await self._dead_letter(message, e)
            raise

    async def _invoke(self, message: Message) -> None:
        message.receive_count += 1
        try:
            result = await asyncio.wait_for(self.subscriber([message]), self.timeout)
        except asyncio.TimeoutError as e:
            raise DeliveryError(f"Subscriber timed out after {self.timeout}s") from e
        if isinstance(result, BatchResult) and result.failures:
            raise DeliveryError(result.failures[0].error)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.warning(
            "Direct delivery failed, retrying",
            extra={
                "subscription": self.name,
                "attempt": retry_state.attempt_number,
                "max_attempts": self.max_attempts,
                "error": str(retry_state.outcome.exception()),
            },
        )

    async def _dead_letter(self, message: Message, error: Exception) -> None:
        if self.dead_letter_target is None:
            return
        await self.dead_letter_target.enqueue(
            dead_letter_copy(message, str(error) or type(error).__name__, self.name)
        )


@dataclass
class PublishResult:
    """Outcome of a single publish."""

    delivered: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    filtered: List[str] = field(default_factory=list)


class Topic:
    """Broadcast point with per-subscription attribute filters."""

    def __init__(
        self,
        name: str,
        display_name: str = "",
        delivery_attempts: int = 3,
        retry_wait: float = 1.0,
        delivery_timeout: Optional[float] = None,
        dead_letter_target: Optional[Queue] = None,
    ):
        """Create a topic.

        Args:
            name: Topic name (used in envelopes and logs)
            display_name: Human readable name
            delivery_attempts: Invocations of a direct subscriber per message
            retry_wait: Seconds between direct delivery attempts
            delivery_timeout: Seconds a single direct invocation may take
            dead_letter_target: Queue receiving messages whose direct
                delivery failed every attempt
        """
        if delivery_attempts < 1:
            raise ValueError("delivery_attempts must be at least 1")
        self.name = name
        self.display_name = display_name or name
        self.delivery_attempts = delivery_attempts
        self.retry_wait = retry_wait
        self.delivery_timeout = delivery_timeout
        self.dead_letter_target = dead_letter_target
        self.subscriptions: List[Subscription] = []

    def subscribe(
        self,
        subscriber: Union[Queue, DirectSubscriber],
        filter: Optional[FilterPolicy] = None,
        name: Optional[str] = None,
    ) -> Subscription:
        """Attach a queue or direct subscriber, optionally filtered."""
        if name is None:
            name = subscriber.name if isinstance(subscriber, Queue) else getattr(
                subscriber, "__qualname__", type(subscriber).__name__
            )
        subscription = Subscription(
            name=name,
            subscriber=subscriber,
            filter=filter,
            max_attempts=self.delivery_attempts,
            retry_wait=self.retry_wait,
            timeout=self.delivery_timeout,
            dead_letter_target=self.dead_letter_target,
        )
        self.subscriptions.append(subscription)
        logger.info(
            "Subscription added",
            extra={"topic": self.name, "subscription": name, "filter": repr(filter)},
        )
        return subscription

    async def publish(self, event: NotificationEvent) -> PublishResult:
        """Publish a bucket notification event."""
        return await self.publish_message(event.to_payload(), event.attributes)

    async def publish_message(
        self,
        payload: Mapping[str, Any],
        attributes: Mapping[str, str] | None = None,
    ) -> PublishResult:
        """Wrap a payload once and deliver a copy to each matching subscription."""
        attributes = dict(attributes or {})
        template = Message(
            body=wrap_notification(payload, attributes, topic_name=self.name),
            attributes=attributes,
        )

        result = PublishResult()
        targets = []
        for subscription in self.subscriptions:
            if accepts(subscription.filter, attributes):
                targets.append(subscription)
            else:
                result.filtered.append(subscription.name)

        outcomes = await asyncio.gather(
            *(sub.deliver(template.copy_for_delivery()) for sub in targets),
            return_exceptions=True,
        )

        for subscription, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                result.failed[subscription.name] = str(outcome)
                logger.error(
                    "Delivery to subscriber failed",
                    extra={
                        "topic": self.name,
                        "subscription": subscription.name,
                        "error": str(outcome),
                        "error_type": type(outcome).__name__,
                    },
                    exc_info=outcome,
                )
            else:
                result.delivered.append(subscription.name)

        logger.info(
            "Message published",
            extra={
                "topic": self.name,
                "delivered": result.delivered,
                "filtered": result.filtered,
                "failed": list(result.failed),
            },
        )
        return result
