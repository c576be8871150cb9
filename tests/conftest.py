"""Pytest configuration and shared fixtures."""

import pytest

from fakes import FakeObjectStore, RecordingMailer
from imagepipe.core.config import Settings
from imagepipe.messaging.queue import Queue
from imagepipe.store.state_store import StateStore


@pytest.fixture
def test_settings():
    """Settings with short waits so pollers do not block tests."""
    return Settings(
        ENV="test",
        QUEUE_MAX_WAIT_SECONDS=0.05,
        STREAM_POLL_SECONDS=0.05,
        CONSUMER_TIMEOUT_SECONDS=2,
        DIRECT_RETRY_WAIT_SECONDS=0,
    )


@pytest.fixture
def state_store():
    return StateStore("Images")


@pytest.fixture
def dead_letter_queue():
    return Queue("dead-letter-queue", max_wait=0.05)


@pytest.fixture
def object_store():
    store = FakeObjectStore()
    store.put("images", "photo.png")
    store.put("images", "holiday photo.jpeg")
    return store


@pytest.fixture
def mailer():
    return RecordingMailer()
