"""Tests for the images table and its change stream."""

import asyncio

import pytest

from imagepipe.models.events import ChangeType, ImageRecord
from imagepipe.store.change_stream import ChangeStream
from imagepipe.store.state_store import StateStore


@pytest.mark.asyncio
async def test_upsert_inserts_then_modifies(state_store):
    """Test that the first write inserts and a changing write modifies."""
    await state_store.upsert(ImageRecord(filename="photo.png"))
    await state_store.upsert(ImageRecord(filename="photo.png", attributes={"size_bytes": 10}))

    events = state_store.stream.read(state_store.stream.trim_horizon(), 10)
    assert [e.event_type for e in events] == [ChangeType.INSERT, ChangeType.MODIFY]
    assert events[0].before is None
    assert events[0].after.filename == "photo.png"
    assert events[1].before.attributes == {}
    assert events[1].after.attributes == {"size_bytes": 10}


@pytest.mark.asyncio
async def test_repeated_upsert_is_idempotent(state_store):
    """Test that identical upserts leave one record and one change event."""
    for _ in range(5):
        await state_store.upsert(ImageRecord(filename="photo.png", attributes={"bucket": "images"}))

    records = await state_store.scan()
    assert len(records) == 1
    assert records[0].filename == "photo.png"
    assert state_store.stream.last_sequence_number == 1


@pytest.mark.asyncio
async def test_merge_upsert_keeps_existing_attributes(state_store):
    """Test that merge adds attributes without dropping stored ones."""
    await state_store.upsert(ImageRecord(filename="photo.png", attributes={"caption": "Sunset"}))
    await state_store.upsert(
        ImageRecord(filename="photo.png", attributes={"size_bytes": 4}), merge=True
    )

    record = await state_store.get("photo.png")
    assert record.attributes == {"caption": "Sunset", "size_bytes": 4}


@pytest.mark.asyncio
async def test_conditional_upsert_skips_missing_record(state_store):
    """Test that only_if_exists never creates a record."""
    result = await state_store.upsert(
        ImageRecord(filename="ghost.png", attributes={"caption": "Boo"}),
        merge=True,
        only_if_exists=True,
    )

    assert result is None
    assert await state_store.get("ghost.png") is None
    assert state_store.stream.last_sequence_number == 0


@pytest.mark.asyncio
async def test_delete_emits_remove_event(state_store):
    """Test that deleting a record records its before image."""
    await state_store.upsert(ImageRecord(filename="photo.png", attributes={"caption": "Sunset"}))

    removed = await state_store.delete("photo.png")

    assert removed.filename == "photo.png"
    assert await state_store.get("photo.png") is None
    last = state_store.stream.read(1, 10)[0]
    assert last.event_type is ChangeType.REMOVE
    assert last.before.attributes == {"caption": "Sunset"}
    assert last.after is None
    assert last.filename == "photo.png"


@pytest.mark.asyncio
async def test_delete_missing_key_is_noop(state_store):
    """Test that deleting a missing record neither fails nor emits."""
    assert await state_store.delete("missing.png") is None
    assert await state_store.delete("missing.png") is None
    assert state_store.stream.last_sequence_number == 0


@pytest.mark.asyncio
async def test_change_attributes_are_recorded(state_store):
    """Test that mutation attributes travel with the change event."""
    await state_store.upsert(
        ImageRecord(filename="photo.png"), attributes={"comment_type": "Caption"}
    )
    assert state_store.stream.read(0, 1)[0].attributes == {"comment_type": "Caption"}


@pytest.mark.asyncio
async def test_returned_records_are_copies(state_store):
    """Test that callers cannot mutate stored state through results."""
    await state_store.upsert(ImageRecord(filename="photo.png", attributes={"a": 1}))

    record = await state_store.get("photo.png")
    record.attributes["a"] = 2

    assert (await state_store.get("photo.png")).attributes == {"a": 1}


@pytest.mark.asyncio
async def test_stream_preserves_commit_order():
    """Test that sequence numbers follow commit order across keys."""
    store = StateStore("Images")
    await asyncio.gather(
        *(store.upsert(ImageRecord(filename=f"img{n}.png")) for n in range(10))
    )
    await store.delete("img3.png")

    events = store.stream.read(0, 100)
    assert [e.sequence_number for e in events] == list(range(1, 12))
    assert events[-1].event_type is ChangeType.REMOVE


@pytest.mark.asyncio
async def test_stream_retention_moves_trim_horizon():
    """Test that trimmed records are no longer readable from the horizon."""
    store = StateStore("Images", ChangeStream(retention=2))
    for n in range(4):
        await store.upsert(ImageRecord(filename=f"img{n}.png"))

    horizon = store.stream.trim_horizon()
    events = store.stream.read(horizon, 10)

    assert horizon == 2
    assert [e.filename for e in events] == ["img2.png", "img3.png"]


@pytest.mark.asyncio
async def test_wait_for_records_times_out_and_wakes():
    """Test bounded waiting for new stream records."""
    store = StateStore("Images")
    assert await store.stream.wait_for_records(0, timeout=0.01) is False

    async def writer():
        await asyncio.sleep(0.01)
        await store.upsert(ImageRecord(filename="photo.png"))

    task = asyncio.create_task(writer())
    assert await store.stream.wait_for_records(0, timeout=2) is True
    await task
