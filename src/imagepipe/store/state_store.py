"""
Images table: idempotent upsert/delete keyed by filename.

Each committed mutation that changes the stored item appends a change event
with before/after images to the table's change stream. Writes that leave the
item as it was produce no change event, so redelivered messages are invisible
downstream.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from imagepipe.models.events import ChangeEvent, ChangeType, ImageRecord
from imagepipe.store.change_stream import ChangeStream

logger = logging.getLogger(__name__)


class StateStore:
    """In-memory key-value table with a change stream."""

    def __init__(self, table_name: str, stream: Optional[ChangeStream] = None):
        self.table_name = table_name
        self.stream = stream or ChangeStream()
        self._items: Dict[str, ImageRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, filename: str) -> Optional[ImageRecord]:
        """Point lookup by filename."""
        async with self._lock:
            record = self._items.get(filename)
            return record.model_copy(deep=True) if record else None

    async def scan(self) -> List[ImageRecord]:
        """Every stored record, ordered by filename."""
        async with self._lock:
            return [self._items[k].model_copy(deep=True) for k in sorted(self._items)]

    async def upsert(
        self,
        record: ImageRecord,
        *,
        merge: bool = False,
        only_if_exists: bool = False,
        attributes: Mapping[str, str] | None = None,
    ) -> Optional[ImageRecord]:
        """Write a record, replacing or merging into any existing one.

        Args:
            record: Record to write
            merge: Merge ``record.attributes`` into the stored attributes
                instead of replacing them
            only_if_exists: Skip the write when no record exists for the key
            attributes: Attributes attached to the emitted change event

        Returns:
            The stored record, or None when ``only_if_exists`` skipped the write
        """
        async with self._lock:
            before = self._items.get(record.filename)
            if before is None and only_if_exists:
                logger.info(
                    "Conditional update skipped, record does not exist",
                    extra={"table": self.table_name, "filename": record.filename},
                )
                return None

            new_attributes: Dict[str, Any] = dict(record.attributes)
            if merge and before is not None:
                new_attributes = {**before.attributes, **record.attributes}
            after = ImageRecord(filename=record.filename, attributes=new_attributes)

            if before == after:
                return after.model_copy(deep=True)

            self._items[record.filename] = after
            event = ChangeEvent(
                sequence_number=self.stream.next_sequence_number(),
                event_type=ChangeType.INSERT if before is None else ChangeType.MODIFY,
                keys={"filename": record.filename},
                before=before,
                after=after,
                attributes=dict(attributes or {}),
            )
            await self.stream.append(event)

        logger.info(
            "Record upserted",
            extra={
                "table": self.table_name,
                "filename": record.filename,
                "change_type": event.event_type.value,
            },
        )
        return after.model_copy(deep=True)

    async def delete(
        self, filename: str, attributes: Mapping[str, str] | None = None
    ) -> Optional[ImageRecord]:
        """Delete by filename; deleting a missing key is a no-op.

        Returns:
            The removed record, or None if nothing was stored
        """
        async with self._lock:
            before = self._items.pop(filename, None)
            if before is None:
                logger.debug(
                    "Delete of missing record ignored",
                    extra={"table": self.table_name, "filename": filename},
                )
                return None

            await self.stream.append(
                ChangeEvent(
                    sequence_number=self.stream.next_sequence_number(),
                    event_type=ChangeType.REMOVE,
                    keys={"filename": filename},
                    before=before,
                    after=None,
                    attributes=dict(attributes or {}),
                )
            )

        logger.info(
            "Record deleted",
            extra={"table": self.table_name, "filename": filename},
        )
        return before
