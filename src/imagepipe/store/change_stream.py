"""Ordered change log emitted by the state store."""

import asyncio
from collections import deque
from typing import Deque, List, Optional

from imagepipe.models.events import ChangeEvent


class ChangeStream:
    """Append-only sequence of change events in commit order.

    Sequence numbers start at 1 and never repeat. Readers track their own
    position; ``trim_horizon()`` is the position just before the oldest
    record still retained.
    """

    def __init__(self, retention: Optional[int] = None):
        self.retention = retention
        self._records: Deque[ChangeEvent] = deque()
        self._last_sequence = 0
        self._condition = asyncio.Condition()

    @property
    def last_sequence_number(self) -> int:
        return self._last_sequence

    def next_sequence_number(self) -> int:
        self._last_sequence += 1
        return self._last_sequence

    async def append(self, event: ChangeEvent) -> None:
        async with self._condition:
            self._records.append(event)
            if self.retention is not None:
                while len(self._records) > self.retention:
                    self._records.popleft()
            self._condition.notify_all()

    def trim_horizon(self) -> int:
        """Position from which a new reader sees every retained record."""
        if not self._records:
            return self._last_sequence
        return self._records[0].sequence_number - 1

    def read(self, after: int, limit: int) -> List[ChangeEvent]:
        """Return up to ``limit`` records with a sequence number above ``after``."""
        batch = []
        for record in self._records:
            if record.sequence_number <= after:
                continue
            batch.append(record)
            if len(batch) >= limit:
                break
        return batch

    async def wait_for_records(self, after: int, timeout: float) -> bool:
        """Wait until a record past ``after`` exists; False on timeout."""
        async with self._condition:
            if self._last_sequence > after:
                return True
            try:
                await asyncio.wait_for(
                    self._condition.wait_for(lambda: self._last_sequence > after),
                    timeout,
                )
            except asyncio.TimeoutError:
                return False
            return True
