"""Ordered hand-off of stream events from the socket reader to the caller.

The websocket reader pushes batches as messages arrive; the caller pulls
one event at a time.  Pushing always enqueues first and only then wakes
the waiting consumer, so a consumer woken by the first event of a batch
still finds the rest of the batch queued behind it.

Both sides run on the same event loop, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Iterable

from goose_web.events import StreamEvent

logger = logging.getLogger(__name__)


class DeliveryQueue:
    """Single-consumer FIFO of :class:`StreamEvent`.

    :meth:`pull` returns ``None`` once the queue is closed and drained.
    """

    def __init__(self) -> None:
        self._items: deque[StreamEvent] = deque()
        self._waiter: asyncio.Future | None = None
        self._closed = False

    def __len__(self) -> int:
        return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, event: StreamEvent) -> None:
        self.push_batch((event,))

    def push_batch(self, events: Iterable[StreamEvent]) -> None:
        """Append *events* in order, then wake the consumer once."""
        events = list(events)
        if not events:
            return
        if self._closed:
            raise RuntimeError("push on a closed DeliveryQueue")
        self._items.extend(events)
        self._wake()

    def close(self) -> None:
        """No more events will be pushed.  Buffered events still drain."""
        self._closed = True
        self._wake()

    async def pull(self) -> StreamEvent | None:
        while not self._items:
            if self._closed:
                return None
            if self._waiter is not None:
                raise RuntimeError("DeliveryQueue supports a single consumer")
            self._waiter = asyncio.get_running_loop().create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None
        return self._items.popleft()

    def _wake(self) -> None:
        if self._waiter is not None and not self._waiter.done():
            logger.debug(f"Waking consumer, {len(self._items)} event(s) queued")
            self._waiter.set_result(None)
