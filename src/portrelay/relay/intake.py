"""
Intake queue between listeners and the dispatcher.

A bounded FIFO of pending tunnels. Listeners push, the dispatcher pops;
both sides unblock as soon as the shared stop event fires.
"""

import asyncio

from portrelay.config import config


class IntakeQueue:
    """
    Bounded hand-off buffer closed by the shared stop event.

    ``push`` blocks while the queue is full, ``pop`` blocks while it is empty.
    Once the stop event is set, ``push`` returns False and ``pop`` returns
    None instead of blocking.
    """

    def __init__(self, stop_event: asyncio.Event, maxsize: int | None = None):
        maxsize = config.INTAKE_QUEUE_SIZE if maxsize is None else maxsize
        if maxsize <= 0:
            raise ValueError(f"intake queue size must be positive, got {maxsize}")
        self._stop_event = stop_event
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    @property
    def closed(self) -> bool:
        return self._stop_event.is_set()

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    def full(self) -> bool:
        return self._queue.full()

    async def _until_stopped(self, operation):
        """
        Run a queue operation unless the stop event fires first.

        Returns (completed, result).
        """
        op_task = asyncio.ensure_future(operation)
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait(
                {op_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stop_task.cancel()
            if not op_task.done():
                op_task.cancel()
                await asyncio.gather(op_task, return_exceptions=True)

        if op_task.cancelled():
            return False, None
        return True, op_task.result()

    async def push(self, item) -> bool:
        """
        Append an item, waiting for free space.

        Returns:
            True if the item was queued, False if the queue closed first.
        """
        if self.closed:
            return False
        try:
            self._queue.put_nowait(item)
            return True
        except asyncio.QueueFull:
            pass
        completed, _ = await self._until_stopped(self._queue.put(item))
        return completed

    async def pop(self):
        """
        Take the oldest item, waiting for one to arrive.

        Returns:
            The item, or None once the queue is closed.
        """
        if self.closed:
            return None
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        completed, item = await self._until_stopped(self._queue.get())
        return item if completed else None

    def drain(self) -> list:
        """Remove and return every item still queued."""
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return items
