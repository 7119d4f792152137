"""
Dispatcher.

Single consumer of the intake queue. Every pending tunnel gets its own
relay worker task; the dispatcher never waits on them.
"""

import asyncio
from collections.abc import Callable

from portrelay.models.tunnel import PendingTunnel
from portrelay.relay.intake import IntakeQueue
from portrelay.relay.worker import RelayWorker
from portrelay.utils.logger import get_logger

logger = get_logger(__name__)


class Dispatcher:
    """Fans pending tunnels out to relay worker tasks."""

    def __init__(
        self,
        intake: IntakeQueue,
        stop_event: asyncio.Event,
        worker_factory: Callable[..., RelayWorker] = RelayWorker,
        log=None,
    ):
        self.intake = intake
        self.stop_event = stop_event
        self.worker_factory = worker_factory
        self.log = log or logger
        self.dispatched = 0
        # Keep references so running sessions are not garbage collected
        self._sessions: set[asyncio.Task] = set()

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    def _spawn(self, pending: PendingTunnel) -> asyncio.Task:
        worker = self.worker_factory(pending, log=self.log)
        task = asyncio.create_task(worker.serve())
        self._sessions.add(task)
        task.add_done_callback(self._on_session_done)
        self.dispatched += 1
        return task

    def _on_session_done(self, task: asyncio.Task) -> None:
        self._sessions.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.log.opt(exception=task.exception()).error(
                "Relay worker crashed outside its own error handling."
            )

    async def run(self) -> None:
        """Dispatch pending tunnels until the intake queue closes."""
        self.log.debug("Dispatcher started.")
        while not self.stop_event.is_set():
            pending = await self.intake.pop()
            if pending is None:
                break
            self._spawn(pending)
        self.log.debug(
            f"Dispatcher stopped after {self.dispatched} tunnels "
            f"({self.active_sessions} still open)."
        )

    async def wait_sessions(self) -> None:
        """Wait until every dispatched session has finished."""
        while self._sessions:
            await asyncio.gather(*list(self._sessions), return_exceptions=True)

    async def close_sessions(self) -> None:
        """Abort every running session and wait for its cleanup."""
        sessions = list(self._sessions)
        if sessions:
            self.log.info(f"Aborting {len(sessions)} open tunnels.")
        for task in sessions:
            task.cancel()
        await asyncio.gather(*sessions, return_exceptions=True)
