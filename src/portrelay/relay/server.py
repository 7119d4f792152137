"""
Tunnel relay supervisor.

Wires one listener per tunnel spec, the shared intake queue and the
dispatcher together, and owns the cancellation signal they all watch.

Cancellation stops admission only: listeners close their sockets and the
dispatcher stops pulling, while tunnels that are already open keep running
until their peers close them (or ``close_sessions`` aborts them).
"""

import asyncio
from collections.abc import Sequence

from portrelay.config import config
from portrelay.exceptions import NoTunnelsError, RelayError
from portrelay.models.enums import FailurePolicy
from portrelay.models.tunnel import TunnelSpec
from portrelay.relay.dispatcher import Dispatcher
from portrelay.relay.intake import IntakeQueue
from portrelay.relay.listener import Listener
from portrelay.utils.logger import get_logger

logger = get_logger(__name__)


class TunnelRelay:
    """Runs every configured tunnel until stopped or a listener fails."""

    def __init__(
        self,
        specs: Sequence[TunnelSpec],
        queue_size: int | None = None,
        policy: FailurePolicy | None = None,
        log=None,
    ):
        """
        Initialize the relay.

        Args:
            specs: Tunnels to serve, one listener each.
            queue_size: Intake queue capacity (config default).
            policy: What a listener failure does to the others.
            log: Observability sink handed to every component.
        """
        self.specs = list(specs)
        self.queue_size = queue_size or config.INTAKE_QUEUE_SIZE
        self.policy = FailurePolicy(policy or config.FAILURE_POLICY)
        self.log = log or logger

        self.stop_event = asyncio.Event()
        self.intake = IntakeQueue(self.stop_event, maxsize=self.queue_size)
        self.dispatcher = Dispatcher(self.intake, self.stop_event, log=self.log)
        self.listeners = [
            Listener(spec, self.stop_event, self.intake, log=self.log)
            for spec in self.specs
        ]
        self.errors: list[RelayError] = []

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        """Fire the shared cancellation signal."""
        if not self.stop_event.is_set():
            self.log.info("Stopping tunnel admission.")
            self.stop_event.set()

    async def wait_ready(self) -> None:
        """Wait until every listener has either bound or failed."""
        await asyncio.gather(*(listener.ready.wait() for listener in self.listeners))

    async def wait_sessions(self) -> None:
        """Wait for open tunnels to drain."""
        await self.dispatcher.wait_sessions()

    async def close_sessions(self) -> None:
        """Abort open tunnels."""
        await self.dispatcher.close_sessions()

    def _on_listener_done(self, listener: Listener, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if not isinstance(error, RelayError):
            # Unexpected failures follow the same escalation as listener errors
            error = RelayError(f"listener {listener.spec} crashed: {error!r}")
        self.errors.append(error)

        if self.policy == FailurePolicy.FAIL_FAST:
            self.log.error(f"Listener for {listener.spec} failed: {error}")
            self.stop()
        else:
            self.log.error(
                f"Listener for {listener.spec} failed, other tunnels keep running: "
                f"{error}"
            )

    async def run(self) -> None:
        """
        Serve until stopped.

        Returns once every listener and the dispatcher have stopped; open
        tunnels may still be running.

        Raises:
            NoTunnelsError: If no tunnel spec was given.
            RelayError: The first listener failure, when it ends the relay
                (always with fail-fast, only if every listener failed
                with isolate).
        """
        if not self.specs:
            raise NoTunnelsError()

        dispatcher_task = asyncio.create_task(self.dispatcher.run())
        listener_tasks = []
        for listener in self.listeners:
            task = asyncio.create_task(listener.run())
            task.add_done_callback(
                lambda t, listener=listener: self._on_listener_done(listener, t)
            )
            listener_tasks.append(task)

        try:
            await asyncio.gather(*listener_tasks, return_exceptions=True)
        finally:
            # Either stopped, or no listener is left to admit connections
            self.stop()
            for task in listener_tasks:
                task.cancel()
            await asyncio.gather(*listener_tasks, return_exceptions=True)
            await asyncio.gather(dispatcher_task, return_exceptions=True)

            leftovers = self.intake.drain()
            for pending in leftovers:
                pending.close()
            if leftovers:
                self.log.warning(
                    f"Closed {len(leftovers)} accepted connections that were "
                    "never dispatched."
                )

        if not self.errors:
            return
        if self.policy == FailurePolicy.FAIL_FAST or len(self.errors) == len(
            self.listeners
        ):
            raise self.errors[0]
