"""
Listener for one tunnel spec.

Binds the local address of a TunnelSpec, accepts inbound connections and
hands each of them to the intake queue as a PendingTunnel.
"""

import asyncio
import socket

from portrelay.config import config
from portrelay.exceptions import AcceptError, BindError
from portrelay.models.tunnel import (
    PendingTunnel,
    TunnelSpec,
    format_host_port,
    split_host_port,
)
from portrelay.relay.intake import IntakeQueue
from portrelay.utils.logger import get_logger

logger = get_logger(__name__)


def open_listening_socket(address: str, backlog: int | None = None) -> socket.socket:
    """
    Bind a non-blocking TCP listening socket.

    An empty host binds every interface (dual-stack where the platform
    supports it). Any other host is resolved first and bound with the
    family of its first address.

    Raises:
        BindError: If the address is malformed or cannot be bound.
    """
    backlog = backlog or config.LISTEN_BACKLOG
    try:
        host, port = split_host_port(address)
    except ValueError as e:
        raise BindError(str(e), address) from e

    try:
        if not host and socket.has_dualstack_ipv6():
            sock = socket.create_server(
                ("", port),
                family=socket.AF_INET6,
                backlog=backlog,
                dualstack_ipv6=True,
            )
        elif not host:
            sock = socket.create_server(("", port), backlog=backlog)
        else:
            infos = socket.getaddrinfo(
                host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
            )
            family, _, _, _, sockaddr = infos[0]
            sock = socket.create_server(sockaddr, family=family, backlog=backlog)
    except (OSError, OverflowError) as e:
        raise BindError(str(e), address) from e

    sock.setblocking(False)
    return sock


class Listener:
    """Accept loop for a single TunnelSpec."""

    def __init__(
        self,
        spec: TunnelSpec,
        stop_event: asyncio.Event,
        intake: IntakeQueue,
        log=None,
    ):
        """
        Initialize listener.

        Args:
            spec: Tunnel whose local address to listen on.
            stop_event: Shared cancellation signal.
            intake: Queue that receives accepted connections.
            log: Observability sink (module logger by default).
        """
        self.spec = spec
        self.stop_event = stop_event
        self.intake = intake
        self.log = log or logger
        self.ready = asyncio.Event()
        self.accepted = 0
        self._sock: socket.socket | None = None
        self._address: tuple | None = None

    @property
    def address(self) -> tuple | None:
        """Actual bound (host, port), available once ``ready`` is set."""
        return self._address

    @property
    def address_label(self) -> str:
        if self._address:
            return format_host_port(self._address[0], self._address[1])
        return self.spec.local_address

    async def _accept(self, loop: asyncio.AbstractEventLoop):
        """
        Wait for the next connection or the stop event.

        Returns None when stopped.
        """
        accept_task = asyncio.ensure_future(loop.sock_accept(self._sock))
        stop_task = asyncio.ensure_future(self.stop_event.wait())
        try:
            await asyncio.wait(
                {accept_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stop_task.cancel()
            if not accept_task.done():
                accept_task.cancel()
                await asyncio.gather(accept_task, return_exceptions=True)

        if accept_task.cancelled():
            return None
        if self.stop_event.is_set():
            # Accepted in the same iteration the signal fired
            if accept_task.exception() is None:
                conn, _ = accept_task.result()
                conn.close()
            return None
        return accept_task.result()

    async def run(self) -> None:
        """
        Listen and accept until the stop event fires.

        Raises:
            BindError: If the local address cannot be bound.
            AcceptError: If accepting fails after a successful bind.
        """
        try:
            self._sock = open_listening_socket(self.spec.local_address)
        except BindError:
            self.ready.set()
            raise

        self._address = self._sock.getsockname()[:2]
        self.ready.set()
        self.log.info(
            f"Listening for incoming connections on {self.address_label} "
            f"(-> {self.spec.remote_address})"
        )

        loop = asyncio.get_running_loop()
        try:
            while not self.stop_event.is_set():
                try:
                    accepted = await self._accept(loop)
                except OSError as e:
                    raise AcceptError(str(e), self.address_label) from e
                if accepted is None:
                    break

                conn, peer = accepted
                conn.setblocking(False)
                pending = PendingTunnel(connection=conn, spec=self.spec, peer=peer)
                self.accepted += 1
                self.log.info(
                    f"Accepted incoming connection from {pending.peer_label} "
                    f"on {self.address_label}"
                )

                if not await self.intake.push(pending):
                    self.log.debug(
                        f"Intake closed, dropping connection from {pending.peer_label}"
                    )
                    pending.close()
                    break
        finally:
            self._sock.close()
            self.log.info(
                f"Stopped listening for incoming connections on {self.address_label}"
            )
