"""
Relay worker.

Runs one tunnel: dials the remote address for an accepted connection and
pipes bytes in both directions until either side finishes. Both connections
are always closed together when the session ends.
"""

import asyncio
import itertools
from collections.abc import Callable

from portrelay.config import config
from portrelay.exceptions import DialError, RelayError, RelayIOError
from portrelay.models.enums import SessionState
from portrelay.models.tunnel import PendingTunnel, split_host_port
from portrelay.utils.logger import get_logger

logger = get_logger(__name__)

UPSTREAM_TO_DOWNSTREAM = "upstream->downstream"
DOWNSTREAM_TO_UPSTREAM = "downstream->upstream"

_session_ids = itertools.count(1)


async def pipe(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    chunk_size: int | None = None,
    on_chunk: Callable[[int], None] | None = None,
) -> int:
    """
    Pipe data from reader to writer until EOF.

    Args:
        reader: AsyncIO stream reader.
        writer: AsyncIO stream writer.
        chunk_size: Maximum bytes per read.
        on_chunk: Called with the size of every forwarded chunk.

    Returns:
        Total number of bytes forwarded.

    Raises:
        OSError: If reading or writing fails.
    """
    chunk_size = chunk_size or config.READ_CHUNK_SIZE
    total = 0
    while True:
        data = await reader.read(chunk_size)
        if not data:
            return total
        writer.write(data)
        await writer.drain()
        total += len(data)
        if on_chunk:
            on_chunk(len(data))


async def close_writer(writer: asyncio.StreamWriter, timeout: float | None = None):
    """Close a stream, aborting the transport if it does not finish in time."""
    timeout = config.CLOSE_TIMEOUT_SECONDS if timeout is None else timeout
    writer.close()
    try:
        await asyncio.wait_for(writer.wait_closed(), timeout=timeout)
    except asyncio.TimeoutError:
        writer.transport.abort()
    except OSError:
        pass


class RelayWorker:
    """
    Relay session for a single accepted connection.

    A worker is used exactly once. ``run`` reports failures by raising,
    ``serve`` runs the session and logs its outcome.
    """

    def __init__(self, pending: PendingTunnel, log=None):
        self.pending = pending
        self.spec = pending.spec
        self.session_id = next(_session_ids)
        self.log = log or logger
        self.log_prefix = f"[Tunnel {self.session_id} {pending.peer_label}]"

        self.state = SessionState.DIALING
        self.bytes_sent = 0  # upstream -> downstream
        self.bytes_received = 0  # downstream -> upstream
        self.closed = asyncio.Event()
        self._used = False

    def _set_state(self, state: SessionState) -> None:
        self.log.trace(f"{self.log_prefix} {self.state.value} -> {state.value}")
        self.state = state
        if state == SessionState.CLOSED:
            self.closed.set()

    def _count_sent(self, size: int) -> None:
        self.bytes_sent += size

    def _count_received(self, size: int) -> None:
        self.bytes_received += size

    async def _dial(self):
        remote = self.spec.remote_address
        try:
            host, port = split_host_port(remote)
        except ValueError as e:
            raise DialError(str(e), remote) from e
        try:
            return await asyncio.open_connection(host, port)
        except OSError as e:
            raise DialError(str(e) or e.__class__.__name__, remote) from e

    async def run(self) -> None:
        """
        Dial the remote and relay until either direction finishes.

        Raises:
            DialError: If the remote address cannot be reached.
            RelayIOError: If the first direction to finish failed.
        """
        if self._used:
            raise RuntimeError("RelayWorker instances cannot be reused")
        self._used = True

        self._set_state(SessionState.DIALING)
        try:
            down_reader, down_writer = await self._dial()
        except BaseException:
            self.pending.close()
            self._set_state(SessionState.CLOSED)
            raise

        try:
            up_reader, up_writer = await asyncio.open_connection(
                sock=self.pending.connection
            )
        except BaseException:
            self.pending.close()
            await close_writer(down_writer)
            self._set_state(SessionState.CLOSED)
            raise

        self._set_state(SessionState.OPEN)
        self.log.info(
            f"{self.log_prefix} Tunnel is open between {self.pending.peer_label} "
            f"and {self.spec.remote_address}"
        )

        copy_tasks = {
            asyncio.create_task(
                pipe(up_reader, down_writer, on_chunk=self._count_sent)
            ): UPSTREAM_TO_DOWNSTREAM,
            asyncio.create_task(
                pipe(down_reader, up_writer, on_chunk=self._count_received)
            ): DOWNSTREAM_TO_UPSTREAM,
        }

        first = None
        try:
            done, _ = await asyncio.wait(
                copy_tasks, return_when=asyncio.FIRST_COMPLETED
            )
            # Both may finish in the same iteration; upstream wins the tie
            first = next(t for t in copy_tasks if t in done)
        finally:
            self._set_state(SessionState.CLOSING)
            await asyncio.gather(close_writer(up_writer), close_writer(down_writer))
            await asyncio.gather(*copy_tasks, return_exceptions=True)
            self._set_state(SessionState.CLOSED)
            self.log.info(
                f"{self.log_prefix} Tunnel is closed between "
                f"{self.pending.peer_label} and {self.spec.remote_address} "
                f"(sent {self.bytes_sent} bytes, received {self.bytes_received} bytes)"
            )

        if first.cancelled():
            return
        error = first.exception()
        if error is not None:
            raise RelayIOError(
                str(error) or error.__class__.__name__, copy_tasks[first]
            ) from error

    async def serve(self) -> None:
        """Run the session, reporting failures instead of raising them."""
        try:
            await self.run()
        except RelayError as e:
            self.log.warning(f"{self.log_prefix} tunnel failed: {e}")
        except asyncio.CancelledError:
            self.log.info(f"{self.log_prefix} Tunnel aborted.")
            raise
        except Exception as e:
            self.log.exception(f"{self.log_prefix} Unexpected error in tunnel: {e}")
