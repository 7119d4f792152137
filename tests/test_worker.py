"""Tests for relay worker sessions."""

import asyncio
import os

import pytest

from portrelay.exceptions import DialError, RelayIOError
from portrelay.models.enums import SessionState
from portrelay.models.tunnel import TunnelSpec
from portrelay.relay.worker import RelayWorker, pipe

from conftest import accept_pending, unused_port


async def test_round_trip_and_close(echo_server):
    pending, reader, writer = await accept_pending(
        TunnelSpec("127.0.0.1:0", echo_server.address)
    )
    worker = RelayWorker(pending)
    session = asyncio.create_task(worker.serve())

    writer.write(b"ping")
    await writer.drain()
    assert await asyncio.wait_for(reader.readexactly(4), timeout=1) == b"ping"
    assert worker.state == SessionState.OPEN

    writer.close()
    await asyncio.wait_for(session, timeout=2)

    assert worker.state == SessionState.CLOSED
    assert worker.closed.is_set()
    assert worker.bytes_sent == 4
    assert worker.bytes_received == 4
    # The dialed connection is closed together with the upstream one
    await asyncio.wait_for(echo_server.connections[0].wait(), timeout=1)


async def test_large_payload_is_forwarded_in_order(echo_server):
    pending, reader, writer = await accept_pending(
        TunnelSpec("127.0.0.1:0", echo_server.address)
    )
    worker = RelayWorker(pending)
    session = asyncio.create_task(worker.serve())
    payload = os.urandom(1024 * 1024)

    async def send():
        writer.write(payload)
        await writer.drain()

    _, echoed = await asyncio.wait_for(
        asyncio.gather(send(), reader.readexactly(len(payload))), timeout=5
    )
    assert echoed == payload

    writer.close()
    await asyncio.wait_for(session, timeout=2)
    assert worker.bytes_sent == worker.bytes_received == len(payload)


async def test_dial_failure_closes_upstream():
    pending, reader, writer = await accept_pending(
        TunnelSpec("127.0.0.1:0", f"127.0.0.1:{unused_port()}")
    )
    worker = RelayWorker(pending)

    with pytest.raises(DialError) as exc_info:
        await worker.run()

    assert exc_info.value.address == pending.spec.remote_address
    assert worker.state == SessionState.CLOSED
    assert await asyncio.wait_for(reader.read(), timeout=1) == b""
    writer.close()


async def test_malformed_remote_is_a_dial_error():
    pending, reader, writer = await accept_pending(TunnelSpec("127.0.0.1:0", "nowhere"))

    with pytest.raises(DialError):
        await RelayWorker(pending).run()

    assert await asyncio.wait_for(reader.read(), timeout=1) == b""
    writer.close()


async def test_serve_logs_instead_of_raising(log_messages):
    pending, _, writer = await accept_pending(
        TunnelSpec("127.0.0.1:0", f"127.0.0.1:{unused_port()}")
    )

    await RelayWorker(pending).serve()

    assert any("tunnel failed" in m for m in log_messages)
    writer.close()


async def test_remote_eof_closes_both_sides():
    remote_closed = asyncio.Event()

    async def say_bye(reader, writer):
        writer.write(b"bye")
        await writer.drain()
        writer.close()
        remote_closed.set()

    server = await asyncio.start_server(say_bye, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    pending, reader, writer = await accept_pending(
        TunnelSpec("127.0.0.1:0", f"127.0.0.1:{port}")
    )
    tasks_before = len(asyncio.all_tasks())

    worker = RelayWorker(pending)
    await asyncio.wait_for(worker.run(), timeout=2)

    assert remote_closed.is_set()
    assert await asyncio.wait_for(reader.read(), timeout=1) == b"bye"
    assert worker.state == SessionState.CLOSED
    # Both copy tasks were joined
    assert len(asyncio.all_tasks()) == tasks_before

    writer.close()
    server.close()
    await server.wait_closed()


async def test_worker_cannot_be_reused():
    pending, _, writer = await accept_pending(
        TunnelSpec("127.0.0.1:0", f"127.0.0.1:{unused_port()}")
    )
    worker = RelayWorker(pending)
    with pytest.raises(DialError):
        await worker.run()

    with pytest.raises(RuntimeError):
        await worker.run()
    writer.close()


async def test_cancel_closes_both_connections(echo_server):
    pending, reader, writer = await accept_pending(
        TunnelSpec("127.0.0.1:0", echo_server.address)
    )
    worker = RelayWorker(pending)
    session = asyncio.create_task(worker.serve())
    await asyncio.wait_for(echo_server.connected.wait(), timeout=1)

    session.cancel()
    with pytest.raises(asyncio.CancelledError):
        await session

    assert worker.state == SessionState.CLOSED
    assert await asyncio.wait_for(reader.read(), timeout=1) == b""
    await asyncio.wait_for(echo_server.connections[0].wait(), timeout=1)
    writer.close()


class _BrokenWriter:
    def write(self, data):
        raise ConnectionResetError("peer reset")

    async def drain(self):
        pass


async def test_pipe_counts_and_propagates_errors():
    reader = asyncio.StreamReader()
    reader.feed_data(b"abc")
    reader.feed_eof()
    chunks = []
    sizes = []

    class _Sink:
        def write(self, data):
            chunks.append(data)

        async def drain(self):
            pass

    assert await pipe(reader, _Sink(), chunk_size=2, on_chunk=sizes.append) == 3
    assert b"".join(chunks) == b"abc"
    assert sizes == [2, 1]

    reader = asyncio.StreamReader()
    reader.feed_data(b"x")
    with pytest.raises(ConnectionResetError):
        await pipe(reader, _BrokenWriter())


def test_relay_io_error_names_direction():
    error = RelayIOError("reset", "upstream->downstream")
    assert error.direction == "upstream->downstream"
    assert "upstream->downstream" in str(error)
