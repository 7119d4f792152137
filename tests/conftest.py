"""Shared fixtures: loopback servers, accepted connections and log capture."""

from __future__ import annotations

import asyncio
import socket

import pytest
from loguru import logger

from portrelay.models.tunnel import PendingTunnel, TunnelSpec


class EchoServer:
    """Loopback echo server that records when each connection closes."""

    def __init__(self):
        self.server: asyncio.AbstractServer | None = None
        self.connections: list[asyncio.Event] = []
        self.connected = asyncio.Event()

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    @property
    def address(self) -> str:
        return f"127.0.0.1:{self.port}"

    async def _handle(self, reader, writer):
        closed = asyncio.Event()
        self.connections.append(closed)
        self.connected.set()
        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        except OSError:
            pass
        finally:
            writer.close()
            closed.set()

    async def start(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def close(self):
        self.server.close()
        await self.server.wait_closed()


def unused_port() -> int:
    """A loopback port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def accept_pending(spec: TunnelSpec):
    """
    Create an accepted connection for a spec.

    Returns (pending, client_reader, client_writer).
    """
    loop = asyncio.get_running_loop()
    server_sock = socket.create_server(("127.0.0.1", 0))
    server_sock.setblocking(False)
    try:
        accept = asyncio.ensure_future(loop.sock_accept(server_sock))
        reader, writer = await asyncio.open_connection(
            "127.0.0.1", server_sock.getsockname()[1]
        )
        conn, peer = await accept
    finally:
        server_sock.close()
    conn.setblocking(False)
    return PendingTunnel(connection=conn, spec=spec, peer=peer), reader, writer


@pytest.fixture
async def echo_server():
    server = await EchoServer().start()
    yield server
    await server.close()


@pytest.fixture
def busy_port():
    """A port with a listening socket already bound to it."""
    sock = socket.create_server(("127.0.0.1", 0))
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def log_messages():
    """Capture log messages emitted through loguru."""
    messages: list[str] = []
    handler_id = logger.add(
        lambda message: messages.append(message.record["message"]), level="TRACE"
    )
    yield messages
    logger.remove(handler_id)
