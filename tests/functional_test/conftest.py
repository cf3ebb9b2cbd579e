from __future__ import annotations

import asyncio
import contextlib
import enum
import socket
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator

from tethernet.endpoint import Endpoint

import pytest
import pytest_asyncio


class ServerMode(enum.Enum):
    ECHO = "echo"
    SILENT = "silent"
    CLOSE_ON_FIRST_MESSAGE = "close_on_first_message"


class EchoServer:
    """Replies to each ``\\0``-terminated message with ``b"X" + message + b"\\0"``."""

    def __init__(self, mode: ServerMode) -> None:
        self.mode: ServerMode = mode
        self.raw_data: bytearray = bytearray()
        self.messages: list[bytes] = []
        self.message_received: asyncio.Event = asyncio.Event()
        self.client_disconnected: asyncio.Event = asyncio.Event()
        self.server: asyncio.Server | None = None

    @property
    def endpoint(self) -> Endpoint:
        assert self.server is not None
        return Endpoint.from_address(self.server.sockets[0].getsockname()[:2])

    async def start(self) -> None:
        self.server = await asyncio.start_server(self.__handle_client, "127.0.0.1", 0)

    async def aclose(self) -> None:
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()

    async def __handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while True:
                data = await reader.readuntil(b"\0")
                self.raw_data += data
                self.messages.append(data[:-1].lstrip(b"\n"))
                self.message_received.set()
                match self.mode:
                    case ServerMode.ECHO:
                        writer.write(b"X" + self.messages[-1] + b"\0")
                        await writer.drain()
                    case ServerMode.SILENT:
                        pass
                    case ServerMode.CLOSE_ON_FIRST_MESSAGE:
                        break
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            self.client_disconnected.set()
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()


@pytest_asyncio.fixture
async def server_factory() -> AsyncIterator[Callable[[ServerMode], Awaitable[EchoServer]]]:
    servers: list[EchoServer] = []

    async def factory(mode: ServerMode = ServerMode.ECHO) -> EchoServer:
        server = EchoServer(mode)
        await server.start()
        servers.append(server)
        return server

    try:
        yield factory
    finally:
        for server in servers:
            await server.aclose()


@pytest.fixture
def refused_endpoint() -> Endpoint:
    # Nothing listens on a port which has just been released.
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        address = sock.getsockname()
    return Endpoint.from_address(address)


@pytest.fixture
def unread_endpoint() -> Iterator[Endpoint]:
    # The kernel completes the handshake, but nobody accepts the connection nor reads from it.
    with socket.create_server(("127.0.0.1", 0), backlog=1) as sock:
        yield Endpoint.from_address(sock.getsockname()[:2])
