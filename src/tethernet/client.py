# Copyright 2021-2025, Francis Clairicia-Rose-Claire-Josephine
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
#
"""Heartbeat client module."""

from __future__ import annotations

__all__ = ["HeartbeatClient"]

import asyncio
import logging
from collections.abc import Iterable
from types import TracebackType
from typing import Self, final

from . import _utils, constants
from .connection import Connection, ConnectionState
from .connector import Connector
from .deadline import Deadline, DeadlineWatchdog, HeartbeatTimer
from .endpoint import Endpoint, ensure_endpoint
from .exceptions import EndpointsExhaustedError, LimitOverrunError
from .exchange import ExchangeLoop, ExchangeState, MessageSink, MessageSource
from .framing import MessageBuffer, MessageFramer


@final
class HeartbeatClient:
    """
    A TCP client which connects to the first reachable endpoint, then alternates sending a message and
    waiting for the reply until it is stopped.

    Every blocking operation is bounded by a shared deadline. When it expires, the socket is closed, which
    aborts the pending operation.

    Example:
        >>> async def main() -> None:
        ...     async with HeartbeatClient(source, sink) as client:
        ...         client.start([("127.0.0.1", 9000)])
        ...         await client.wait_stopped()
    """

    __slots__ = (
        "__source",
        "__sink",
        "__connect_timeout",
        "__recv_timeout",
        "__send_timeout",
        "__heartbeat_interval",
        "__handshake",
        "__max_message_size",
        "__max_recv_size",
        "__buffer_limit",
        "__logger",
        "__stopped",
        "__stopped_event",
        "__started",
        "__task",
        "__connection",
        "__watchdog",
        "__heartbeat_timer",
        "__exchange",
        "__connected_endpoint",
        "__error",
    )

    def __init__(
        self,
        source: MessageSource | None = None,
        sink: MessageSink | None = None,
        *,
        connect_timeout: float | None = None,
        recv_timeout: float | None = None,
        send_timeout: float | None = None,
        heartbeat_interval: float | None = None,
        handshake: bool = True,
        max_message_size: int = constants.MAX_MESSAGE_SIZE,
        max_recv_size: int | None = None,
        buffer_limit: int = constants.DEFAULT_BUFFER_LIMIT,
        logger: logging.Logger | None = None,
    ) -> None:
        """
        Parameters:
            source: Supplies outbound messages. If :data:`None`, empty heartbeat messages are sent every
                    `heartbeat_interval` seconds.
            sink: Receives each non-empty inbound message. If :data:`None`, messages are logged.
            connect_timeout: The allowed time (in seconds) for each connection attempt. Defaults to 60 seconds.
            recv_timeout: The allowed time (in seconds) to receive a reply. No limit if :data:`None` (default).
            send_timeout: The allowed time (in seconds) to send a message. No limit if :data:`None` (default).
            heartbeat_interval: Delay (in seconds) before each outbound message.
            handshake: If :data:`True` (default), a probe is written once right after the connection.
            max_message_size: Outbound messages are truncated to this length.
            max_recv_size: Read buffer size. If not given, a default reasonable value is used.
            buffer_limit: Maximum number of buffered inbound bytes without a terminator.
            logger: The logger to use. Defaults to this module's logger.
        """
        if source is not None and not callable(source):
            raise TypeError(f"Invalid message source: {source!r}")
        if sink is not None and not callable(sink):
            raise TypeError(f"Invalid message sink: {sink!r}")

        if connect_timeout is None:
            connect_timeout = constants.DEFAULT_CONNECT_TIMEOUT
        connect_timeout = _utils.validate_timeout_delay(connect_timeout, positive_check=True)
        if recv_timeout is not None:
            recv_timeout = _utils.validate_timeout_delay(recv_timeout, positive_check=True)
        if send_timeout is not None:
            send_timeout = _utils.validate_timeout_delay(send_timeout, positive_check=True)
        if heartbeat_interval is not None:
            heartbeat_interval = _utils.validate_timeout_delay(heartbeat_interval, positive_check=True)
        elif source is None:
            raise ValueError("A heartbeat_interval is required when there is no message source")

        if not isinstance(max_message_size, int) or max_message_size <= 0:
            raise ValueError("'max_message_size' must be a strictly positive integer")
        if max_recv_size is None:
            max_recv_size = constants.DEFAULT_STREAM_BUFSIZE
        if not isinstance(max_recv_size, int) or max_recv_size <= 0:
            raise ValueError("'max_recv_size' must be a strictly positive integer")
        if not isinstance(buffer_limit, int) or buffer_limit <= 0:
            raise ValueError("'buffer_limit' must be a strictly positive integer")

        self.__source: MessageSource | None = source
        self.__sink: MessageSink | None = sink
        self.__connect_timeout: float = connect_timeout
        self.__recv_timeout: float | None = recv_timeout
        self.__send_timeout: float | None = send_timeout
        self.__heartbeat_interval: float | None = heartbeat_interval
        self.__handshake: bool = bool(handshake)
        self.__max_message_size: int = max_message_size
        self.__max_recv_size: int = max_recv_size
        self.__buffer_limit: int = buffer_limit
        self.__logger: logging.Logger = logger or logging.getLogger(__name__)

        self.__stopped: _utils.Flag = _utils.Flag()
        self.__stopped_event: asyncio.Event = asyncio.Event()
        self.__started: bool = False
        self.__task: asyncio.Task[None] | None = None
        self.__connection: Connection | None = None
        self.__watchdog: DeadlineWatchdog | None = None
        self.__heartbeat_timer: HeartbeatTimer | None = None
        self.__exchange: ExchangeLoop | None = None
        self.__connected_endpoint: Endpoint | None = None
        self.__error: BaseException | None = None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} state={self.connection_state.name} stopped={self.__stopped.is_set()!r}>"

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
        /,
    ) -> None:
        await self.aclose()

    def start(self, endpoints: Iterable[Endpoint | tuple[str, int]]) -> None:
        """
        Launches the connection attempts, then the message exchange, in a background task.

        If the client has already been stopped, nothing happens.

        Parameters:
            endpoints: The candidate endpoints, tried in order. They must be numeric addresses.

        Raises:
            RuntimeError: Not called from an asyncio event loop, or called twice.
            ValueError: Invalid endpoint.
        """
        _utils.check_running_asyncio()
        if self.__started:
            raise RuntimeError("HeartbeatClient.start() called twice")
        self.__started = True

        endpoints = [ensure_endpoint(endpoint) for endpoint in endpoints]
        if self.__stopped.is_set():
            self.__logger.debug("Client stopped before start(), nothing to do")
            return

        loop = asyncio.get_running_loop()
        logger = self.__logger

        self.__connection = connection = Connection(loop=loop, max_recv_size=self.__max_recv_size)
        deadline = Deadline(loop.time)
        self.__watchdog = watchdog = DeadlineWatchdog(
            deadline,
            _utils.make_callback(self.__on_deadline_expired, connection),
            self.__stopped,
            loop=loop,
        )
        self.__heartbeat_timer = heartbeat_timer = HeartbeatTimer(loop=loop)
        connector = Connector(connection, deadline, self.__stopped, timeout=self.__connect_timeout, logger=logger)
        self.__exchange = ExchangeLoop(
            connection,
            deadline,
            self.__stopped,
            self.__source,
            self.__sink,
            framer=MessageFramer(max_size=self.__max_message_size),
            buffer=MessageBuffer(limit=self.__buffer_limit),
            recv_timeout=self.__recv_timeout,
            send_timeout=self.__send_timeout,
            heartbeat_timer=heartbeat_timer,
            heartbeat_interval=self.__heartbeat_interval,
            handshake=constants.HANDSHAKE_PROBE if self.__handshake else None,
            logger=logger,
        )

        watchdog.start()
        self.__task = loop.create_task(self.__run(connector, endpoints), name=f"{self.__class__.__name__}-worker")

    def stop(self) -> None:
        """
        Stops the client: closes the connection and cancels every timer.

        Can be safely called multiple times, and before :meth:`start`.
        """
        if self.__stopped.is_set():
            return
        self.__stopped.set()
        self.__logger.debug("Stopping client")
        try:
            if (connection := self.__connection) is not None:
                connection.close()
            if (watchdog := self.__watchdog) is not None:
                watchdog.cancel()
            if (heartbeat_timer := self.__heartbeat_timer) is not None:
                heartbeat_timer.cancel()
        finally:
            self.__stopped_event.set()

    async def aclose(self) -> None:
        """
        Stops the client and waits for the background task to finish.
        """
        self.stop()
        task = self.__task
        if task is None or task.done():
            return
        # The message source may not be aware of the stop.
        task.cancel()
        await asyncio.wait({task})

    def is_stopped(self) -> bool:
        """
        Checks if the client has been stopped.
        """
        return self.__stopped.is_set()

    async def wait_stopped(self) -> None:
        """
        Waits until the client is stopped, either explicitly or because of an error.
        """
        await self.__stopped_event.wait()

    async def __run(self, connector: Connector, endpoints: list[Endpoint]) -> None:
        assert self.__exchange is not None  # nosec assert_used

        logger = self.__logger
        try:
            endpoint = await connector.connect(endpoints)
            if endpoint is None:
                return
            self.__connected_endpoint = endpoint
            await self.__exchange.run()
        except EndpointsExhaustedError as exc:
            if not self.__stopped.is_set():
                self.__error = exc
                logger.error("%s", exc)
        except (OSError, LimitOverrunError) as exc:
            # Already logged by the exchange loop.
            if not self.__stopped.is_set():
                self.__error = exc
        except Exception as exc:
            if not self.__stopped.is_set():
                self.__error = exc
                logger.exception("Unexpected error in client task")
        finally:
            self.stop()

    def __on_deadline_expired(self, connection: Connection) -> None:
        self.__logger.warning("Deadline expired, closing the connection to %s", connection.remote_endpoint)
        connection.abort()

    @property
    def error(self) -> BaseException | None:
        """The error which stopped the client, or :data:`None` if it stopped gracefully (or is still running)."""
        return self.__error

    @property
    def connection_state(self) -> ConnectionState:
        """The state of the underlying connection. Read-only attribute."""
        if (connection := self.__connection) is None:
            return ConnectionState.CLOSED if self.__stopped.is_set() else ConnectionState.UNCONNECTED
        return connection.state

    @property
    def exchange_state(self) -> ExchangeState:
        """The state of the message exchange. Read-only attribute."""
        state = ExchangeState.IDLE if (exchange := self.__exchange) is None else exchange.state
        if state is ExchangeState.IDLE and self.__stopped.is_set():
            return ExchangeState.HALTED
        return state

    @property
    def connected_endpoint(self) -> Endpoint | None:
        """The endpoint the client connected to, if any. Read-only attribute."""
        return self.__connected_endpoint

    @property
    def logger(self) -> logging.Logger:
        """The logger used by the client. Read-only attribute."""
        return self.__logger
