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
"""Request/response exchange loop module."""

from __future__ import annotations

__all__ = ["ExchangeLoop", "ExchangeState", "MessageSink", "MessageSource"]

import enum
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import TypeAlias, assert_never, final

from . import _utils, constants
from .connection import Connection
from .deadline import Deadline, HeartbeatTimer
from .framing import MessageBuffer, MessageFramer

MessageSource: TypeAlias = Callable[[], bytes | None | Awaitable[bytes | None]]
"""Supplies the next outbound message. :data:`None` means there is nothing more to send."""

MessageSink: TypeAlias = Callable[[bytes], object]
"""Receives each complete, non-empty, inbound message."""


class ExchangeState(enum.Enum):
    IDLE = "idle"
    HANDSHAKE = "handshake"
    AWAITING_OUTBOUND = "awaiting_outbound"
    AWAITING_INBOUND = "awaiting_inbound"
    HALTED = "halted"


@final
class ExchangeLoop:
    """
    The steady-state alternation of sending and receiving messages, once connected.

    The loop is strictly alternating: it never has two outstanding operations, and never writes again before
    the prior read resolves.
    """

    __slots__ = (
        "__connection",
        "__deadline",
        "__stopped",
        "__source",
        "__sink",
        "__framer",
        "__buffer",
        "__recv_timeout",
        "__send_timeout",
        "__heartbeat_timer",
        "__heartbeat_interval",
        "__handshake",
        "__state",
        "__logger",
    )

    def __init__(
        self,
        connection: Connection,
        deadline: Deadline,
        stopped: _utils.Flag,
        source: MessageSource | None,
        sink: MessageSink | None,
        *,
        framer: MessageFramer | None = None,
        buffer: MessageBuffer | None = None,
        recv_timeout: float | None = None,
        send_timeout: float | None = None,
        heartbeat_timer: HeartbeatTimer | None = None,
        heartbeat_interval: float | None = None,
        handshake: bytes | None = constants.HANDSHAKE_PROBE,
        logger: logging.Logger | None = None,
    ) -> None:
        """
        Parameters:
            connection: The connected transport.
            deadline: The deadline enforced by the client's watchdog.
            stopped: The client's stopped flag.
            source: Supplies outbound messages. If :data:`None`, empty heartbeat messages are sent.
            sink: Receives inbound messages. If :data:`None`, they are only logged.
            framer: Outbound framing.
            buffer: Inbound message buffer.
            recv_timeout: The allowed time (in seconds) to receive a message. No limit if :data:`None` (default).
            send_timeout: The allowed time (in seconds) to send a message. No limit if :data:`None` (default).
            heartbeat_timer: The timer used to wait between two outbound messages.
            heartbeat_interval: Delay before each outbound message. Mandatory if there is no `source`.
            handshake: Bytes written once, before the first message. Disabled if :data:`None`.
            logger: The logger used to report the exchanges.
        """
        if recv_timeout is not None:
            recv_timeout = _utils.validate_timeout_delay(recv_timeout, positive_check=True)
        if send_timeout is not None:
            send_timeout = _utils.validate_timeout_delay(send_timeout, positive_check=True)
        if heartbeat_interval is not None:
            heartbeat_interval = _utils.validate_timeout_delay(heartbeat_interval, positive_check=True)
            if heartbeat_timer is None:
                raise ValueError("heartbeat_interval given without heartbeat_timer")
        elif source is None:
            raise ValueError("A heartbeat_interval is required when there is no message source")

        self.__connection: Connection = connection
        self.__deadline: Deadline = deadline
        self.__stopped: _utils.Flag = stopped
        self.__source: MessageSource | None = source
        self.__sink: MessageSink | None = sink
        self.__framer: MessageFramer = framer if framer is not None else MessageFramer()
        self.__buffer: MessageBuffer = buffer if buffer is not None else MessageBuffer()
        self.__recv_timeout: float | None = recv_timeout
        self.__send_timeout: float | None = send_timeout
        self.__heartbeat_timer: HeartbeatTimer | None = heartbeat_timer
        self.__heartbeat_interval: float | None = heartbeat_interval
        self.__handshake: bytes | None = handshake or None
        self.__state: ExchangeState = ExchangeState.IDLE
        self.__logger: logging.Logger = logger or logging.getLogger(__name__)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} state={self.__state.name} connection={self.__connection!r}>"

    @property
    def state(self) -> ExchangeState:
        """The current state. Read-only attribute."""
        return self.__state

    async def run(self) -> None:
        """
        Runs the loop until the client is stopped or the message source is exhausted.

        Raises:
            OSError: a send or receive operation failed (including a closure forced by the watchdog).
            LimitOverrunError: the remote end sent a too long frame.
        """
        if self.__state is not ExchangeState.IDLE:
            raise RuntimeError("ExchangeLoop.run() called twice")

        self.__state = ExchangeState.HANDSHAKE if self.__handshake is not None else ExchangeState.AWAITING_OUTBOUND
        try:
            while not self.__stopped.is_set():
                match self.__state:
                    case ExchangeState.HANDSHAKE:
                        assert self.__handshake is not None  # nosec assert_used
                        if not await self.__send(self.__handshake):
                            break
                        self.__state = ExchangeState.AWAITING_OUTBOUND
                    case ExchangeState.AWAITING_OUTBOUND:
                        message = await self.__next_outbound_message()
                        if message is None:
                            if not self.__stopped.is_set():
                                self.__logger.info("No more message to send")
                            break
                        if not await self.__send(self.__framer.frame(message)):
                            break
                        self.__state = ExchangeState.AWAITING_INBOUND
                    case ExchangeState.AWAITING_INBOUND:
                        message = await self.__receive()
                        if message is None:
                            break
                        if message:
                            self.__deliver(message)
                        # Empty messages are heartbeats and so ignored.
                        self.__state = ExchangeState.AWAITING_OUTBOUND
                    case ExchangeState.IDLE | ExchangeState.HALTED:  # pragma: no cover
                        raise AssertionError(f"Unexpected state {self.__state}")
                    case _:  # pragma: no cover
                        assert_never(self.__state)
        finally:
            self.__state = ExchangeState.HALTED

    async def __next_outbound_message(self) -> bytes | None:
        if (interval := self.__heartbeat_interval) is not None:
            assert self.__heartbeat_timer is not None  # nosec assert_used
            if not await self.__heartbeat_timer.wait(interval):
                return None
            if self.__stopped.is_set():
                return None
        if (source := self.__source) is None:
            return b""
        try:
            message = source()
            if inspect.isawaitable(message):
                message = await message
        except OSError as exc:
            if self.__stopped.is_set():
                return None
            self.__logger.error("Error in message source: %s", exc)
            raise
        if self.__stopped.is_set():
            return None
        return message

    async def __send(self, data: bytes) -> bool:
        self.__deadline.expires_after(self.__send_timeout)
        try:
            await self.__connection.send_all(data)
        except OSError as exc:
            if self.__stopped.is_set():
                return False
            self.__logger.error("Error on send: %s", exc)
            raise
        if self.__stopped.is_set():
            return False
        self.__deadline.clear()
        self.__logger.debug("%d byte(s) sent to %s", len(data), self.__connection.remote_endpoint)
        return True

    async def __receive(self) -> bytes | None:
        buffer = self.__buffer
        self.__deadline.expires_after(self.__recv_timeout)
        try:
            while (message := buffer.pop_message()) is None:
                data = await self.__connection.recv()
                if self.__stopped.is_set():
                    return None
                self.__logger.debug("Received %d bytes from %s", len(data), self.__connection.remote_endpoint)
                buffer.feed(data)
        except OSError as exc:
            if self.__stopped.is_set():
                return None
            self.__logger.error("Error on receive: %s", exc)
            raise
        except ValueError as exc:
            self.__logger.error("Malformed data sent by %s: %s", self.__connection.remote_endpoint, exc)
            raise
        self.__deadline.clear()
        return message

    def __deliver(self, message: bytes) -> None:
        sink = self.__sink
        if sink is None:
            self.__logger.info("Message from server: %r", message)
            return
        try:
            sink(message)
        except OSError as exc:
            self.__logger.error("Error in message sink: %s", exc)
            raise
