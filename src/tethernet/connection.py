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
"""Abortable TCP transport module."""

from __future__ import annotations

__all__ = ["Connection", "ConnectionState"]

import asyncio
import contextlib
import enum
import errno as _errno
import logging
import socket as _socket
from collections.abc import Coroutine
from typing import Any, TypeVar, final

from . import _utils, constants
from .endpoint import Endpoint
from .exceptions import BusyResourceError, ClientClosedError

_T = TypeVar("_T")

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@final
class Connection:
    """
    The single live transport handle of a client.

    At most one operation (connect, send or receive) can be pending at a time. Closing the socket is
    the only way to cancel it: :meth:`abort` and :meth:`close` cancel the pending operation, which then
    raises :exc:`ConnectionAbortedError` to its caller.
    """

    __slots__ = (
        "__loop",
        "__socket",
        "__state",
        "__pending",
        "__max_recv_size",
        "__remote_endpoint",
    )

    def __init__(self, *, loop: asyncio.AbstractEventLoop, max_recv_size: int | None = None) -> None:
        """
        Parameters:
            loop: The event loop which runs the socket operations.
            max_recv_size: Read buffer size. If not given, a default reasonable value is used.
        """
        if max_recv_size is None:
            max_recv_size = constants.DEFAULT_STREAM_BUFSIZE
        if not isinstance(max_recv_size, int) or max_recv_size <= 0:
            raise ValueError("'max_recv_size' must be a strictly positive integer")

        self.__loop: asyncio.AbstractEventLoop = loop
        self.__socket: _socket.socket | None = None
        self.__state: ConnectionState = ConnectionState.UNCONNECTED
        self.__pending: asyncio.Task[Any] | None = None
        self.__max_recv_size: int = max_recv_size
        self.__remote_endpoint: Endpoint | None = None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} state={self.__state.name} remote={self.__remote_endpoint!s}>"

    @property
    def state(self) -> ConnectionState:
        """The connection state. Read-only attribute."""
        return self.__state

    @property
    def remote_endpoint(self) -> Endpoint | None:
        """The endpoint of the current (or current attempt) socket, if any. Read-only attribute."""
        return self.__remote_endpoint

    def is_open(self) -> bool:
        """
        Checks if a socket is currently opened.

        A connect attempt which has been aborted (by a timeout for example) leaves the connection without socket.
        """
        return self.__socket is not None

    def is_closed(self) -> bool:
        return self.__state is ConnectionState.CLOSED

    def is_busy(self) -> bool:
        """
        Checks if an operation is pending.
        """
        return self.__pending is not None

    async def connect(self, endpoint: Endpoint) -> None:
        """
        Opens a new socket and connects it to `endpoint`.

        On failure, the socket is left opened so the caller can tell a genuine connect error from an abort.

        Raises:
            ClientClosedError: the connection is closed.
            BusyResourceError: another operation is pending.
            ConnectionAbortedError: :meth:`abort` or :meth:`close` has been called during the attempt.
            OSError: the connection attempt failed.
        """
        self.__check_not_closed()
        if self.__state is not ConnectionState.UNCONNECTED:
            raise RuntimeError(f"connect() called in state {self.__state.name}")
        self.__check_not_busy()

        socket = _socket.socket(endpoint.family, _socket.SOCK_STREAM, endpoint.proto)
        try:
            socket.setblocking(False)
        except BaseException:
            socket.close()
            raise
        self.__socket = socket
        self.__remote_endpoint = endpoint
        self.__state = ConnectionState.CONNECTING

        await self.__run_abortable(self.__loop.sock_connect(socket, endpoint.address))

        if self.__socket is not socket:
            # Aborted right after the connection succeeded
            raise _utils.error_from_errno(_errno.ECONNABORTED)

        self.__state = ConnectionState.CONNECTED
        with contextlib.suppress(OSError):
            socket.setsockopt(_socket.IPPROTO_TCP, _socket.TCP_NODELAY, True)

    async def send_all(self, data: bytes) -> None:
        """
        Sends all of `data` to the remote end.

        Raises:
            ClientClosedError: the connection is closed.
            BusyResourceError: another operation is pending.
            ConnectionAbortedError: the socket has been closed during the operation.
            OSError: unrelated OS error occurred.
        """
        socket = self.__get_connected_socket()
        self.__check_not_busy()
        await self.__run_abortable(self.__loop.sock_sendall(socket, data))
        _utils.check_real_socket_state(socket)

    async def recv(self) -> bytes:
        """
        Waits for data to arrive.

        Raises:
            ClientClosedError: the connection is closed.
            BusyResourceError: another operation is pending.
            ConnectionAbortedError: the socket has been closed during the operation, or the remote end closed the connection.
            OSError: unrelated OS error occurred.

        Returns:
            a non-empty chunk of bytes.
        """
        socket = self.__get_connected_socket()
        self.__check_not_busy()
        data: bytes = await self.__run_abortable(self.__loop.sock_recv(socket, self.__max_recv_size))
        if not data:
            raise _utils.error_from_errno(_errno.ECONNABORTED, "{strerror} (connection closed by remote)")
        return data

    def abort(self) -> None:
        """
        Closes the current socket, cancelling the pending operation if there is one.

        The connection goes back to the "unconnected" state (unless it is closed) and can make another connect attempt.
        Can be safely called multiple times.
        """
        socket, self.__socket = self.__socket, None
        pending, self.__pending = self.__pending, None
        if pending is not None:
            pending.cancel()
        if socket is not None:
            logger.debug("Closing socket to %s", self.__remote_endpoint)
            try:
                socket.close()
            except OSError:
                # Already closed transport.
                pass
        if self.__state is not ConnectionState.CLOSED:
            self.__state = ConnectionState.UNCONNECTED

    def close(self) -> None:
        """
        Closes the connection for good.

        Can be safely called multiple times.
        """
        self.abort()
        self.__state = ConnectionState.CLOSED

    async def __run_abortable(self, coroutine: Coroutine[Any, Any, _T]) -> _T:
        task = self.__loop.create_task(coroutine)
        self.__pending = task
        try:
            return await task
        except asyncio.CancelledError:
            # The pending operation has been taken off by abort(), and the caller itself is not being cancelled.
            if self.__pending is not task and task.cancelled() and not self.__caller_is_cancelling():
                raise _utils.error_from_errno(_errno.ECONNABORTED) from None
            raise
        except OSError as exc:
            if exc.errno in constants.CLOSED_SOCKET_ERRNOS and self.__pending is not task:
                raise _utils.error_from_errno(_errno.ECONNABORTED) from exc
            raise
        finally:
            if self.__pending is task:
                self.__pending = None
            del task

    @staticmethod
    def __caller_is_cancelling() -> bool:
        current_task = asyncio.current_task()
        return current_task is not None and current_task.cancelling() > 0

    def __get_connected_socket(self) -> _socket.socket:
        self.__check_not_closed()
        socket = self.__socket
        if socket is None or self.__state is not ConnectionState.CONNECTED:
            raise _utils.error_from_errno(_errno.ENOTCONN)
        return socket

    def __check_not_closed(self) -> None:
        if self.__state is ConnectionState.CLOSED:
            raise ClientClosedError("Connection is closed")

    def __check_not_busy(self) -> None:
        if self.__pending is not None:
            raise BusyResourceError("Another operation is in progress on this connection")
