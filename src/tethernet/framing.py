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
"""Message framing module.

On the wire, a message is an opaque byte sequence ended by a sentinel byte. Inbound frames also start
with a reserved prefix byte, which is not part of the message.
"""

from __future__ import annotations

__all__ = ["MessageBuffer", "MessageFramer"]

from typing import final

from . import constants
from .exceptions import LimitOverrunError


@final
class MessageFramer:
    """
    Builds outbound frames.
    """

    __slots__ = ("__terminator", "__max_size")

    def __init__(
        self,
        *,
        terminator: bytes = constants.MESSAGE_TERMINATOR,
        max_size: int = constants.MAX_MESSAGE_SIZE,
    ) -> None:
        r"""
        Parameters:
            terminator: The sentinel byte. Defaults to ``b"\0"``.
            max_size: Maximum payload length of an outbound message.
        """
        if len(terminator) != 1:
            raise ValueError("terminator must be a single byte")
        if max_size <= 0:
            raise ValueError("max_size must be a positive integer")
        self.__terminator: bytes = bytes(terminator)
        self.__max_size: int = max_size

    def frame(self, message: bytes) -> bytes:
        r"""
        Builds the outbound frame for `message`.

        The message ends at the first terminator byte it contains (if any), and is truncated to
        :attr:`max_size` bytes.

        Example:
            >>> MessageFramer().frame(b"ping")
            b'ping\x00'
            >>> MessageFramer(max_size=3).frame(b"ping")
            b'pin\x00'
        """
        message = bytes(message)
        terminator = self.__terminator
        if (idx := message.find(terminator)) >= 0:
            message = message[:idx]
        return message[: self.__max_size] + terminator

    @property
    def terminator(self) -> bytes:
        """The sentinel byte. Read-only attribute."""
        return self.__terminator

    @property
    def max_size(self) -> int:
        """Maximum payload length of an outbound message. Read-only attribute."""
        return self.__max_size


@final
class MessageBuffer:
    """
    Accumulates received bytes and delimits them into messages.
    """

    __slots__ = ("__buffer", "__terminator", "__prefix_size", "__limit", "__scanned")

    def __init__(
        self,
        *,
        terminator: bytes = constants.MESSAGE_TERMINATOR,
        prefix_size: int = constants.MESSAGE_PREFIX_SIZE,
        limit: int = constants.DEFAULT_BUFFER_LIMIT,
    ) -> None:
        """
        Parameters:
            terminator: The sentinel byte.
            prefix_size: Number of reserved bytes at the start of a frame, stripped from the message.
            limit: Maximum number of buffered bytes without a terminator.
        """
        if len(terminator) != 1:
            raise ValueError("terminator must be a single byte")
        if prefix_size < 0:
            raise ValueError("prefix_size must not be negative")
        if limit <= 0:
            raise ValueError("limit must be a positive integer")
        self.__buffer: bytearray = bytearray()
        self.__terminator: bytes = bytes(terminator)
        self.__prefix_size: int = prefix_size
        self.__limit: int = limit
        self.__scanned: int = 0

    def __len__(self) -> int:
        return len(self.__buffer)

    def feed(self, data: bytes) -> None:
        """
        Appends received bytes.
        """
        self.__buffer += data

    def pop_message(self) -> bytes | None:
        r"""
        Extracts the next complete message and discards its frame from the buffer.

        Example:
            >>> buffer = MessageBuffer()
            >>> buffer.feed(b"xpo")
            >>> buffer.pop_message() is None
            True
            >>> buffer.feed(b"ng\0x")
            >>> buffer.pop_message()
            b'pong'
            >>> len(buffer)
            1

        Raises:
            LimitOverrunError: More than `limit` bytes are buffered and there is no terminator.
                               The buffer is cleared.

        Returns:
            the message, without prefix nor terminator (can be empty), or :data:`None` if there is no complete frame yet.
        """
        buffer = self.__buffer
        idx = buffer.find(self.__terminator, self.__scanned)
        if idx < 0:
            if len(buffer) > self.__limit:
                consumed = len(buffer)
                self.clear()
                raise LimitOverrunError("Terminator is not found, and chunk exceed the limit", consumed, self.__terminator)
            self.__scanned = len(buffer)
            return None
        message = bytes(buffer[min(self.__prefix_size, idx) : idx])
        del buffer[: idx + 1]
        self.__scanned = 0
        return message

    def clear(self) -> None:
        self.__buffer.clear()
        self.__scanned = 0

    @property
    def buffer_limit(self) -> int:
        """Maximum number of buffered bytes without a terminator. Read-only attribute."""
        return self.__limit
