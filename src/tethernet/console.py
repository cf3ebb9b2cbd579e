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
"""Console message source and sink."""

from __future__ import annotations

__all__ = ["ConsoleMessageSink", "ConsoleMessageSource"]

import sys
from collections.abc import Callable
from typing import TextIO, final

from . import _utils, constants


@final
class ConsoleMessageSource:
    """
    Reads outbound messages from the console, one per line.

    The blocking read runs in a worker thread.
    """

    __slots__ = ("__max_size", "__encoding", "__prompt", "__readline")

    def __init__(
        self,
        *,
        max_size: int = constants.MAX_MESSAGE_SIZE,
        encoding: str = "utf-8",
        prompt: str = "",
        readline: Callable[[str], str] = input,
    ) -> None:
        """
        Parameters:
            max_size: Messages are truncated to this number of bytes.
            encoding: Encoding used to convert lines to bytes.
            prompt: Written before each read.
            readline: The function which reads a line. Must raise :exc:`EOFError` at the end of input.
        """
        if max_size <= 0:
            raise ValueError("max_size must be a positive integer")
        self.__max_size: int = max_size
        self.__encoding: str = encoding
        self.__prompt: str = prompt
        self.__readline: Callable[[str], str] = readline

    async def __call__(self) -> bytes | None:
        try:
            line = await _utils.run_in_thread(self.__readline, self.__prompt)
        except EOFError:
            return None
        return line.encode(self.__encoding, "replace")[: self.__max_size]


@final
class ConsoleMessageSink:
    """
    Prints inbound messages to the console.
    """

    __slots__ = ("__encoding", "__file")

    def __init__(self, *, encoding: str = "utf-8", file: TextIO | None = None) -> None:
        self.__encoding: str = encoding
        self.__file: TextIO | None = file

    def __call__(self, message: bytes) -> None:
        text = message.decode(self.__encoding, "replace")
        print(f"Echo message from Server : {text}", file=self.__file if self.__file is not None else sys.stdout, flush=True)
