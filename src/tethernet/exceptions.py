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
"""Exceptions definition module.

Here are all the exception classes defined and used by the library.
"""

from __future__ import annotations

__all__ = [
    "BusyResourceError",
    "ClientClosedError",
    "EndpointsExhaustedError",
    "LimitOverrunError",
]

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .endpoint import Endpoint


class BusyResourceError(RuntimeError):
    """Error raised when a task attempts to use a resource that some other task is
    already using, and this would lead to bugs and nonsense.
    """


class ClientClosedError(ConnectionError):
    """Error raised when trying to do an operation on a closed connection."""


class EndpointsExhaustedError(ConnectionError):
    """Every candidate endpoint failed or timed out: the connection could not be established."""

    def __init__(self, message: str, errors: Sequence[tuple[Endpoint, OSError]] = ()) -> None:
        """
        Parameters:
            message: Error message.
            errors: The endpoints which were tried, in order, alongside the error raised by each attempt.
        """

        super().__init__(message)

        self.errors: tuple[tuple[Endpoint, OSError], ...] = tuple(errors)
        """The failed attempts, in order."""


class LimitOverrunError(ValueError):
    """Reached the buffer size limit while looking for a terminator."""

    def __init__(self, message: str, consumed: int, terminator: bytes = b"") -> None:
        """
        Parameters:
            message: Error message.
            consumed: Total number of buffered bytes.
            terminator: Searched terminator.
        """

        super().__init__(message)

        self.consumed: int = consumed
        """Total number of buffered bytes."""

        self.terminator: bytes = terminator
        """Searched terminator."""
