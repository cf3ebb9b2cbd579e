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
"""Multi-endpoint connect-with-fallback module."""

from __future__ import annotations

__all__ = ["Connector"]

import logging
from collections.abc import Iterable
from typing import final

from . import _utils, constants
from .connection import Connection
from .deadline import Deadline
from .endpoint import Endpoint
from .exceptions import EndpointsExhaustedError


@final
class Connector:
    """
    Tries the candidate endpoints in order, each attempt being bounded by the shared deadline.
    """

    __slots__ = ("__connection", "__deadline", "__stopped", "__timeout", "__logger")

    def __init__(
        self,
        connection: Connection,
        deadline: Deadline,
        stopped: _utils.Flag,
        *,
        timeout: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """
        Parameters:
            connection: The transport handle to connect.
            deadline: The deadline enforced by the client's watchdog.
            stopped: The client's stopped flag.
            timeout: The allowed time (in seconds) for each attempt. ``60.0`` seconds if :data:`None` (default).
            logger: The logger used to report each attempt.
        """
        if timeout is None:
            timeout = constants.DEFAULT_CONNECT_TIMEOUT
        self.__timeout: float = _utils.validate_timeout_delay(timeout, positive_check=True)
        self.__connection: Connection = connection
        self.__deadline: Deadline = deadline
        self.__stopped: _utils.Flag = stopped
        self.__logger: logging.Logger = logger or logging.getLogger(__name__)

    @property
    def timeout(self) -> float:
        """The allowed time (in seconds) for each attempt. Read-only attribute."""
        return self.__timeout

    async def connect(self, endpoints: Iterable[Endpoint]) -> Endpoint | None:
        """
        Attempts a connection to each endpoint in turn, until one succeeds.

        A timed out attempt is seen as a closed socket (the watchdog closed it), and is handled like any other failure.

        Raises:
            EndpointsExhaustedError: every endpoint failed or timed out.

        Returns:
            the connected endpoint, or :data:`None` if the client has been stopped meanwhile.
        """
        connection = self.__connection
        deadline = self.__deadline
        logger = self.__logger
        errors: list[tuple[Endpoint, OSError]] = []

        for endpoint in endpoints:
            if self.__stopped.is_set():
                return None

            logger.info("Trying to connect to %s...", endpoint)
            deadline.expires_after(self.__timeout)
            try:
                await connection.connect(endpoint)
            except OSError as exc:
                if self.__stopped.is_set():
                    return None
                if connection.is_open():
                    logger.warning("Connection to %s failed: %s", endpoint, exc)
                    # The socket used in the previous attempt must be closed before starting a new one.
                    connection.abort()
                elif isinstance(exc, ConnectionAbortedError):
                    logger.warning("Connection to %s timed out", endpoint)
                else:
                    # The socket could not even be created.
                    logger.warning("Connection to %s failed: %s", endpoint, exc)
                errors.append((endpoint, exc))
                continue

            if self.__stopped.is_set():
                return None
            deadline.clear()
            logger.info("Connected to %s", endpoint)
            return endpoint

        if self.__stopped.is_set():
            return None
        deadline.clear()
        if not errors:
            raise EndpointsExhaustedError("Could not connect: no endpoint to try")
        raise _utils.exception_with_notes(
            EndpointsExhaustedError(f"Could not connect: all {len(errors)} endpoint(s) failed", errors),
            [f"{endpoint}: {exc}" for endpoint, exc in errors],
        )
