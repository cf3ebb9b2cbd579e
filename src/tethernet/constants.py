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
"""tethernet's constants module."""

from __future__ import annotations

__all__ = [
    "CLOSED_SOCKET_ERRNOS",
    "DEFAULT_BUFFER_LIMIT",
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_STREAM_BUFSIZE",
    "HANDSHAKE_PROBE",
    "MAX_MESSAGE_SIZE",
    "MESSAGE_PREFIX_SIZE",
    "MESSAGE_TERMINATOR",
]

import errno as _errno
from typing import Final

# Time allowed for a single connect(2) attempt before moving to the next endpoint
DEFAULT_CONNECT_TIMEOUT: Final[float] = 60.0

# Buffer size for a recv(2) operation
DEFAULT_STREAM_BUFSIZE: Final[int] = 16 * 1024  # 16KiB

# Buffer size limit when waiting for a terminator
DEFAULT_BUFFER_LIMIT: Final[int] = 64 * 1024  # 64 KiB

# Sentinel byte which ends every message, in both directions
MESSAGE_TERMINATOR: Final[bytes] = b"\0"

# Number of reserved bytes at the start of every inbound frame
MESSAGE_PREFIX_SIZE: Final[int] = 1

# Maximum payload length of an outbound message (the terminator is not counted)
MAX_MESSAGE_SIZE: Final[int] = 127

# Sent once, right after the connection is established
HANDSHAKE_PROBE: Final[bytes] = b"\n"

# Errors that socket operations can return if the socket is closed
CLOSED_SOCKET_ERRNOS: Final[frozenset[int]] = frozenset(
    {
        # Unix
        _errno.EBADF,
        # Windows
        _errno.ENOTSOCK,
    }
)
