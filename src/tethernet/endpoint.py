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
"""Candidate endpoints module.

Name resolution is done by the operating system (or by the caller); the client itself only
consumes an ordered sequence of already resolved :class:`Endpoint` objects.
"""

from __future__ import annotations

__all__ = ["Endpoint", "ensure_endpoint", "resolve_endpoints"]

import asyncio
import dataclasses
import socket as _socket
from collections.abc import Iterable, Sequence
from typing import Any


@dataclasses.dataclass(frozen=True, slots=True)
class Endpoint:
    """
    One concrete address+port a client may attempt to connect to.
    """

    family: int
    """The address family (:data:`~socket.AF_INET` or :data:`~socket.AF_INET6`)."""

    address: tuple[Any, ...]
    """The socket address, as given to :meth:`socket.socket.connect`."""

    proto: int = 0
    """The protocol number, as returned by :func:`socket.getaddrinfo`."""

    def __post_init__(self) -> None:
        if self.family not in {_socket.AF_INET, _socket.AF_INET6}:
            raise ValueError("Only these families are supported: AF_INET, AF_INET6")

    def __str__(self) -> str:
        host, port = self.host, self.port
        if self.family == _socket.AF_INET6:
            return f"[{host}]:{port}"
        return f"{host}:{port}"

    @property
    def host(self) -> str:
        """The IP address. Read-only attribute."""
        return str(self.address[0])

    @property
    def port(self) -> int:
        """The port number. Read-only attribute."""
        return int(self.address[1])

    @classmethod
    def from_address(cls, address: tuple[str, int]) -> Endpoint:
        """
        Builds an endpoint from a numeric ``(host, port)`` pair, without any DNS lookup.

        Example:
            >>> Endpoint.from_address(("127.0.0.1", 9000))
            Endpoint(family=<AddressFamily.AF_INET: 2>, address=('127.0.0.1', 9000), proto=6)

        Raises:
            ValueError: `host` is not an IP address.
        """
        host, port = address
        try:
            info = _socket.getaddrinfo(
                host,
                port,
                family=_socket.AF_UNSPEC,
                type=_socket.SOCK_STREAM,
                flags=_socket.AI_NUMERICHOST | _socket.AI_NUMERICSERV,
            )
        except _socket.gaierror as exc:
            raise ValueError(f"{host!r} is not a numeric address (use resolve_endpoints())") from exc
        family, _, proto, _, sockaddr = info[0]
        return cls(family, sockaddr, proto)


def ensure_endpoint(endpoint: Endpoint | tuple[str, int]) -> Endpoint:
    match endpoint:
        case Endpoint():
            return endpoint
        case (str(), int()):
            return Endpoint.from_address(endpoint)
        case _:
            raise TypeError(f"Expected an Endpoint or a (host, port) pair, got {endpoint!r}")


async def resolve_endpoints(host: str, port: int, *, family: int = _socket.AF_UNSPEC) -> Sequence[Endpoint]:
    """
    Resolves `host` into the ordered sequence of candidate endpoints.

    Numeric addresses are converted without any DNS lookup.

    Parameters:
        host: A host name or an IP address.
        port: The port number.
        family: Restricts the returned addresses to this family.

    Raises:
        OSError: The resolution failed, or returned nothing.

    Returns:
        the candidates, in the order given by :func:`socket.getaddrinfo`, without duplicates.
    """
    info: Sequence[tuple[int, int, int, str, tuple[Any, ...]]] | None
    try:
        info = _socket.getaddrinfo(
            host,
            port,
            family=family,
            type=_socket.SOCK_STREAM,
            flags=_socket.AI_NUMERICHOST | _socket.AI_NUMERICSERV,
        )
    except _socket.gaierror as exc:
        if exc.errno != _socket.EAI_NONAME:
            raise
        info = None
    if info is None:
        loop = asyncio.get_running_loop()
        info = await loop.getaddrinfo(host, port, family=family, type=_socket.SOCK_STREAM)
    endpoints = _deduplicate(
        Endpoint(addr_family, sockaddr, proto)
        for addr_family, _, proto, _, sockaddr in info
        if addr_family in {_socket.AF_INET, _socket.AF_INET6}
    )
    if not endpoints:
        raise OSError(f"getaddrinfo({host!r}) returned empty list")
    return endpoints


def _deduplicate(endpoints: Iterable[Endpoint]) -> list[Endpoint]:
    return list(dict.fromkeys(endpoints))
