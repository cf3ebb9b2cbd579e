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
"""Command line interface: an interactive echo client."""

from __future__ import annotations

__all__ = ["main"]

import argparse
import asyncio
import logging
import socket
from collections.abc import Sequence
from typing import Any, Final

from . import constants
from .client import HeartbeatClient
from .console import ConsoleMessageSink, ConsoleMessageSource
from .endpoint import resolve_endpoints

LOGGER: Final[logging.Logger] = logging.getLogger("tethernet")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tethernet",
        description="Connect to an echo server and exchange console lines with it.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("host", help="Server host name or address")
    parser.add_argument("port", type=int, help="Server port")

    family_group = parser.add_mutually_exclusive_group()
    family_group.add_argument(
        "-4",
        dest="family",
        action="store_const",
        const=socket.AF_INET,
        default=socket.AF_UNSPEC,
        help="Use IPv4 addresses only",
    )
    family_group.add_argument(
        "-6",
        dest="family",
        action="store_const",
        const=socket.AF_INET6,
        help="Use IPv6 addresses only",
    )

    parser.add_argument(
        "--connect-timeout",
        dest="connect_timeout",
        type=float,
        default=constants.DEFAULT_CONNECT_TIMEOUT,
        help="Time allowed for each connection attempt, in seconds",
    )
    parser.add_argument(
        "--recv-timeout",
        dest="recv_timeout",
        type=float,
        default=None,
        help="Time allowed to receive a reply, in seconds",
    )
    parser.add_argument(
        "--send-timeout",
        dest="send_timeout",
        type=float,
        default=None,
        help="Time allowed to send a message, in seconds",
    )
    parser.add_argument(
        "--heartbeat-interval",
        dest="heartbeat_interval",
        type=float,
        default=None,
        help="Delay before each message, in seconds",
    )
    parser.add_argument(
        "--no-handshake",
        dest="handshake",
        action="store_false",
        help="Do not send the probe right after the connection",
    )
    parser.add_argument(
        "--max-message-size",
        dest="max_message_size",
        type=int,
        default=constants.MAX_MESSAGE_SIZE,
        help="Longer lines are truncated",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        dest="verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )

    return parser


async def _run(args: argparse.Namespace) -> int:
    endpoints = await resolve_endpoints(args.host, args.port, family=args.family)

    client_options: dict[str, Any] = {
        "connect_timeout": args.connect_timeout,
        "recv_timeout": args.recv_timeout,
        "send_timeout": args.send_timeout,
        "heartbeat_interval": args.heartbeat_interval,
        "handshake": args.handshake,
        "max_message_size": args.max_message_size,
    }

    source = ConsoleMessageSource(max_size=args.max_message_size)
    async with HeartbeatClient(source, ConsoleMessageSink(), **client_options) as client:
        client.start(endpoints)
        await client.wait_stopped()

    return 0 if client.error is None else 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    match args.verbose:
        case 0:
            level = logging.WARNING
        case 1:
            level = logging.INFO
        case _:
            level = logging.DEBUG
    logging.basicConfig(level=level, format="[ %(levelname)s ] [ %(name)s ] %(message)s")

    try:
        return asyncio.run(_run(args))
    except OSError as exc:
        LOGGER.error("Could not resolve %s:%d: %s", args.host, args.port, exc)
        return 1
    except ValueError as exc:
        parser.error(str(exc))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
