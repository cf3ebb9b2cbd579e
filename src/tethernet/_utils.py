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
from __future__ import annotations

__all__ = [
    "Flag",
    "check_real_socket_state",
    "check_running_asyncio",
    "error_from_errno",
    "exception_with_notes",
    "make_callback",
    "run_in_thread",
    "validate_optional_timeout_delay",
    "validate_timeout_delay",
]

import asyncio
import contextvars
import functools
import math
import os
import socket as _socket
from collections.abc import Callable, Iterable
from typing import ParamSpec, TypeVar

import sniffio

_P = ParamSpec("_P")
_T_Return = TypeVar("_T_Return")

_T_Exception = TypeVar("_T_Exception", bound=BaseException)


def error_from_errno(errno: int, msg: str = "{strerror}") -> OSError:
    return OSError(errno, msg.format(strerror=os.strerror(errno)))


def make_callback(func: Callable[_P, _T_Return], /, *args: _P.args, **kwargs: _P.kwargs) -> Callable[[], _T_Return]:
    return functools.partial(func, *args, **kwargs)


def validate_timeout_delay(delay: float, *, positive_check: bool) -> float:
    if math.isnan(delay):
        raise ValueError("Invalid delay: NaN (not a number)")
    if positive_check and delay < 0.0:
        raise ValueError("Invalid delay: negative value")
    return float(delay)


def validate_optional_timeout_delay(delay: float | None, *, positive_check: bool) -> float:
    match delay:
        case None:
            return math.inf
        case _:
            return validate_timeout_delay(delay, positive_check=positive_check)


def check_real_socket_state(socket: _socket.socket, error_msg: str | None = None) -> None:
    """Verify socket saved error and raise OSError if there is one

    There are some functions such as socket.send() which do not immediately fail and save the errno
    in SO_ERROR socket option because the error spawns after the action was sent to the kernel.
    """
    if socket.fileno() < 0:
        return
    errno = socket.getsockopt(_socket.SOL_SOCKET, _socket.SO_ERROR)
    if errno != 0:
        # The SO_ERROR is automatically reset to zero after getting the value
        if error_msg:
            raise error_from_errno(errno, error_msg)
        else:
            raise error_from_errno(errno)


def check_running_asyncio() -> None:
    """
    Raises:
        NotImplementedError: the current asynchronous library is not asyncio.
        RuntimeError: unknown async library, or not in async context
    """
    library = sniffio.current_async_library()
    if library != "asyncio":
        raise NotImplementedError(f"Running library {library!r} is not supported, only 'asyncio' is")


async def run_in_thread(func: Callable[_P, _T_Return], /, *args: _P.args, **kwargs: _P.kwargs) -> _T_Return:
    loop = asyncio.get_running_loop()
    ctx = contextvars.copy_context()

    # The worker thread is not in an async context.
    ctx.run(sniffio.current_async_library_cvar.set, None)

    return await loop.run_in_executor(None, functools.partial(ctx.run, func, *args, **kwargs))


def exception_with_notes(exc: _T_Exception, notes: str | Iterable[str]) -> _T_Exception:
    if isinstance(notes, str):
        notes = (notes,)
    for note in notes:
        exc.add_note(note)
    return exc


class Flag:
    __slots__ = ("__value", "__weakref__")

    def __init__(self) -> None:
        self.__value: bool = False

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} is_set={self.__value!r}>"

    def is_set(self) -> bool:
        return self.__value

    def set(self) -> None:
        self.__value = True
