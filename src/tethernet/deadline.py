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
"""Deadline enforcement module.

A single :class:`Deadline` is shared by every component of a client. Whoever issues an operation that
can block sets it right before, and clears it right after the operation succeeds. The
:class:`DeadlineWatchdog` is the only one which acts on it: when it expires, the watchdog calls its
expiry callback, which closes the transport and thus aborts whatever operation is pending.
"""

from __future__ import annotations

__all__ = ["Deadline", "DeadlineWatchdog", "HeartbeatTimer"]

import asyncio
import math
from collections.abc import Callable
from typing import final

from . import _utils


@final
class Deadline:
    """
    A mutable expiry timestamp, expressed with the event loop clock.

    :data:`math.inf` means "no deadline".
    """

    __slots__ = ("__clock", "__expiry", "__on_change", "__weakref__")

    def __init__(self, clock: Callable[[], float]) -> None:
        """
        Parameters:
            clock: The monotonic clock to use, usually :meth:`asyncio.AbstractEventLoop.time`.
        """
        self.__clock: Callable[[], float] = clock
        self.__expiry: float = math.inf
        self.__on_change: Callable[[], None] | None = None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} expiry={self.__expiry!r}>"

    def expiry(self) -> float:
        """
        Returns:
            the current expiry timestamp, or :data:`math.inf` if there is no deadline.
        """
        return self.__expiry

    def expires_at(self, when: float) -> None:
        """
        Moves the deadline to `when`.
        """
        when = _utils.validate_timeout_delay(when, positive_check=False)
        self.__expiry = when
        if (on_change := self.__on_change) is not None:
            on_change()

    def expires_after(self, delay: float | None) -> None:
        """
        Moves the deadline to `delay` seconds from now.

        If `delay` is :data:`None`, the deadline is cleared.
        """
        delay = _utils.validate_optional_timeout_delay(delay, positive_check=True)
        if math.isinf(delay):
            self.expires_at(math.inf)
        else:
            self.expires_at(self.__clock() + delay)

    def clear(self) -> None:
        """
        Resets the deadline to infinite.
        """
        self.expires_at(math.inf)

    def expired(self, now: float | None = None) -> bool:
        """
        Checks if the deadline has passed.

        Parameters:
            now: The time to compare with. Defaults to the current time.
        """
        if now is None:
            now = self.__clock()
        return self.__expiry <= now

    def set_change_callback(self, callback: Callable[[], None] | None) -> None:
        """
        Registers the function to call each time the expiry is moved. There can only be one.
        """
        if callback is not None and self.__on_change is not None:
            raise RuntimeError("A change callback is already registered")
        self.__on_change = callback


@final
class DeadlineWatchdog:
    """
    The recurring check which enforces a :class:`Deadline`.

    It sleeps while the deadline is infinite and is re-armed each time the deadline is moved, so an expiry
    is detected within the event loop clock resolution.
    """

    __slots__ = (
        "__loop",
        "__deadline",
        "__on_expired",
        "__stopped",
        "__handle",
        "__started",
        "__cancelled",
    )

    def __init__(
        self,
        deadline: Deadline,
        on_expired: Callable[[], None],
        stopped: _utils.Flag,
        *,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        """
        Parameters:
            deadline: The deadline to watch.
            on_expired: Called when the deadline passes. Must not raise.
            stopped: The client's stopped flag. Once set, the watchdog takes no action.
            loop: The event loop where the wake-ups are scheduled.
        """
        self.__loop: asyncio.AbstractEventLoop = loop
        self.__deadline: Deadline = deadline
        self.__on_expired: Callable[[], None] = on_expired
        self.__stopped: _utils.Flag = stopped
        self.__handle: asyncio.TimerHandle | None = None
        self.__started: bool = False
        self.__cancelled: bool = False

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} deadline={self.__deadline!r} armed={self.is_armed()!r}>"

    def start(self) -> None:
        if self.__started:
            raise RuntimeError("Watchdog already started")
        self.__started = True
        if self.__cancelled:
            return
        self.__deadline.set_change_callback(self.__rearm)
        self.__rearm()

    def cancel(self) -> None:
        """
        Stops the watchdog for good. Can be safely called multiple times.
        """
        if self.__cancelled:
            return
        self.__cancelled = True
        if self.__started:
            self.__deadline.set_change_callback(None)
        if (handle := self.__handle) is not None:
            self.__handle = None
            handle.cancel()

    def is_armed(self) -> bool:
        """
        Returns:
            :data:`True` if a wake-up is currently scheduled.
        """
        return self.__handle is not None

    def __rearm(self) -> None:
        if (handle := self.__handle) is not None:
            self.__handle = None
            handle.cancel()
        if self.__cancelled:
            return
        expiry = self.__deadline.expiry()
        if math.isinf(expiry):
            # Sleep until the next deadline mutation.
            return
        self.__handle = self.__loop.call_at(expiry, self.__check_deadline, expiry)

    def __check_deadline(self, scheduled_for: float) -> None:
        self.__handle = None
        if self.__cancelled or self.__stopped.is_set():
            return

        # A new operation may have moved the deadline before this wake-up had a chance to run.
        # The timer may also fire a clock tick earlier than "scheduled_for".
        deadline = self.__deadline
        if deadline.expired(max(self.__loop.time(), scheduled_for)):
            # No more active deadline until a new operation sets one.
            # clear() re-arms the watchdog through the change callback.
            deadline.clear()
            self.__on_expired()
        else:
            self.__rearm()


@final
class HeartbeatTimer:
    """
    A cancellable delay between two outbound messages.
    """

    __slots__ = ("__loop", "__handle", "__waiter", "__cancelled")

    def __init__(self, *, loop: asyncio.AbstractEventLoop) -> None:
        self.__loop: asyncio.AbstractEventLoop = loop
        self.__handle: asyncio.TimerHandle | None = None
        self.__waiter: asyncio.Future[bool] | None = None
        self.__cancelled: bool = False

    async def wait(self, delay: float) -> bool:
        """
        Waits for `delay` seconds.

        Returns:
            :data:`True` if the delay elapsed, :data:`False` if the timer has been cancelled.
        """
        delay = _utils.validate_timeout_delay(delay, positive_check=True)
        if self.__cancelled:
            return False
        if self.__waiter is not None:
            raise RuntimeError("HeartbeatTimer.wait() is already awaited")
        self.__waiter = waiter = self.__loop.create_future()
        self.__handle = self.__loop.call_later(delay, self.__wakeup, True)
        try:
            return await waiter
        finally:
            self.__waiter = None
            if (handle := self.__handle) is not None:
                self.__handle = None
                handle.cancel()

    def cancel(self) -> None:
        """
        Cancels the timer for good, waking up the pending :meth:`wait` if any. Can be safely called multiple times.
        """
        self.__cancelled = True
        if (handle := self.__handle) is not None:
            self.__handle = None
            handle.cancel()
        self.__wakeup(False)

    def cancelled(self) -> bool:
        return self.__cancelled

    def __wakeup(self, elapsed: bool) -> None:
        self.__handle = None
        waiter = self.__waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(elapsed)
