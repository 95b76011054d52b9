"""
Deadline timers that take the whole process down when a command hangs.

A hang inside a long-lived network client is only debuggable after the
fact, so by default an expired watchdog aborts the process and leaves a
core file behind instead of shutting down cleanly.
"""

from __future__ import annotations

import asyncio
import os

from typing import Callable, Optional, Union

# Exit status used by the "exit" action.
WATCHDOG_EXIT_STATUS = 134


def abort_process() -> None:
    """Abort the process, dumping core if the system allows it."""
    os.abort()


def exit_process() -> None:
    """Exit immediately, without running any cleanup handlers."""
    os._exit(WATCHDOG_EXIT_STATUS)


_ACTIONS = {
    "abort": abort_process,
    "exit": exit_process,
}


class Watchdog:
    """
    Arms and disarms per-iteration deadlines.

    `action` runs after the `on_fire` callback of an expired deadline,
    and is expected not to return.
    """

    limit: float
    action: Callable[[], None]

    def __init__(
        self,
        limit: float = 30.0,
        action: Union[str, Callable[[], None]] = "abort",
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        if isinstance(action, str):
            try:
                action = _ACTIONS[action]
            except KeyError:
                raise ValueError(f"Unknown watchdog action {action!r}") from None
        self.limit = limit
        self.action = action
        self._loop = loop
        self._live: set = set()

    @property
    def armed(self) -> int:
        """Return the number of deadlines currently armed."""
        return len(self._live)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def arm(
        self, deadline: Optional[float], on_fire: Callable[[], None]
    ) -> asyncio.TimerHandle:
        """
        Call `on_fire`, then our action, if `deadline` seconds elapse
        before the returned handle is disarmed.

        If `deadline` is None, use our default limit.
        """
        if deadline is None:
            deadline = self.limit
        handle: Optional[asyncio.TimerHandle] = None

        def fire():
            self._live.discard(handle)
            try:
                on_fire()
            finally:
                self.action()

        handle = self._get_loop().call_later(deadline, fire)
        self._live.add(handle)
        return handle

    def disarm(self, handle: Optional[asyncio.TimerHandle]) -> None:
        """Cancel a deadline returned by `arm`."""
        if handle in self._live:
            self._live.discard(handle)
            handle.cancel()
