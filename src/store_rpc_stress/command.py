"""
Commands: the unit of work that the stress runner repeats forever.
"""

from __future__ import annotations

import asyncio
import datetime
import logging

from typing import Any, Awaitable, Callable, Optional


class CommandSpec:
    """
    A named pair of coroutine functions: `setup`, run once,
    and `exec`, run over and over again.

    Both take a single CommandContext argument.
    """

    name: str
    setup: Callable[[CommandContext], Awaitable[None]]
    exec: Callable[[CommandContext], Awaitable[None]]

    def __init__(self, name, setup, exec):
        self.name = name
        self.setup = setup
        self.exec = exec

    @property
    def funcname(self) -> str:
        """Return the name of the function that implements each iteration."""
        return getattr(self.exec, "__name__", self.name)

    def __repr__(self):
        return f"CommandSpec({self.name!r})"


class CommandContext:
    """
    Per-command state.

    The runner owns the counters and the watchdog timer.  Anything else
    set on this object (a client, a server, loop counters...) belongs
    to the command's own `setup` and `exec` functions.
    """

    spec: CommandSpec
    stress: Any
    log: logging.Logger
    nstarted: int
    last_started: Optional[datetime.datetime]
    setup_started: Optional[datetime.datetime]
    setup_done: Optional[datetime.datetime]
    timer: Optional[asyncio.TimerHandle]
    task: Optional[asyncio.Task]

    def __init__(self, spec: CommandSpec, stress, log: logging.Logger):
        self.spec = spec
        self.stress = stress
        self.log = log
        self.nstarted = 0
        self.last_started = None
        self.setup_started = None
        self.setup_done = None
        self.timer = None
        self.task = None

    @property
    def config(self):
        """Shortcut for the configuration of the stress run."""
        return self.stress.config

    def snapshot(self) -> dict:
        """
        Return a JSON-friendly view of this command's progress.

        Reads each counter once; the fields may come from slightly different
        moments if an iteration starts concurrently.
        """
        last_started = self.last_started
        return {
            "label": self.spec.name,
            "funcname": self.spec.funcname,
            "nstarted": self.nstarted,
            "lastStarted": (
                last_started.isoformat() if last_started is not None else None
            ),
        }


def now() -> datetime.datetime:
    """Return the current time, as a timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)
