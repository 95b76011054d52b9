"""
Find stress commands, identify the ones that the user wants, and run
each of them over and over until the process is killed.
"""

from __future__ import annotations

import asyncio
import functools
import importlib
import sys
from types import ModuleType
from typing import Generator, Iterable, Optional, Sequence

from store_rpc_stress import CommandFailed, FatalException
from store_rpc_stress.command import CommandContext, CommandSpec, now
from store_rpc_stress.context import StressContext
from store_rpc_stress.watchdog import Watchdog

# The order here is the order in which commands are registered,
# and so the order of their introspection ids.
_COMMAND_MODS = [
    "never_connected",
    "disconnected",
    "reconnect",
    "failures",
    "successes",
]


# Return a list of all the python modules that we should search for commands.
def all_modules() -> list[ModuleType]:
    return [
        importlib.import_module(f"store_rpc_stress.commands.{name}")
        for name in _COMMAND_MODS
    ]


class CommandFilter:
    """
    Selects one or more commands that we should run.
    """

    def __init__(self, names: Iterable[str] = ()):
        self.names = frozenset(names)

    def list_commands(self, module: ModuleType) -> Generator[CommandSpec, None, None]:
        """
        Yield every command in `module` that this filter permits,
        in the order they are defined.
        """
        for obj in vars(module).values():
            spec = getattr(obj, "stress_command", None)
            if callable(obj) and isinstance(spec, CommandSpec):
                if not self.names or spec.name in self.names:
                    yield spec


def all_commands(
    commandfilter: Optional[CommandFilter] = None,
    modules: Optional[Sequence[ModuleType]] = None,
) -> list[CommandSpec]:
    """
    Return every command permitted by `commandfilter` in `modules`
    (by default, every command we know about).

    Raise FatalException if the filter names a command that doesn't exist.
    """
    if commandfilter is None:
        commandfilter = CommandFilter()
    if modules is None:
        modules = all_modules()

    specs: list[CommandSpec] = []
    for m in modules:
        specs.extend(commandfilter.list_commands(m))

    names = [s.name for s in specs]
    if len(set(names)) != len(names):
        raise FatalException(f"Duplicate command names in {names}")
    missing = commandfilter.names - set(names)
    if missing:
        raise FatalException(f"No such command: {', '.join(sorted(missing))}")
    return specs


class CommandRunner:
    """
    Runs every registered command in a loop, forever.

    Each command's iterations run one at a time; iterations of different
    commands interleave freely.
    """

    contexts: list[CommandContext]

    def __init__(self, context: StressContext, watchdog: Watchdog):
        self.context = context
        self.watchdog = watchdog
        self.contexts = []
        self._stopping = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def start(self, specs: Sequence[CommandSpec]) -> None:
        """
        Set up every command in `specs` concurrently, starting each one's
        loop as soon as its setup is done.

        Raise FatalException if any setup failed.  (Commands that were set
        up successfully keep running; the caller is expected to exit.)
        """
        self._loop = asyncio.get_running_loop()
        self.contexts = [
            CommandContext(spec, self.context, self.context.log.getChild(spec.funcname))
            for spec in specs
        ]
        results = await asyncio.gather(
            *(self._setup(ctx) for ctx in self.contexts), return_exceptions=True
        )
        for ctx, result in zip(self.contexts, results):
            if isinstance(result, BaseException):
                raise FatalException(
                    f'setup command "{ctx.spec.name}": {result}'
                ) from result
        self.context.log.debug("set up all commands")

    async def _setup(self, ctx: CommandContext) -> None:
        ctx.setup_started = now()
        await ctx.spec.setup(ctx)
        ctx.setup_done = now()
        self._iterate(ctx)

    def _iterate(self, ctx: CommandContext) -> None:
        """
        Begin one iteration of `ctx`'s command.
        """
        if self._stopping or self.context.failed():
            return
        assert ctx.timer is None
        ctx.nstarted += 1
        ctx.log.debug("starting iteration %d", ctx.nstarted)
        ctx.last_started = now()
        ctx.timer = self.watchdog.arm(
            self.watchdog.limit, functools.partial(self._watchdog_fired, ctx)
        )
        ctx.task = self._loop.create_task(ctx.spec.exec(ctx))
        ctx.task.add_done_callback(functools.partial(self._iteration_done, ctx))

    def _iteration_done(self, ctx: CommandContext, task: asyncio.Task) -> None:
        self.watchdog.disarm(ctx.timer)
        ctx.timer = None
        ctx.task = None

        if task.cancelled():
            # Only happens when the whole run is being torn down.
            ctx.log.debug("iteration %d cancelled", ctx.nstarted)
            return

        err = task.exception()
        if err is not None:
            failure = CommandFailed(f'exec command "{ctx.spec.name}": {err}')
            failure.__cause__ = err
            ctx.log.critical("%s", failure, exc_info=err)
            self.context.fail(failure)
            return

        # Never call back in-line: let everything else that is ready run
        # first, and keep the stack flat.
        self._loop.call_soon(self._iterate, ctx)

    def _watchdog_fired(self, ctx: CommandContext) -> None:
        msg = f'watchdog timer expired for command: "{ctx.spec.name}"'
        print(msg, file=sys.stderr)
        print("aborting (to dump core)", file=sys.stderr, flush=True)
        ctx.log.critical("%s (iteration %d)", msg, ctx.nstarted)

    async def wait(self) -> None:
        """
        Wait forever, or until a command fails; then raise its error.
        """
        await self.context.wait_for_failure()

    async def stop(self) -> None:
        """
        Stop starting new iterations, and wait for the ones in flight
        to finish.

        Nothing is cancelled: an iteration that hangs still hangs.
        """
        self._stopping = True
        pending = [ctx.task for ctx in self.contexts if ctx.task is not None]
        if pending:
            await asyncio.wait(pending)
