"""
Entry point for `store_rpc_stress`.

Runs a store RPC client through a lot of different code paths for an
extended period.  The intent is to help identify memory leaks by
watching this process's memory usage over time.

BEHAVIOR:
- Starts an introspection server (default port 9080, under /kang).
- Launches a store server that the commands share.
- Sets up every command, then runs each one over and over.
- Never exits on its own: kill it when it has soaked long enough.
  It aborts (dumping core) if any iteration hangs, and crashes if any
  iteration fails.

ENVIRONMENT VARIABLES:
  See `store_rpc_stress.config`.

ARGUMENTS:
  Run with --help.
"""

from store_rpc_stress import FatalException
from store_rpc_stress import config, context, introspect, runner, watchdog

import asyncio
import logging
import os
import sys


async def soak(cfg: config.StressConfig, specs) -> None:
    """
    Run every command in `specs`, until one of them fails.
    """
    stress = context.StressContext.initialize(cfg)
    dog = watchdog.Watchdog(cfg.watchdog_limit, cfg.watchdog_action)
    command_runner = runner.CommandRunner(stress, dog)

    print(f"pid {os.getpid()}: setting up", file=sys.stderr)

    server = introspect.IntrospectionServer(command_runner, cfg)
    await server.start()

    try:
        #####
        # First, set up a server that all clients can use.
        stress.shared_server = await stress.launcher.start()

        #####
        # Now initialize each of the commands and start them running.
        await command_runner.start(specs)
        print("set up all commands", file=sys.stderr)

        await command_runner.wait()
    finally:
        # Don't leave any server processes behind us.
        await stress.launcher.close_all()
        await server.close()


def main(argv=None) -> None:
    ######
    # Find arguments and environment.
    args = config.build_parser().parse_args(argv)
    try:
        cfg = config.config_from_args(args)
    except ValueError as e:
        print(f"store-rpc-stress: {e}", file=sys.stderr)
        sys.exit(2)

    logging.basicConfig(
        level=cfg.log_level_number,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        specs = runner.all_commands(runner.CommandFilter(cfg.commands))
    except FatalException as e:
        print(f"store-rpc-stress: {e}", file=sys.stderr)
        sys.exit(2)

    if args.list:
        for i, spec in enumerate(specs):
            print(f"{i}\t{spec.funcname}\t{spec.name}")
        return

    #####
    # Run until killed.  Failures propagate and crash us.
    try:
        asyncio.run(soak(cfg, specs))
    except FatalException as e:
        logging.getLogger("store_rpc_stress").critical("%s", e)
        print(f"store-rpc-stress: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
