"""
Settings for a stress run, taken from the environment and the command line.

ENVIRONMENT VARIABLES:

- STORE_RPC_CLIENT: Client factory to soak, as "module:attribute".
- STORE_RPC_SERVER_RUN: Shell command that runs one store server.
  Its port can be overridden by "-p PORT" in STORE_RPC_EXTRA_ARGS.
- STORE_RPC_SERVER_REMOTE: URL of an already-running server.  When set,
  we never launch servers ourselves.
- LOG_LEVEL: Level for the harness and client logs.  (Default: CRITICAL.)
"""

from __future__ import annotations

import argparse
import logging
import os

from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

WATCHDOG_ACTIONS = ("abort", "exit")

DEFAULT_READY_PATTERNS = (r"listening on \d+", r"store ready")

_LOG_LEVEL_ALIASES = {"FATAL": "CRITICAL", "WARN": "WARNING", "TRACE": "DEBUG"}


@dataclass
class StressConfig:
    """
    Everything that can be tuned about a stress run.
    """

    client_factory: Optional[str] = None
    server_run: Optional[str] = None
    server_remote: Optional[str] = None
    log_level: str = "CRITICAL"

    # Every iteration of every command has to finish within this many seconds.
    watchdog_limit: float = 30.0
    watchdog_action: str = "abort"

    introspect_host: str = "0.0.0.0"
    introspect_port: int = 9080
    uri_base: str = "/kang"
    service_name: str = "store-rpc-stress"
    service_version: str = "1.0.0"

    server_host: str = "127.0.0.1"
    server_port: int = 2020
    disconnected_port: int = 2021
    reconnect_port: int = 2022
    bogus_host: str = "bogus_hostname"
    server_start_timeout: float = 10.0
    ready_patterns: Sequence[str] = DEFAULT_READY_PATTERNS

    reconnect_max_attempts: int = 100
    reconnect_delay: float = 0.1
    reconnect_retry_timeout: float = 0.05
    final_ping_timeout: float = 5.0

    # Names of the commands to run; empty means all of them.
    commands: Sequence[str] = field(default_factory=tuple)

    def __post_init__(self):
        level = self.log_level.upper()
        level = _LOG_LEVEL_ALIASES.get(level, level)
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level {self.log_level!r}")
        self.log_level = level

        if self.watchdog_action not in WATCHDOG_ACTIONS:
            raise ValueError(
                f"Watchdog action must be one of {', '.join(WATCHDOG_ACTIONS)}"
            )
        if self.watchdog_limit <= 0:
            raise ValueError("Watchdog limit must be positive")
        if self.reconnect_max_attempts < 0:
            raise ValueError("Reconnect attempt count must not be negative")
        if self.reconnect_delay < 0:
            raise ValueError("Reconnect delay must not be negative")
        if not self.uri_base.startswith("/"):
            raise ValueError("URI base must start with '/'")
        self.uri_base = self.uri_base.rstrip("/") or "/"

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)

    @staticmethod
    def from_environ(environ: Optional[Mapping[str, str]] = None) -> StressConfig:
        """
        Build a StressConfig from the environment variables in `environ`
        (by default, os.environ).
        """
        if environ is None:
            environ = os.environ
        return StressConfig(
            client_factory=environ.get("STORE_RPC_CLIENT") or None,
            server_run=environ.get("STORE_RPC_SERVER_RUN") or None,
            server_remote=environ.get("STORE_RPC_SERVER_REMOTE") or None,
            log_level=environ.get("LOG_LEVEL") or "CRITICAL",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="store-rpc-stress",
        description="Run a store RPC client through every code path, forever.",
    )
    parser.add_argument("--client", help="Client factory, as module:attribute")
    parser.add_argument("--remote", help="URL of an already-running store server")
    parser.add_argument("--log-level", help="Log level (default: $LOG_LEVEL or CRITICAL)")
    parser.add_argument("--host", help="Address for the introspection server")
    parser.add_argument(
        "--port", type=int, help="Port for the introspection server (default: 9080)"
    )
    parser.add_argument(
        "--watchdog-limit",
        type=float,
        help="Seconds each iteration may take before we give up (default: 30)",
    )
    parser.add_argument(
        "--watchdog-action",
        choices=WATCHDOG_ACTIONS,
        help="What to do when the watchdog fires (default: abort, to dump core)",
    )
    parser.add_argument(
        "--reconnect-attempts",
        type=int,
        help="Failed pings tolerated while waiting to reconnect (default: 100)",
    )
    parser.add_argument(
        "--reconnect-delay",
        type=float,
        help="Seconds between pings while waiting to reconnect (default: 0.1)",
    )
    parser.add_argument(
        "--ready-pattern",
        action="append",
        help="Regex a server's output must match before it is ready (repeatable)",
    )
    parser.add_argument(
        "--command",
        action="append",
        help="Only run the command with this name (repeatable)",
    )
    parser.add_argument(
        "--list", action="store_true", help="List the available commands and exit"
    )
    return parser


def config_from_args(
    args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None
) -> StressConfig:
    """
    Build a StressConfig from the environment, overridden by parsed
    command-line `args`.
    """
    base = StressConfig.from_environ(environ)
    overrides = {
        "client_factory": args.client,
        "server_remote": args.remote,
        "log_level": args.log_level,
        "introspect_host": args.host,
        "introspect_port": args.port,
        "watchdog_limit": args.watchdog_limit,
        "watchdog_action": args.watchdog_action,
        "reconnect_max_attempts": args.reconnect_attempts,
        "reconnect_delay": args.reconnect_delay,
        "ready_patterns": tuple(args.ready_pattern) if args.ready_pattern else None,
        "commands": tuple(args.command) if args.command else None,
    }
    settings = {k: v for k, v in vars(base).items()}
    settings.update({k: v for k, v in overrides.items() if v is not None})
    return StressConfig(**settings)
