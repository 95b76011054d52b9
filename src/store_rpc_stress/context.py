"""
Context shared across stress commands.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import re
import signal
import sys

from store_rpc_stress import FatalException, ServerStartTimeout
from store_rpc_stress.client import ClientFactory, StoreClient, load_client_factory
from store_rpc_stress.config import StressConfig

from typing import Optional, Sequence

# Bytes of server output to read at a time.
_OUTPUT_CHUNK_SIZE = 65536


class StressContext:
    """
    Context shared by every command in a stress run.

    Holds the configuration, the run's logger, the client factory, and
    the ability to launch store servers.  It also records the first fatal
    failure of the run, so that whoever is waiting on the run can raise it.
    """

    config: StressConfig
    log: logging.Logger
    client_factory: ClientFactory
    launcher: ServerLauncher
    shared_server: Optional[ServerHandle]

    def __init__(
        self,
        config: StressConfig,
        log: logging.Logger,
        client_factory: ClientFactory,
        launcher: Optional[ServerLauncher] = None,
    ):
        self.config = config
        self.log = log
        self.client_factory = client_factory
        if launcher is None:
            launcher = ServerLauncher(config, log.getChild("server"), self.fail)
        self.launcher = launcher
        self.shared_server = None
        self._failure: Optional[asyncio.Future] = None

    @staticmethod
    def initialize(config: StressConfig) -> StressContext:
        """
        Create a new StressContext from `config`, loading the client
        factory it names.

        Does not launch any servers.
        """
        if config.client_factory is None:
            raise FatalException(
                "No client configured. (Set STORE_RPC_CLIENT or pass --client.)"
            )
        log = logging.getLogger("store_rpc_stress")
        log.setLevel(config.log_level_number)
        return StressContext(config, log, load_client_factory(config.client_factory))

    def create_client(self, host=None, port=None, log=None, **options) -> StoreClient:
        """
        Create a new client.

        With no `host` or `port`, the client talks to the shared server
        (or to the remote server, if there is one).
        """
        if log is None:
            log = self.log.getChild("client")
        if host is None and port is None and self.config.server_remote:
            return self.client_factory(url=self.config.server_remote, log=log, **options)
        if host is None:
            host = self.config.server_host
        if port is None:
            port = self.config.server_port
        return self.client_factory(host=host, port=port, log=log, **options)

    def _failure_future(self) -> asyncio.Future:
        if self._failure is None:
            self._failure = asyncio.get_running_loop().create_future()
        return self._failure

    def fail(self, err: BaseException) -> None:
        """
        Record `err` as the reason this run has to stop.

        Only the first failure is kept.
        """
        failure = self._failure_future()
        if not failure.done():
            failure.set_exception(err)

    def failed(self) -> bool:
        """Return true if a fatal failure has been recorded."""
        return self._failure is not None and self._failure.done()

    async def wait_for_failure(self) -> None:
        """
        Wait until a fatal failure is recorded, then raise it.
        """
        await asyncio.shield(self._failure_future())


class ServerHandle:
    """
    A store server that a command can talk to.
    """

    remote: bool = False

    async def close(self) -> None:
        raise NotImplementedError()


class RemoteServer(ServerHandle):
    """
    A server that somebody else runs; closing it does nothing.
    """

    remote = True

    def __init__(self, url: str):
        self.url = url

    async def close(self) -> None:
        pass


class ServerLauncher:
    """
    Launches store servers for the commands that need them.
    """

    def __init__(self, config: StressConfig, log: logging.Logger, on_failure=None):
        self.config = config
        self.log = log
        self.on_failure = on_failure
        # Every server we started that nobody has cleaned up yet.
        self.servers: set[ServerProcess] = set()

    def multiple_servers_supported(self) -> bool:
        """
        Return true if we can run more than one server at a time.
        """
        return not self.config.server_remote

    async def start(self, port_override: Optional[int] = None) -> ServerHandle:
        """
        Start a new server, and wait until it is ready for requests.

        If `port_override` is given, the server listens there instead of
        on its configured port.
        """
        if self.config.server_remote:
            if port_override is not None:
                raise FatalException(
                    "multiple servers are not supported in this configuration"
                )
            return RemoteServer(self.config.server_remote)

        if not self.config.server_run:
            raise FatalException(
                "not found in environment: STORE_RPC_SERVER_RUN. "
                "(have you already run configure and sourced the env file?)"
            )

        env = dict(os.environ)
        if port_override is not None:
            env["STORE_RPC_EXTRA_ARGS"] = f"-p {port_override}"

        process = await asyncio.create_subprocess_exec(
            "bash",
            "-c",
            self.config.server_run,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=None,
            env=env,
            start_new_session=True,
        )
        server = ServerProcess(
            process, self.log, self.config.ready_patterns, self.on_failure
        )
        self.servers.add(server)
        try:
            await server.wait_ready(self.config.server_start_timeout)
        except BaseException:
            self.servers.discard(server)
            if not server.closing:
                await server.close()
            raise
        return server

    async def cleanup(self, server: ServerHandle) -> None:
        """Shut down `server`, which this launcher started."""
        self.servers.discard(server)
        await server.close()

    async def close_all(self) -> None:
        """
        Shut down every server this launcher started that is still around.
        """
        for server in list(self.servers):
            self.servers.discard(server)
            if not server.closing:
                await server.close()


class ServerProcess(ServerHandle):
    """
    Wrapper for a store server process, running in its own process group.
    """

    process: Optional[asyncio.subprocess.Process]

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        log: logging.Logger,
        ready_patterns: Sequence[str] = (),
        on_failure=None,
    ):
        """
        Wrap an asyncio subprocess as a ServerProcess, which is ready once
        its output has matched every regex in `ready_patterns`.
        """
        self.process = process
        self.log = log
        self.on_failure = on_failure
        self.closing = False
        self._ready: asyncio.Future = asyncio.get_running_loop().create_future()
        self._patterns: Sequence[re.Pattern] = [
            re.compile(p, re.MULTILINE) for p in ready_patterns
        ]
        self._seen = ""
        self._check_ready()
        self._reader = asyncio.ensure_future(self._read_output())
        self._watcher = asyncio.ensure_future(self._watch())

    @property
    def pid(self) -> int:
        return self.process.pid

    def is_running(self) -> bool:
        """
        Return true if the process is running.
        """
        return self.process is not None and self.process.returncode is None

    async def wait_ready(self, timeout: float) -> None:
        """
        Wait up to `timeout` seconds until the server is ready.

        Raise ServerStartTimeout if it doesn't.
        """
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout)
        except asyncio.TimeoutError:
            raise ServerStartTimeout(
                f"server did not start after {timeout} seconds"
            ) from None

    def _check_ready(self) -> None:
        if self._ready.done():
            return
        if all(p.search(self._seen) for p in self._patterns):
            self._seen = ""
            self._ready.set_result(None)

    async def _read_output(self) -> None:
        """
        Copy the server's output to our stdout, watching for the readiness
        markers until they have all appeared.
        """
        # Read in chunks rather than lines: servers may log lines longer
        # than any StreamReader limit.
        stdout = self.process.stdout
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stdout.read(_OUTPUT_CHUNK_SIZE)
            if not chunk:
                return
            text = decoder.decode(chunk)
            sys.stdout.write(text)
            sys.stdout.flush()
            if not self._ready.done():
                self._seen += text
                self._check_ready()

    async def _watch(self) -> None:
        """
        Wait for the process to exit.

        The server should only exit when we kill it; anything else is fatal.
        """
        returncode = await self.process.wait()
        if self.closing:
            return
        if returncode == 0:
            err = FatalException("server unexpectedly exited with status 0")
        elif returncode < 0:
            err = FatalException(
                f"server process {self.process.pid} killed by signal "
                f"{signal.Signals(-returncode).name}"
            )
        else:
            err = FatalException(
                f"server process {self.process.pid} exited with status {returncode}"
            )
        self.log.critical("%s", err)
        if not self._ready.done():
            self._ready.set_exception(err)
        if self.on_failure is not None:
            self.on_failure(err)

    async def close(self) -> None:
        """
        Shut down this server.

        We kill the entire process group, since the shell may have
        created more than one process.
        """
        if self.closing:
            raise FatalException("cannot close a server more than once")
        self.closing = True
        try:
            os.killpg(self.process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        await self._watcher
        await self._reader
        if not self._ready.done():
            self._ready.cancel()
