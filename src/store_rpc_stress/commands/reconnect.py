"""
A command that makes one long-lived client connect and disconnect, over
and over.
"""

import asyncio

from store_rpc_stress import CommandFailed, stress_command
from store_rpc_stress.client import ErrorKind, StoreRpcError, expect_error

# Errors that a ping may fail with once the server is gone.
SERVER_GONE_KINDS = (ErrorKind.NO_BACKENDS, ErrorKind.TRANSPORT, ErrorKind.PROTOCOL)


async def rpc_reconnect_setup(ctx):
    retry = ctx.config.reconnect_retry_timeout
    ctx.client = ctx.stress.create_client(
        host=ctx.config.server_host,
        port=ctx.config.reconnect_port,
        log=ctx.log.getChild("client"),
        max_connections=1,
        retry={"min_timeout": retry, "max_timeout": retry},
    )


async def _wait_for_connection(ctx):
    """
    Ping until one ping succeeds, tolerating up to
    `reconnect_max_attempts` failures along the way.
    """
    ctx.nloops = 0
    while True:
        try:
            await ctx.client.ping()
            return
        except StoreRpcError as e:
            ctx.nloops += 1
            if ctx.nloops > ctx.config.reconnect_max_attempts:
                raise CommandFailed("too many transient errors") from e
            ctx.log.debug("ignoring transient error (nloops=%d): %s", ctx.nloops, e)
        await asyncio.sleep(ctx.config.reconnect_delay)


# We want this sequence:
#
#   - set up a server
#   - wait for the client to connect to the server
#   - shut down the server
#   - wait for the client to see that the server is gone
#
# The client deliberately hides reconnection from us, so instead we make
# requests until one succeeds (so we're connected), close the server, and
# check that the next request fails (so the client noticed).
#
# We never create a new client: the point is to see whether one long-lived
# client leaks while this happens.  Launching a real server process every
# time makes this command much slower than the others.
@stress_command("disconnect/reconnect repeatedly", setup=rpc_reconnect_setup)
async def rpc_reconnect(ctx):
    ctx.server = None
    ctx.log.debug("creating server")
    ctx.server = await ctx.stress.launcher.start(port_override=ctx.config.reconnect_port)
    ctx.log.debug("server up")

    await _wait_for_connection(ctx)

    ctx.log.debug("shutting down server")
    await ctx.stress.launcher.cleanup(ctx.server)
    ctx.server = None

    ctx.log.debug("making final client request")
    await expect_error(
        ctx.client.ping(timeout=ctx.config.final_ping_timeout),
        SERVER_GONE_KINDS,
        "ping after server shutdown",
    )
