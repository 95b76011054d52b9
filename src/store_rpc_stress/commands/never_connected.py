from store_rpc_stress import stress_command
from store_rpc_stress.client import ErrorKind, expect_error


async def rpc_never_connected_setup(ctx):
    # Point the client at a hostname that doesn't exist, so that it
    # will never connect.
    ctx.client = ctx.stress.create_client(
        host=ctx.config.bogus_host,
        port=ctx.config.server_port,
        log=ctx.log.getChild("client"),
    )


# This loop exercises code paths associated with sending RPC requests before
# we've ever established a connection.
@stress_command(
    "make RPC requests before ever connected", setup=rpc_never_connected_setup
)
async def rpc_never_connected(ctx):
    await expect_error(
        ctx.client.list_buckets(), [ErrorKind.NO_BACKENDS], "list_buckets"
    )
