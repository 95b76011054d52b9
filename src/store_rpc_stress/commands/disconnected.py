from store_rpc_stress import UnexpectedSuccess, stress_command
from store_rpc_stress.client import StoreRpcError


async def rpc_disconnected_setup(ctx):
    port = ctx.config.disconnected_port
    ctx.server = await ctx.stress.launcher.start(port_override=port)
    ctx.client = ctx.stress.create_client(
        host=ctx.config.server_host, port=port, log=ctx.log.getChild("client")
    )
    await ctx.client.wait_connected()
    await ctx.stress.launcher.cleanup(ctx.server)


# This loop exercises the code paths associated with sending RPC requests
# while we have no connection, but previously had one.  This is largely the
# same as the never-connected case, but could result in different code paths.
@stress_command("make RPC requests after connection closed", setup=rpc_disconnected_setup)
async def rpc_disconnected(ctx):
    try:
        await ctx.client.list_buckets()
    except StoreRpcError:
        return
    raise UnexpectedSuccess("list_buckets: expected error")
