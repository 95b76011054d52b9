"""
A command that makes every supported RPC request succeed.
"""

from store_rpc_stress import CommandFailed, stress_command
from store_rpc_stress.client import ErrorKind, drain, ignore_errors
from store_rpc_stress.commands import BUCKET


async def rpc_okay_setup(ctx):
    ctx.client = ctx.stress.create_client(log=ctx.log.getChild("client"))
    await ctx.client.wait_connected()


def _put(key, value):
    return {"bucket": BUCKET, "operation": "put", "key": key, "value": value}


# This loop exercises success cases for each of the supported RPC requests,
# except get_tokens, which only some servers support.
#
# The order differs from the failure cases because each step relies on the
# ones before it.  delete_bucket appears twice, so that we recover from an
# iteration that didn't finish (e.g., from a previous run that was killed).
@stress_command("successful RPC requests", setup=rpc_okay_setup)
async def rpc_okay(ctx):
    client = ctx.client

    await ignore_errors(client.delete_bucket(BUCKET), [ErrorKind.BUCKET_NOT_FOUND])
    await client.create_bucket(BUCKET, {})
    await client.get_bucket(BUCKET)
    await client.list_buckets()
    await client.update_bucket(BUCKET, {"index": {"field1": {"type": "number"}}})
    await client.put_object(BUCKET, "key5", {"field1": 5})
    await client.batch(
        [
            _put("key2", {"field1": 2}),
            _put("key3", {"field1": 3}),
            _put("key7", {"field1": 7}),
            _put("key9", {"field1": 9}),
        ]
    )

    record = await client.get_object(BUCKET, "key3")
    if record.get("value") != {"field1": 3}:
        raise CommandFailed(f"get_object returned {record!r} for key3")

    await client.del_object(BUCKET, "key5")
    found = await drain(client.find_objects(BUCKET, "field1>=3"))
    keys = sorted(r["key"] for r in found)
    if keys != ["key3", "key7", "key9"]:
        raise CommandFailed(f"find_objects found {keys}")

    await client.update_objects(BUCKET, {"field1": 10}, "field1>=9")
    await client.reindex_objects(BUCKET, 3)
    await client.delete_many(BUCKET, "field1>=7")
    await client.delete_bucket(BUCKET)
    await client.ping()
    await client.version()
    await drain(client.sql("SELECT NOW();"))
