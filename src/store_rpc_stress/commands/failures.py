"""
A command that makes every supported RPC request fail, safely and
predictably, and checks that each one fails the way it should.
"""

from store_rpc_stress import stress_command
from store_rpc_stress.client import (
    ErrorKind,
    drain,
    expect_error,
)
from store_rpc_stress.commands import BUCKET_BOGUS, BUCKET_INVALID


async def rpc_fail_setup(ctx):
    ctx.client = ctx.stress.create_client(log=ctx.log.getChild("client"))
    await ctx.client.wait_connected()


# One step for each RPC request that we can cause to fail reliably.
# list_buckets, ping, and version have no reliable way to fail.
#
# Each entry is (name, kind we expect, function from client to the call).
FAILURE_STEPS = [
    (
        "create_bucket",
        ErrorKind.INVALID_BUCKET_NAME,
        lambda c: c.create_bucket(BUCKET_INVALID, {}),
    ),
    ("get_bucket", ErrorKind.BUCKET_NOT_FOUND, lambda c: c.get_bucket(BUCKET_BOGUS)),
    (
        "update_bucket",
        ErrorKind.BUCKET_NOT_FOUND,
        lambda c: c.update_bucket(BUCKET_BOGUS, {}),
    ),
    (
        "delete_bucket",
        ErrorKind.BUCKET_NOT_FOUND,
        lambda c: c.delete_bucket(BUCKET_BOGUS),
    ),
    (
        "put_object",
        ErrorKind.BUCKET_NOT_FOUND,
        lambda c: c.put_object(BUCKET_BOGUS, "key", {}),
    ),
    (
        "batch",
        ErrorKind.BUCKET_NOT_FOUND,
        lambda c: c.batch(
            [
                {
                    "bucket": BUCKET_BOGUS,
                    "operation": "update",
                    "fields": {},
                    "filter": "x=*",
                }
            ]
        ),
    ),
    (
        "get_object",
        ErrorKind.BUCKET_NOT_FOUND,
        lambda c: c.get_object(BUCKET_BOGUS, "key"),
    ),
    (
        "del_object",
        ErrorKind.BUCKET_NOT_FOUND,
        lambda c: c.del_object(BUCKET_BOGUS, "key"),
    ),
    (
        "find_objects",
        ErrorKind.BUCKET_NOT_FOUND,
        lambda c: drain(c.find_objects(BUCKET_BOGUS, "key=value")),
    ),
    (
        "update_objects",
        ErrorKind.FIELD_UPDATE,
        lambda c: c.update_objects(BUCKET_BOGUS, {}, "key=value"),
    ),
    (
        "reindex_objects",
        ErrorKind.BUCKET_NOT_FOUND,
        lambda c: c.reindex_objects(BUCKET_BOGUS, 3),
    ),
    (
        "delete_many",
        ErrorKind.BUCKET_NOT_FOUND,
        lambda c: c.delete_many(BUCKET_BOGUS, "x=y"),
    ),
    ("get_tokens", ErrorKind.NOT_SUPPORTED, lambda c: c.get_tokens()),
    (
        "sql",
        ErrorKind.QUERY_FAILED,
        lambda c: drain(c.sql("SELECT ctid from bogus;")),
    ),
]


# This loop exercises failure cases for each of the supported RPC requests.
@stress_command("failed RPC requests", setup=rpc_fail_setup)
async def rpc_fail(ctx):
    for name, kind, make_call in FAILURE_STEPS:
        err = await expect_error(make_call(ctx.client), [kind], name)
        ctx.log.debug("%s failed as expected: %s", name, err)
