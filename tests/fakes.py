"""
In-memory stand-ins for the store client and server, for testing the
harness without a real store, and a trivial shell server for testing
the launcher.
"""

from __future__ import annotations

import asyncio
import re
import shutil
import sys

import pytest

from store_rpc_stress.client import ErrorKind, StoreRpcError
from store_rpc_stress.context import ServerHandle

_BUCKET_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_FILTER = re.compile(r"^(\w+)(>=|<=|=)(.*)$")
_LOCAL_HOSTS = ("127.0.0.1", "localhost")

# A shell "server" that announces itself and then waits to be killed.
GOOD_SERVER = (
    'port=${STORE_RPC_EXTRA_ARGS#-p }; '
    'echo "listening on ${port:-2020}"; echo "store ready"; exec sleep 60'
)

needs_bash = pytest.mark.skipif(
    sys.platform == "win32" or shutil.which("bash") is None,
    reason="needs bash and process groups",
)


def _matcher(filter: str):
    m = _FILTER.match(filter)
    if m is None:
        raise StoreRpcError("InvalidQueryError", f"bad filter {filter!r}")
    field, op, want = m.groups()

    def matches(value: dict) -> bool:
        if field not in value:
            return False
        have = value[field]
        if op == "=":
            return want == "*" or str(have) == want
        if op == ">=":
            return have >= float(want)
        return have <= float(want)

    return matches


class FakeBackend:
    """
    One store server: a set of buckets, each a dict of objects by key.
    """

    def __init__(self):
        self.up = False
        self.buckets: dict = {}

    def bucket(self, name: str) -> dict:
        try:
            return self.buckets[name]
        except KeyError:
            raise StoreRpcError(ErrorKind.BUCKET_NOT_FOUND, f"{name} does not exist")


class FakeClient:
    """
    A client for FakeBackends, keyed by port in `backends`.

    Like a real client, it keeps trying to reach its backend for as long
    as it exists; requests fail with NO_BACKENDS while it can't.
    """

    def __init__(self, backends, host=None, port=None, url=None, log=None, **options):
        self.backends = backends
        self.host = host
        self.port = port
        self.url = url
        self.log = log
        self.options = options
        self.ncalls = 0
        self.closed = False

    def _backend(self) -> FakeBackend:
        if self.url is None and self.host not in _LOCAL_HOSTS:
            raise StoreRpcError(ErrorKind.NO_BACKENDS, f"cannot resolve {self.host}")
        backend = self.backends.get(self.port)
        if backend is None or not backend.up:
            raise StoreRpcError(ErrorKind.NO_BACKENDS, "no backends available")
        return backend

    async def _call(self) -> FakeBackend:
        self.ncalls += 1
        await asyncio.sleep(0)
        return self._backend()

    async def wait_connected(self):
        while True:
            try:
                self._backend()
                return
            except StoreRpcError:
                await asyncio.sleep(0.001)

    async def close(self):
        self.closed = True

    async def ping(self, timeout=None):
        await self._call()

    async def version(self):
        await self._call()
        return 2

    async def create_bucket(self, bucket, config):
        backend = await self._call()
        if not _BUCKET_NAME.match(bucket):
            raise StoreRpcError(ErrorKind.INVALID_BUCKET_NAME, f"{bucket!r} is invalid")
        if bucket in backend.buckets:
            raise StoreRpcError("BucketConflictError", f"{bucket} already exists")
        backend.buckets[bucket] = {"config": dict(config), "objects": {}}

    async def get_bucket(self, bucket):
        backend = await self._call()
        return {"name": bucket, **backend.bucket(bucket)["config"]}

    async def list_buckets(self):
        backend = await self._call()
        return [{"name": name} for name in backend.buckets]

    async def update_bucket(self, bucket, config):
        backend = await self._call()
        backend.bucket(bucket)["config"] = dict(config)

    async def delete_bucket(self, bucket):
        backend = await self._call()
        backend.bucket(bucket)
        del backend.buckets[bucket]

    async def put_object(self, bucket, key, value):
        backend = await self._call()
        backend.bucket(bucket)["objects"][key] = dict(value)
        return {"etag": str(len(backend.bucket(bucket)["objects"]))}

    async def get_object(self, bucket, key):
        backend = await self._call()
        objects = backend.bucket(bucket)["objects"]
        if key not in objects:
            raise StoreRpcError(ErrorKind.OBJECT_NOT_FOUND, f"{bucket}::{key}")
        return {"bucket": bucket, "key": key, "value": dict(objects[key])}

    async def del_object(self, bucket, key):
        backend = await self._call()
        objects = backend.bucket(bucket)["objects"]
        if key not in objects:
            raise StoreRpcError(ErrorKind.OBJECT_NOT_FOUND, f"{bucket}::{key}")
        del objects[key]

    async def batch(self, requests):
        backend = await self._call()
        for r in requests:
            objects = backend.bucket(r["bucket"])["objects"]
            if r["operation"] == "put":
                objects[r["key"]] = dict(r["value"])
            elif r["operation"] == "update":
                self._update(objects, r["fields"], r["filter"])
            elif r["operation"] == "delete":
                objects.pop(r["key"], None)
        return {"etags": []}

    def find_objects(self, bucket, filter):
        return self._find(bucket, filter)

    async def _find(self, bucket, filter):
        backend = await self._call()
        matches = _matcher(filter)
        for key, value in list(backend.bucket(bucket)["objects"].items()):
            if matches(value):
                yield {"bucket": bucket, "key": key, "value": dict(value)}

    def _update(self, objects, fields, filter):
        matches = _matcher(filter)
        count = 0
        for value in objects.values():
            if matches(value):
                value.update(fields)
                count += 1
        return count

    async def update_objects(self, bucket, fields, filter):
        backend = await self._call()
        if not fields:
            raise StoreRpcError(ErrorKind.FIELD_UPDATE, "no fields to update")
        return {"count": self._update(backend.bucket(bucket)["objects"], fields, filter)}

    async def reindex_objects(self, bucket, count):
        backend = await self._call()
        backend.bucket(bucket)
        return {"processed": 0}

    async def delete_many(self, bucket, filter):
        backend = await self._call()
        objects = backend.bucket(bucket)["objects"]
        matches = _matcher(filter)
        doomed = [k for k, v in objects.items() if matches(v)]
        for k in doomed:
            del objects[k]
        return {"count": len(doomed)}

    async def get_tokens(self):
        await self._call()
        raise StoreRpcError(ErrorKind.NOT_SUPPORTED, "Operation not supported")

    def sql(self, statement):
        return self._sql(statement)

    async def _sql(self, statement):
        await self._call()
        if "bogus" in statement:
            raise StoreRpcError(ErrorKind.QUERY_FAILED, 'relation "bogus" does not exist')
        yield {"now": "2026-10-18T00:00:00Z"}


class FakeServer(ServerHandle):
    def __init__(self, backend: FakeBackend, stays_up: bool = False):
        self.backend = backend
        self.stays_up = stays_up
        self.closed = False

    async def close(self):
        assert not self.closed, "cannot close a server more than once"
        self.closed = True
        if not self.stays_up:
            self.backend.up = False


class FakeLauncher:
    """
    Brings FakeBackends up and down in place of real server processes.

    Ports in `broken_ports` never come up; servers on ports in
    `undying_ports` keep answering after they're closed.
    """

    def __init__(self, backends, default_port=2020):
        self.backends = backends
        self.default_port = default_port
        self.broken_ports = set()
        self.undying_ports = set()
        self.started = []
        self.stopped = []

    async def start(self, port_override=None):
        port = self.default_port if port_override is None else port_override
        backend = self.backends.setdefault(port, FakeBackend())
        backend.up = port not in self.broken_ports
        self.started.append(port)
        await asyncio.sleep(0)
        return FakeServer(backend, stays_up=port in self.undying_ports)

    async def cleanup(self, server):
        await server.close()
        self.stopped.append(server)


# Backends for clients built by `create_client`, i.e. by name.
BACKENDS: dict = {}


def create_client(**kwargs) -> FakeClient:
    """Client factory usable as "tests.fakes:create_client"."""
    return FakeClient(BACKENDS, **kwargs)
