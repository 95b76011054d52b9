import asyncio

import aiohttp
import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from store_rpc_stress.command import CommandSpec
from store_rpc_stress.config import StressConfig
from store_rpc_stress.introspect import IntrospectionServer, make_app
from store_rpc_stress.runner import CommandRunner


async def _setup(ctx):
    pass


async def tick(ctx):
    await asyncio.sleep(0.001)


@pytest_asyncio.fixture
async def running(stress, watchdog):
    runner = CommandRunner(stress, watchdog)
    await runner.start([CommandSpec("first", _setup, tick), CommandSpec("second", _setup, tick)])
    yield runner
    await runner.stop()


@pytest.mark.asyncio
async def test_types_and_objects(running, config):
    async with TestClient(TestServer(make_app(running, config))) as client:
        resp = await client.get("/kang/types")
        assert resp.status == 200
        assert await resp.json() == ["command"]

        resp = await client.get("/kang/command")
        assert await resp.json() == [0, 1]


@pytest.mark.asyncio
async def test_get_command(running, config):
    async with TestClient(TestServer(make_app(running, config))) as client:
        resp = await client.get("/kang/command/1")
        assert resp.status == 200
        body = await resp.json()
        assert body["label"] == "second"
        assert body["funcname"] == "tick"
        assert body["nstarted"] >= 1
        assert body["lastStarted"] is not None

        await asyncio.sleep(0.02)
        later = await (await client.get("/kang/command/1")).json()
        assert later["nstarted"] >= body["nstarted"]


@pytest.mark.asyncio
async def test_unknown_objects(running, config):
    async with TestClient(TestServer(make_app(running, config))) as client:
        assert (await client.get("/kang/cmd")).status == 404
        assert (await client.get("/kang/command/2")).status == 404
        assert (await client.get("/kang/command/-1")).status == 404
        assert (await client.get("/kang/command/first")).status == 404


@pytest.mark.asyncio
async def test_snapshot(running, config):
    async with TestClient(TestServer(make_app(running, config))) as client:
        body = await (await client.get("/kang/snapshot")).json()
        assert body["service"]["service_name"] == "store-rpc-stress"
        assert set(body["service"]) == {"service_name", "version", "ident", "pid"}
        assert body["types"] == ["command"]
        assert sorted(body["command"]) == ["0", "1"]
        assert body["command"]["0"]["label"] == "first"


@pytest.mark.asyncio
async def test_before_start(stress, watchdog, config):
    runner = CommandRunner(stress, watchdog)
    async with TestClient(TestServer(make_app(runner, config))) as client:
        assert await (await client.get("/kang/command")).json() == []


@pytest.mark.asyncio
async def test_listening_server(running):
    config = StressConfig(introspect_host="127.0.0.1", introspect_port=0, uri_base="/stats/")
    server = IntrospectionServer(running, config)
    await server.start()
    try:
        url = f"http://127.0.0.1:{server.port}/stats/command/0"
        async with aiohttp.ClientSession() as session:
            async with session.get(url) as resp:
                assert resp.status == 200
                assert (await resp.json())["label"] == "first"
    finally:
        await server.close()
