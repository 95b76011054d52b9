"""
A small HTTP server for watching the progress of a stress run.

Routes, relative to the configured URI base (default "/kang"):

    GET /types              the types of object we know about: ["command"]
    GET /command            the ids of every registered command
    GET /command/{id}       a snapshot of one command's progress
    GET /snapshot           everything above, plus who we are

Handlers only read counters that the runner has already published.
"""

from __future__ import annotations

import os
import socket

from aiohttp import web

from store_rpc_stress.config import StressConfig
from store_rpc_stress.runner import CommandRunner

from typing import Optional

COMMAND_TYPE = "command"

_RUNNER_KEY = web.AppKey("runner", CommandRunner)
_CONFIG_KEY = web.AppKey("config", StressConfig)


def list_types(runner: CommandRunner) -> list:
    return [COMMAND_TYPE]


def list_objects(runner: CommandRunner, objtype: str) -> list:
    if objtype != COMMAND_TYPE:
        raise KeyError(objtype)
    return list(range(len(runner.contexts)))


def get_object(runner: CommandRunner, objtype: str, which: int) -> dict:
    if objtype != COMMAND_TYPE:
        raise KeyError(objtype)
    contexts = runner.contexts
    if not 0 <= which < len(contexts):
        raise KeyError(which)
    return contexts[which].snapshot()


def service_info(config: StressConfig) -> dict:
    return {
        "service_name": config.service_name,
        "version": config.service_version,
        "ident": socket.gethostname(),
        "pid": os.getpid(),
    }


async def _handle_types(request: web.Request) -> web.Response:
    return web.json_response(list_types(request.app[_RUNNER_KEY]))


async def _handle_list(request: web.Request) -> web.Response:
    try:
        ids = list_objects(request.app[_RUNNER_KEY], request.match_info["type"])
    except KeyError:
        raise web.HTTPNotFound(text=f"no such type: {request.match_info['type']}")
    return web.json_response(ids)


async def _handle_get(request: web.Request) -> web.Response:
    objtype = request.match_info["type"]
    try:
        which = int(request.match_info["id"])
        obj = get_object(request.app[_RUNNER_KEY], objtype, which)
    except (KeyError, ValueError):
        raise web.HTTPNotFound(
            text=f"no such object: {objtype}/{request.match_info['id']}"
        )
    return web.json_response(obj)


async def _handle_snapshot(request: web.Request) -> web.Response:
    runner = request.app[_RUNNER_KEY]
    body = {
        "service": service_info(request.app[_CONFIG_KEY]),
        "types": list_types(runner),
    }
    for objtype in body["types"]:
        body[objtype] = {
            str(i): get_object(runner, objtype, i)
            for i in list_objects(runner, objtype)
        }
    return web.json_response(body)


def make_app(runner: CommandRunner, config: StressConfig) -> web.Application:
    """
    Build the introspection application for `runner`.
    """
    app = web.Application()
    app[_RUNNER_KEY] = runner
    app[_CONFIG_KEY] = config
    base = config.uri_base.rstrip("/")
    app.router.add_get(f"{base}/types", _handle_types)
    app.router.add_get(f"{base}/snapshot", _handle_snapshot)
    app.router.add_get(base + "/{type}", _handle_list)
    app.router.add_get(base + "/{type}/{id}", _handle_get)
    return app


class IntrospectionServer:
    """
    The introspection application, listening on a TCP port.
    """

    def __init__(self, runner: CommandRunner, config: StressConfig):
        self.config = config
        self.app = make_app(runner, config)
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(
            self._runner, self.config.introspect_host, self.config.introspect_port
        )
        await self._site.start()

    @property
    def port(self) -> int:
        """Return the port we're actually listening on."""
        if self._runner is None or not self._runner.addresses:
            return self.config.introspect_port
        return self._runner.addresses[0][1]

    async def close(self) -> None:
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
