import functools
import logging

import pytest

from store_rpc_stress.config import StressConfig
from store_rpc_stress.context import StressContext
from store_rpc_stress.watchdog import Watchdog

from tests.fakes import FakeClient, FakeLauncher


class RecordingAction:
    """A watchdog action that remembers it was called instead of aborting."""

    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1


@pytest.fixture
def config() -> StressConfig:
    return StressConfig(
        client_factory="tests.fakes:create_client",
        watchdog_limit=5.0,
        reconnect_max_attempts=3,
        reconnect_delay=0.0,
        final_ping_timeout=0.1,
    )


@pytest.fixture
def backends() -> dict:
    return {}


@pytest.fixture
def launcher(backends) -> FakeLauncher:
    return FakeLauncher(backends)


@pytest.fixture
def stress(config, backends, launcher) -> StressContext:
    """A StressContext whose clients and servers are all in memory."""
    log = logging.getLogger("store_rpc_stress.tests")
    return StressContext(
        config, log, functools.partial(FakeClient, backends), launcher=launcher
    )


@pytest.fixture
def watchdog_action() -> RecordingAction:
    return RecordingAction()


@pytest.fixture
def watchdog(config, watchdog_action) -> Watchdog:
    return Watchdog(config.watchdog_limit, watchdog_action)
