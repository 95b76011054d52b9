import pytest

from store_rpc_stress.config import (
    DEFAULT_READY_PATTERNS,
    StressConfig,
    build_parser,
    config_from_args,
)


def _parse(argv, environ=None):
    args = build_parser().parse_args(argv)
    return config_from_args(args, environ or {})


def test_defaults():
    config = StressConfig()
    assert config.watchdog_limit == 30.0
    assert config.watchdog_action == "abort"
    assert config.introspect_port == 9080
    assert config.uri_base == "/kang"
    assert config.log_level == "CRITICAL"
    assert config.reconnect_max_attempts == 100
    assert config.reconnect_delay == 0.1
    assert config.ready_patterns == DEFAULT_READY_PATTERNS
    assert config.commands == ()


def test_from_environ():
    config = StressConfig.from_environ(
        {
            "STORE_RPC_CLIENT": "my_client:create",
            "STORE_RPC_SERVER_RUN": "./bin/server",
            "STORE_RPC_SERVER_REMOTE": "",
            "LOG_LEVEL": "debug",
        }
    )
    assert config.client_factory == "my_client:create"
    assert config.server_run == "./bin/server"
    assert config.server_remote is None
    assert config.log_level == "DEBUG"


@pytest.mark.parametrize("name,level", [("fatal", "CRITICAL"), ("warn", "WARNING"), ("Info", "INFO")])
def test_log_level_aliases(name, level):
    assert StressConfig(log_level=name).log_level == level


def test_args_override_environ():
    config = _parse(
        [
            "--client",
            "other:factory",
            "--port",
            "9999",
            "--watchdog-limit",
            "2.5",
            "--watchdog-action",
            "exit",
            "--reconnect-attempts",
            "7",
            "--reconnect-delay",
            "0",
            "--command",
            "failed RPC requests",
            "--command",
            "successful RPC requests",
            "--ready-pattern",
            "up and running",
        ],
        {"STORE_RPC_CLIENT": "env:factory", "LOG_LEVEL": "info"},
    )
    assert config.client_factory == "other:factory"
    assert config.introspect_port == 9999
    assert config.watchdog_limit == 2.5
    assert config.watchdog_action == "exit"
    assert config.reconnect_max_attempts == 7
    assert config.reconnect_delay == 0.0
    assert config.commands == ("failed RPC requests", "successful RPC requests")
    assert config.ready_patterns == ("up and running",)
    assert config.log_level == "INFO"


def test_unset_args_keep_environ():
    config = _parse([], {"STORE_RPC_CLIENT": "env:factory"})
    assert config.client_factory == "env:factory"
    assert config.watchdog_limit == 30.0


@pytest.mark.parametrize(
    "settings",
    [
        {"log_level": "loud"},
        {"watchdog_action": "shrug"},
        {"watchdog_limit": 0},
        {"reconnect_max_attempts": -1},
        {"reconnect_delay": -0.5},
        {"uri_base": "kang"},
    ],
)
def test_invalid(settings):
    with pytest.raises(ValueError):
        StressConfig(**settings)


def test_bad_watchdog_action_flag():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--watchdog-action", "shrug"])
