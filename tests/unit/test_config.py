"""Tests for configuration loading."""

import pytest

from flowcast.config import load_config
from flowcast.transports import get_transport
from flowcast.transports.inmemory import InMemoryTransport


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("FLOWCAST_CONFIG", raising=False)
    monkeypatch.delenv("FLOWCAST_TRANSPORT", raising=False)

    config = load_config()
    assert config.transport.backend == "inmemory"
    assert config.connection.max_reconnect_attempts == 5
    assert config.connection.backoff_base == 2.0
    assert config.engine.step_timeout is None
    assert config.engine.order == "declared"
    assert config.validation.complexity_factor == 1.5
    assert config.telemetry.interval == 2.0


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: testhost
    port: 1234
connection:
  max_reconnect_attempts: 3
engine:
  step_timeout: 30
  order: topological
"""
    )
    monkeypatch.setenv("FLOWCAST_CONFIG", str(config_path))
    monkeypatch.delenv("FLOWCAST_TRANSPORT", raising=False)

    config = load_config()
    assert config.transport.backend == "redis"
    assert config.transport.redis.host == "testhost"
    assert config.transport.redis.port == 1234
    assert config.connection.max_reconnect_attempts == 3
    assert config.engine.step_timeout == 30
    assert config.engine.order == "topological"


def test_transport_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "flowcast.yaml"
    config_path.write_text("transport:\n  backend: redis\n")
    monkeypatch.setenv("FLOWCAST_TRANSPORT", "InMemory")

    config = load_config(str(config_path))
    assert config.transport.backend == "inmemory"
    assert isinstance(get_transport(config=config), InMemoryTransport)


def test_get_transport_uses_config(tmp_path, monkeypatch):
    pytest.importorskip("redis")
    from flowcast.transports.redis import RedisTransport

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("FLOWCAST_CONFIG", str(config_path))
    monkeypatch.delenv("FLOWCAST_TRANSPORT", raising=False)

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380
