from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    topic_prefix: str = "flowcast"


class ConnectionConfig(BaseModel):
    """Reconnect policy for the live progress channel."""

    max_reconnect_attempts: int = Field(default=5, ge=0)
    backoff_base: float = Field(default=2.0, gt=0)
    reconnect_delay: float = Field(default=1.0, ge=0)


class EngineConfig(BaseModel):
    step_timeout: Optional[float] = Field(default=None, gt=0)
    order: Literal["declared", "topological"] = "declared"


class ValidationConfig(BaseModel):
    complexity_factor: float = 1.5
    detect_cycles: bool = True


class TelemetryConfig(BaseModel):
    interval: float = Field(default=2.0, gt=0)
    history_size: int = Field(default=1000, gt=0)


class FlowcastConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    connection: ConnectionConfig = ConnectionConfig()
    engine: EngineConfig = EngineConfig()
    validation: ValidationConfig = ValidationConfig()
    telemetry: TelemetryConfig = TelemetryConfig()


def load_config(path: Optional[str] = None) -> FlowcastConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FLOWCAST_CONFIG env
            variable or 'flowcast.yaml' in the current directory.
    """

    config_path = path or os.getenv("FLOWCAST_CONFIG", "flowcast.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = FlowcastConfig(**data)
    else:
        config = FlowcastConfig()

    env_backend = os.getenv("FLOWCAST_TRANSPORT")
    if env_backend:
        config.transport.backend = env_backend.lower()
    return config
