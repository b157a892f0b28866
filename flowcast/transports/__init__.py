"""Transports that carry broadcast events off-process."""

from __future__ import annotations

from typing import Optional

from ..config import FlowcastConfig, load_config
from .base import BaseTransport, decode_event, encode_event
from .inmemory import InMemoryTransport

BACKENDS = ("inmemory", "redis")


def get_transport(
    backend: Optional[str] = None, config: Optional[FlowcastConfig] = None
) -> BaseTransport:
    """Build the transport named by ``backend``, else by the config.

    The Redis transport is imported lazily so the ``redis`` package is only
    needed when that backend is selected.
    """
    config = config or load_config()
    name = (backend or config.transport.backend).lower()

    if name == "inmemory":
        return InMemoryTransport()
    if name == "redis":
        from .redis import RedisTransport

        return RedisTransport.from_config(
            config.transport.redis, key_prefix=config.transport.topic_prefix
        )
    raise ValueError(
        f"Unsupported transport backend: {name} (expected one of {', '.join(BACKENDS)})"
    )


__all__ = [
    "BACKENDS",
    "BaseTransport",
    "InMemoryTransport",
    "decode_event",
    "encode_event",
    "get_transport",
]
