"""Redis list transport for delivering events to other processes."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

try:
    import redis.asyncio as redis
    from redis import exceptions as redis_exceptions
except ImportError:
    redis = None
    redis_exceptions = None

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import RedisConfig
from ..errors import TransportConnectionError
from ..models import BroadcastEvent
from .base import BaseTransport, Lifespan, decode_event, encode_event

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport[str]):
    """Each topic is a Redis list: producers ``LPUSH``, consumers ``BRPOP``.

    Popping removes the entry, so every event reaches exactly one consumer
    of the topic and :meth:`ack` has nothing left to do.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        key_prefix: str = "flowcast",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisTransport")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.key_prefix = key_prefix
        self._redis: Optional[Any] = None

    @classmethod
    def from_config(cls, config: RedisConfig, key_prefix: str = "flowcast") -> "RedisTransport":
        return cls(
            host=config.host,
            port=config.port,
            db=config.db,
            password=config.password,
            key_prefix=key_prefix,
        )

    def _key(self, topic: str) -> str:
        return f"{self.key_prefix}:{topic}"

    async def _client(self) -> Any:
        if self._redis is None:
            await self.connect()
        return self._redis

    async def connect(self) -> None:
        client = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        try:
            await client.ping()
        except (
            redis_exceptions.ConnectionError,
            redis_exceptions.TimeoutError,
            OSError,
        ) as e:
            await client.aclose()
            raise TransportConnectionError(
                f"Cannot reach Redis at {self.host}:{self.port}: {e}"
            ) from e
        self._redis = client

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, topic: str, event: BaseModel) -> None:
        client = await self._client()
        await client.lpush(self._key(topic), encode_event(event))

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, BroadcastEvent]]:
        client = await self._client()
        key = self._key(topic)
        window = Lifespan(lifespan)

        while not window.expired:
            popped = await client.brpop(key, timeout=1)
            if not popped:
                continue
            _, body = popped
            try:
                event = decode_event(body)
            except PydanticValidationError as e:
                logger.warning(f"Dropping undecodable entry on {key}: {e}")
                continue
            yield body, event
            await asyncio.sleep(0)

    async def ack(self, raw: str) -> None:
        pass
