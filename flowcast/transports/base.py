"""Transport contract for carrying broadcast events between processes."""

from __future__ import annotations

import abc
import asyncio
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from pydantic import BaseModel, TypeAdapter

from ..models import BroadcastEvent

RawT = TypeVar("RawT")

_event_adapter: TypeAdapter[BroadcastEvent] = TypeAdapter(BroadcastEvent)


def encode_event(event: BaseModel) -> str:
    return event.model_dump_json()


def decode_event(data: str | bytes) -> BroadcastEvent:
    """Parse a JSON envelope into the event model named by its ``kind``."""
    return _event_adapter.validate_json(data)


class Lifespan:
    """Tracks whether a subscription has outlived ``seconds`` (None = forever)."""

    def __init__(self, seconds: Optional[float]) -> None:
        self._loop = asyncio.get_running_loop()
        self._deadline = self._loop.time() + seconds if seconds else None

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._loop.time() >= self._deadline


class BaseTransport(Generic[RawT], metaclass=abc.ABCMeta):
    """Moves encoded events to and from named topics.

    ``connect`` is the handshake the :class:`~flowcast.connection.ConnectionManager`
    drives; implementations signal an unreachable channel by raising
    :class:`~flowcast.errors.TransportConnectionError`.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, event: BaseModel) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawT, BroadcastEvent]]:
        """Yield ``(raw, event)`` pairs from ``topic``.

        Args:
            topic: Topic to read from.
            lifespan: Seconds to keep reading before the iterator ends. ``None``
                reads until the caller stops iterating.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw: RawT) -> None:
        raise NotImplementedError

    async def nack(self, raw: RawT, requeue: bool = True) -> None:
        """Reject a delivery; transports without redelivery treat it as ack."""
        await self.ack(raw)
