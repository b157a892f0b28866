"""Process-local transport used by tests and single-process runs."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from pydantic import BaseModel

from ..errors import TransportConnectionError
from ..models import BroadcastEvent
from .base import BaseTransport, Lifespan, decode_event, encode_event

# (topic, body, decoded event)
Envelope = Tuple[str, str, BroadcastEvent]


class InMemoryTransport(BaseTransport[Envelope]):
    """Per-topic FIFO queues held in memory.

    Events are round-tripped through JSON on publish so subscribers see the
    same decoded models a networked transport would produce. A nacked
    delivery goes back to the head of its topic. Setting
    ``fail_connects`` makes that many upcoming :meth:`connect` calls raise
    :class:`TransportConnectionError`.
    """

    poll_interval = 0.1

    def __init__(self, fail_connects: int = 0) -> None:
        self._topics: Dict[str, Deque[Envelope]] = defaultdict(deque)
        self.fail_connects = fail_connects
        self.connect_calls = 0
        self.connected = False

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise TransportConnectionError("in-memory channel unavailable")
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def publish(self, topic: str, event: BaseModel) -> None:
        body = encode_event(event)
        self._topics[topic].append((topic, body, decode_event(body)))

    def pending(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Envelope, BroadcastEvent]]:
        window = Lifespan(lifespan)
        queue = self._topics[topic]
        while not window.expired:
            if queue:
                envelope = queue.popleft()
                yield envelope, envelope[2]
            else:
                await asyncio.sleep(self.poll_interval)

    async def ack(self, raw: Envelope) -> None:
        pass

    async def nack(self, raw: Envelope, requeue: bool = True) -> None:
        if requeue:
            self._topics[raw[0]].appendleft(raw)
