"""Periodic telemetry injection into a broadcaster."""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Protocol

from .broadcast import ProgressBroadcaster
from .connection import ConnectionManager
from .models import TelemetryEvent, utcnow

logger = logging.getLogger(__name__)


class TelemetryGenerator(Protocol):
    """Source of opaque data points; only its cadence matters here."""

    def next(self) -> Any:
        ...


class TelemetryPump:
    """Pull a data point every ``interval`` seconds and publish it.

    Points are only produced while the connection (if one is wired) is up.
    The most recent ``history_size`` points are kept for :meth:`latest`.
    """

    def __init__(
        self,
        generator: TelemetryGenerator,
        broadcaster: ProgressBroadcaster,
        connection: Optional[ConnectionManager] = None,
        interval: float = 2.0,
        history_size: int = 1000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._generator = generator
        self._broadcaster = broadcaster
        self._connection = connection
        self.interval = interval
        self._history: Deque[Any] = deque(maxlen=history_size)
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    def tick(self) -> Optional[TelemetryEvent]:
        """Produce and publish one point. Returns ``None`` when offline."""
        if self._connection is not None and not self._connection.is_connected():
            return None
        point = self._generator.next()
        self._history.append(point)
        event = TelemetryEvent(data=point)
        self._broadcaster.publish(event)
        return event

    def latest(self, count: int = 10) -> List[Any]:
        if count <= 0:
            return []
        return list(self._history)[-count:]

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())
            logger.info(f"Telemetry streaming started every {self.interval}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Telemetry streaming stopped")

    async def _run(self) -> None:
        while True:
            try:
                self.tick()
            except Exception:
                logger.exception("Telemetry generator failed")
            await self._sleep(self.interval)


class RandomWalkTelemetry:
    """Bounded random walk over a set of named readings."""

    def __init__(
        self,
        fields: Optional[Dict[str, float]] = None,
        step: float = 0.05,
        seed: Optional[int] = None,
    ) -> None:
        self._values = dict(fields or {"temperature": 2.5, "pressure": 350.0, "signal": 85.0})
        self._step = step
        self._random = random.Random(seed)

    def next(self) -> Dict[str, Any]:
        for name, value in self._values.items():
            drift = (self._random.random() - 0.5) * 2 * self._step * max(abs(value), 1.0)
            self._values[name] = round(value + drift, 4)
        return {
            "id": str(uuid.uuid4()),
            "timestamp": utcnow().isoformat(),
            **self._values,
        }
