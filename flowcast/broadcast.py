"""In-process publish/subscribe bus for workflow progress and related events."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from .transports import BaseTransport

if TYPE_CHECKING:
    from .connection import ConnectionManager

logger = logging.getLogger(__name__)

WILDCARD = "*"

EventCallback = Callable[[Any], None]


@dataclass(frozen=True)
class SubscriptionToken:
    """Handle returned by :meth:`ProgressBroadcaster.subscribe`."""

    id: int
    kind: str


class ProgressBroadcaster:
    """Fan events out to subscribers registered for the event's ``kind``.

    Delivery is synchronous and happens in subscription order. Subscribers
    registered under ``"*"`` receive every event. A subscriber that raises is
    logged and skipped; the remaining subscribers still receive the event.
    Nothing is buffered for late subscribers.

    When a transport is attached and :meth:`start` has been called, every
    published event is also queued for off-process delivery. A single
    forwarder task drains the queue in order, and only while the attached
    connection reports itself connected. Events published before the
    forwarder runs or while disconnected are dropped and counted in
    ``suppressed``.
    """

    def __init__(self, name: str = "default") -> None:
        self.name = name
        self._subscribers: Dict[int, Tuple[str, EventCallback]] = {}
        self._ids = itertools.count(1)

        self._transport: Optional[BaseTransport] = None
        self._connection: Optional["ConnectionManager"] = None
        self._topic: Optional[str] = None
        self._outbox: "asyncio.Queue[BaseModel]" = asyncio.Queue()
        self._forwarder: Optional[asyncio.Task] = None

        self.delivered = 0
        self.forwarded = 0
        self.suppressed = 0
        self.failed_deliveries = 0

    # ------------------------------------------------------------------
    def subscribe(self, kind: str, callback: EventCallback) -> SubscriptionToken:
        token = SubscriptionToken(next(self._ids), kind)
        self._subscribers[token.id] = (kind, callback)
        return token

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        """Remove a subscription. Returns ``False`` if it was already gone."""
        return self._subscribers.pop(token.id, None) is not None

    def subscriber_count(self, kind: Optional[str] = None) -> int:
        if kind is None:
            return len(self._subscribers)
        return sum(1 for k, _ in self._subscribers.values() if k == kind)

    def publish(self, event: BaseModel) -> None:
        kind = getattr(event, "kind")
        targets: List[EventCallback] = [
            callback
            for subscribed_kind, callback in list(self._subscribers.values())
            if subscribed_kind == kind or subscribed_kind == WILDCARD
        ]
        for callback in targets:
            try:
                callback(event)
                self.delivered += 1
            except Exception:
                logger.exception(
                    f"Subscriber {callback!r} failed handling '{kind}' on broadcaster {self.name}"
                )

        if self._transport is not None:
            if self.forwarding and self._transport_available():
                self._outbox.put_nowait(event)
            else:
                self.suppressed += 1
                logger.debug(
                    f"Forwarding for {self.name} inactive, suppressed '{kind}' delivery"
                )

    # ------------------------------------------------------------------
    def attach_transport(
        self,
        transport: BaseTransport,
        connection: Optional["ConnectionManager"] = None,
        topic: Optional[str] = None,
    ) -> None:
        """Forward published events to ``transport`` under ``topic``."""
        self._transport = transport
        self._connection = connection
        self._topic = topic or self.name

    @property
    def forwarding(self) -> bool:
        return self._forwarder is not None and not self._forwarder.done()

    @property
    def backlog(self) -> int:
        """Events queued for the transport but not yet forwarded."""
        return self._outbox.qsize()

    async def start(self) -> None:
        """Start the forwarder task draining events to the attached transport."""
        if self._transport is None:
            raise RuntimeError(f"Broadcaster {self.name} has no transport attached")
        if not self.forwarding:
            self._forwarder = asyncio.create_task(self._forward())

    async def flush(self) -> None:
        """Wait until every queued event has been handed to the transport."""
        if self.forwarding:
            await self._outbox.join()

    async def stop(self, drain: bool = True) -> None:
        if drain:
            await self.flush()
        if self._forwarder is not None:
            self._forwarder.cancel()
            try:
                await self._forwarder
            except asyncio.CancelledError:
                pass
            self._forwarder = None

    def _transport_available(self) -> bool:
        return self._connection is None or self._connection.is_connected()

    async def _forward(self) -> None:
        assert self._transport is not None and self._topic is not None
        while True:
            event = await self._outbox.get()
            try:
                if not self._transport_available():
                    self.suppressed += 1
                    continue
                await self._transport.publish(self._topic, event)
                self.forwarded += 1
            except Exception as e:
                self.failed_deliveries += 1
                logger.error(
                    f"Failed to forward '{getattr(event, 'kind', '?')}' to {self._topic}: {e}"
                )
            finally:
                self._outbox.task_done()


class BroadcastHub:
    """Resolves the broadcaster wired to a workflow's session.

    Workflows without a session use the default broadcaster. A broadcaster
    is created on first use for any unknown session id.
    """

    def __init__(self, default: Optional[ProgressBroadcaster] = None) -> None:
        self.default = default or ProgressBroadcaster()
        self._sessions: Dict[str, ProgressBroadcaster] = {}

    def for_session(self, session_id: Optional[str]) -> ProgressBroadcaster:
        if session_id is None:
            return self.default
        broadcaster = self._sessions.get(session_id)
        if broadcaster is None:
            broadcaster = ProgressBroadcaster(name=session_id)
            self._sessions[session_id] = broadcaster
        return broadcaster

    def register(self, session_id: str, broadcaster: ProgressBroadcaster) -> None:
        self._sessions[session_id] = broadcaster

    def remove(self, session_id: str) -> Optional[ProgressBroadcaster]:
        return self._sessions.pop(session_id, None)

    def sessions(self) -> List[str]:
        return list(self._sessions)
