"""Connection lifecycle for the live progress transport."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .broadcast import EventCallback, ProgressBroadcaster, SubscriptionToken
from .models import ConnectionEvent, ConnectionState, ConnectionStatus
from .transports import BaseTransport
from .utils.retry import compute_backoff

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Keep a transport connected, retrying with exponential backoff.

    A failed handshake increments ``reconnect_attempts`` and schedules a retry
    after ``backoff_base ** reconnect_attempts`` seconds. Once the counter
    exceeds ``max_reconnect_attempts`` a single ``connectionFailed`` event is
    emitted and automatic retries stop until :meth:`reconnect` is called.

    Every :meth:`disconnect` starts a new generation. An attempt or retry
    begun in an earlier generation may still be awaiting the transport when
    that happens; once it resumes it changes no state, emits nothing and
    schedules nothing.

    Events (``connecting``, ``connected``, ``disconnected``,
    ``reconnectScheduled``, ``connectionFailed``) are published as
    :class:`ConnectionEvent` on ``events``.
    """

    def __init__(
        self,
        transport: BaseTransport,
        max_reconnect_attempts: int = 5,
        backoff_base: float = 2.0,
        broadcaster: ProgressBroadcaster | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        reconnect_delay: float = 1.0,
    ) -> None:
        self._transport = transport
        self.max_reconnect_attempts = max_reconnect_attempts
        self.backoff_base = backoff_base
        self.reconnect_delay = reconnect_delay
        self.events = broadcaster or ProgressBroadcaster(name="connection")
        self._sleep = sleep

        self._status = ConnectionStatus.DISCONNECTED
        self._attempts = 0
        self._gave_up = False
        self._generation = 0
        self._retry_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return ConnectionState(
            status=self._status,
            reconnect_attempts=self._attempts,
            max_reconnect_attempts=self.max_reconnect_attempts,
            gave_up=self._gave_up,
        )

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    def is_connected(self) -> bool:
        return self._status == ConnectionStatus.CONNECTED

    def on(self, kind: str, callback: EventCallback) -> SubscriptionToken:
        return self.events.subscribe(kind, callback)

    # ------------------------------------------------------------------
    async def connect(self) -> bool:
        """Attempt to open the channel.

        Returns ``True`` when connected after the attempt. A failed attempt
        returns ``False`` and leaves any follow-up retry scheduled in the
        background. Calling this while connecting, connected or waiting for a
        scheduled retry does nothing.
        """
        if self._status != ConnectionStatus.DISCONNECTED or self.retry_pending:
            return self.is_connected()
        return await self._attempt(self._generation)

    async def disconnect(self) -> None:
        """Drop the channel and cancel any scheduled retry. Idempotent."""
        self._generation += 1
        cancelled = await self._cancel_retry()
        previous = self._status
        self._status = ConnectionStatus.DISCONNECTED

        if previous == ConnectionStatus.CONNECTED:
            await self._close_transport()

        if previous != ConnectionStatus.DISCONNECTED or cancelled:
            logger.info("Progress transport disconnected")
            self._emit("disconnected")

    async def reconnect(self) -> bool:
        """Reset the attempt counter and try again, even after giving up.

        The new attempt starts after ``reconnect_delay`` seconds. A
        :meth:`disconnect` during that wait abandons it.
        """
        await self.disconnect()
        self._attempts = 0
        self._gave_up = False
        generation = self._generation
        if self.reconnect_delay > 0:
            await self._sleep(self.reconnect_delay)
        if generation != self._generation or self._status != ConnectionStatus.DISCONNECTED:
            return self.is_connected()
        return await self._attempt(generation)

    async def wait_idle(self) -> None:
        """Wait until no retry is pending."""
        while self.retry_pending:
            task = self._retry_task
            try:
                await task
            except asyncio.CancelledError:
                break

    # ------------------------------------------------------------------
    async def _attempt(self, generation: int) -> bool:
        self._status = ConnectionStatus.CONNECTING
        self._emit("connecting")
        try:
            await self._transport.connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation != self._generation:
                logger.debug(f"Ignoring failed handshake from a superseded attempt: {e}")
                return False
            self._handle_failure(e, generation)
            return False

        if generation != self._generation:
            logger.debug("Handshake finished after disconnect, closing transport")
            await self._close_transport()
            return False

        self._status = ConnectionStatus.CONNECTED
        self._attempts = 0
        self._gave_up = False
        logger.info("Progress transport connected")
        self._emit("connected")
        return True

    def _handle_failure(self, error: Exception, generation: int) -> None:
        self._status = ConnectionStatus.DISCONNECTED
        self._attempts += 1

        if self._attempts <= self.max_reconnect_attempts:
            delay = compute_backoff(self._attempts, self.backoff_base)
            logger.warning(
                f"Connection attempt failed ({error}); retry {self._attempts}/"
                f"{self.max_reconnect_attempts} in {delay}s"
            )
            self._emit("reconnectScheduled", delay=delay, error=str(error))
            self._retry_task = asyncio.create_task(self._retry_after(delay, generation))
        else:
            self._gave_up = True
            logger.error(
                f"Giving up on progress transport after {self._attempts - 1} retries: {error}"
            )
            self._emit("connectionFailed", error=str(error))

    async def _retry_after(self, delay: float, generation: int) -> None:
        await self._sleep(delay)
        if generation == self._generation and self._status == ConnectionStatus.DISCONNECTED:
            await self._attempt(generation)

    async def _cancel_retry(self) -> bool:
        task = self._retry_task
        self._retry_task = None
        if task is None or task.done():
            return False
        task.cancel()
        if task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
        return True

    async def _close_transport(self) -> None:
        try:
            await self._transport.disconnect()
        except Exception as e:
            logger.warning(f"Error while closing transport: {e}")

    def _emit(self, kind: str, delay: float | None = None, error: str | None = None) -> None:
        self.events.publish(
            ConnectionEvent(kind=kind, attempt=self._attempts, delay=delay, error=error)
        )
