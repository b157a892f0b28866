"""Top-level wiring of store, registry, broadcasters, transport and engine."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from .broadcast import BroadcastHub, ProgressBroadcaster
from .config import FlowcastConfig, load_config
from .connection import ConnectionManager
from .engine import ExecutionEngine
from .models import ExecutionResult, StepDefinition, WorkflowInstance
from .registry import StepHandlerRegistry
from .store import WorkflowStore
from .telemetry import TelemetryGenerator, TelemetryPump
from .transports import BaseTransport, get_transport
from .validation import GraphValidator

logger = logging.getLogger(__name__)


class Orchestrator:
    """Explicit composition root for one process or test.

    Every collaborator can be passed in; anything omitted is built from
    ``config``. The default broadcaster forwards to the configured transport
    under ``<topic_prefix>.progress`` once :meth:`start` has connected it.
    """

    def __init__(
        self,
        config: Optional[FlowcastConfig] = None,
        registry: Optional[StepHandlerRegistry] = None,
        store: Optional[WorkflowStore] = None,
        hub: Optional[BroadcastHub] = None,
        transport: Optional[BaseTransport] = None,
        connection: Optional[ConnectionManager] = None,
    ) -> None:
        self.config = config or load_config()
        self.registry = registry or StepHandlerRegistry()
        self.store = store or WorkflowStore(
            GraphValidator(
                complexity_factor=self.config.validation.complexity_factor,
                detect_cycles=self.config.validation.detect_cycles,
            )
        )
        self.hub = hub or BroadcastHub()
        self.transport = transport or get_transport(config=self.config)
        self.connection = connection or ConnectionManager(
            self.transport,
            max_reconnect_attempts=self.config.connection.max_reconnect_attempts,
            backoff_base=self.config.connection.backoff_base,
            reconnect_delay=self.config.connection.reconnect_delay,
        )
        self.engine = ExecutionEngine(
            self.store,
            self.registry,
            self.hub,
            step_timeout=self.config.engine.step_timeout,
            order=self.config.engine.order,
        )
        self.telemetry: Optional[TelemetryPump] = None
        self.broadcaster.attach_transport(
            self.transport,
            self.connection,
            topic=f"{self.config.transport.topic_prefix}.progress",
        )

    @property
    def broadcaster(self) -> ProgressBroadcaster:
        return self.hub.default

    async def start(self, telemetry: Optional[TelemetryGenerator] = None) -> bool:
        """Connect the transport and start forwarding (and telemetry, if given).

        Returns whether the first connection attempt succeeded; failures keep
        retrying in the background per the connection policy.
        """
        connected = await self.connection.connect()
        await self.broadcaster.start()
        if telemetry is not None:
            self.telemetry = TelemetryPump(
                telemetry,
                self.broadcaster,
                self.connection,
                interval=self.config.telemetry.interval,
                history_size=self.config.telemetry.history_size,
            )
            self.telemetry.start()
        return connected

    async def stop(self) -> None:
        if self.telemetry is not None:
            await self.telemetry.stop()
        await self.broadcaster.stop()
        await self.connection.disconnect()

    async def create(
        self,
        name: str,
        steps: Iterable[StepDefinition],
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WorkflowInstance:
        return await self.store.create(name, steps, session_id=session_id, metadata=metadata)

    async def execute(self, workflow_id: str) -> ExecutionResult:
        return await self.engine.execute(workflow_id)

    async def submit(
        self,
        name: str,
        steps: Iterable[StepDefinition],
        session_id: Optional[str] = None,
    ) -> ExecutionResult:
        """Create a workflow and run it to completion."""
        workflow = await self.create(name, steps, session_id=session_id)
        return await self.execute(workflow.id)

    async def retry(self, workflow_id: str) -> ExecutionResult:
        """Run a fresh copy of a finished workflow."""
        workflow = await self.store.clone(workflow_id)
        logger.info(f"Retrying workflow {workflow_id} as {workflow.id}")
        return await self.execute(workflow.id)
