"""Execution engine driving workflow instances to a terminal state."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List, Literal, Optional, Union

from .broadcast import BroadcastHub, ProgressBroadcaster
from .errors import (
    StepTimeoutError,
    WorkflowAlreadyFinishedError,
    WorkflowAlreadyRunningError,
)
from .models import (
    ExecutionResult,
    ProgressEvent,
    StepDefinition,
    StepStatus,
    WorkflowInstance,
    WorkflowStatus,
    utcnow,
)
from .registry import StepHandlerRegistry
from .store import WorkflowStore
from .validation import topological_order

logger = logging.getLogger(__name__)

ExecutionOrder = Literal["declared", "topological"]


class ExecutionEngine:
    """Runs the steps of a stored workflow one after another.

    Steps execute in declaration order unless ``order="topological"`` is
    given. Each step's handler is awaited to completion before the next one
    starts; the first failing step fails the whole run and the remaining
    steps stay idle. Handler errors never escape :meth:`execute`, they end
    up in the workflow state and in ``stepFailed``/``workflowFailed`` events.

    Progress reported by a handler travels through a per-step queue that the
    engine drains while the handler runs. Values are clamped to ``[0, 100]``
    and decreases are ignored.
    """

    def __init__(
        self,
        store: WorkflowStore,
        registry: StepHandlerRegistry,
        broadcasters: Union[BroadcastHub, ProgressBroadcaster, None] = None,
        step_timeout: Optional[float] = None,
        order: ExecutionOrder = "declared",
    ) -> None:
        if isinstance(broadcasters, ProgressBroadcaster):
            broadcasters = BroadcastHub(default=broadcasters)
        self._store = store
        self._registry = registry
        self._hub = broadcasters or BroadcastHub()
        self._step_timeout = step_timeout
        self._order = order
        self._running: set[str] = set()

    @property
    def hub(self) -> BroadcastHub:
        return self._hub

    def running(self) -> List[str]:
        """Ids of workflows currently executing in this engine."""
        return list(self._running)

    # ------------------------------------------------------------------
    async def execute(self, workflow_id: str) -> ExecutionResult:
        """Run ``workflow_id`` from idle to completed or failed.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist.
            WorkflowAlreadyRunningError: If the workflow is already executing.
            WorkflowAlreadyFinishedError: If the workflow already reached a
                terminal status. Retrying means creating a fresh run.

        Cancelling the caller fails the current step and the workflow with
        the error ``"cancelled"`` before the cancellation propagates.
        """
        snapshot = await self._store.require(workflow_id)
        steps = self._ordered(snapshot.steps)

        workflow = await self._store.mutate(workflow_id, self._begin)
        broadcaster = self._hub.for_session(workflow.session_id)
        self._running.add(workflow_id)
        logger.info(f"Workflow {workflow_id} '{workflow.name}' started")

        current: Optional[StepDefinition] = None
        try:
            for step in steps:
                current = step
                if not await self._run_step(workflow_id, step, broadcaster):
                    break
            else:
                await self._store.mutate(workflow_id, self._complete)
                logger.info(f"Workflow {workflow_id} completed")
                broadcaster.publish(
                    ProgressEvent(workflow_id=workflow_id, kind="workflowCompleted")
                )
        except asyncio.CancelledError:
            logger.warning(f"Workflow {workflow_id} cancelled")
            step_id = current.id if current is not None else None
            await self._fail(workflow_id, step_id, "cancelled")
            if step_id is not None:
                broadcaster.publish(
                    ProgressEvent(
                        workflow_id=workflow_id,
                        kind="stepFailed",
                        step_id=step_id,
                        error="cancelled",
                    )
                )
            broadcaster.publish(
                ProgressEvent(
                    workflow_id=workflow_id,
                    kind="workflowFailed",
                    step_id=step_id,
                    error="cancelled",
                )
            )
            raise
        finally:
            self._running.discard(workflow_id)

        return self._result(await self._store.require(workflow_id))

    async def execute_many(self, workflow_ids: Iterable[str]) -> List[ExecutionResult]:
        """Run independent workflows concurrently, results in input order."""
        return list(await asyncio.gather(*(self.execute(i) for i in workflow_ids)))

    # ------------------------------------------------------------------
    def _ordered(self, steps: List[StepDefinition]) -> List[StepDefinition]:
        if self._order == "topological":
            return topological_order(steps)
        return list(steps)

    @staticmethod
    def _begin(workflow: WorkflowInstance) -> None:
        if workflow.status == WorkflowStatus.RUNNING:
            raise WorkflowAlreadyRunningError(workflow.id)
        if workflow.status.is_terminal:
            raise WorkflowAlreadyFinishedError(workflow.id, workflow.status.value)
        workflow.status = WorkflowStatus.RUNNING
        workflow.started_at = utcnow()

    @staticmethod
    def _complete(workflow: WorkflowInstance) -> None:
        workflow.status = WorkflowStatus.COMPLETED
        workflow.current_step_id = None
        workflow.completed_at = utcnow()

    async def _run_step(
        self, workflow_id: str, step: StepDefinition, broadcaster: ProgressBroadcaster
    ) -> bool:
        def start(workflow: WorkflowInstance) -> None:
            workflow.current_step_id = step.id
            state = workflow.runtime[step.id]
            state.status = StepStatus.RUNNING
            state.progress = 0.0
            state.started_at = utcnow()
            state.error = None

        await self._store.mutate(workflow_id, start)
        logger.debug(f"Step {step.id} ({step.kind}) started in workflow {workflow_id}")
        broadcaster.publish(
            ProgressEvent(
                workflow_id=workflow_id, kind="stepStarted", step_id=step.id, progress=0.0
            )
        )

        try:
            output = await self._invoke(workflow_id, step, broadcaster)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"Step {step.id} failed in workflow {workflow_id}: {message}")
            await self._fail(workflow_id, step.id, message)
            broadcaster.publish(
                ProgressEvent(
                    workflow_id=workflow_id, kind="stepFailed", step_id=step.id, error=message
                )
            )
            broadcaster.publish(
                ProgressEvent(
                    workflow_id=workflow_id,
                    kind="workflowFailed",
                    step_id=step.id,
                    error=message,
                )
            )
            return False

        def finish(workflow: WorkflowInstance) -> None:
            state = workflow.runtime[step.id]
            state.status = StepStatus.COMPLETED
            state.progress = 100.0
            state.completed_at = utcnow()
            state.output = output

        await self._store.mutate(workflow_id, finish)
        broadcaster.publish(
            ProgressEvent(
                workflow_id=workflow_id,
                kind="stepCompleted",
                step_id=step.id,
                progress=100.0,
            )
        )
        return True

    async def _fail(self, workflow_id: str, step_id: Optional[str], message: str) -> None:
        def fail(workflow: WorkflowInstance) -> None:
            now = utcnow()
            # a step that already completed keeps its result
            if step_id is not None and workflow.runtime[step_id].status == StepStatus.RUNNING:
                state = workflow.runtime[step_id]
                state.status = StepStatus.FAILED
                state.error = message
                state.completed_at = now
            workflow.status = WorkflowStatus.FAILED
            workflow.completed_at = now

        await self._store.mutate(workflow_id, fail)

    async def _invoke(
        self, workflow_id: str, step: StepDefinition, broadcaster: ProgressBroadcaster
    ) -> Any:
        channel: "asyncio.Queue[float]" = asyncio.Queue()
        handler = asyncio.create_task(
            self._registry.invoke(step.kind, step.params, channel.put_nowait)
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._step_timeout if self._step_timeout else None

        try:
            while True:
                receiver = asyncio.create_task(channel.get())
                timeout = None if deadline is None else max(0.0, deadline - loop.time())
                done, _ = await asyncio.wait(
                    {handler, receiver},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if receiver in done:
                    await self._record_progress(
                        workflow_id, step.id, receiver.result(), broadcaster
                    )
                    continue
                receiver.cancel()
                if handler in done:
                    break
                raise StepTimeoutError(step.id, self._step_timeout)

            while not channel.empty():
                await self._record_progress(
                    workflow_id, step.id, channel.get_nowait(), broadcaster
                )
            return handler.result()
        finally:
            if not handler.done():
                handler.cancel()

    async def _record_progress(
        self,
        workflow_id: str,
        step_id: str,
        value: Any,
        broadcaster: ProgressBroadcaster,
    ) -> None:
        try:
            progress = min(100.0, max(0.0, float(value)))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric progress {value!r} for step {step_id}")
            return

        advanced = False

        def apply(workflow: WorkflowInstance) -> None:
            nonlocal advanced
            state = workflow.runtime[step_id]
            if state.status == StepStatus.RUNNING and progress > state.progress:
                state.progress = progress
                advanced = True

        await self._store.mutate(workflow_id, apply)
        if advanced:
            broadcaster.publish(
                ProgressEvent(
                    workflow_id=workflow_id,
                    kind="stepProgress",
                    step_id=step_id,
                    progress=progress,
                )
            )

    @staticmethod
    def _result(workflow: WorkflowInstance) -> ExecutionResult:
        failed = workflow.failed_step()
        return ExecutionResult(
            workflow_id=workflow.id,
            status=workflow.status,
            failed_step_id=failed,
            error=workflow.runtime[failed].error if failed else None,
            outputs=workflow.outputs(),
            started_at=workflow.started_at,
            completed_at=workflow.completed_at,
        )
