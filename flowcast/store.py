"""In-memory table of workflow instances."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, Optional

from .errors import WorkflowNotFoundError, WorkflowValidationError
from .models import StepDefinition, StepRuntimeState, WorkflowInstance
from .validation import GraphValidator

logger = logging.getLogger(__name__)

Updater = Callable[[WorkflowInstance], Optional[WorkflowInstance]]


class WorkflowStore:
    """Store workflow instances in local memory, keyed by id.

    The store owns all mutable workflow state. Readers receive deep copies,
    so changing a returned instance has no effect; the only write path is
    :meth:`mutate`, which serializes updates per workflow id. Updates to
    different workflows never wait on each other. Data is not persisted
    across process restarts.
    """

    def __init__(self, validator: GraphValidator | None = None) -> None:
        self._validator = validator or GraphValidator()
        self._workflows: Dict[str, WorkflowInstance] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def validator(self) -> GraphValidator:
        return self._validator

    # ------------------------------------------------------------------
    async def create(
        self,
        name: str,
        steps: Iterable[StepDefinition],
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WorkflowInstance:
        """Validate ``steps`` and store a new idle workflow instance.

        Raises:
            WorkflowValidationError: If the step graph is invalid. Nothing is
                stored in that case.
        """
        steps = list(steps)
        errors = self._validator.validate(steps)
        if errors:
            logger.warning(
                f"Rejected workflow '{name}': {'; '.join(e.message for e in errors)}"
            )
            raise WorkflowValidationError(errors)

        workflow = WorkflowInstance(
            name=name,
            steps=steps,
            runtime={step.id: StepRuntimeState() for step in steps},
            session_id=session_id,
            metadata=metadata or {},
        )
        self._workflows[workflow.id] = workflow
        self._locks[workflow.id] = asyncio.Lock()
        logger.info(f"Created workflow {workflow.id} '{name}' with {len(steps)} steps")
        return workflow.model_copy(deep=True)

    async def clone(self, workflow_id: str) -> WorkflowInstance:
        """Create a fresh idle run with the same definition as ``workflow_id``."""
        source = await self.require(workflow_id)
        return await self.create(
            source.name,
            source.steps,
            session_id=source.session_id,
            metadata=source.metadata,
        )

    async def get(self, workflow_id: str) -> WorkflowInstance | None:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def require(self, workflow_id: str) -> WorkflowInstance:
        workflow = await self.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def list_all(self) -> list[WorkflowInstance]:
        return [wf.model_copy(deep=True) for wf in self._workflows.values()]

    async def mutate(self, workflow_id: str, updater: Updater) -> WorkflowInstance:
        """Apply ``updater`` to a working copy and store it atomically.

        The updater may change the copy in place or return a replacement. If
        it raises, the stored instance is left untouched and the exception
        propagates to the caller.
        """
        lock = self._locks.get(workflow_id)
        if lock is None:
            raise WorkflowNotFoundError(workflow_id)
        async with lock:
            current = self._workflows.get(workflow_id)
            if current is None:
                raise WorkflowNotFoundError(workflow_id)
            working = current.model_copy(deep=True)
            replacement = updater(working)
            if replacement is not None:
                working = replacement
            self._workflows[workflow_id] = working
            return working.model_copy(deep=True)

    async def delete(self, workflow_id: str) -> None:
        lock = self._locks.get(workflow_id)
        if lock is None:
            raise WorkflowNotFoundError(workflow_id)
        async with lock:
            if self._workflows.pop(workflow_id, None) is None:
                raise WorkflowNotFoundError(workflow_id)
            self._locks.pop(workflow_id, None)
        logger.info(f"Deleted workflow {workflow_id}")

    def __len__(self) -> int:
        return len(self._workflows)

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._workflows
