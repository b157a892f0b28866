"""Core data models for workflows, steps and the events they produce."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)


class StepDefinition(BaseModel):
    """Declares one unit of work in a workflow.

    ``kind`` selects the handler from the registry and ``params`` is passed to
    it untouched. ``depends_on`` lists the ids of steps that must complete
    first. Definitions are frozen so they cannot change once a run starts.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    kind: str
    params: Dict[str, Any] = Field(default_factory=dict)
    depends_on: frozenset[str] = Field(default_factory=frozenset, alias="dependsOn")

    @field_validator("id", "kind")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("must be a non-empty string")
        return v


class StepRuntimeState(BaseModel):
    """Mutable execution state of a single step within one run."""

    status: StepStatus = StepStatus.IDLE
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    output: Any = None


class WorkflowInstance(BaseModel):
    """One concrete run (or pending run) of a named set of steps."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    steps: List[StepDefinition] = Field(default_factory=list)
    runtime: Dict[str, StepRuntimeState] = Field(default_factory=dict)
    status: WorkflowStatus = WorkflowStatus.IDLE
    current_step_id: Optional[str] = None
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def step(self, step_id: str) -> StepRuntimeState:
        """Return the runtime state for ``step_id``."""
        return self.runtime[step_id]

    def failed_step(self) -> Optional[str]:
        """Id of the step that failed the run, if any."""
        for definition in self.steps:
            if self.runtime[definition.id].status == StepStatus.FAILED:
                return definition.id
        return None

    def outputs(self) -> Dict[str, Any]:
        """Outputs of completed steps keyed by step id."""
        return {
            step_id: state.output
            for step_id, state in self.runtime.items()
            if state.status == StepStatus.COMPLETED
        }

    @property
    def progress(self) -> float:
        """Mean step progress, for display purposes."""
        if not self.runtime:
            return 0.0
        return sum(s.progress for s in self.runtime.values()) / len(self.runtime)


class ExecutionResult(BaseModel):
    """Summary returned by :meth:`ExecutionEngine.execute`."""

    workflow_id: str
    status: WorkflowStatus
    failed_step_id: Optional[str] = None
    error: Optional[str] = None
    outputs: Dict[str, Any] = Field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def succeeded(self) -> bool:
        return self.status == WorkflowStatus.COMPLETED


ProgressKind = Literal[
    "stepStarted",
    "stepProgress",
    "stepCompleted",
    "stepFailed",
    "workflowCompleted",
    "workflowFailed",
]


class ProgressEvent(BaseModel):
    """A state transition of a step or workflow, delivered to subscribers."""

    workflow_id: str
    kind: ProgressKind
    step_id: Optional[str] = None
    progress: Optional[float] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionState(BaseModel):
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    reconnect_attempts: int = 0
    max_reconnect_attempts: int = 5
    gave_up: bool = False


ConnectionKind = Literal[
    "connecting",
    "connected",
    "disconnected",
    "reconnectScheduled",
    "connectionFailed",
]


class ConnectionEvent(BaseModel):
    kind: ConnectionKind
    attempt: int = 0
    delay: Optional[float] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class TelemetryEvent(BaseModel):
    """Wraps an opaque data point produced by a telemetry generator."""

    kind: Literal["telemetry"] = "telemetry"
    data: Any = None
    timestamp: datetime = Field(default_factory=utcnow)


BroadcastEvent = Annotated[
    Union[ProgressEvent, ConnectionEvent, TelemetryEvent],
    Field(discriminator="kind"),
]
