"""flowcast: workflow execution with real-time progress broadcasting."""

from .broadcast import BroadcastHub, ProgressBroadcaster, SubscriptionToken
from .config import FlowcastConfig, load_config
from .connection import ConnectionManager
from .engine import ExecutionEngine
from .errors import (
    FlowcastError,
    HandlerError,
    WorkflowAlreadyFinishedError,
    WorkflowAlreadyRunningError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from .models import (
    ExecutionResult,
    ProgressEvent,
    StepDefinition,
    StepRuntimeState,
    StepStatus,
    WorkflowInstance,
    WorkflowStatus,
)
from .registry import StepHandlerRegistry
from .runtime import Orchestrator
from .store import WorkflowStore
from .telemetry import TelemetryPump
from .transports import get_transport
from .validation import GraphValidator, ValidationError, entanglement_score, validate

__version__ = "0.1.0"
__all__ = [
    "BroadcastHub",
    "ConnectionManager",
    "ExecutionEngine",
    "ExecutionResult",
    "FlowcastConfig",
    "FlowcastError",
    "GraphValidator",
    "HandlerError",
    "Orchestrator",
    "ProgressBroadcaster",
    "ProgressEvent",
    "StepDefinition",
    "StepHandlerRegistry",
    "StepRuntimeState",
    "StepStatus",
    "SubscriptionToken",
    "TelemetryPump",
    "ValidationError",
    "WorkflowAlreadyFinishedError",
    "WorkflowAlreadyRunningError",
    "WorkflowInstance",
    "WorkflowNotFoundError",
    "WorkflowStatus",
    "WorkflowStore",
    "WorkflowValidationError",
    "entanglement_score",
    "get_transport",
    "load_config",
    "validate",
]
