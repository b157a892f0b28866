"""Utility functions to load workflow definition files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

from flowcast.models import ProgressEvent, StepDefinition


class WorkflowFile(BaseModel):
    """Contents of a YAML workflow definition file."""

    name: str
    steps: List[StepDefinition] = Field(default_factory=list)
    session_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def load_workflow_file(path: Path) -> WorkflowFile:
    """Parse ``path`` into a :class:`WorkflowFile`.

    Raises:
        OSError: If the file cannot be read.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If the document does not describe a workflow.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if "name" not in data:
        data["name"] = path.stem
    return WorkflowFile.model_validate(data)


def _format_event(event: ProgressEvent) -> str:
    parts = [f"[{event.kind}]"]
    if event.step_id:
        parts.append(event.step_id)
    if event.progress is not None:
        parts.append(f"{event.progress:.0f}%")
    if event.error:
        parts.append(f"error: {event.error}")
    return " ".join(parts)
