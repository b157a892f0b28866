"""Structural checks and graph utilities for workflow step lists."""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, Iterator, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel

from .errors import WorkflowValidationError
from .models import StepDefinition

logger = logging.getLogger(__name__)

IssueCode = Literal[
    "duplicate_id",
    "self_dependency",
    "dangling_dependency",
    "too_complex",
    "cycle",
]


class ValidationError(BaseModel):
    """A single structural problem found in a step list."""

    code: IssueCode
    message: str
    step_id: Optional[str] = None
    dependency_id: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message


class GraphValidator:
    """Checks a step list before it may be stored or executed.

    Every rule runs independently and all findings are returned together.
    The complexity rule is a coupling heuristic: it counts dependency edges
    and flags the graph once they exceed ``complexity_factor`` times the
    number of steps. Cycles spanning two or more steps are reported
    separately when ``detect_cycles`` is enabled.
    """

    def __init__(self, complexity_factor: float = 1.5, detect_cycles: bool = True):
        self.complexity_factor = complexity_factor
        self.detect_cycles = detect_cycles

    def validate(self, steps: Sequence[StepDefinition]) -> List[ValidationError]:
        errors: List[ValidationError] = []
        errors.extend(self._check_duplicates(steps))
        errors.extend(self._check_self_dependencies(steps))
        errors.extend(self._check_dangling(steps))
        errors.extend(self._check_complexity(steps))
        if self.detect_cycles:
            errors.extend(self._check_cycles(steps))
        if errors:
            logger.debug(f"Validation found {len(errors)} issue(s) in {len(steps)} steps")
        return errors

    def is_valid(self, steps: Sequence[StepDefinition]) -> bool:
        return not self.validate(steps)

    def _check_duplicates(self, steps: Sequence[StepDefinition]) -> List[ValidationError]:
        seen: set[str] = set()
        reported: set[str] = set()
        errors = []
        for step in steps:
            if step.id in seen and step.id not in reported:
                reported.add(step.id)
                errors.append(
                    ValidationError(
                        code="duplicate_id",
                        step_id=step.id,
                        message=f'Step id "{step.id}" is declared more than once',
                    )
                )
            seen.add(step.id)
        return errors

    def _check_self_dependencies(
        self, steps: Sequence[StepDefinition]
    ) -> List[ValidationError]:
        return [
            ValidationError(
                code="self_dependency",
                step_id=step.id,
                dependency_id=step.id,
                message=f'Step "{step.id}" depends on itself',
            )
            for step in steps
            if step.id in step.depends_on
        ]

    def _check_dangling(self, steps: Sequence[StepDefinition]) -> List[ValidationError]:
        known = {step.id for step in steps}
        errors = []
        for step in steps:
            for dep in sorted(step.depends_on):
                if dep not in known:
                    errors.append(
                        ValidationError(
                            code="dangling_dependency",
                            step_id=step.id,
                            dependency_id=dep,
                            message=f'Step "{step.id}" depends on non-existent step "{dep}"',
                        )
                    )
        return errors

    def _check_complexity(self, steps: Sequence[StepDefinition]) -> List[ValidationError]:
        # edge i -> j when step i depends on step j
        edge_count = sum(
            1 for source in steps for target in steps if target.id in source.depends_on
        )
        if edge_count > len(steps) * self.complexity_factor:
            return [
                ValidationError(
                    code="too_complex",
                    message=(
                        f"dependency graph too complex: {edge_count} edges "
                        f"for {len(steps)} steps"
                    ),
                )
            ]
        return []

    def _check_cycles(self, steps: Sequence[StepDefinition]) -> List[ValidationError]:
        return [
            ValidationError(
                code="cycle",
                step_id=cycle[0],
                message="dependency cycle detected: " + " -> ".join(cycle),
            )
            for cycle in find_cycles(steps)
        ]

    def entanglement_score(self, steps: Sequence[StepDefinition]) -> int:
        """Coupling metric in ``[0, 100]``; never gates execution."""
        connections = sum(len(step.depends_on) for step in steps)
        ratio = connections / max(1, len(steps) * 2)
        return min(100, int(math.floor(ratio * 100 + 0.5)))


def _adjacency(steps: Sequence[StepDefinition]) -> Dict[str, List[str]]:
    """Dependencies per step restricted to known ids, self-loops removed."""
    known = {step.id for step in steps}
    graph: Dict[str, List[str]] = {}
    for step in steps:
        graph.setdefault(step.id, [])
        graph[step.id].extend(
            dep for dep in sorted(step.depends_on) if dep in known and dep != step.id
        )
    return graph


def find_cycles(steps: Sequence[StepDefinition]) -> List[List[str]]:
    """Return one path per distinct cycle of two or more steps.

    Each path starts and ends with the same id, e.g. ``["a", "b", "a"]``.
    """
    graph = _adjacency(steps)
    state: Dict[str, int] = {}  # 1 = on stack, 2 = done
    path: List[str] = []
    cycles: List[List[str]] = []
    seen: set[frozenset[str]] = set()

    for root in graph:
        if root in state:
            continue
        state[root] = 1
        path.append(root)
        # explicit stack so chain length is not bounded by the recursion limit
        stack: List[Tuple[str, Iterator[str]]] = [(root, iter(graph[root]))]
        while stack:
            node, deps = stack[-1]
            for dep in deps:
                if state.get(dep) == 1:
                    cycle = path[path.index(dep):] + [dep]
                    members = frozenset(cycle)
                    if members not in seen:
                        seen.add(members)
                        cycles.append(cycle)
                elif dep not in state:
                    state[dep] = 1
                    path.append(dep)
                    stack.append((dep, iter(graph[dep])))
                    break
            else:
                stack.pop()
                path.pop()
                state[node] = 2
    return cycles


def topological_order(steps: Sequence[StepDefinition]) -> List[StepDefinition]:
    """Order steps so every step follows its dependencies.

    Among ready steps the earliest declared one is taken first, so an already
    consistent declaration order is returned unchanged.

    Raises:
        WorkflowValidationError: If a cycle prevents ordering.
    """
    graph = _adjacency(steps)
    remaining = list(steps)
    placed: set[str] = set()
    ordered: List[StepDefinition] = []
    while remaining:
        ready = next(
            (s for s in remaining if all(d in placed for d in graph[s.id])), None
        )
        if ready is None:
            cycles = find_cycles(remaining)
            raise WorkflowValidationError(
                ValidationError(
                    code="cycle",
                    step_id=c[0],
                    message="dependency cycle detected: " + " -> ".join(c),
                )
                for c in cycles
            )
        ordered.append(ready)
        placed.add(ready.id)
        remaining.remove(ready)
    return ordered


def dependents(steps: Iterable[StepDefinition]) -> Dict[str, List[str]]:
    """Reverse adjacency: for each step, the ids of steps that depend on it."""
    steps = list(steps)
    graph: Dict[str, List[str]] = {step.id: [] for step in steps}
    for step in steps:
        for dep in sorted(step.depends_on):
            if dep in graph and dep != step.id:
                graph[dep].append(step.id)
    return graph


def critical_path(steps: Sequence[StepDefinition]) -> List[str]:
    """Longest dependency chain, listed from the first step to the last."""
    graph = _adjacency(steps)
    order = {step.id: index for index, step in enumerate(steps)}
    longest: Dict[str, List[str]] = {}

    for step in topological_order(steps):
        best: List[str] = []
        for dep in sorted(graph[step.id], key=order.__getitem__):
            if len(longest[dep]) > len(best):
                best = longest[dep]
        longest[step.id] = best + [step.id]

    result: List[str] = []
    for step in steps:
        if len(longest[step.id]) > len(result):
            result = longest[step.id]
    return result


_default_validator = GraphValidator()


def validate(steps: Sequence[StepDefinition]) -> List[ValidationError]:
    return _default_validator.validate(steps)


def entanglement_score(steps: Sequence[StepDefinition]) -> int:
    return _default_validator.entanglement_score(steps)
