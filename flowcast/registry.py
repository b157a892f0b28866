"""Maps step kinds to the handlers that perform their work."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Type

import pydantic
from pydantic import BaseModel

from .errors import StepParamsError, UnknownStepKindError
from .models import StepDefinition

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]
StepHandler = Callable[[Any, ProgressCallback], Any]


def _ignore_progress(value: float) -> None:
    pass


@dataclass(frozen=True)
class HandlerEntry:
    kind: str
    handler: StepHandler
    params_model: Optional[Type[BaseModel]] = None


class StepHandlerRegistry:
    """Registry of step handlers keyed by step ``kind``.

    A handler is called as ``handler(params, report_progress)`` and may be a
    coroutine function or a plain callable. When a pydantic ``params_model``
    is registered for the kind, the raw params mapping is validated into that
    model before the handler sees it.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, HandlerEntry] = {}

    def register(
        self,
        kind: str,
        handler: StepHandler,
        params_model: Optional[Type[BaseModel]] = None,
    ) -> None:
        if kind in self._handlers:
            logger.info(f"Replacing handler for step kind '{kind}'")
        self._handlers[kind] = HandlerEntry(kind, handler, params_model)

    def handler(
        self, kind: str, params: Optional[Type[BaseModel]] = None
    ) -> Callable[[StepHandler], StepHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(func: StepHandler) -> StepHandler:
            self.register(kind, func, params)
            return func

        return decorator

    def unregister(self, kind: str) -> None:
        self._handlers.pop(kind, None)

    def kinds(self) -> List[str]:
        return list(self._handlers)

    def __contains__(self, kind: object) -> bool:
        return kind in self._handlers

    def unregistered(self, steps: Iterable[StepDefinition]) -> List[str]:
        """Kinds used by ``steps`` that have no registered handler."""
        missing: List[str] = []
        for step in steps:
            if step.kind not in self._handlers and step.kind not in missing:
                missing.append(step.kind)
        return missing

    def resolve_params(self, kind: str, params: Mapping[str, Any]) -> Any:
        entry = self._entry(kind)
        if entry.params_model is None:
            return dict(params)
        try:
            return entry.params_model.model_validate(dict(params))
        except pydantic.ValidationError as e:
            raise StepParamsError(f"Invalid params for step kind '{kind}': {e}") from e

    async def invoke(
        self,
        kind: str,
        params: Mapping[str, Any],
        report_progress: Optional[ProgressCallback] = None,
    ) -> Any:
        """Run the handler registered for ``kind`` and return its result."""
        entry = self._entry(kind)
        resolved = self.resolve_params(kind, params)
        result = entry.handler(resolved, report_progress or _ignore_progress)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _entry(self, kind: str) -> HandlerEntry:
        try:
            return self._handlers[kind]
        except KeyError:
            raise UnknownStepKindError(kind) from None
