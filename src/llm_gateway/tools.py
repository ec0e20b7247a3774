"""Tool registry contract and concurrent tool dispatch."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel

from llm_gateway.errors import ToolInvocationError
from llm_gateway.timing import Clock, now_ms
from llm_gateway.types import ToolCall, ToolDef

_logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Union[Any, Awaitable[Any]]]


class ToolResult(BaseModel):
    success: bool
    output: Any = None
    error: str | None = None


class ToolRegistry(ABC):
    """Executes tools by id. What a tool does is up to the registry."""

    @abstractmethod
    def has_tool(self, tool_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def execute(self, tool_id: str, params: dict[str, Any]) -> ToolResult:
        raise NotImplementedError


class InMemoryToolRegistry(ToolRegistry):
    """Registry backed by plain (sync or async) callables.

    A handler's return value becomes the tool output; a returned
    :class:`ToolResult` is passed through unchanged and raised exceptions
    propagate to the caller.
    """

    def __init__(self, handlers: Mapping[str, ToolHandler] | None = None) -> None:
        self._handlers: dict[str, ToolHandler] = dict(handlers or {})

    def register(self, tool_id: str, handler: ToolHandler) -> None:
        self._handlers[tool_id] = handler

    def has_tool(self, tool_id: str) -> bool:
        return tool_id in self._handlers

    async def execute(self, tool_id: str, params: dict[str, Any]) -> ToolResult:
        result = self._handlers[tool_id](params)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, ToolResult):
            return result
        return ToolResult(success=True, output=result)


@dataclass
class ToolOutcome:
    """A finished invocation, successful or not."""

    call: ToolCall
    params: dict[str, Any]
    result: ToolResult
    start_ms: int
    end_ms: int
    name: str = field(init=False)

    def __post_init__(self) -> None:
        self.name = self.call.function.name

    @property
    def duration(self) -> int:
        return self.end_ms - self.start_ms

    def result_content(self) -> Any:
        """What the model gets to see for this call."""
        if self.result.success:
            return self.result.output
        return {
            "error": True,
            "message": self.result.error or "Tool execution failed",
            "tool": self.name,
        }


def parse_tool_arguments(tool: str, raw: str | None) -> dict[str, Any]:
    """Arguments of a call to ``tool``; empty arguments mean no parameters."""
    try:
        arguments = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise ToolInvocationError(tool, f"arguments are not valid JSON: {exc}") from exc
    if not isinstance(arguments, dict):
        raise ToolInvocationError(tool, f"expected a JSON object, got {type(arguments).__name__}")
    return arguments


class ToolDispatcher:
    """Runs one batch of tool calls concurrently.

    Every call is captured on its own, so a failing tool never cancels or
    hides its siblings. Outcomes come back in completion order. Calls naming a
    tool the registry does not know are skipped without an outcome.
    """

    def __init__(self, registry: ToolRegistry, *, clock: Clock = now_ms) -> None:
        self._registry = registry
        self._clock = clock

    async def dispatch(
        self, calls: Sequence[ToolCall], tools: Sequence[ToolDef] = ()
    ) -> list[ToolOutcome]:
        presets = {tool.id: tool.params for tool in tools}
        completed: list[ToolOutcome] = []

        async def _run(call: ToolCall) -> None:
            outcome = await self._invoke(call, presets.get(call.function.name, {}))
            if outcome is not None:
                completed.append(outcome)

        await asyncio.gather(*(_run(call) for call in calls))
        return completed

    async def _invoke(self, call: ToolCall, preset: dict[str, Any]) -> ToolOutcome | None:
        name = call.function.name
        # TODO: record unknown tools as failed calls once telemetry consumers can handle them
        if not self._registry.has_tool(name):
            _logger.debug("Skipping call to unregistered tool %s", name)
            return None

        start = self._clock()
        params: dict[str, Any] = {}
        try:
            params = {**preset, **parse_tool_arguments(name, call.function.arguments)}
            result = await self._registry.execute(name, params)
        except Exception as exc:
            _logger.error("Error processing tool call %s: %s", name, exc)
            result = ToolResult(success=False, error=str(exc) or "Tool execution failed")
        else:
            if not result.success:
                _logger.error("Tool %s reported failure: %s", name, result.error)

        return ToolOutcome(call=call, params=params, result=result, start_ms=start, end_ms=self._clock())
