"""Provider adapter contract and shared request building."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Union

from llm_gateway.costs import CostTable
from llm_gateway.loop import MAX_TOOL_ITERATIONS, ToolExecutionLoop
from llm_gateway.normalizer import FrameDecode
from llm_gateway.providers.transport import ChatTransport
from llm_gateway.streaming import StreamingExecution, start_streaming_execution
from llm_gateway.timing import Clock, TimingRecorder, now_ms
from llm_gateway.tools import ToolDispatcher, ToolRegistry
from llm_gateway.types import ProviderRequest, ProviderResponse, ToolDef

ProviderResult = Union[ProviderResponse, StreamingExecution]


@dataclass(frozen=True)
class ModelCapabilities:
    """Describes feature support for a provider model."""

    streaming: bool
    forced_tool_choice: bool


class ProviderAdapter(ABC):
    """One backend: builds payloads, calls it and routes the result.

    Requests carrying tools always go through :class:`ToolExecutionLoop`;
    only tool-less requests that ask for it are streamed, and only for models
    whose capabilities allow streaming.
    """

    name: str
    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        transport: ChatTransport,
        tool_registry: ToolRegistry,
        costs: CostTable | None = None,
        models: Iterable[str] = (),
        max_tool_iterations: int = MAX_TOOL_ITERATIONS,
        clock: Clock = now_ms,
    ) -> None:
        self._transport = transport
        self._tool_registry = tool_registry
        self._costs = costs or CostTable()
        self._models: list[str] = list(models)
        self._max_tool_iterations = max_tool_iterations
        self._clock = clock

    @property
    def models(self) -> tuple[str, ...]:
        return tuple(self._models)

    async def initialize(self) -> None:
        """Hook for adapters that need to discover their models."""

    async def aclose(self) -> None:
        """Close the underlying transport."""
        await self._transport.aclose()

    @abstractmethod
    def capabilities(self, model: str) -> ModelCapabilities:
        """Return capability flags for the given model identifier."""
        raise NotImplementedError

    def serves(self, model: str) -> bool:
        return model in self._models or model.startswith(f"{self.name}/")

    def upstream_model(self, model: str) -> str:
        """Model name as the backend knows it."""
        prefix = f"{self.name}/"
        return model[len(prefix) :] if model.startswith(prefix) else model

    async def execute(self, req: ProviderRequest) -> ProviderResult:
        self._logger.info(
            "Preparing %s request: model=%s system_prompt=%s messages=%d tools=%d stream=%s",
            self.name,
            req.model,
            bool(req.system_prompt),
            len(req.messages),
            len(req.tools),
            req.stream,
        )
        payload = self.build_payload(req)
        caps = self.capabilities(req.model)

        if req.stream and not caps.streaming:
            self._logger.info("%s cannot stream %s, falling back to a batch request", self.name, req.model)
        elif req.stream and not payload.get("tools"):
            self._logger.info("Using streaming response for %s request", self.name)
            return await self._execute_streaming(req, payload)

        loop = ToolExecutionLoop(
            self._transport,
            ToolDispatcher(self._tool_registry, clock=self._clock),
            costs=self._costs,
            max_iterations=self._max_tool_iterations,
            clock=self._clock,
        )
        return await loop.run(req, payload)

    async def _execute_streaming(
        self, req: ProviderRequest, payload: dict[str, Any]
    ) -> StreamingExecution:
        timer = TimingRecorder(self._clock)
        chunks = await self._transport.open_chat_stream(
            {**payload, "stream": True, "stream_options": {"include_usage": True}}
        )
        return start_streaming_execution(
            chunks,
            model=req.model,
            costs=self._costs,
            timer=timer,
            encode=self.encode_stream_chunk,
        )

    def encode_stream_chunk(self, chunk: bytes, frames: list[FrameDecode]) -> bytes:
        """Bytes handed downstream for one upstream chunk; forwarded unchanged by default."""
        return chunk

    def build_payload(self, req: ProviderRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.upstream_model(req.model),
            "messages": self.build_messages(req),
        }

        if req.temperature is not None:
            payload["temperature"] = req.temperature
        if req.max_tokens is not None:
            payload["max_tokens"] = req.max_tokens

        payload.update(self._serialize_tools(req.tools, self.capabilities(req.model)))
        return payload

    @staticmethod
    def build_messages(req: ProviderRequest) -> list[dict[str, Any]]:
        """System prompt, then standalone context, then the conversation."""
        messages: list[dict[str, Any]] = []
        if req.system_prompt:
            messages.append({"role": "system", "content": req.system_prompt})
        if req.context:
            messages.append({"role": "user", "content": req.context})
        messages.extend(m.model_dump(exclude_none=True) for m in req.messages)
        return messages

    def _serialize_tools(self, tools: list[ToolDef], caps: ModelCapabilities) -> dict[str, Any]:
        enabled = [t for t in tools if t.usage_control != "none"]
        if not enabled:
            return {}

        payload: dict[str, Any] = {
            "tools": [
                {
                    "type": "function",
                    "function": {
                        "name": t.id,
                        "description": t.description or "",
                        "parameters": t.json_schema,
                    },
                }
                for t in enabled
            ],
            "tool_choice": "auto",
        }

        forced = [t for t in enabled if t.usage_control == "force"]
        if forced and caps.forced_tool_choice:
            payload["tool_choice"] = {"type": "function", "function": {"name": forced[0].id}}
        elif forced:
            self._logger.warning(
                "%s does not support forced tool selection; tools marked usage_control='force' "
                "will behave as 'auto' instead: %s",
                self.name,
                ", ".join(t.id for t in forced),
            )

        self._logger.info(
            "%s request configuration: tools=%d tool_choice=%s",
            self.name,
            len(enabled),
            payload["tool_choice"],
        )
        return payload
