"""Chat-completion endpoint logic, independent of any web framework.

Handlers return a :class:`GatewayResponse`; the host application maps it
onto its own response type. Anything that fails before the event stream
starts becomes a 500 with ``{"error": ...}``. Once streaming has begun,
failures only show up as an in-band ``error`` event.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncGenerator, Mapping
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from llm_gateway.config import GatewaySettings
from llm_gateway.events import CanonicalEvent, ChatIdEvent, ContentEvent, DoneEvent, encode_event
from llm_gateway.normalizer import StreamNormalizer
from llm_gateway.registry import ProviderRegistry
from llm_gateway.streaming import StreamingExecution
from llm_gateway.types import CostBreakdown, Message, ProviderRequest, ProviderResponse, TokenUsage

EVENT_STREAM_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

CONTEXT_PREAMBLE = "You are a helpful AI assistant. Use the following context to help the user:"
_CONTEXT_SEPARATOR = "\n\n---\n\n"
_CONTEXT_HEADINGS = {
    "past_chat": "Past conversation",
    "workflow": "Workflow",
    "current_workflow": "Current workflow",
}


class ChatContext(BaseModel):
    type: str = ""
    content: str | None = None


class ChatCompletionBody(BaseModel):
    """Body of ``POST /chat-completion``."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    model: str
    contexts: list[ChatContext] = Field(default_factory=list)
    stream: bool = True
    chat_id: str | None = Field(default=None, alias="chatId")
    workflow_id: str | None = Field(default=None, alias="workflowId")
    user_id: str | None = Field(default=None, alias="userId")


@dataclass
class GatewayResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    json_body: dict[str, Any] | None = None
    stream: AsyncGenerator[bytes, None] | None = None

    @classmethod
    def json(cls, body: dict[str, Any], status: int = 200) -> GatewayResponse:
        return cls(status=status, headers={"Content-Type": "application/json"}, json_body=body)

    @classmethod
    def error(cls, message: str) -> GatewayResponse:
        return cls.json({"error": message}, status=500)

    @classmethod
    def event_stream(cls, stream: AsyncGenerator[bytes, None]) -> GatewayResponse:
        return cls(status=200, headers=dict(EVENT_STREAM_HEADERS), stream=stream)


def render_contexts(contexts: list[ChatContext]) -> str | None:
    """Fold request contexts into the text of one leading system message."""
    parts: list[str] = []
    for ctx in contexts:
        if not ctx.content:
            continue
        heading = _CONTEXT_HEADINGS.get(ctx.type)
        parts.append(f"{heading}:\n{ctx.content}" if heading else ctx.content)
    if not parts:
        return None
    return f"{CONTEXT_PREAMBLE}\n\n{_CONTEXT_SEPARATOR.join(parts)}"


class UsageStats:
    """In-memory totals across completed requests."""

    def __init__(self) -> None:
        self.total_requests = 0
        self.total_tokens = 0
        self.total_cost = 0.0

    def record(self, tokens: TokenUsage, cost: CostBreakdown) -> None:
        self.total_requests += 1
        self.total_tokens += tokens.total
        self.total_cost += cost.total

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "totalTokens": self.total_tokens,
            "totalCost": round(self.total_cost, 8),
        }


class GatewayService:
    """Handlers behind the gateway's HTTP routes."""

    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        settings: GatewaySettings | None = None,
        stats: UsageStats | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings or GatewaySettings()
        self.stats = stats or UsageStats()

    async def chat_completion(self, body: Mapping[str, Any]) -> GatewayResponse:
        """``POST /chat-completion``."""
        request_id = str(uuid.uuid4())
        try:
            req = ChatCompletionBody.model_validate(body)
            self._logger.info(
                "[%s] Received chat-completion request: model=%s contexts=%d stream=%s",
                request_id,
                req.model,
                len(req.contexts),
                req.stream,
            )
            resolved = self._registry.resolve(req.model)
            self._logger.info(
                "[%s] Using provider: %s, model: %s",
                request_id,
                resolved.provider_id,
                resolved.actual_model,
            )
            result = await self._registry.execute(
                resolved.provider_id, self._provider_request(req, resolved.actual_model)
            )
        except Exception as exc:
            self._logger.error("[%s] Error in chat-completion: %s", request_id, exc, exc_info=True)
            return GatewayResponse.error(str(exc) or "Internal server error")

        if isinstance(result, StreamingExecution):
            normalizer = StreamNormalizer(chat_id=req.chat_id)
            events = normalizer.normalize(result.stream)
            return GatewayResponse.event_stream(self._encode(events, result, request_id))

        if isinstance(result, ProviderResponse):
            self.stats.record(result.tokens, result.cost)
            return GatewayResponse.event_stream(self._encode(_batch_events(result, req.chat_id)))

        self._logger.warning(
            "[%s] Unexpected result format from provider: %s", request_id, type(result).__name__
        )
        return GatewayResponse.error("Unexpected response format")

    async def usage_stats(self) -> GatewayResponse:
        """``GET /stats``."""
        self._logger.info("Stats request received")
        return GatewayResponse.json({"stats": self.stats.as_dict()})

    async def context_usage(self, body: Mapping[str, Any]) -> GatewayResponse:
        """``POST /get-context-usage``; usage is billed locally so it is always zero."""
        self._logger.info(
            "Context usage request received: chat_id=%s model=%s",
            body.get("chatId"),
            body.get("model"),
        )
        return GatewayResponse.json(
            {
                "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
                "contextUsage": {"contexts": [], "totalTokens": 0},
            }
        )

    async def mark_tool_complete(self, body: Mapping[str, Any]) -> GatewayResponse:
        """``POST /tools/mark-complete``."""
        self._logger.info("Tool mark-complete request received: %s", dict(body))
        return GatewayResponse.json({"success": True})

    def _provider_request(self, req: ChatCompletionBody, model: str) -> ProviderRequest:
        messages: list[Message] = []
        context = render_contexts(req.contexts)
        if context:
            messages.append(Message(role="system", content=context))
        messages.append(Message(role="user", content=req.message))

        return ProviderRequest(
            model=model,
            messages=messages,
            stream=req.stream,
            temperature=self._settings.default_temperature,
            max_tokens=self._settings.default_max_tokens,
        )

    async def _encode(
        self,
        events: AsyncGenerator[CanonicalEvent, None],
        execution: StreamingExecution | None = None,
        request_id: str | None = None,
    ) -> AsyncGenerator[bytes, None]:
        # closing early (client disconnect) releases the upstream connection
        try:
            async with aclosing(events) as stream:
                async for event in stream:
                    yield encode_event(event)
        finally:
            if execution is not None:
                await execution.stream.aclose()

        if execution is not None:
            output = execution.output
            self.stats.record(output.tokens, output.cost)
            self._logger.info(
                "[%s] Stream finished: tokens=%d cost=%s",
                request_id,
                output.tokens.total,
                output.cost.total,
            )


def _batch_events(
    result: ProviderResponse, chat_id: str | None
) -> AsyncGenerator[CanonicalEvent, None]:
    async def _gen() -> AsyncGenerator[CanonicalEvent, None]:
        if chat_id:
            yield ChatIdEvent(chat_id=chat_id)
        if result.content:
            yield ContentEvent(data=result.content)
        yield DoneEvent.for_response(str(uuid.uuid4()))

    return _gen()

