"""Bounded model -> tools -> model loop for non-streaming requests."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from llm_gateway.costs import CostTable
from llm_gateway.errors import ProviderRequestError
from llm_gateway.timing import Clock, TimingRecorder, now_ms, to_iso
from llm_gateway.tools import ToolDispatcher, ToolOutcome
from llm_gateway.types import (
    ProviderRequest,
    ProviderResponse,
    TimeSegment,
    TokenUsage,
    ToolCall,
    ToolCallRecord,
)

if TYPE_CHECKING:
    from llm_gateway.providers.transport import ChatTransport

MAX_TOOL_ITERATIONS = 20

_logger = logging.getLogger(__name__)


def _first_message(response: dict[str, Any]) -> dict[str, Any]:
    choices = response.get("choices") or []
    if not choices:
        return {}
    return choices[0].get("message") or {}


def response_content(response: dict[str, Any]) -> str:
    content = _first_message(response).get("content")
    return content if isinstance(content, str) else ""


def response_tool_calls(response: dict[str, Any]) -> list[ToolCall]:
    raw_calls = _first_message(response).get("tool_calls") or []
    return [ToolCall.model_validate(raw) for raw in raw_calls]


def response_usage(response: dict[str, Any]) -> TokenUsage:
    usage = response.get("usage") or {}
    return TokenUsage(
        input=usage.get("prompt_tokens") or 0,
        output=usage.get("completion_tokens") or 0,
        total=usage.get("total_tokens") or 0,
    )


class ToolExecutionLoop:
    """Drives model calls and tool batches until the model stops asking for tools.

    Each iteration is one model call. When its response requests tools they are
    dispatched concurrently and their results appended to the conversation,
    then the next iteration starts. The loop also stops once
    ``max_iterations`` model calls have been made; the tool results of that last
    batch are recorded but never shown to the model, and that is not an error.
    """

    def __init__(
        self,
        transport: ChatTransport,
        dispatcher: ToolDispatcher,
        *,
        costs: CostTable,
        max_iterations: int = MAX_TOOL_ITERATIONS,
        clock: Clock = now_ms,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._transport = transport
        self._dispatcher = dispatcher
        self._costs = costs
        self._max_iterations = max_iterations
        self._clock = clock

    async def run(self, request: ProviderRequest, payload: dict[str, Any]) -> ProviderResponse:
        timer = TimingRecorder(self._clock)
        messages: list[dict[str, Any]] = list(payload.get("messages", []))
        tool_calls: list[ToolCallRecord] = []
        tool_results: list[Any] = []

        try:
            response, segment = await self._call_model(payload, messages, timer, "Initial response")
            timer.first_response_time = segment.duration
            tokens = response_usage(response)
            content = response_content(response)
            iterations = 1

            while True:
                requested = response_tool_calls(response)
                if not requested:
                    break

                _logger.info(
                    "Processing %d tool calls (iteration %d/%d)",
                    len(requested),
                    iterations,
                    self._max_iterations,
                )
                outcomes = await self._dispatcher.dispatch(requested, request.tools)
                messages.append(
                    {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [call.model_dump() for call in requested],
                    }
                )
                for outcome in outcomes:
                    self._record_outcome(outcome, timer, tool_calls, tool_results, messages)

                if iterations >= self._max_iterations:
                    _logger.info("Reached %d tool iterations, returning latest content", iterations)
                    break

                response, _ = await self._call_model(
                    self._followup_payload(payload),
                    messages,
                    timer,
                    f"Model response (iteration {iterations})",
                )
                iterations += 1
                tokens = tokens.plus(response_usage(response))
                content = response_content(response) or content
        except Exception as exc:
            span = timer.span()
            _logger.error("Error in provider request: %s (duration %sms)", exc, span["duration"])
            raise ProviderRequestError(str(exc) or type(exc).__name__, span) from exc

        return ProviderResponse(
            content=content,
            model=request.model,
            tokens=tokens,
            cost=self._costs.cost(request.model, tokens.input, tokens.output),
            tool_calls=tool_calls,
            tool_results=tool_results,
            timing=timer.finish(iterations),
        )

    async def _call_model(
        self,
        payload: dict[str, Any],
        messages: list[dict[str, Any]],
        timer: TimingRecorder,
        name: str,
    ) -> tuple[dict[str, Any], TimeSegment]:
        start = timer.now()
        response = await self._transport.create_chat_completion({**payload, "messages": list(messages)})
        segment = timer.record("model", name, start, timer.now())
        return response, segment

    @staticmethod
    def _followup_payload(payload: dict[str, Any]) -> dict[str, Any]:
        # a forced tool only applies to the first call
        if isinstance(payload.get("tool_choice"), dict):
            return {**payload, "tool_choice": "auto"}
        return payload

    @staticmethod
    def _record_outcome(
        outcome: ToolOutcome,
        timer: TimingRecorder,
        tool_calls: list[ToolCallRecord],
        tool_results: list[Any],
        messages: list[dict[str, Any]],
    ) -> None:
        timer.record("tool", outcome.name, outcome.start_ms, outcome.end_ms)
        content = outcome.result_content()
        if outcome.result.success:
            tool_results.append(outcome.result.output)

        tool_calls.append(
            ToolCallRecord(
                name=outcome.name,
                arguments=outcome.params,
                result=content,
                success=outcome.result.success,
                start_time=to_iso(outcome.start_ms),
                end_time=to_iso(outcome.end_ms),
                duration=outcome.duration,
            )
        )
        messages.append(
            {
                "role": "tool",
                "tool_call_id": outcome.call.id,
                "content": json.dumps(content, default=str),
            }
        )
