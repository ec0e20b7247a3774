"""Streaming executions and their single-writer progress channel."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from llm_gateway.costs import CostTable
from llm_gateway.normalizer import DecodedDelta, FrameDecode, FrameReader
from llm_gateway.timing import TimingRecorder, to_iso
from llm_gateway.types import ProviderTiming, StreamingOutput, TimeSegment, TokenUsage

ChunkEncoder = Callable[[bytes, list[FrameDecode]], bytes]

_USAGE_FIELDS = {"input": "prompt_tokens", "output": "completion_tokens", "total": "total_tokens"}


class ExecutionChannel:
    """Latest-value channel between the stream-consuming task and readers.

    Only the task relaying the upstream stream publishes; everyone else reads
    :attr:`latest`, an immutable snapshot.
    """

    def __init__(self, initial: StreamingOutput) -> None:
        self._latest = initial
        self._completed = asyncio.Event()

    @property
    def latest(self) -> StreamingOutput:
        return self._latest

    @property
    def completed(self) -> bool:
        return self._completed.is_set()

    def publish(self, snapshot: StreamingOutput) -> None:
        if self._completed.is_set():
            raise RuntimeError("Cannot publish to a completed execution channel")
        self._latest = snapshot

    def complete(self) -> None:
        self._completed.set()

    async def wait_completed(self) -> StreamingOutput:
        await self._completed.wait()
        return self._latest


@dataclass
class StreamingExecution:
    """Live handle on a streaming request: raw bytes plus a progress snapshot."""

    stream: AsyncGenerator[bytes, None]
    channel: ExecutionChannel

    @property
    def output(self) -> StreamingOutput:
        return self.channel.latest


def merge_usage(current: TokenUsage, usage: dict[str, Any]) -> TokenUsage:
    """Streamed usage is cumulative: each reported field replaces the previous value."""
    updates = {
        name: int(usage[key]) for name, key in _USAGE_FIELDS.items() if usage.get(key) is not None
    }
    return current.model_copy(update=updates)


def _accumulate(
    frames: list[FrameDecode], content: str, tokens: TokenUsage
) -> tuple[str, TokenUsage]:
    for frame in frames:
        content += frame.text
        if isinstance(frame, DecodedDelta) and isinstance(frame.data, dict):
            usage = frame.data.get("usage")
            if isinstance(usage, dict):
                tokens = merge_usage(tokens, usage)
    return content, tokens


def _snapshot(
    model: str, content: str, tokens: TokenUsage, costs: CostTable, timer: TimingRecorder
) -> StreamingOutput:
    end = timer.now()
    duration = end - timer.start_ms
    return StreamingOutput(
        content=content,
        model=model,
        tokens=tokens,
        cost=costs.cost(model, tokens.input, tokens.output),
        timing=ProviderTiming(
            start_time=to_iso(timer.start_ms),
            end_time=to_iso(end),
            duration=duration,
            model_time=duration,
            iterations=1,
            time_segments=[
                TimeSegment(
                    type="model",
                    name="Streaming response",
                    start_time=timer.start_ms,
                    end_time=end,
                    duration=duration,
                )
            ],
        ),
    )


def start_streaming_execution(
    chunks: AsyncGenerator[bytes, None],
    *,
    model: str,
    costs: CostTable,
    timer: TimingRecorder,
    encode: ChunkEncoder,
) -> StreamingExecution:
    """Relay upstream bytes downstream while reporting progress.

    Every chunk is read with a :class:`FrameReader` to track content and
    usage, then handed to ``encode`` together with its frames. Closing the
    returned stream closes ``chunks``.
    """
    channel = ExecutionChannel(_snapshot(model, "", TokenUsage(), costs, timer))

    async def _relay() -> AsyncGenerator[bytes, None]:
        reader = FrameReader()
        content = ""
        tokens = TokenUsage()
        try:
            async with aclosing(chunks) as upstream:
                async for chunk in upstream:
                    frames = reader.feed(chunk)
                    content, tokens = _accumulate(frames, content, tokens)
                    channel.publish(_snapshot(model, content, tokens, costs, timer))

                    data = encode(chunk, frames)
                    if data:
                        yield data

            frames = reader.finish()
            if frames:
                content, tokens = _accumulate(frames, content, tokens)
                channel.publish(_snapshot(model, content, tokens, costs, timer))
                data = encode(b"", frames)
                if data:
                    yield data
        finally:
            channel.complete()

    return StreamingExecution(stream=_relay(), channel=channel)
