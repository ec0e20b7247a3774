"""Turn arbitrary upstream byte streams into canonical events.

Upstreams either speak SSE (``data: <json>`` lines carrying OpenAI-style
deltas) or send raw unframed text. The framing is detected from the first
bytes and stays fixed for the rest of the stream, so the concatenated content
does not depend on where the upstream happened to split its chunks.
"""

from __future__ import annotations

import codecs
import json
import logging
import uuid
from collections.abc import AsyncGenerator, AsyncIterable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from llm_gateway.events import (
    SSE_PREFIX,
    CanonicalEvent,
    ChatIdEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
)

DONE_SENTINEL = "[DONE]"

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecodedDelta:
    """The frame was JSON; ``text`` is the content delta found in it (maybe empty)."""

    text: str
    data: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class UndecodableFrame:
    """Text that is not a JSON frame; it is forwarded as content verbatim."""

    raw: str

    @property
    def text(self) -> str:
        return self.raw


FrameDecode = Union[DecodedDelta, UndecodableFrame]


def extract_delta_text(data: Any) -> str:
    """Extract ``choices[0].delta.content``, falling back to a top-level ``content``."""
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta")
        if isinstance(delta, dict):
            content = delta.get("content")
            if isinstance(content, str) and content:
                return content
    content = data.get("content")
    return content if isinstance(content, str) else ""


def decode_frame(payload: str) -> FrameDecode:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return UndecodableFrame(payload)
    return DecodedDelta(extract_delta_text(data), data)


class _Framing(Enum):
    UNDECIDED = "undecided"
    SSE = "sse"
    RAW = "raw"


class FrameReader:
    """Incremental reader turning upstream bytes into decoded frames.

    A stream whose first non-blank line starts with ``data: `` is read as
    SSE; anything else is raw text, returned as :class:`UndecodableFrame`
    items. Leading input that could still turn into the marker is held back
    until enough bytes arrive to tell. UTF-8 sequences split across chunks are
    reassembled; invalid UTF-8 raises :class:`UnicodeDecodeError`.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._framing = _Framing.UNDECIDED

    def feed(self, chunk: bytes) -> list[FrameDecode]:
        self._buffer += self._decoder.decode(chunk)
        if self._framing is _Framing.UNDECIDED:
            head = self._buffer.lstrip()
            if head.startswith(SSE_PREFIX):
                self._framing = _Framing.SSE
            elif SSE_PREFIX.startswith(head):
                return []
            else:
                self._framing = _Framing.RAW

        if self._framing is _Framing.RAW:
            return self._flush_raw()

        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._frames_from_lines(lines)

    def finish(self) -> list[FrameDecode]:
        self._buffer += self._decoder.decode(b"", final=True)
        if self._framing is _Framing.SSE:
            lines = [self._buffer]
            self._buffer = ""
            return self._frames_from_lines(lines)
        return self._flush_raw()

    def _flush_raw(self) -> list[FrameDecode]:
        content, self._buffer = self._buffer, ""
        return [UndecodableFrame(content)] if content else []

    @staticmethod
    def _frames_from_lines(lines: list[str]) -> list[FrameDecode]:
        frames: list[FrameDecode] = []
        for line in lines:
            if not line.startswith(SSE_PREFIX):
                continue
            payload = line[len(SSE_PREFIX) :].strip()
            if payload == DONE_SENTINEL:
                break

            decoded = decode_frame(payload)
            if isinstance(decoded, UndecodableFrame):
                _logger.debug("Forwarding non-JSON streaming frame as text: %s", decoded.raw)
            frames.append(decoded)
        return frames


class StreamNormalizer:
    """Produces one canonical event sequence per upstream stream.

    The sequence starts with a :class:`ChatIdEvent` when ``chat_id`` is given,
    continues with :class:`ContentEvent` items and always ends with exactly one
    :class:`DoneEvent`, or with an :class:`ErrorEvent` if reading or decoding
    the upstream raised.
    """

    def __init__(
        self,
        *,
        chat_id: str | None = None,
        response_id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._chat_id = chat_id
        self._response_id_factory = response_id_factory or (lambda: str(uuid.uuid4()))

    async def normalize(
        self, source: AsyncIterable[bytes]
    ) -> AsyncGenerator[CanonicalEvent, None]:
        if self._chat_id:
            yield ChatIdEvent(chat_id=self._chat_id)

        reader = FrameReader()
        try:
            async for chunk in source:
                for frame in reader.feed(chunk):
                    if frame.text:
                        yield ContentEvent(data=frame.text)
            for frame in reader.finish():
                if frame.text:
                    yield ContentEvent(data=frame.text)
        except Exception as exc:
            _logger.error("Stream processing error: %s", exc)
            yield ErrorEvent(message=str(exc) or type(exc).__name__)
            return

        yield DoneEvent.for_response(self._response_id_factory())


def normalize_stream(
    source: AsyncIterable[bytes], *, chat_id: str | None = None
) -> AsyncGenerator[CanonicalEvent, None]:
    """Shorthand for ``StreamNormalizer(chat_id=chat_id).normalize(source)``."""
    return StreamNormalizer(chat_id=chat_id).normalize(source)
