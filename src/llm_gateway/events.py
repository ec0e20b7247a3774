"""Canonical stream events and their SSE wire encoding.

Every normalized stream is a sequence of these events, ending with exactly one
terminal event (:class:`DoneEvent` or :class:`ErrorEvent`). On the wire each
event is one ``data: <json>`` line followed by a blank line.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from llm_gateway.errors import EventDecodeError

SSE_PREFIX = "data: "


class ChatIdEvent(BaseModel):
    """Echo of the caller's chat identifier, sent before any content."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["chat_id"] = "chat_id"
    chat_id: str = Field(alias="chatId")


class ContentEvent(BaseModel):
    """Incremental text fragment."""

    type: Literal["content"] = "content"
    data: str


class DoneData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    response_id: str = Field(alias="responseId")


class DoneEvent(BaseModel):
    """Normal end of stream."""

    type: Literal["done"] = "done"
    data: DoneData

    @classmethod
    def for_response(cls, response_id: str) -> DoneEvent:
        return cls(data=DoneData(response_id=response_id))

    @property
    def response_id(self) -> str:
        return self.data.response_id


class ErrorEvent(BaseModel):
    """The upstream failed before a normal close."""

    type: Literal["error"] = "error"
    message: str


CanonicalEvent = Annotated[
    Union[ChatIdEvent, ContentEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[CanonicalEvent] = TypeAdapter(CanonicalEvent)


def is_terminal(event: CanonicalEvent) -> bool:
    return isinstance(event, (DoneEvent, ErrorEvent))


def encode_event(event: CanonicalEvent) -> bytes:
    """Serialize one event as an SSE frame."""
    payload = _EVENT_ADAPTER.dump_json(event, by_alias=True).decode()
    return f"{SSE_PREFIX}{payload}\n\n".encode()


def decode_event(payload: str) -> CanonicalEvent:
    """Parse the JSON payload of one frame back into its event variant."""
    try:
        return _EVENT_ADAPTER.validate_json(payload)
    except ValidationError as exc:
        raise EventDecodeError(f"Unrecognized event payload: {payload!r}") from exc


def decode_stream(text: str) -> list[CanonicalEvent]:
    """Decode every ``data:`` frame in an already-buffered SSE body."""
    events: list[CanonicalEvent] = []
    for line in text.splitlines():
        if line.startswith(SSE_PREFIX):
            events.append(decode_event(line[len(SSE_PREFIX) :]))
    return events
