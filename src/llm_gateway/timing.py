"""Wall-clock bookkeeping for model and tool work within one request."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from llm_gateway.types import ProviderTiming, SegmentType, TimeSegment

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


def to_iso(ms: int) -> str:
    stamp = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TimingRecorder:
    """Collects time segments in the order the work completed.

    ``model_time`` and ``tools_time`` sum segment durations. The request
    duration is the outer span, since tool segments of one batch overlap.
    """

    def __init__(self, clock: Clock = now_ms) -> None:
        self._clock = clock
        self.start_ms = clock()
        self.first_response_time = 0
        self.segments: list[TimeSegment] = []

    def now(self) -> int:
        return self._clock()

    def record(self, kind: SegmentType, name: str, start_ms: int, end_ms: int) -> TimeSegment:
        segment = TimeSegment(
            type=kind,
            name=name,
            start_time=start_ms,
            end_time=end_ms,
            duration=end_ms - start_ms,
        )
        self.segments.append(segment)
        return segment

    @property
    def model_time(self) -> int:
        return sum(s.duration for s in self.segments if s.type == "model")

    @property
    def tools_time(self) -> int:
        return sum(s.duration for s in self.segments if s.type == "tool")

    def span(self, end_ms: int | None = None) -> dict[str, Any]:
        """The outer interval so far, as attached to failed requests."""
        end = self.now() if end_ms is None else end_ms
        return {
            "startTime": to_iso(self.start_ms),
            "endTime": to_iso(end),
            "duration": end - self.start_ms,
        }

    def finish(self, iterations: int) -> ProviderTiming:
        end = self.now()
        return ProviderTiming(
            start_time=to_iso(self.start_ms),
            end_time=to_iso(end),
            duration=end - self.start_ms,
            model_time=self.model_time,
            tools_time=self.tools_time,
            first_response_time=self.first_response_time,
            iterations=iterations,
            time_segments=list(self.segments),
        )
