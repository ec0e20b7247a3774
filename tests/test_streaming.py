import asyncio
import unittest

from llm_gateway.costs import CostTable, ModelRates
from llm_gateway.streaming import ExecutionChannel, merge_usage, start_streaming_execution
from llm_gateway.timing import TimingRecorder
from llm_gateway.types import TokenUsage
from tests.fakes import StepClock, byte_stream, collect, delta_chunk, sse


def _passthrough(chunk, frames):
    return chunk


def _start(items, encode=_passthrough):
    return start_streaming_execution(
        byte_stream(sse(item) if isinstance(item, dict) else item for item in items),
        model="paid",
        costs=CostTable({"paid": ModelRates(input_rate=1.0, output_rate=1.0)}),
        timer=TimingRecorder(StepClock()),
        encode=encode,
    )


class MergeUsageTests(unittest.TestCase):
    def test_reported_fields_replace_previous_values(self) -> None:
        current = TokenUsage(input=10, output=3, total=13)
        merged = merge_usage(current, {"prompt_tokens": 10, "completion_tokens": 8})
        self.assertEqual((merged.input, merged.output, merged.total), (10, 8, 13))

    def test_missing_or_null_fields_are_kept(self) -> None:
        current = TokenUsage(input=1, output=2, total=3)
        self.assertEqual(merge_usage(current, {"total_tokens": None}), current)


class StreamingExecutionTests(unittest.TestCase):
    def test_snapshot_tracks_content_usage_and_cost(self) -> None:
        chunks = [
            delta_chunk("Hel", usage=(5, 1, 6)),
            delta_chunk("lo", usage=(5, 2, 7)),
            delta_chunk(usage=(5, 3, 8)),
        ]
        execution = _start(chunks)
        self.assertEqual(execution.output.content, "")
        self.assertFalse(execution.channel.completed)

        data = asyncio.run(collect(execution.stream))

        self.assertEqual(data, [sse(chunk) for chunk in chunks])
        output = execution.output
        self.assertTrue(execution.channel.completed)
        self.assertEqual(output.content, "Hello")
        self.assertEqual((output.tokens.input, output.tokens.output, output.tokens.total), (5, 3, 8))
        self.assertAlmostEqual(output.cost.total, 8 / 1_000_000)
        self.assertTrue(output.is_streaming)
        segment = output.timing.time_segments[0]
        self.assertEqual(segment.name, "Streaming response")
        self.assertEqual(segment.duration, output.timing.duration)

    def test_upstream_bytes_are_relayed_unchanged(self) -> None:
        body = b'data: {"content":"a"}\n\ndata: not-json\n\ndata: [DONE]\n\n'
        execution = _start([body[:9], body[9:]])
        self.assertEqual(b"".join(asyncio.run(collect(execution.stream))), body)
        self.assertEqual(execution.output.content, "anot-json")

    def test_frames_split_across_chunks_are_counted_once(self) -> None:
        body = sse(delta_chunk("split", usage=(2, 1, 3)))
        execution = _start([body[:15], body[15:]])
        asyncio.run(collect(execution.stream))
        self.assertEqual(execution.output.content, "split")
        self.assertEqual(execution.output.tokens.total, 3)

    def test_unterminated_last_frame_reaches_the_encoder(self) -> None:
        execution = _start(
            [b'data: {"content":"tail"}'],
            encode=lambda chunk, frames: "".join(frame.text for frame in frames).encode(),
        )
        self.assertEqual(asyncio.run(collect(execution.stream)), [b"tail"])
        self.assertEqual(execution.output.content, "tail")

    def test_channel_completes_when_upstream_fails(self) -> None:
        execution = _start([delta_chunk("a"), ConnectionError("reset")])
        with self.assertRaises(ConnectionError):
            asyncio.run(collect(execution.stream))
        self.assertTrue(execution.channel.completed)
        self.assertEqual(execution.output.content, "a")

    def test_custom_encoder_controls_downstream_bytes(self) -> None:
        execution = _start(
            [delta_chunk("x")],
            encode=lambda chunk, frames: b"<" + frames[0].text.encode() + b">",
        )
        self.assertEqual(asyncio.run(collect(execution.stream)), [b"<x>"])

    def test_closing_the_stream_closes_upstream(self) -> None:
        closed = []

        async def _upstream():
            try:
                yield sse(delta_chunk("a"))
                yield sse(delta_chunk("b"))
            finally:
                closed.append(True)

        execution = start_streaming_execution(
            _upstream(),
            model="m",
            costs=CostTable(),
            timer=TimingRecorder(StepClock()),
            encode=_passthrough,
        )

        async def _run():
            first = await execution.stream.__anext__()
            await execution.stream.aclose()
            return first

        self.assertEqual(asyncio.run(_run()), sse(delta_chunk("a")))
        self.assertEqual(closed, [True])
        self.assertTrue(execution.channel.completed)


class ExecutionChannelTests(unittest.TestCase):
    def test_publish_after_completion_is_refused(self) -> None:
        execution = _start([])
        channel: ExecutionChannel = execution.channel
        snapshot = channel.latest
        channel.complete()
        with self.assertRaises(RuntimeError):
            channel.publish(snapshot)

    def test_wait_completed_returns_final_snapshot(self) -> None:
        execution = _start([delta_chunk("done")])

        async def _run():
            waiter = asyncio.ensure_future(execution.channel.wait_completed())
            await collect(execution.stream)
            return await waiter

        self.assertEqual(asyncio.run(_run()).content, "done")


if __name__ == "__main__":
    unittest.main()
