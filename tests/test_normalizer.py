import asyncio
import unittest

from llm_gateway.errors import ProviderError
from llm_gateway.events import ChatIdEvent, ContentEvent, DoneEvent, ErrorEvent, is_terminal
from llm_gateway.normalizer import (
    DecodedDelta,
    FrameReader,
    StreamNormalizer,
    UndecodableFrame,
    decode_frame,
    extract_delta_text,
)
from tests.fakes import byte_stream, collect

SSE_BODY = (
    'data: {"choices":[{"delta":{"content":"Héllo"}}]}\n\n'
    'data: {"choices":[{"delta":{"content":", wörld ✓"}}]}\n\n'
    'data: {"content":"!"}\n\n'
    "data: [DONE]\n\n"
).encode()


def _normalize(chunks, **kwargs):
    normalizer = StreamNormalizer(response_id_factory=lambda: "resp-1", **kwargs)
    return asyncio.run(collect(normalizer.normalize(byte_stream(chunks))))


def _content(events) -> str:
    return "".join(e.data for e in events if isinstance(e, ContentEvent))


class FrameDecodeTests(unittest.TestCase):
    def test_json_frame_yields_delta(self) -> None:
        self.assertEqual(
            decode_frame('{"choices":[{"delta":{"content":"Hi"}}]}'), DecodedDelta("Hi")
        )

    def test_top_level_content_is_the_fallback_path(self) -> None:
        self.assertEqual(extract_delta_text({"content": "x"}), "x")
        self.assertEqual(extract_delta_text({"choices": [{"delta": {}}], "content": "y"}), "y")
        self.assertEqual(extract_delta_text([1, 2]), "")

    def test_non_json_frame_keeps_raw_text(self) -> None:
        self.assertEqual(decode_frame("not-json"), UndecodableFrame("not-json"))


class StreamNormalizerTests(unittest.TestCase):
    def test_raw_text_chunks_become_content_events(self) -> None:
        events = _normalize([b"Hello", b" world"])
        self.assertEqual(
            events,
            [ContentEvent(data="Hello"), ContentEvent(data=" world"), DoneEvent.for_response("resp-1")],
        )

    def test_sse_frames_until_done_sentinel(self) -> None:
        events = _normalize(
            [b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n', b"data: [DONE]\n\n"]
        )
        self.assertEqual(events, [ContentEvent(data="Hi"), DoneEvent.for_response("resp-1")])

    def test_malformed_json_is_forwarded_not_dropped(self) -> None:
        events = _normalize([b"data: not-json\n\n"])
        self.assertEqual(events, [ContentEvent(data="not-json"), DoneEvent.for_response("resp-1")])

    def test_chat_id_precedes_content(self) -> None:
        events = _normalize([b"Hello"], chat_id="chat-9")
        self.assertEqual(events[0], ChatIdEvent(chat_id="chat-9"))
        self.assertIsInstance(events[1], ContentEvent)

    def test_done_is_emitted_for_an_empty_stream(self) -> None:
        self.assertEqual(_normalize([]), [DoneEvent.for_response("resp-1")])

    def test_upstream_failure_ends_with_error_instead_of_done(self) -> None:
        events = _normalize([b"partial", ProviderError("lmstudio", "connection reset")])
        self.assertEqual(events[0], ContentEvent(data="partial"))
        self.assertIsInstance(events[-1], ErrorEvent)
        self.assertIn("connection reset", events[-1].message)
        self.assertFalse(any(isinstance(e, DoneEvent) for e in events))

    def test_undecodable_bytes_end_with_error(self) -> None:
        events = _normalize([b"\xff\xfe"])
        self.assertEqual(len(events), 1)
        self.assertIsInstance(events[0], ErrorEvent)

    def test_exactly_one_terminal_event_and_it_is_last(self) -> None:
        for chunks in ([b"a", b"b"], [SSE_BODY], [b"x", RuntimeError("gone")], []):
            events = _normalize(chunks, chat_id="c")
            terminals = [e for e in events if is_terminal(e)]
            self.assertEqual(len(terminals), 1)
            self.assertIs(events[-1], terminals[0])

    def test_empty_deltas_are_not_emitted(self) -> None:
        events = _normalize([b'data: {"choices":[{"delta":{}}]}\n\n', b'data: {"choices":[]}\n\n'])
        self.assertEqual(events, [DoneEvent.for_response("resp-1")])

    def test_done_sentinel_stops_only_the_current_chunk(self) -> None:
        events = _normalize(
            [
                b'data: {"content":"a"}\n\ndata: [DONE]\n\ndata: {"content":"b"}\n\n',
                b'data: {"content":"c"}\n\n',
            ]
        )
        self.assertEqual(_content(events), "ac")

    def test_unterminated_last_frame_is_not_lost(self) -> None:
        self.assertEqual(_content(_normalize([b'data: {"content":"tail"}'])), "tail")

    def test_crlf_framed_lines(self) -> None:
        self.assertEqual(_content(_normalize([b'data: {"content":"x"}\r\n\r\n'])), "x")

    def test_raw_text_that_starts_like_the_frame_marker(self) -> None:
        events = _normalize([b"da", b"rk mode"])
        self.assertEqual(events[:-1], [ContentEvent(data="dark mode")])

    def test_sse_content_is_independent_of_chunk_boundaries(self) -> None:
        expected = "Héllo, wörld ✓!"
        self.assertEqual(_content(_normalize([SSE_BODY])), expected)
        for cut in range(1, len(SSE_BODY)):
            with self.subTest(cut=cut):
                events = _normalize([SSE_BODY[:cut], SSE_BODY[cut:]])
                self.assertEqual(_content(events), expected)
                self.assertIsInstance(events[-1], DoneEvent)
        byte_by_byte = [SSE_BODY[i : i + 1] for i in range(len(SSE_BODY))]
        self.assertEqual(_content(_normalize(byte_by_byte)), expected)

    def test_raw_content_is_independent_of_chunk_boundaries(self) -> None:
        body = "data-free text, ünïcode ✓ and data:no-space".encode()
        for cut in range(1, len(body)):
            with self.subTest(cut=cut):
                self.assertEqual(_content(_normalize([body[:cut], body[cut:]])), body.decode())

    def test_frame_marker_inside_raw_text_stays_content(self) -> None:
        body = b"Set data: true in the config\nthen restart.\ndata: not a frame either"
        expected = body.decode()
        self.assertEqual(_content(_normalize([body])), expected)
        for cut in range(1, len(body)):
            with self.subTest(cut=cut):
                events = _normalize([body[:cut], body[cut:]])
                self.assertEqual(_content(events), expected)
                self.assertIsInstance(events[-1], DoneEvent)

    def test_leading_blank_lines_before_the_first_frame(self) -> None:
        self.assertEqual(_content(_normalize([b"\n\n", b'data: {"content":"x"}\n\n'])), "x")


class FrameReaderTests(unittest.TestCase):
    def test_decoded_frames_keep_their_json(self) -> None:
        reader = FrameReader()
        frames = reader.feed(b'data: {"choices":[],"usage":{"total_tokens":4}}\n\n')
        self.assertEqual(frames, [DecodedDelta("")])
        self.assertEqual(frames[0].data["usage"], {"total_tokens": 4})
        self.assertEqual(reader.finish(), [])

    def test_raw_text_is_returned_as_undecodable_frames(self) -> None:
        reader = FrameReader()
        self.assertEqual(reader.feed(b"da"), [])
        self.assertEqual(reader.feed(b"ta? no"), [UndecodableFrame("data? no")])


if __name__ == "__main__":
    unittest.main()
