"""Tests for newline framing and SSE decoding."""

import time

import pytest

from mcp_bridge.mcp.framing import LineFramer, SseDecoder


class TestLineFramer:

    def test_complete_frames_in_one_chunk(self):
        framer = LineFramer()
        assert framer.feed(b'{"a":1}\n{"b":2}\n') == [b'{"a":1}', b'{"b":2}']
        assert framer.pending == 0

    def test_frame_split_across_chunks(self):
        framer = LineFramer()
        assert framer.feed(b'{"method":') == []
        assert framer.pending == len(b'{"method":')
        assert framer.feed(b'"ping"}\n{"id"') == [b'{"method":"ping"}']
        assert framer.feed(b':1}\n') == [b'{"id":1}']

    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 7, 64])
    def test_reassembles_at_any_chunk_boundary(self, chunk_size):
        stream = b'{"jsonrpc":"2.0","id":1}\n{"jsonrpc":"2.0","id":2}\n{"x":"\xc3\xa6"}\n'
        framer = LineFramer()
        frames = []
        for start in range(0, len(stream), chunk_size):
            frames.extend(framer.feed(stream[start:start + chunk_size]))
        assert frames == stream.strip().split(b"\n")

    def test_crlf_and_blank_lines(self):
        framer = LineFramer()
        assert framer.feed(b'{"a":1}\r\n\r\n\n{"b":2}\r\n') == [b'{"a":1}', b'{"b":2}']

    def test_flush_returns_unterminated_frame(self):
        framer = LineFramer()
        assert framer.feed(b'{"a":1}') == []
        assert framer.flush() == b'{"a":1}'
        assert framer.flush() is None

    def test_oversized_frame_is_dropped_and_stream_resyncs(self):
        framer = LineFramer(max_message_bytes=10)
        frames = framer.feed(b'{"ok":1}\n' + b"x" * 30 + b'\n{"ok":2}\n')
        assert frames == [b'{"ok":1}', b'{"ok":2}']
        assert framer.take_oversized() == 1
        assert framer.take_oversized() == 0

    def test_oversized_frame_across_chunks(self):
        framer = LineFramer(max_message_bytes=10)
        assert framer.feed(b"x" * 8) == []
        assert framer.feed(b"x" * 8) == []
        assert framer.feed(b"xxxx") == []
        assert framer.feed(b'\n{"ok":3}\n') == [b'{"ok":3}']
        assert framer.take_oversized() == 1

    def test_oversized_tail_is_not_flushed(self):
        framer = LineFramer(max_message_bytes=4)
        framer.feed(b"123456")
        assert framer.flush() is None


class TestSseDecoder:

    def test_single_event(self):
        events = SseDecoder().feed("event: endpoint\ndata: /message?session_id=1\n\n")
        assert len(events) == 1
        assert events[0].event == "endpoint"
        assert events[0].data == "/message?session_id=1"

    def test_event_type_defaults_to_message(self):
        (event,) = SseDecoder().feed('data: {"id":1}\n\n')
        assert event.event == "message"

    def test_multiple_data_lines_are_joined(self):
        (event,) = SseDecoder().feed("data: first\ndata: second\n\n")
        assert event.data == "first\nsecond"

    def test_comments_are_ignored(self):
        events = SseDecoder().feed(": keepalive\n\ndata: x\n\n")
        assert [e.data for e in events] == ["x"]

    def test_event_without_data_is_not_dispatched(self):
        assert SseDecoder().feed("event: ping\n\n") == []

    def test_empty_data_line_dispatches_empty_event(self):
        (event,) = SseDecoder().feed("event: ping\ndata: \n\n")
        assert event.event == "ping"
        assert event.data == ""

    @pytest.mark.parametrize("newline", ["\n", "\r\n", "\r"])
    def test_line_endings(self, newline):
        # Trailing comment line so a final lone \r is not held back
        text = f"event: message{newline}data: hi{newline}{newline}:\n"
        (event,) = SseDecoder().feed(text)
        assert event.data == "hi"

    def test_split_chunks_including_crlf(self):
        decoder = SseDecoder()
        assert decoder.feed("data: he") == []
        assert decoder.feed("llo\r") == []
        assert decoder.feed("\n\r") == []
        events = decoder.feed("\n")
        assert [e.data for e in events] == ["hello"]

    def test_field_without_space(self):
        (event,) = SseDecoder().feed("data:tight\n\n")
        assert event.data == "tight"

    def test_id_and_retry(self):
        decoder = SseDecoder()
        (event,) = decoder.feed("id: 7\nretry: 1500\ndata: x\n\n")
        assert event.id == "7"
        assert event.retry == 1500
        assert decoder.last_event_id == "7"

    def test_id_with_nul_and_bad_retry_are_ignored(self):
        decoder = SseDecoder()
        (event,) = decoder.feed("id: a\x00b\nretry: soon\ndata: x\n\n")
        assert event.id is None
        assert event.retry is None

    def test_large_event_in_small_chunks_is_linear(self):
        payload = "x" * (4 * 1024 * 1024)
        text = f"data: {payload}\n\n"
        decoder = SseDecoder(max_message_bytes=8 * 1024 * 1024)

        started = time.perf_counter()
        events = []
        for offset in range(0, len(text), 16 * 1024):
            events.extend(decoder.feed(text[offset:offset + 16 * 1024]))
        elapsed = time.perf_counter() - started

        assert len(events) == 1
        assert len(events[0].data) == len(payload)
        assert elapsed < 2

    def test_oversized_line_is_dropped_and_stream_resumes(self):
        decoder = SseDecoder(max_message_bytes=10)
        events = decoder.feed("data: " + "x" * 50 + "\n\ndata: ok\n\n")
        assert [e.data for e in events] == ["ok"]
        assert decoder.take_oversized() == 1
        assert decoder.take_oversized() == 0

    def test_oversized_line_split_across_chunks(self):
        decoder = SseDecoder(max_message_bytes=10)
        assert decoder.feed("data: ") == []
        assert decoder.feed("x" * 20) == []
        events = decoder.feed("xx\n\ndata: ok\n\n")
        assert [e.data for e in events] == ["ok"]
        assert decoder.take_oversized() == 1

    def test_event_with_too_much_data_is_dropped(self):
        decoder = SseDecoder(max_message_bytes=10)
        events = decoder.feed("data: 123456\ndata: 123456\n\ndata: ok\n\n")
        assert [e.data for e in events] == ["ok"]
        assert decoder.take_oversized() == 1
