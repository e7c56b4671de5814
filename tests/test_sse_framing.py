"""
tokenrelay - SSE Framing Tests

Verifies:
- Encoder output shape (data lines, blank-line terminator, sentinel, comments)
- Decoder reassembly independent of chunk boundaries
- Comment frames never surface as data
- Line ending normalization, including a CRLF split across chunks
- Split multi-byte UTF-8 characters
"""

import json

import pytest

from tokenrelay.core.errors import DecodeError
from tokenrelay.core.models import Fragment
from tokenrelay.streaming.decoder import DecodeBuffer, SseDecoder, decode_payload, feed
from tokenrelay.streaming.encoder import (
    encode,
    encode_data,
    encode_heartbeat,
    encode_json,
    encode_sentinel,
)


def _feed_bytewise(data: bytes):
    decoder = SseDecoder()
    payloads = []
    for i in range(len(data)):
        payloads.extend(decoder.feed(data[i:i + 1]))
    return payloads


# ============================================================
# Encoder
# ============================================================

class TestEncoder:
    """Test SSE frame encoding."""

    def test_single_line(self):
        assert encode(Fragment(text="Hello")) == b"data: Hello\n\n"

    def test_multiline_text_splits_into_data_lines(self):
        assert encode(Fragment(text="a\nb")) == b"data: a\ndata: b\n\n"

    def test_empty_line_uses_bare_prefix(self):
        assert encode(Fragment(text="a\n\nb")) == b"data: a\ndata:\ndata: b\n\n"

    def test_all_line_break_styles_split(self):
        assert encode_data("a\r\nb\rc") == b"data: a\ndata: b\ndata: c\n\n"

    def test_sentinel(self):
        assert encode_sentinel() == b"data: [DONE]\n\n"

    def test_heartbeat_is_comment(self):
        frame = encode_heartbeat()
        assert frame.startswith(b":")
        assert frame.endswith(b"\n\n")
        assert b"data" not in frame

    def test_heartbeat_comment_newlines_flattened(self):
        assert encode_heartbeat("a\nb") == b": a b\n\n"

    def test_json_keeps_unicode(self):
        frame = encode_json({"text": "héllo"})
        assert frame == 'data: {"text": "héllo"}\n\n'.encode("utf-8")


# ============================================================
# Decoder
# ============================================================

class TestDecoder:
    """Test incremental SSE decoding."""

    def test_complete_frame(self):
        result = feed(DecodeBuffer(), b"data: hi\n\n")
        assert result.frames == ["hi"]
        assert result.remainder.pending == ""

    def test_incomplete_frame_stays_in_remainder(self):
        result = feed(DecodeBuffer(), b"data: hi\n")
        assert result.frames == []
        assert result.remainder.pending == "data: hi\n"

    def test_frame_completed_by_later_chunk(self):
        decoder = SseDecoder()
        assert decoder.feed(b"data: h") == []
        assert decoder.feed(b"i\n") == []
        assert decoder.feed(b"\n") == ["hi"]
        assert decoder.pending == ""

    def test_multiple_frames_in_one_chunk(self):
        decoder = SseDecoder()
        assert decoder.feed(b"data: a\n\ndata: b\n\ndata: c") == ["a", "b"]
        assert decoder.pending == "data: c"

    def test_multiline_payload_joined(self):
        assert SseDecoder().feed(b"data: a\ndata: b\n\n") == ["a\nb"]

    def test_only_one_space_stripped(self):
        assert SseDecoder().feed(b"data:  two\n\n") == [" two"]
        assert SseDecoder().feed(b"data:none\n\n") == ["none"]

    def test_comments_are_not_data(self):
        body = b": keep-alive\n\ndata: x\n\n: keep-alive\n\n"
        assert SseDecoder().feed(body) == ["x"]

    def test_frames_without_data_lines_are_dropped(self):
        assert SseDecoder().feed(b"event: ping\nid: 3\n\n") == []

    def test_empty_segments_dropped(self):
        assert SseDecoder().feed(b"\n\n\n\ndata: x\n\n") == ["x"]

    def test_crlf_normalized(self):
        assert SseDecoder().feed(b"data: a\r\ndata: b\r\n\r\n") == ["a\nb"]

    def test_crlf_split_across_chunks(self):
        decoder = SseDecoder()
        assert decoder.feed(b"data: a\r") == []
        assert decoder.feed(b"\n\r") == []
        assert decoder.feed(b"\n") == ["a"]

    def test_bare_cr_line_endings(self):
        assert SseDecoder().feed(b"data: a\r\r") == []
        decoder = SseDecoder()
        decoder.feed(b"data: a\r\r")
        assert decoder.feed(b"data: b\r\r") == ["a"]

    def test_split_multibyte_character(self):
        data = "data: é€\n\n".encode("utf-8")
        decoder = SseDecoder()
        payloads = []
        for i in range(len(data)):
            payloads.extend(decoder.feed(data[i:i + 1]))
        assert payloads == ["é€"]

    def test_reset_discards_buffer(self):
        decoder = SseDecoder()
        decoder.feed(b"data: partial")
        decoder.reset()
        assert decoder.pending == ""


# ============================================================
# Round trip
# ============================================================

class TestRoundTrip:
    """Encoder output read back through the decoder."""

    TEXTS = [
        "Hello",
        "line one\nline two",
        "blank\n\nline",
        "trailing newline\n",
        "ünïcödé ✓",
    ]

    @pytest.mark.parametrize("text", TEXTS)
    def test_text_survives(self, text):
        assert SseDecoder().feed(encode(Fragment(text=text))) == [text]

    def test_byte_by_byte_matches_whole(self):
        body = b"".join([
            encode_heartbeat("stream-start"),
            encode_json({"text": "He"}),
            encode_heartbeat(),
            encode_json({"text": "llo\nthere"}),
            encode_sentinel(),
        ])

        whole = SseDecoder().feed(body)
        assert _feed_bytewise(body) == whole
        assert [json.loads(p) for p in whole[:2]] == [{"text": "He"}, {"text": "llo\nthere"}]
        assert whole[2] == "[DONE]"

    def test_crlf_text_comes_back_with_lf(self):
        assert SseDecoder().feed(encode(Fragment(text="a\r\nb"))) == ["a\nb"]


# ============================================================
# Payload decoding
# ============================================================

class TestDecodePayload:

    def test_valid_json(self):
        assert decode_payload('{"text": "x"}') == {"text": "x"}

    def test_malformed_json_raises_decode_error(self):
        with pytest.raises(DecodeError) as exc_info:
            decode_payload("{not json")
        assert exc_info.value.payload == "{not json"
