"""
tokenrelay - SSE Frame Decoder

Incrementally turns raw chunks from a network channel into complete SSE
data payloads.

The decoder is chunk-boundary independent: feeding a byte stream one byte
at a time yields exactly the same payloads as feeding it at once. Frames
are only emitted once their terminating blank line has arrived; anything
after the last boundary stays in the buffer.
"""

import codecs
import json
from dataclasses import dataclass, field
from typing import Any, List, Union

from ..core.errors import DecodeError


@dataclass
class DecodeBuffer:
    """Bytes/text received but not yet resolved into a complete frame."""
    pending: str = ""
    _utf8: Any = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace"),
        repr=False,
    )

    def decode(self, chunk: Union[bytes, str]) -> str:
        """Decode a chunk, keeping partial multi-byte sequences for later."""
        if isinstance(chunk, str):
            return chunk
        return self._utf8.decode(chunk)

    def flush(self) -> str:
        """Return any text still held by the UTF-8 decoder."""
        return self._utf8.decode(b"", final=True)


@dataclass
class DecodeResult:
    """Complete payloads extracted by one feed() call."""
    frames: List[str]
    remainder: DecodeBuffer


def _parse_frame(segment: str):
    """Return the payload of one frame, or None if it carries no data."""
    if not segment or segment.startswith(":"):
        return None

    data_lines = []
    for line in segment.split("\n"):
        if not line.startswith("data:"):
            continue
        value = line[5:]
        if value.startswith(" "):
            value = value[1:]
        data_lines.append(value)

    if not data_lines:
        return None
    return "\n".join(data_lines)


def feed(buffer: DecodeBuffer, chunk: Union[bytes, str]) -> DecodeResult:
    """
    Append `chunk` to `buffer` and extract every complete frame.

    The final segment after splitting on the blank-line boundary is always
    kept as the remainder, even when empty: a frame only counts once its
    trailing blank line has been received.
    """
    text = buffer.pending + buffer.decode(chunk)

    # A trailing "\r" may be the first half of a "\r\n" split across chunks.
    hold = ""
    if text.endswith("\r"):
        text, hold = text[:-1], "\r"

    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    segments = normalized.split("\n\n")
    buffer.pending = segments.pop() + hold

    frames = []
    for segment in segments:
        payload = _parse_frame(segment)
        if payload is not None:
            frames.append(payload)

    return DecodeResult(frames=frames, remainder=buffer)


class SseDecoder:
    """
    Stateful wrapper around feed().

    Usage:
        decoder = SseDecoder()
        async for chunk in response.aiter_bytes():
            for payload in decoder.feed(chunk):
                ...
    """

    def __init__(self):
        self.buffer = DecodeBuffer()

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        result = feed(self.buffer, chunk)
        self.buffer = result.remainder
        return result.frames

    @property
    def pending(self) -> str:
        return self.buffer.pending

    def reset(self) -> None:
        """Discard the buffer when the stream ends."""
        self.buffer = DecodeBuffer()


def decode_payload(payload: str) -> Any:
    """
    JSON-decode one event payload.

    Raises DecodeError; callers discard that single event and keep reading.
    """
    try:
        return json.loads(payload)
    except (json.JSONDecodeError, ValueError) as e:
        raise DecodeError(payload, str(e))
