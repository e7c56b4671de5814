"""
tokenrelay - SSE Frame Encoder

Serializes payloads into Server-Sent-Events frames.

Wire format:
    data: <line 1>
    data: <line 2>
    <blank line>

Payloads containing line breaks are split over several data: lines so the
blank-line frame boundary is never ambiguous. Comment frames (": ...")
carry heartbeats.
"""

import json
import re
from typing import Any

from ..core.models import Fragment


DONE_SENTINEL = "[DONE]"

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def encode_data(payload: str) -> bytes:
    """Frame an arbitrary payload string as one SSE data event."""
    lines = []
    for line in _LINE_BREAK.split(payload):
        lines.append(f"data: {line}\n" if line else "data:\n")
    lines.append("\n")
    return "".join(lines).encode("utf-8")


def encode(fragment: Fragment) -> bytes:
    """Frame the text of one fragment."""
    return encode_data(fragment.text)


def encode_json(obj: Any) -> bytes:
    """Frame a JSON-serializable object."""
    return encode_data(json.dumps(obj, ensure_ascii=False))


def encode_sentinel() -> bytes:
    """The end-of-stream frame."""
    return f"data: {DONE_SENTINEL}\n\n".encode("utf-8")


def encode_heartbeat(comment: str = "keep-alive") -> bytes:
    """A comment frame; decoders never surface it as data."""
    text = _LINE_BREAK.sub(" ", comment)
    return f": {text}\n\n".encode("utf-8")
