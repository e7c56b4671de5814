"""
tokenrelay Client Module

Reads relay streams from Python: transports, the stream reader and sinks.
"""

from .reader import ClientStreamReader, StreamHandle, CONNECTION_CLOSED
from .sinks import (
    StreamSink,
    NullSink,
    TextSink,
    STOPPED_MARKER,
    INTERRUPTED_MARKER,
)
from .smoothing import SmoothingSink
from .transports import (
    StreamTransport,
    PostStreamTransport,
    PostPromptTransport,
    EventSourceTransport,
)

__all__ = [
    "ClientStreamReader",
    "StreamHandle",
    "CONNECTION_CLOSED",
    "StreamSink",
    "NullSink",
    "TextSink",
    "STOPPED_MARKER",
    "INTERRUPTED_MARKER",
    "SmoothingSink",
    "StreamTransport",
    "PostStreamTransport",
    "PostPromptTransport",
    "EventSourceTransport",
]
