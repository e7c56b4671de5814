"""
tokenrelay Streaming Module

SSE framing, cancellation and the server-side relay.
"""

from .cancellation import CancellationToken, OperationCancelled
from .decoder import DecodeBuffer, DecodeResult, SseDecoder, decode_payload, feed
from .encoder import (
    DONE_SENTINEL,
    encode,
    encode_data,
    encode_heartbeat,
    encode_json,
    encode_sentinel,
)
from .relay import StreamingRelay

__all__ = [
    "CancellationToken",
    "OperationCancelled",
    "DecodeBuffer",
    "DecodeResult",
    "SseDecoder",
    "decode_payload",
    "feed",
    "DONE_SENTINEL",
    "encode",
    "encode_data",
    "encode_heartbeat",
    "encode_json",
    "encode_sentinel",
    "StreamingRelay",
]
