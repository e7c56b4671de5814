"""
tokenrelay - Test Helpers

SSE parsing shortcuts, metric lookups and an in-memory ASGI channel for
driving a StreamingRelay without a server.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

from prometheus_client import CollectorRegistry

from tokenrelay.streaming.decoder import SseDecoder


def sample(registry: CollectorRegistry, name: str, labels: Optional[Dict[str, str]] = None) -> float:
    """Read one metric value (0.0 when never recorded)."""
    value = registry.get_sample_value(name, labels or {})
    return value or 0.0


def sse_payloads(body: bytes) -> List[str]:
    """All data payloads of a complete SSE body."""
    return SseDecoder().feed(body)


def sse_json(body: bytes) -> List[Any]:
    """Data payloads decoded as JSON, with the sentinel kept as a string."""
    result = []
    for payload in sse_payloads(body):
        result.append(payload if payload == "[DONE]" else json.loads(payload))
    return result


HTTP_SCOPE = {
    "type": "http",
    "asgi": {"version": "3.0"},
    "http_version": "1.1",
    "method": "POST",
    "scheme": "http",
    "path": "/api/chat",
    "raw_path": b"/api/chat",
    "query_string": b"",
    "headers": [],
    "client": ("127.0.0.1", 12345),
    "server": ("testserver", 80),
}


class AsgiChannel:
    """
    receive/send pair for calling an ASGI response directly.

    disconnect() makes the pending receive() return http.disconnect.
    With fail_writes_after=N, send raises OSError once N body messages
    went through, like a socket closed by the peer.
    on_body(message) is called after every accepted body message.
    """

    def __init__(self, body: bytes = b"", fail_writes_after: Optional[int] = None):
        self.messages: List[Dict[str, Any]] = []
        self.fail_writes_after = fail_writes_after
        self.body_writes = 0
        self.receive_calls = 0
        self.on_body = None
        self._body = body
        self._body_sent = False
        self._disconnected = asyncio.Event()

    def disconnect(self) -> None:
        self._disconnected.set()

    async def receive(self) -> Dict[str, Any]:
        self.receive_calls += 1
        if not self._body_sent:
            self._body_sent = True
            return {"type": "http.request", "body": self._body, "more_body": False}
        await self._disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(self, message: Dict[str, Any]) -> None:
        if message["type"] == "http.response.body":
            if self.fail_writes_after is not None and self.body_writes >= self.fail_writes_after:
                raise OSError("Connection reset by peer")
            self.body_writes += 1
        self.messages.append(message)
        if self.on_body is not None and message["type"] == "http.response.body":
            self.on_body(message)

    @property
    def start(self) -> Optional[Dict[str, Any]]:
        for message in self.messages:
            if message["type"] == "http.response.start":
                return message
        return None

    @property
    def status(self) -> Optional[int]:
        return self.start["status"] if self.start else None

    @property
    def headers(self) -> Dict[str, str]:
        if not self.start:
            return {}
        return {k.decode("latin-1"): v.decode("latin-1") for k, v in self.start["headers"]}

    @property
    def body(self) -> bytes:
        return b"".join(
            m.get("body", b"") for m in self.messages if m["type"] == "http.response.body"
        )

    @property
    def closed(self) -> bool:
        bodies = [m for m in self.messages if m["type"] == "http.response.body"]
        return bool(bodies) and not bodies[-1].get("more_body", False)
