"""
tokenrelay - Client Stream Reader

Consumes an SSE response from the relay and turns it into sink events.

Usage:
    async with httpx.AsyncClient(base_url="http://localhost:5001") as client:
        reader = ClientStreamReader(client, PostStreamTransport(), TextSink())
        handle = reader.start(GenerationRequest(prompt="Hi"))
        ...
        handle.cancel()              # user pressed stop
        state = await handle.wait()  # StreamState.ABORTED

Rules of the read loop:
- "[DONE]" ends the stream normally and is never shown
- malformed JSON payloads are skipped
- an {"error": ...} payload ends the stream as failed
- the channel closing without "[DONE]" is a failure ("connection closed")
- cancel() closes the connection and ends as aborted, not failed
"""

import asyncio
import time
from typing import List, Optional

import httpx

from ..core.errors import DecodeError
from ..core.models import GenerationRequest, StreamState
from ..observability.logging import get_logger
from ..streaming.decoder import SseDecoder, decode_payload
from ..streaming.encoder import DONE_SENTINEL
from .sinks import NullSink, StreamSink
from .transports import PostStreamTransport, StreamTransport


logger = get_logger("tokenrelay.client")

CONNECTION_CLOSED = "connection closed"
CANCELLED_BY_USER = "cancelled by user"
READER_CANCELLED = "reader cancelled"


class StreamHandle:
    """State and results of one client stream."""

    def __init__(self, request: GenerationRequest):
        self.request = request
        self.state = StreamState.IDLE
        self.failure_reason: Optional[str] = None
        self.ttft_ms: Optional[float] = None
        self.total_ms: Optional[float] = None
        self.parts: List[str] = []

        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False

    @property
    def text(self) -> str:
        """Fragment text received so far, in read order."""
        return "".join(self.parts)

    @property
    def done(self) -> bool:
        return self.state.is_terminal

    def cancel(self) -> None:
        """Stop reading and close the connection. No-op once finished."""
        if self.state.is_terminal or self._cancel_requested:
            return
        self._cancel_requested = True
        # A task that has not started yet checks the flag itself
        if self.state == StreamState.STREAMING and self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> StreamState:
        """Wait for a terminal state and return it."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        return self.state

    def _transition(self, state: StreamState, reason: str = "") -> bool:
        if self.state.is_terminal:
            return False
        if state == StreamState.STREAMING:
            if self.state != StreamState.IDLE:
                return False
        elif self.state != StreamState.STREAMING:
            return False
        self.state = state
        if state.is_terminal:
            self.failure_reason = reason or None
        return True


class ClientStreamReader:
    """
    Reads relay streams through a pluggable transport.

    Args:
        client: httpx client pointing at the relay (base_url set)
        transport: How to open the stream; POST /api/stream by default
        sink: Receives start/fragment/terminal events
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        transport: Optional[StreamTransport] = None,
        sink: Optional[StreamSink] = None
    ):
        self.client = client
        self.transport = transport or PostStreamTransport()
        self.sink = sink or NullSink()

    def start(self, request: GenerationRequest) -> StreamHandle:
        """Start reading in a background task. Must run inside an event loop."""
        handle = StreamHandle(request)
        handle._task = asyncio.create_task(self._read(handle))
        return handle

    async def read(self, request: GenerationRequest) -> StreamHandle:
        """Start a stream and wait until it ends."""
        handle = self.start(request)
        await handle.wait()
        return handle

    async def _read(self, handle: StreamHandle) -> None:
        handle._transition(StreamState.STREAMING)
        self.sink.on_start()
        started = time.perf_counter()
        response: Optional[httpx.Response] = None

        if handle._cancel_requested:
            self._abort(handle)
            handle.total_ms = 0.0
            return

        try:
            http_request = self.transport.build_request(self.client, handle.request)
            response = await self.client.send(http_request, stream=True)

            if response.status_code >= 400:
                await response.aread()
                self._fail(handle, _error_message(response))
                return

            decoder = SseDecoder()
            async for chunk in response.aiter_bytes():
                for payload in decoder.feed(chunk):
                    if self._handle_payload(handle, payload, started):
                        return

            self._fail(handle, CONNECTION_CLOSED)

        except asyncio.CancelledError:
            if handle._cancel_requested:
                self._abort(handle)
            else:
                # Cancelled from outside, not by handle.cancel()
                self._fail(handle, READER_CANCELLED)
                raise

        except httpx.HTTPError as e:
            logger.debug("Stream transport error", error=str(e), error_type=type(e).__name__)
            self._fail(handle, str(e) or type(e).__name__)

        finally:
            if response is not None:
                await response.aclose()
            handle.total_ms = (time.perf_counter() - started) * 1000

    def _handle_payload(self, handle: StreamHandle, payload: str, started: float) -> bool:
        """Apply one payload; returns True when the stream is over."""
        # Checked before JSON parsing
        if payload == DONE_SENTINEL:
            if handle._transition(StreamState.COMPLETED):
                self.sink.on_complete()
            return True

        try:
            event = decode_payload(payload)
        except DecodeError:
            logger.debug("Skipping malformed event", payload_preview=payload[:100])
            return False

        if not isinstance(event, dict):
            return False

        if "error" in event:
            self._fail(handle, str(event["error"]))
            return True

        text = event.get(self.transport.payload_key)
        if not isinstance(text, str) or not text:
            return False

        if handle.ttft_ms is None:
            handle.ttft_ms = (time.perf_counter() - started) * 1000
            self.sink.on_first_fragment()
        handle.parts.append(text)
        self.sink.on_fragment(text)
        return False

    def _fail(self, handle: StreamHandle, reason: str) -> None:
        if handle._transition(StreamState.FAILED, reason):
            logger.info("Stream failed", reason=reason, fragments=len(handle.parts))
            self.sink.on_error(reason)

    def _abort(self, handle: StreamHandle) -> None:
        if handle._transition(StreamState.ABORTED, CANCELLED_BY_USER):
            self.sink.on_abort()


def _error_message(response: httpx.Response) -> str:
    """The relay's {"error": ...} message, or the bare status."""
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"HTTP {response.status_code}"
