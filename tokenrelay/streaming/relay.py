"""
tokenrelay - Streaming Relay

ASGI response that pumps fragments from an upstream stream to the client
as SSE frames.

Lifecycle:
    idle -> streaming -> completed | aborted | failed

Key rules:
- BEFORE headers: the upstream request is connected first; a connect
  failure becomes a plain JSON error response (HTTP 500).
- AFTER headers: errors never escape; the client gets a final
  {"error": "stream_failed"} frame instead.
- Client disconnect is read from `http.disconnect` on the receive
  channel. It fires the cancellation token, which stops the upstream
  within one scheduling step.
- All writes (fragments, heartbeats, sentinel) go through one lock, so
  frames never interleave.
"""

import asyncio
import time
from typing import TYPE_CHECKING, Mapping, Optional

from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect
from starlette.responses import JSONResponse, Response
from starlette.types import Receive, Scope, Send

from ..core.errors import TransportError, UpstreamError
from ..core.models import GenerationRequest, StreamState
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics
from ..observability.tracing import get_tracer, mark_span
from .cancellation import CancellationToken
from .encoder import encode_heartbeat, encode_json, encode_sentinel

if TYPE_CHECKING:
    from ..adapters.base import BaseAdapter, UpstreamStream


logger = get_logger("tokenrelay.relay")

STREAM_FAILED = "stream_failed"
CLIENT_DISCONNECTED = "client_disconnected"
TRANSPORT_CLOSED = "transport_closed"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    "Content-Encoding": "identity",
}


class StreamingRelay(Response):
    """
    Streams one generation to one client.

    Args:
        adapter: Adapter that serves the request
        request: The generation to run
        payload_key: JSON key of the fragment text in each data frame
        request_id: Correlation ID, echoed in X-Request-Id
        heartbeat_interval: Seconds between keep-alive comments (0 disables)
        token: Cancellation token; a fresh one is created if omitted
    """

    media_type = "text/event-stream"

    def __init__(
        self,
        adapter: "BaseAdapter",
        request: GenerationRequest,
        payload_key: str = "text",
        request_id: str = "",
        heartbeat_interval: float = 15.0,
        token: Optional[CancellationToken] = None,
        headers: Optional[Mapping[str, str]] = None,
        background: Optional[BackgroundTask] = None,
    ):
        self.adapter = adapter
        self.generation = request
        self.payload_key = payload_key
        self.request_id = request_id
        self.heartbeat_interval = heartbeat_interval
        self.token = token or CancellationToken()
        self.status_code = 200
        self.background = background

        merged = dict(SSE_HEADERS)
        if request_id:
            merged["X-Request-Id"] = request_id
        if headers:
            merged.update(headers)
        self.init_headers(merged)

        self.state = StreamState.IDLE
        self.failure_reason: Optional[str] = None
        self.fragments_sent = 0
        self.heartbeats_sent = 0
        self.time_to_first_fragment: Optional[float] = None
        self.duration: Optional[float] = None

        self._stream: Optional["UpstreamStream"] = None
        self._write_lock = asyncio.Lock()
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._body_open = False
        self._started_at = 0.0

        self.token.add_callback(self._on_cancel)

    @property
    def provider(self) -> str:
        return self.adapter.provider.value

    # ============================================================
    # State machine
    # ============================================================

    def _transition(self, state: StreamState, reason: str = "") -> bool:
        """Move to `state`; the first terminal state wins."""
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
            if self._heartbeat_task is not None:
                self._heartbeat_task.cancel()
        return True

    def _on_cancel(self, reason: str) -> None:
        self._transition(StreamState.ABORTED, reason)

    # ============================================================
    # ASGI entry point
    # ============================================================

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        self._started_at = time.perf_counter()
        self._transition(StreamState.STREAMING)

        metrics = get_metrics()
        tracer = get_tracer()

        with tracer.start_as_current_span(
            "relay.stream",
            attributes={
                "relay.provider": self.provider,
                "relay.model": self.generation.model or "default",
                "tokenrelay.request_id": self.request_id,
            },
        ) as span, metrics.track_active_stream(self.provider):
            try:
                await self._run(scope, receive, send)
            except asyncio.CancelledError:
                self.token.cancel("server_cancelled")
                raise
            finally:
                self.duration = time.perf_counter() - self._started_at
                span.set_attribute("relay.fragments", self.fragments_sent)
                mark_span(span, self.state.value, self.failure_reason or "")
                metrics.record_stream(self.provider, self.state.value, self.duration)
                logger.info(
                    "Stream finished",
                    provider=self.provider,
                    state=self.state.value,
                    reason=self.failure_reason,
                    fragments=self.fragments_sent,
                    heartbeats=self.heartbeats_sent,
                    duration_ms=round(self.duration * 1000, 2),
                )

        if self.background is not None:
            await self.background()

    async def _run(self, scope: Scope, receive: Receive, send: Send) -> None:
        stream = self.adapter.open(self.generation, self.token, request_id=self.request_id)
        self._stream = stream
        watcher = asyncio.create_task(self._watch_disconnect(receive))

        try:
            try:
                await stream.connect()
            except UpstreamError as e:
                await self._reject(e, scope, receive, send)
                return

            await self._open_body(send)
            if self.heartbeat_interval and self.heartbeat_interval > 0 and not self.state.is_terminal:
                self._heartbeat_task = asyncio.create_task(self._heartbeat(send))

            await self._pump(stream, send)
        finally:
            tasks = [t for t in (watcher, self._heartbeat_task) if t is not None]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await stream.aclose()
            await self._close_body(send)

    # ============================================================
    # Phases
    # ============================================================

    async def _reject(self, error: UpstreamError, scope: Scope, receive: Receive, send: Send) -> None:
        """Answer a failed connect with a JSON error (no SSE headers sent yet)."""
        if error.is_abort or self.token.is_cancelled:
            self._transition(StreamState.ABORTED, error.provider_message)
            return

        get_metrics().record_upstream_error(self.provider, error.kind.value)
        logger.warning(
            "Upstream connect failed",
            **error.error.to_log_dict(),
        )
        self._transition(StreamState.FAILED, str(error))

        response = JSONResponse(
            content=error.error.to_dict(),
            status_code=error.status_code,
            headers={
                "X-Request-Id": self.request_id,
                "X-Error-Code": error.error.code,
            },
        )
        await response(scope, receive, send)

    async def _open_body(self, send: Send) -> None:
        """Send headers plus an opening comment so the client sees them at once."""
        async with self._write_lock:
            try:
                await send({
                    "type": "http.response.start",
                    "status": self.status_code,
                    "headers": self.raw_headers,
                })
                self._body_open = True
                await send({
                    "type": "http.response.body",
                    "body": encode_heartbeat("stream-start"),
                    "more_body": True,
                })
            except (OSError, ClientDisconnect):
                self.token.cancel(TRANSPORT_CLOSED)
                return

        logger.info(
            "Stream started",
            provider=self.provider,
            model=self.generation.model or "default",
        )

    async def _pump(self, stream: "UpstreamStream", send: Send) -> None:
        """Forward every fragment, then the sentinel."""
        metrics = get_metrics()

        try:
            async for fragment in stream:
                if self.time_to_first_fragment is None:
                    self.time_to_first_fragment = time.perf_counter() - self._started_at
                    metrics.record_time_to_first_fragment(self.provider, self.time_to_first_fragment)

                if not await self._write(send, encode_json({self.payload_key: fragment.text})):
                    return
                self.fragments_sent += 1
                metrics.record_fragment(self.provider)

            if await self._write(send, encode_sentinel()):
                self._transition(StreamState.COMPLETED)

        except UpstreamError as e:
            if e.is_abort or self.token.is_cancelled:
                self._transition(StreamState.ABORTED, self.token.reason or e.provider_message)
                return
            metrics.record_upstream_error(self.provider, e.kind.value)
            logger.warning(
                "Upstream stream failed",
                fragments=self.fragments_sent,
                **e.error.to_log_dict(),
            )
            await self._fail(send, str(e))

        except TransportError as e:
            logger.info("Client channel closed during write", provider=self.provider, error=str(e))
            self.token.cancel(TRANSPORT_CLOSED)

        except Exception as e:
            logger.exception(
                "Unexpected error while streaming",
                provider=self.provider,
                error_type=type(e).__name__,
            )
            await self._fail(send, f"{type(e).__name__}: {e}")

    async def _fail(self, send: Send, reason: str) -> None:
        """Tell the client the stream broke, then mark it failed."""
        try:
            await self._write(send, encode_json({"error": STREAM_FAILED}))
        except TransportError:
            logger.debug("Could not deliver error frame", provider=self.provider)
        self._transition(StreamState.FAILED, reason)

    async def _heartbeat(self, send: Send) -> None:
        metrics = get_metrics()
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                written = await self._write(send, encode_heartbeat())
            except TransportError:
                self.token.cancel(TRANSPORT_CLOSED)
                return
            if not written:
                return
            self.heartbeats_sent += 1
            metrics.record_heartbeat()

    async def _watch_disconnect(self, receive: Receive) -> None:
        """Fire the token when the client's outbound channel closes."""
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                self.token.cancel(CLIENT_DISCONNECTED)
                return
            # http.request messages only mean the request body is done

    # ============================================================
    # Writes
    # ============================================================

    async def _write(self, send: Send, data: bytes) -> bool:
        """
        Write one frame.

        Returns False without writing once the stream is terminal.

        Raises:
            TransportError: The client channel is closed
        """
        async with self._write_lock:
            if self.state.is_terminal or not self._body_open:
                return False
            try:
                await send({"type": "http.response.body", "body": data, "more_body": True})
            except (OSError, ClientDisconnect) as e:
                raise TransportError(str(e) or "Downstream channel closed", request_id=self.request_id) from e
            return True

    async def _close_body(self, send: Send) -> None:
        async with self._write_lock:
            if not self._body_open:
                return
            self._body_open = False
            try:
                await send({"type": "http.response.body", "body": b"", "more_body": False})
            except (OSError, ClientDisconnect):
                logger.debug("Client gone before end of body", provider=self.provider)
