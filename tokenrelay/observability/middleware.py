"""
tokenrelay - Observability Middleware

Request-level middleware that combines metrics, tracing, and logging.

Implemented as a plain ASGI application rather than BaseHTTPMiddleware:
the `receive` callable reaches the streaming relay unchanged, so it
still sees `http.disconnect` when the client goes away.

Usage:
    from tokenrelay.observability import setup_observability, RequestContextMiddleware

    setup_observability(service_name="tokenrelay")
    app.add_middleware(RequestContextMiddleware)
"""

import os
import time
import uuid
from typing import Any, Dict, Optional

from opentelemetry.trace import SpanKind, Status, StatusCode
from starlette.datastructures import Headers, MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .logging import LogContext, get_logger, setup_logging
from .metrics import get_metrics
from .tracing import get_tracing_manager, setup_tracing


REQUEST_ID_HEADER = "X-Request-Id"
UNMATCHED_ROUTE = "other"


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:24]}"


class RequestContextMiddleware:
    """
    Assigns a request ID, sets the log context, opens a server span and
    records HTTP request metrics.

    An incoming X-Request-Id header is kept; otherwise one is generated.
    The ID is stored on request.state and echoed in the response headers.
    """

    # Paths to exclude from request logging
    EXCLUDE_PATHS = {"/health", "/metrics", "/openapi.json", "/docs", "/redoc"}

    def __init__(self, app: ASGIApp, exclude_paths: Optional[set] = None):
        self.app = app
        self.exclude_paths = exclude_paths or self.EXCLUDE_PATHS
        self.logger = get_logger("tokenrelay.middleware")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        request_id = headers.get("x-request-id") or new_request_id()
        scope.setdefault("state", {})["request_id"] = request_id

        path = scope.get("path", "")
        method = scope.get("method", "")
        tracing = get_tracing_manager()
        metrics = get_metrics()
        start_time = time.perf_counter()
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                response_headers = MutableHeaders(scope=message)
                if REQUEST_ID_HEADER not in response_headers:
                    response_headers[REQUEST_ID_HEADER] = request_id
            await send(message)

        token = LogContext.set_current(LogContext(request_id=request_id, endpoint=path))
        try:
            with tracing.start_span(
                f"{method} {path}",
                kind=SpanKind.SERVER,
                attributes={
                    "http.method": method,
                    "tokenrelay.request_id": request_id,
                },
                context=tracing.extract_context(headers),
            ) as span:
                try:
                    await self.app(scope, receive, send_wrapper)
                except Exception as e:
                    span.record_exception(e)
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    raise
                finally:
                    route = _route_label(scope)
                    span.update_name(f"{method} {route}")
                    span.set_attribute("http.route", route)
                    span.set_attribute("http.status_code", status_code)
                    if status_code >= 500:
                        span.set_status(Status(StatusCode.ERROR, f"HTTP {status_code}"))

            duration_ms = (time.perf_counter() - start_time) * 1000
            metrics.record_http_request(method, _route_label(scope), status_code)
            if path not in self.exclude_paths:
                self._log_request(method, path, status_code, duration_ms)
        finally:
            LogContext.reset(token)

    def _log_request(self, method: str, path: str, status_code: int, duration_ms: float):
        log_data = {
            "method": method,
            "path": path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
        }

        if status_code >= 500:
            self.logger.error("Request completed with server error", **log_data)
        elif status_code >= 400:
            self.logger.warning("Request completed with client error", **log_data)
        else:
            self.logger.info("Request completed", **log_data)


def _route_label(scope: Scope) -> str:
    """Matched route template, so unknown URLs share one metrics series."""
    route = scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


def get_request_id(request: Request) -> str:
    """Request ID assigned by RequestContextMiddleware, or a fresh one."""
    request_id = getattr(request.state, "request_id", "")
    if not request_id:
        request_id = new_request_id()
        request.state.request_id = request_id
    return request_id


def set_provider_info(provider: str, model: str):
    """Attach provider/model to the current log context."""
    log_ctx = LogContext.get_current()
    if log_ctx:
        log_ctx.provider = provider
        log_ctx.model = model


_observability_initialized = False


def setup_observability(
    service_name: str = "tokenrelay",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    log_level: str = "INFO",
    log_format: str = "json",
    metrics_enabled: bool = True,
    tracing_enabled: bool = True,
) -> Dict[str, Any]:
    """
    Setup logging, metrics and tracing.

    Call once at application startup. Safe to call multiple times.

    Returns:
        Dict with initialized components
    """
    global _observability_initialized

    result: Dict[str, Any] = {}

    if otlp_endpoint is None:
        otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None

    # Setup logging first (other components may log)
    setup_logging(level=log_level, json_output=log_format.lower() == "json")
    result["logging"] = True

    if metrics_enabled:
        # Keeps a collector installed earlier with setup_metrics(registry)
        result["metrics"] = get_metrics()

    if tracing_enabled:
        result["tracing"] = setup_tracing(
            service_name=service_name,
            service_version=service_version,
            otlp_endpoint=otlp_endpoint,
            console_export=console_export,
        )

    if not _observability_initialized:
        logger = get_logger("tokenrelay.observability")
        logger.info(
            "Observability initialized",
            service_name=service_name,
            service_version=service_version,
            metrics_enabled=metrics_enabled,
            tracing_enabled=tracing_enabled,
            otlp_endpoint=otlp_endpoint or "none",
        )
        _observability_initialized = True

    return result
