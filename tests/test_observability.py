"""
tokenrelay - Observability Tests

Tests for the observability stack:
- Prometheus metrics
- OpenTelemetry tracing (stream spans, W3C context)
- Structured logging
- Request context middleware
"""

import json
import logging

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from prometheus_client import CollectorRegistry

from tokenrelay.adapters import StubAdapter
from tokenrelay.core.models import GenerationRequest
from tokenrelay.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredLogger,
    setup_logging,
)
from tokenrelay.observability.metrics import (
    MetricsCollector,
    get_metrics,
    metrics_endpoint,
    setup_metrics,
)
from tokenrelay.observability.middleware import (
    RequestContextMiddleware,
    get_request_id,
    set_provider_info,
    setup_observability,
)
from tokenrelay.observability.tracing import (
    TracingManager,
    get_tracing_manager,
    mark_span,
    setup_tracing,
)
from tokenrelay.streaming.relay import StreamingRelay

from helpers import HTTP_SCOPE, AsgiChannel, sample


TRACEPARENT = "00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01"


def _record(msg="Test message", **extra):
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ============================================================
# Metrics Tests
# ============================================================

class TestMetricsCollector:
    """Tests for MetricsCollector."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector(CollectorRegistry())

    def test_record_stream(self, metrics):
        metrics.record_stream("openai", "completed", 1.5)
        metrics.record_stream("openai", "aborted", 0.2)

        registry = metrics.registry
        assert sample(registry, "tokenrelay_streams_total", {"provider": "openai", "outcome": "completed"}) == 1
        assert sample(registry, "tokenrelay_streams_total", {"provider": "openai", "outcome": "aborted"}) == 1
        assert sample(
            registry,
            "tokenrelay_stream_duration_seconds_sum",
            {"provider": "openai", "outcome": "completed"},
        ) == 1.5

    def test_active_stream_tracker(self, metrics):
        """The gauge goes up inside the block and back down on exit, even on error."""
        with pytest.raises(RuntimeError):
            with metrics.track_active_stream("stub"):
                assert sample(metrics.registry, "tokenrelay_active_streams", {"provider": "stub"}) == 1
                raise RuntimeError("boom")

        assert sample(metrics.registry, "tokenrelay_active_streams", {"provider": "stub"}) == 0

    def test_upstream_errors(self, metrics):
        metrics.record_upstream_error("anthropic", "network")
        assert sample(metrics.registry, "tokenrelay_upstream_errors_total", {"provider": "anthropic", "kind": "network"}) == 1

    def test_setup_metrics_reuses_collector(self):
        registry = CollectorRegistry()
        first = setup_metrics(registry)

        assert setup_metrics(registry) is first
        assert get_metrics() is first

    def test_metrics_endpoint(self, metrics_registry):
        get_metrics().record_heartbeat()

        response = metrics_endpoint()

        assert response.media_type.startswith("text/plain")
        assert b"tokenrelay_heartbeats_total 1.0" in response.body


# ============================================================
# Tracing Tests
# ============================================================

class TestTracing:
    """Tests for TracingManager and stream spans."""

    @pytest.fixture
    def exporter(self):
        manager = setup_tracing(service_name="test-service")
        exporter = InMemorySpanExporter()
        manager.provider.add_span_processor(SimpleSpanProcessor(exporter))
        return exporter

    def test_span_creation(self):
        tracing = TracingManager(service_name="test-service")
        with tracing.start_span("test-operation") as span:
            span.set_attribute("test.key", "test-value")
            context = span.get_span_context()

        assert context.is_valid
        tracing.shutdown()

    def test_traceparent_extraction(self, exporter):
        """Spans started with an extracted context join the caller's trace."""
        tracing = get_tracing_manager()
        parent = tracing.extract_context({"Traceparent": TRACEPARENT})
        with tracing.start_span("child", context=parent):
            pass

        span = exporter.get_finished_spans()[0]
        assert format(span.context.trace_id, "032x") == "0af7651916cd43dd8448eb211c80319c"
        assert format(span.parent.span_id, "016x") == "b7ad6b7169203331"

    def test_mark_span(self, exporter):
        tracing = TracingManager(service_name="test-service")
        tracing.provider.add_span_processor(SimpleSpanProcessor(exporter))

        with tracing.start_span("ok") as span:
            mark_span(span, "aborted", "client_disconnected")
        with tracing.start_span("bad") as span:
            mark_span(span, "failed", "upstream network error")

        ok, bad = exporter.get_finished_spans()
        assert ok.status.status_code == StatusCode.OK
        assert ok.attributes["relay.outcome"] == "aborted"
        assert bad.status.status_code == StatusCode.ERROR

    @pytest.mark.asyncio
    async def test_relay_stream_span(self, exporter):
        relay = StreamingRelay(
            StubAdapter(fragments=["a", "b"]),
            GenerationRequest(prompt="x"),
            request_id="req_span",
            heartbeat_interval=0,
        )

        channel = AsgiChannel()
        await relay(dict(HTTP_SCOPE), channel.receive, channel.send)

        spans = [s for s in exporter.get_finished_spans() if s.name == "relay.stream"]
        assert len(spans) == 1
        attributes = spans[0].attributes
        assert attributes["relay.outcome"] == "completed"
        assert attributes["relay.fragments"] == 2
        assert attributes["relay.provider"] == "stub"
        assert attributes["tokenrelay.request_id"] == "req_span"


# ============================================================
# Logging Tests
# ============================================================

class TestStructuredLogging:
    """Tests for structured logging."""

    @pytest.fixture(autouse=True)
    def setup_logging_fixture(self):
        setup_logging(level="DEBUG", json_output=True)
        yield
        LogContext.clear()

    def test_json_formatter(self):
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["message"] == "Test message"
        assert data["logger"] == "test"
        assert "timestamp" in data

    def test_log_context_injection(self):
        LogContext.set_current(LogContext(request_id="req_123", provider="openai"))

        data = json.loads(JSONFormatter().format(_record()))

        assert data["request_id"] == "req_123"
        assert data["provider"] == "openai"

    def test_log_context_reset(self):
        outer = LogContext(request_id="outer")
        LogContext.set_current(outer)
        token = LogContext.set_current(LogContext(request_id="inner"))

        LogContext.reset(token)

        assert LogContext.get_current() is outer

    def test_sensitive_field_redaction(self):
        formatter = JSONFormatter(redact_sensitive=True)
        record = _record(api_key="sk-123", authorization="Bearer x", max_tokens=256)

        data = json.loads(formatter.format(record))

        assert data["api_key"] == "[REDACTED]"
        assert data["authorization"] == "[REDACTED]"
        # Token counts are not credentials
        assert data["max_tokens"] == 256

    def test_structured_fields(self, caplog):
        logger = StructuredLogger(logging.getLogger("tokenrelay.test"))

        with caplog.at_level(logging.INFO, logger="tokenrelay.test"):
            logger.info("Stream finished", fragments=3, state="completed")

        record = caplog.records[-1]
        assert record.getMessage() == "Stream finished"
        assert record.fragments == 3
        assert record.state == "completed"


# ============================================================
# Middleware Tests
# ============================================================

class TestRequestContextMiddleware:
    """Tests for RequestContextMiddleware."""

    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_middleware(RequestContextMiddleware)

        @app.get("/test")
        async def endpoint(request: Request):
            set_provider_info("stub", "stub-model")
            ctx = LogContext.get_current()
            return {
                "request_id": get_request_id(request),
                "context_request_id": ctx.request_id,
                "provider": ctx.provider,
            }

        @app.get("/health")
        async def health():
            return {"status": "healthy"}

        @app.get("/items/{item_id}")
        async def item(item_id: str):
            return {"id": item_id}

        return TestClient(app)

    def test_request_id_generation(self, client):
        response = client.get("/test")

        assert response.status_code == 200
        request_id = response.headers["x-request-id"]
        assert request_id.startswith("req_")
        assert len(request_id) == 28
        assert response.json()["request_id"] == request_id

    def test_request_id_passthrough(self, client):
        response = client.get("/test", headers={"x-request-id": "req_custom123"})

        assert response.headers["x-request-id"] == "req_custom123"
        assert response.json()["context_request_id"] == "req_custom123"

    def test_provider_info_in_context(self, client):
        assert client.get("/test").json()["provider"] == "stub"

    def test_http_metrics(self, client, metrics_registry):
        client.get("/test")
        client.get("/health")

        labels = {"method": "GET", "path": "/test", "status": "200"}
        assert sample(metrics_registry, "tokenrelay_http_requests_total", labels) == 1
        assert sample(metrics_registry, "tokenrelay_http_requests_total", {**labels, "path": "/health"}) == 1

    def test_http_metrics_use_route_templates(self, client, metrics_registry):
        """Arbitrary URLs collapse onto the matched route or one shared label."""
        for i in range(5):
            client.get(f"/items/{i}")
            client.get(f"/nope/{i}")

        labels = {"method": "GET", "status": "200", "path": "/items/{item_id}"}
        assert sample(metrics_registry, "tokenrelay_http_requests_total", labels) == 5
        unmatched = {"method": "GET", "status": "404", "path": "other"}
        assert sample(metrics_registry, "tokenrelay_http_requests_total", unmatched) == 5

        paths = {
            s.labels["path"]
            for metric in metrics_registry.collect()
            if metric.name == "tokenrelay_http_requests"
            for s in metric.samples
        }
        assert paths == {"/items/{item_id}", "other"}

    def test_server_span_joins_caller_trace(self, client):
        manager = setup_tracing(service_name="test-service")
        exporter = InMemorySpanExporter()
        manager.provider.add_span_processor(SimpleSpanProcessor(exporter))

        client.get("/test", headers={"traceparent": TRACEPARENT})

        server_spans = [s for s in exporter.get_finished_spans() if s.name == "GET /test"]
        assert len(server_spans) == 1
        assert format(server_spans[0].context.trace_id, "032x") == "0af7651916cd43dd8448eb211c80319c"
        assert server_spans[0].attributes["http.status_code"] == 200


class TestObservabilityIntegration:
    """Tests for setup_observability."""

    def test_setup_observability(self, metrics_registry):
        result = setup_observability(
            service_name="test-service",
            log_format="text",
        )

        assert result["logging"] is True
        assert result["metrics"].registry is metrics_registry
        assert isinstance(result["tracing"], TracingManager)

    def test_components_can_be_disabled(self):
        result = setup_observability(log_format="text", metrics_enabled=False, tracing_enabled=False)

        assert "metrics" not in result
        assert "tracing" not in result
