"""
tokenrelay - OpenTelemetry Tracing

Distributed tracing with OpenTelemetry.

Features:
- W3C trace context propagation (traceparent header)
- One span per relayed stream
- Optional OTLP/HTTP exporter (install the `otlp` extra)
- Console exporter for local debugging

Usage:
    from tokenrelay.observability.tracing import setup_tracing, get_tracer

    setup_tracing(service_name="tokenrelay")

    tracer = get_tracer()
    with tracer.start_as_current_span("relay.stream") as span:
        span.set_attribute("relay.provider", "openai")
"""

import os
from typing import Any, Dict, Mapping, Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.propagate import extract, set_global_textmap
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.trace import SpanKind, Status, StatusCode
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator


class TracingManager:
    """Owns the tracer provider and the service tracer."""

    def __init__(
        self,
        service_name: str = "tokenrelay",
        service_version: str = "1.0.0",
        otlp_endpoint: Optional[str] = None,
        console_export: bool = False,
    ):
        """
        Initialize tracing.

        Args:
            service_name: Name of the service
            service_version: Version of the service
            otlp_endpoint: OTLP/HTTP collector endpoint (e.g. http://localhost:4318/v1/traces)
            console_export: Whether to export spans to console (for debugging)
        """
        self.service_name = service_name
        self.service_version = service_version

        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
        })
        self.provider = TracerProvider(resource=resource)

        if otlp_endpoint:
            # Needs opentelemetry-exporter-otlp-proto-http (the `otlp` extra)
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
            self.provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
            )

        if console_export:
            self.provider.add_span_processor(
                SimpleSpanProcessor(ConsoleSpanExporter())
            )

        set_global_textmap(TraceContextTextMapPropagator())
        self.tracer = self.provider.get_tracer(service_name, service_version)

    def get_tracer(self) -> trace.Tracer:
        return self.tracer

    def extract_context(self, headers: Mapping[str, str]) -> Context:
        """Extract a parent context from incoming HTTP headers."""
        normalized = {k.lower(): v for k, v in headers.items()}
        return extract(normalized)

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
        context: Optional[Context] = None,
    ):
        """Start a span as current; returns a context manager yielding it."""
        return self.tracer.start_as_current_span(
            name,
            kind=kind,
            attributes=attributes,
            context=context,
        )

    def shutdown(self):
        self.provider.shutdown()


def mark_span(span: trace.Span, outcome: str, reason: str = "") -> None:
    """Record a stream outcome on a span."""
    span.set_attribute("relay.outcome", outcome)
    if outcome == "failed":
        span.set_status(Status(StatusCode.ERROR, reason))
    else:
        span.set_status(Status(StatusCode.OK))


# Module-level functions for convenience
_tracing_instance: Optional[TracingManager] = None


def setup_tracing(
    service_name: str = "tokenrelay",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
) -> TracingManager:
    """
    Setup tracing.

    OTEL_EXPORTER_OTLP_ENDPOINT and OTEL_CONSOLE_EXPORT are read from the
    environment when not passed explicitly.
    """
    global _tracing_instance

    if otlp_endpoint is None:
        otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None

    if os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        console_export = True

    if _tracing_instance is not None:
        _tracing_instance.shutdown()

    _tracing_instance = TracingManager(
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint,
        console_export=console_export,
    )
    return _tracing_instance


def get_tracing_manager() -> TracingManager:
    """Get the tracing manager, creating an exporter-less one if needed."""
    global _tracing_instance
    if _tracing_instance is None:
        _tracing_instance = TracingManager()
    return _tracing_instance


def get_tracer() -> trace.Tracer:
    return get_tracing_manager().get_tracer()
