"""
tokenrelay - Prometheus Metrics

Stream-level metrics with the Prometheus client library.

Metrics exposed:
- tokenrelay_streams_total: Counter of finished streams by provider and outcome
- tokenrelay_stream_duration_seconds: Histogram of stream lifetime
- tokenrelay_time_to_first_fragment_seconds: Histogram of time to first fragment
- tokenrelay_fragments_total: Counter of fragments relayed
- tokenrelay_heartbeats_total: Counter of keep-alive comments written
- tokenrelay_upstream_errors_total: Counter of upstream failures by kind
- tokenrelay_active_streams: Gauge of streams currently open
- tokenrelay_http_requests_total: Counter of HTTP requests by route and status

Usage:
    from tokenrelay.observability.metrics import get_metrics, setup_metrics, metrics_endpoint

    setup_metrics()

    metrics = get_metrics()
    metrics.record_stream(provider="openai", outcome="completed", duration_seconds=1.5)

    @app.get("/metrics")
    async def metrics():
        return metrics_endpoint()
"""

from typing import Dict, Optional

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)
from fastapi import Response


class MetricsCollector:
    """
    Central metrics collector using Prometheus client.

    Each collector registers its own metric families, so a test can pass a
    fresh CollectorRegistry and read values back from it.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry

        self.info = Info(
            "tokenrelay",
            "tokenrelay service information",
            registry=registry,
        )
        self.info.info({
            "version": "1.0.0",
            "service": "tokenrelay",
        })

        # outcome = completed / aborted / failed
        self.streams_total = Counter(
            "tokenrelay_streams_total",
            "Total number of finished streams",
            labelnames=["provider", "outcome"],
            registry=registry,
        )

        # Generations typically range from 0.5s to a few minutes
        self.stream_duration = Histogram(
            "tokenrelay_stream_duration_seconds",
            "Stream duration in seconds",
            labelnames=["provider", "outcome"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 300.0, float("inf")),
            registry=registry,
        )

        self.time_to_first_fragment = Histogram(
            "tokenrelay_time_to_first_fragment_seconds",
            "Time from stream start to the first relayed fragment",
            labelnames=["provider"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")),
            registry=registry,
        )

        self.fragments_total = Counter(
            "tokenrelay_fragments_total",
            "Total fragments relayed to clients",
            labelnames=["provider"],
            registry=registry,
        )

        self.heartbeats_total = Counter(
            "tokenrelay_heartbeats_total",
            "Total keep-alive comments written",
            registry=registry,
        )

        # kind = network / provider / aborted
        self.upstream_errors = Counter(
            "tokenrelay_upstream_errors_total",
            "Total upstream errors",
            labelnames=["provider", "kind"],
            registry=registry,
        )

        self.active_streams = Gauge(
            "tokenrelay_active_streams",
            "Number of currently open streams",
            labelnames=["provider"],
            registry=registry,
        )

        self.http_requests_total = Counter(
            "tokenrelay_http_requests_total",
            "Total HTTP requests",
            labelnames=["method", "path", "status"],
            registry=registry,
        )

    def record_stream(
        self,
        provider: str,
        outcome: str,
        duration_seconds: float,
    ):
        """Record a stream that reached a terminal state."""
        self.streams_total.labels(provider=provider, outcome=outcome).inc()
        self.stream_duration.labels(provider=provider, outcome=outcome).observe(duration_seconds)

    def record_time_to_first_fragment(self, provider: str, seconds: float):
        self.time_to_first_fragment.labels(provider=provider).observe(seconds)

    def record_fragment(self, provider: str):
        self.fragments_total.labels(provider=provider).inc()

    def record_heartbeat(self):
        self.heartbeats_total.inc()

    def record_upstream_error(self, provider: str, kind: str):
        self.upstream_errors.labels(provider=provider, kind=kind).inc()

    def record_http_request(self, method: str, path: str, status_code: int):
        self.http_requests_total.labels(
            method=method,
            path=path,
            status=str(status_code),
        ).inc()

    def track_active_stream(self, provider: str) -> "ActiveStreamTracker":
        """Context manager to track open streams."""
        return ActiveStreamTracker(self, provider)


class ActiveStreamTracker:
    """Context manager for tracking open streams."""

    def __init__(self, collector: MetricsCollector, provider: str):
        self.collector = collector
        self.provider = provider

    def __enter__(self):
        self.collector.active_streams.labels(provider=self.provider).inc()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.collector.active_streams.labels(provider=self.provider).dec()


# Module-level functions for convenience
_metrics_instance: Optional[MetricsCollector] = None

# A registry rejects duplicate metric families, so keep one collector per registry
_collectors: Dict[int, MetricsCollector] = {}


def setup_metrics(registry: CollectorRegistry = REGISTRY) -> MetricsCollector:
    """
    Setup metrics collection and make it the active collector.

    Safe to call multiple times with the same registry - returns the
    existing instance.
    """
    global _metrics_instance

    collector = _collectors.get(id(registry))
    if collector is None or collector.registry is not registry:
        collector = MetricsCollector(registry)
        _collectors[id(registry)] = collector

    _metrics_instance = collector
    return collector


def get_metrics() -> MetricsCollector:
    """Get the metrics collector instance, creating a default one if needed."""
    if _metrics_instance is None:
        return setup_metrics()
    return _metrics_instance


def metrics_endpoint() -> Response:
    """Generate Prometheus metrics endpoint response."""
    content = generate_latest(get_metrics().registry)
    return Response(
        content=content,
        media_type=CONTENT_TYPE_LATEST,
    )
