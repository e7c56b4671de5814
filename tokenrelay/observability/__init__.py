"""
tokenrelay - Observability Module

Observability stack including:
- Prometheus metrics (Counter, Histogram, Gauge)
- OpenTelemetry tracing
- Structured JSON logging with context injection
- Request ID propagation

Usage:
    from tokenrelay.observability import (
        setup_observability,
        get_metrics,
        get_tracer,
        get_logger,
    )

    setup_observability(service_name="tokenrelay")

    logger = get_logger(__name__)
    tracer = get_tracer()
    metrics = get_metrics()
"""

from .metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
    metrics_endpoint,
)
from .tracing import (
    TracingManager,
    get_tracer,
    get_tracing_manager,
    setup_tracing,
)
from .logging import (
    StructuredLogger,
    get_logger,
    setup_logging,
    LogContext,
)
from .middleware import (
    RequestContextMiddleware,
    get_request_id,
    set_provider_info,
    setup_observability,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "setup_metrics",
    "metrics_endpoint",
    # Tracing
    "TracingManager",
    "get_tracer",
    "get_tracing_manager",
    "setup_tracing",
    # Logging
    "StructuredLogger",
    "get_logger",
    "setup_logging",
    "LogContext",
    # Combined
    "RequestContextMiddleware",
    "get_request_id",
    "set_provider_info",
    "setup_observability",
]
