"""
tokenrelay - Main API Server

FastAPI application that relays token streams from a completion API to
clients as Server-Sent Events.

Features:
- Three streaming endpoints (POST body or GET query string)
- Non-streaming completion endpoint
- OpenAI and Anthropic adapters, plus a stub adapter for local runs
- Full observability (metrics, tracing, logging)

Run:
    python -m tokenrelay.server
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .adapters import AdapterRegistry, StubAdapter, get_adapter
from .adapters.base import AdapterConfig
from .core.config import RelaySettings, get_settings
from .core.errors import RelayException
from .core.models import Provider
from .api import chat_router
from .api.models import HealthResponse
from .observability import (
    RequestContextMiddleware,
    get_logger,
    get_request_id,
    metrics_endpoint,
    setup_observability,
)


VERSION = "1.0.0"


# ============================================================
# Adapters
# ============================================================

def build_registry(settings: RelaySettings) -> AdapterRegistry:
    """Create one adapter per configured provider."""
    logger = get_logger("tokenrelay.server")
    adapters = {}

    if not settings.use_stub_adapters:
        if settings.openai_api_key:
            adapters[Provider.OPENAI] = get_adapter("openai", AdapterConfig(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                default_model=settings.openai_model,
                timeout=settings.upstream_timeout,
            ))

        if settings.anthropic_api_key:
            adapters[Provider.ANTHROPIC] = get_adapter("anthropic", AdapterConfig(
                api_key=settings.anthropic_api_key,
                base_url=settings.anthropic_base_url,
                default_model=settings.anthropic_model,
                timeout=settings.upstream_timeout,
            ))

    if not adapters:
        if not settings.use_stub_adapters:
            logger.warning(
                "No providers configured, using stub adapter. "
                "Set OPENAI_API_KEY or ANTHROPIC_API_KEY"
            )
        adapters[Provider.STUB] = StubAdapter(delay=settings.stub_delay)

    default_provider = None
    if settings.default_provider and Provider(settings.default_provider) in adapters:
        default_provider = Provider(settings.default_provider)

    registry = AdapterRegistry(adapters, default_provider=default_provider)
    logger.info(
        "Providers initialized",
        providers=[p.value for p in adapters],
        default_provider=registry.default_provider.value if registry.default_provider else None,
    )
    return registry


# ============================================================
# Lifespan management
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    settings: RelaySettings = app.state.settings

    # Initialize observability first (for logging during startup)
    observability = setup_observability(
        service_name="tokenrelay",
        service_version=VERSION,
        otlp_endpoint=settings.otlp_endpoint,
        console_export=settings.otel_console_export,
        log_level=settings.log_level,
        log_format=settings.log_format,
    )
    logger = get_logger("tokenrelay.server")

    # A registry passed to create_app() is kept (tests inject one)
    owns_registry = getattr(app.state, "registry", None) is None
    if owns_registry:
        app.state.registry = build_registry(settings)

    logger.info(
        "tokenrelay server ready",
        host=settings.host,
        port=settings.port,
        heartbeat_interval=settings.heartbeat_interval,
    )

    yield

    if owns_registry:
        await app.state.registry.close()
        app.state.registry = None

    if "tracing" in observability:
        observability["tracing"].shutdown()

    logger.info("tokenrelay server stopped")


# ============================================================
# Error handlers
# ============================================================

async def relay_exception_handler(request: Request, exc: RelayException):
    """Handle all canonical tokenrelay errors raised before streaming."""
    request_id = exc.error.request_id or get_request_id(request)
    logger = get_logger("tokenrelay.server")
    logger.warning("Request rejected", status_code=exc.status_code, **exc.error.to_log_dict())

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.error.to_dict(),
        headers={
            "X-Request-Id": request_id,
            "X-Error-Code": exc.error.code,
        },
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Schema errors become a 400 with the relay's error shape."""
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", message)

    return JSONResponse(
        status_code=400,
        content={"error": message},
        headers={
            "X-Request-Id": get_request_id(request),
            "X-Error-Code": "invalid_request",
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle standard HTTP exceptions (404, 405, ...)."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers={
            "X-Request-Id": get_request_id(request),
            "X-Error-Code": "http_error",
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = get_request_id(request)
    logger = get_logger("tokenrelay.server")
    logger.exception(
        "Unhandled error",
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
        headers={
            "X-Request-Id": request_id,
            "X-Error-Code": "internal_error",
        },
    )


# ============================================================
# FastAPI App
# ============================================================

def create_app(
    settings: Optional[RelaySettings] = None,
    registry: Optional[AdapterRegistry] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration; read from the environment if omitted
        registry: Pre-built adapters; built from settings at startup if omitted
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="tokenrelay",
        description="Relay token streams from completion APIs as Server-Sent Events",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.registry = registry

    # Last added = outermost; request IDs are assigned before CORS runs
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=settings.cors_allow_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "X-Error-Code"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.include_router(chat_router)

    app.add_exception_handler(RelayException, relay_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint."""
        current: Optional[AdapterRegistry] = getattr(request.app.state, "registry", None)
        if current is None:
            return HealthResponse(status="starting", version=VERSION)

        return HealthResponse(
            status="healthy",
            version=VERSION,
            default_provider=current.default_provider.value if current.default_provider else None,
            providers=[p.value for p in current.adapters],
        )

    @app.get("/metrics")
    async def prometheus_metrics():
        """
        Prometheus metrics endpoint.

        Exposes all collected metrics in Prometheus text format.
        """
        return metrics_endpoint()

    return app


app = create_app()


# ============================================================
# Run server
# ============================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "tokenrelay.server:app",
        host=settings.host,
        port=settings.port,
    )
