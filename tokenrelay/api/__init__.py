"""
tokenrelay - API Layer

HTTP surface of the relay.

Provides:
- Streaming chat (POST /api/chat, POST /api/stream, GET /api/events)
- Non-streaming completion (POST /api/complete)
"""

from .models import (
    # Request models
    ChatRequest,
    StreamRequest,
    # Response models
    CompleteResponse,
    ErrorResponse,
    HealthResponse,
)
from .dependencies import (
    get_registry,
    get_relay_settings,
    request_id_dependency,
)
from .routes import chat_router


__all__ = [
    # Routers
    "chat_router",
    # Request models
    "ChatRequest",
    "StreamRequest",
    # Response models
    "CompleteResponse",
    "ErrorResponse",
    "HealthResponse",
    # Dependencies
    "get_registry",
    "get_relay_settings",
    "request_id_dependency",
]
