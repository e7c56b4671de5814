"""
tokenrelay - Chat API

Streaming and non-streaming generation endpoints.

Streaming endpoints return a StreamingRelay. Validation happens before
the relay is created, so a bad submission never enters streaming mode.

**Model Format:**
- `openai/gpt-4o-mini` - Specific provider and model
- `anthropic/claude-3-5-sonnet` - Anthropic model
- `gpt-4o-mini` - Default provider
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ...adapters import AdapterRegistry
from ...core.config import RelaySettings
from ...core.errors import ValidationError
from ...core.models import GenerationRequest
from ...observability import get_logger, set_provider_info
from ...streaming.relay import StreamingRelay
from ..dependencies import get_registry, get_relay_settings, request_id_dependency
from ..models import ChatRequest, CompleteResponse, ErrorResponse, StreamRequest


router = APIRouter(prefix="/api", tags=["chat"])

logger = get_logger("tokenrelay.api")

# Pre-stream failures share one body shape
ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# ============================================================
# Helpers
# ============================================================

def _require_text(value: Optional[str], message: str, param: str, request_id: str) -> str:
    """Reject a missing or blank prompt with a 400."""
    if value is None or not value.strip():
        raise ValidationError(message, param=param, request_id=request_id)
    return value


def _build_generation(
    prompt: str,
    model: Optional[str],
    max_tokens: Optional[int],
    settings: RelaySettings
) -> GenerationRequest:
    return GenerationRequest(
        prompt=prompt,
        model=model or "",
        max_tokens=max_tokens or settings.max_tokens,
    )


def _start_relay(
    generation: GenerationRequest,
    payload_key: str,
    registry: AdapterRegistry,
    settings: RelaySettings,
    request_id: str
) -> StreamingRelay:
    adapter = registry.resolve(generation, request_id=request_id)
    set_provider_info(adapter.provider.value, adapter.resolve_model(generation))

    logger.info(
        "Relaying stream",
        provider=adapter.provider.value,
        payload_key=payload_key,
        prompt_chars=len(generation.prompt),
    )

    return StreamingRelay(
        adapter,
        generation,
        payload_key=payload_key,
        request_id=request_id,
        heartbeat_interval=settings.heartbeat_interval,
    )


# ============================================================
# Streaming Endpoints
# ============================================================

@router.post("/chat", responses=ERROR_RESPONSES)
async def chat_stream(
    body: ChatRequest,
    registry: AdapterRegistry = Depends(get_registry),
    settings: RelaySettings = Depends(get_relay_settings),
    request_id: str = Depends(request_id_dependency)
):
    """
    Stream a reply to `{prompt}`.

    Each data frame is `{"text": "<fragment>"}`; the stream ends with
    `data: [DONE]`.
    """
    prompt = _require_text(body.prompt, "Prompt is required", "prompt", request_id)
    generation = _build_generation(prompt, body.model, body.max_tokens, settings)
    return _start_relay(generation, "text", registry, settings, request_id)


@router.post("/stream", responses=ERROR_RESPONSES)
async def stream_message(
    body: StreamRequest,
    registry: AdapterRegistry = Depends(get_registry),
    settings: RelaySettings = Depends(get_relay_settings),
    request_id: str = Depends(request_id_dependency)
):
    """
    Stream a reply to `{model, message, stream: true}`.

    Each data frame is `{"value": "<fragment>"}`.
    """
    message = _require_text(body.message, "message is required", "message", request_id)
    if body.stream is False:
        raise ValidationError(
            "stream must be true for this endpoint",
            param="stream",
            request_id=request_id,
        )
    generation = _build_generation(message, body.model, body.max_tokens, settings)
    return _start_relay(generation, "value", registry, settings, request_id)


@router.get("/events", responses=ERROR_RESPONSES)
async def stream_events(
    prompt: Optional[str] = Query(default=None),
    model: Optional[str] = Query(default=None),
    registry: AdapterRegistry = Depends(get_registry),
    settings: RelaySettings = Depends(get_relay_settings),
    request_id: str = Depends(request_id_dependency)
):
    """Stream a reply to `?prompt=...`, for browser EventSource clients."""
    prompt = _require_text(prompt, "Prompt is required", "prompt", request_id)
    generation = _build_generation(prompt, model, None, settings)
    return _start_relay(generation, "text", registry, settings, request_id)


# ============================================================
# Non-streaming Endpoint
# ============================================================

@router.post("/complete", response_model=CompleteResponse, responses=ERROR_RESPONSES)
async def complete(
    request: Request,
    body: ChatRequest,
    registry: AdapterRegistry = Depends(get_registry),
    settings: RelaySettings = Depends(get_relay_settings),
    request_id: str = Depends(request_id_dependency)
):
    """Wait for the whole reply and return `{"response": text}`."""
    prompt = _require_text(body.prompt, "Prompt is required", "prompt", request_id)
    generation = _build_generation(prompt, body.model, body.max_tokens, settings)

    adapter = registry.resolve(generation, request_id=request_id)
    set_provider_info(adapter.provider.value, adapter.resolve_model(generation))

    text = await adapter.complete(generation, request_id=request_id)
    return CompleteResponse(response=text)
