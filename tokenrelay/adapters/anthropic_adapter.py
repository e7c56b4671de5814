"""
tokenrelay - Anthropic Provider Adapter

Streams messages from Anthropic's /v1/messages endpoint.

Event shape:
    event: content_block_delta
    data: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "He"}}
    ...
    event: message_stop
    data: {"type": "message_stop"}
"""

from typing import Any, Dict, Optional

from .base import END_OF_STREAM, AdapterConfig, HttpAdapter
from ..core.errors import UpstreamError, UpstreamErrorKind
from ..core.models import GenerationRequest, Provider


class AnthropicAdapter(HttpAdapter):
    """Adapter for the Anthropic Messages streaming API."""

    provider = Provider.ANTHROPIC
    DEFAULT_BASE_URL = "https://api.anthropic.com"
    DEFAULT_MODEL = "claude-3-haiku-20240307"
    API_VERSION = "2023-06-01"
    STREAM_PATH = "/v1/messages"

    # Mapping from short names to full model IDs
    MODEL_ALIASES = {
        "claude-3-5-sonnet": "claude-3-5-sonnet-20241022",
        "claude-3.5-sonnet": "claude-3-5-sonnet-20241022",
        "claude-3-opus": "claude-3-opus-20240229",
        "claude-3-sonnet": "claude-3-sonnet-20240229",
        "claude-3-haiku": "claude-3-haiku-20240307",
    }

    def __init__(self, config: AdapterConfig, client=None):
        if not config.default_model:
            config.default_model = self.DEFAULT_MODEL
        super().__init__(config, client=client)

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": self.API_VERSION,
            "Content-Type": "application/json",
        }

    def resolve_model(self, request: GenerationRequest) -> str:
        model = super().resolve_model(request)
        return self.MODEL_ALIASES.get(model, model)

    def _build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        return {
            "model": self.resolve_model(request),
            "max_tokens": request.max_tokens,
            "messages": [{"role": "user", "content": request.prompt}],
            "stream": True,
        }

    def _parse_event(self, event: Dict[str, Any]) -> Optional[str]:
        event_type = event.get("type")

        if event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta":
                return delta.get("text") or None
            return None

        if event_type == "message_delta":
            stop_reason = (event.get("delta") or {}).get("stop_reason")
            if stop_reason == "refusal":
                raise UpstreamError(
                    UpstreamErrorKind.PROVIDER,
                    self.provider.value,
                    provider_message="Response refused by content policy",
                )
            return None

        if event_type == "message_stop":
            return END_OF_STREAM

        if event_type == "error":
            error = event.get("error") or {}
            raise UpstreamError(
                UpstreamErrorKind.PROVIDER,
                self.provider.value,
                provider_message=error.get("message", "Unknown streaming error"),
            )

        # message_start, content_block_start/stop, ping
        return None
