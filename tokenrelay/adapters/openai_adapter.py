"""
tokenrelay - OpenAI Provider Adapter

Streams chat completions from OpenAI's /chat/completions endpoint.

Event shape:
    data: {"choices": [{"delta": {"content": "He"}, "finish_reason": null}]}
    data: [DONE]
"""

from typing import Any, Dict, Optional

from .base import AdapterConfig, HttpAdapter
from ..core.errors import UpstreamError, UpstreamErrorKind
from ..core.models import GenerationRequest, Provider


class OpenAIAdapter(HttpAdapter):
    """Adapter for the OpenAI Chat Completions streaming API."""

    provider = Provider.OPENAI
    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    DEFAULT_MODEL = "gpt-4o-mini"
    STREAM_PATH = "/chat/completions"

    def __init__(self, config: AdapterConfig, client=None):
        if not config.default_model:
            config.default_model = self.DEFAULT_MODEL
        super().__init__(config, client=client)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        return {
            "model": self.resolve_model(request),
            "messages": [{"role": "user", "content": request.prompt}],
            "max_tokens": request.max_tokens,
            "stream": True,
        }

    def _parse_event(self, event: Dict[str, Any]) -> Optional[str]:
        if "error" in event:
            error = event["error"]
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            raise UpstreamError(
                UpstreamErrorKind.PROVIDER,
                self.provider.value,
                provider_message=message or "stream error",
            )

        choices = event.get("choices") or []
        if not choices:
            return None
        choice = choices[0]

        if choice.get("finish_reason") == "content_filter":
            raise UpstreamError(
                UpstreamErrorKind.PROVIDER,
                self.provider.value,
                provider_message="Response blocked by content filter",
            )

        delta = choice.get("delta") or {}
        return delta.get("content") or None
