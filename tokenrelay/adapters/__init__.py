"""
tokenrelay Adapters Module

Provider-specific adapters that turn a completion API's streaming
response into a lazy, cancellable sequence of text fragments.
"""

from typing import Dict, Optional

from .base import AdapterConfig, BaseAdapter, UpstreamStream, HttpAdapter, END_OF_STREAM
from .openai_adapter import OpenAIAdapter
from .anthropic_adapter import AnthropicAdapter
from .stub_adapter import StubAdapter
from ..core.errors import ProviderNotConfiguredError
from ..core.models import GenerationRequest, Provider

__all__ = [
    "AdapterConfig",
    "BaseAdapter",
    "UpstreamStream",
    "HttpAdapter",
    "END_OF_STREAM",
    "OpenAIAdapter",
    "AnthropicAdapter",
    "StubAdapter",
    "AdapterRegistry",
    "get_adapter",
]


def get_adapter(provider: str, config: AdapterConfig) -> BaseAdapter:
    """
    Factory function to get the appropriate adapter for a provider.

    Raises:
        ValueError: If provider is not supported
    """
    adapters = {
        "openai": OpenAIAdapter,
        "anthropic": AnthropicAdapter,
        "stub": StubAdapter,
    }

    adapter_class = adapters.get(provider.lower())
    if not adapter_class:
        raise ValueError(f"Unsupported provider: {provider}")

    return adapter_class(config)


class AdapterRegistry:
    """Configured adapters keyed by provider, with a default for bare model names."""

    def __init__(
        self,
        adapters: Dict[Provider, BaseAdapter],
        default_provider: Optional[Provider] = None
    ):
        self.adapters = adapters
        if default_provider is None and adapters:
            default_provider = next(iter(adapters))
        self.default_provider = default_provider

    def resolve(self, request: GenerationRequest, request_id: str = "") -> BaseAdapter:
        """Pick the adapter for a request's model identifier."""
        name = request.provider_name
        if name:
            provider = Provider(name)
            if provider not in self.adapters:
                raise ProviderNotConfiguredError(name, request_id=request_id)
            return self.adapters[provider]

        if self.default_provider is not None and self.default_provider in self.adapters:
            return self.adapters[self.default_provider]

        raise ProviderNotConfiguredError(request_id=request_id)

    async def close(self) -> None:
        for adapter in self.adapters.values():
            await adapter.close()
