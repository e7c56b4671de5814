"""
tokenrelay - Provider Adapter Base

Abstract base class for upstream completion adapters.

Every adapter exposes the same contract:

    stream = adapter.open(request, token)
    await stream.connect()          # optional; iteration connects lazily
    async for fragment in stream:   # Fragment objects, in provider order
        ...

The stream raises UpstreamError (kind network / provider / aborted) as its
terminal error and simply ends on normal completion. There is no internal
retry: a new attempt means a new open() call.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..core.errors import (
    UpstreamError,
    error_from_response,
    handle_provider_error,
)
from ..core.models import Fragment, GenerationRequest, Provider
from ..observability.logging import get_logger
from ..streaming.cancellation import CancellationToken, OperationCancelled
from ..streaming.decoder import SseDecoder


logger = get_logger("tokenrelay.adapters")

# Returned by an event parser when the provider signals the end in-band
END_OF_STREAM = object()


@dataclass
class AdapterConfig:
    """Configuration for a provider adapter."""
    api_key: str
    base_url: Optional[str] = None
    default_model: str = ""
    timeout: float = 60.0


class UpstreamStream(ABC):
    """
    Lazy, cancellable sequence of fragments from one provider request.

    Subclasses implement `_connect()` and `_next_fragment()`; this class
    handles the cancellation token, error conversion and cleanup.
    """

    def __init__(
        self,
        provider: str,
        request: GenerationRequest,
        token: CancellationToken,
        request_id: str = ""
    ):
        self.provider = provider
        self.request = request
        self.token = token
        self.request_id = request_id
        self._connected = False
        self._finished = False
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Issue the outbound request and validate the provider's answer."""
        if self._connected:
            return
        try:
            await self.token.guard(self._connect())
        except OperationCancelled as e:
            await self.aclose()
            raise UpstreamError.aborted(self.provider, e.reason, request_id=self.request_id)
        except Exception as e:
            await self.aclose()
            raise handle_provider_error(
                e,
                self.provider,
                request_id=self.request_id,
                cancelled=self.token.is_cancelled,
            )
        self._connected = True

    def __aiter__(self) -> "UpstreamStream":
        return self

    async def __anext__(self) -> Fragment:
        if self._finished:
            raise StopAsyncIteration

        if self.token.is_cancelled:
            await self._finish()
            raise UpstreamError.aborted(self.provider, self.token.reason or "", request_id=self.request_id)

        if not self._connected:
            await self.connect()

        try:
            fragment = await self.token.guard(self._next_fragment())
        except OperationCancelled as e:
            await self._finish()
            raise UpstreamError.aborted(self.provider, e.reason, request_id=self.request_id)
        except Exception as e:
            await self._finish()
            raise handle_provider_error(
                e,
                self.provider,
                request_id=self.request_id,
                cancelled=self.token.is_cancelled,
            )

        if fragment is None:
            await self._finish()
            raise StopAsyncIteration
        return fragment

    async def _finish(self) -> None:
        self._finished = True
        await self.aclose()

    async def aclose(self) -> None:
        """Release the upstream transport. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._close()

    @abstractmethod
    async def _connect(self) -> None:
        """Open the provider connection; raise on an error status."""

    @abstractmethod
    async def _next_fragment(self) -> Optional[Fragment]:
        """Return the next non-empty fragment, or None at the end."""

    async def _close(self) -> None:
        """Close provider resources."""


class HttpSseStream(UpstreamStream):
    """
    Upstream stream over an HTTP response whose body is itself SSE.

    Provider-specific event shapes are handled by `parse_event`, which maps
    one decoded JSON event to text (or None to skip it). It may return
    END_OF_STREAM for an explicit end event and raise UpstreamError for
    in-band provider errors.
    """

    def __init__(
        self,
        provider: str,
        request: GenerationRequest,
        token: CancellationToken,
        client: httpx.AsyncClient,
        http_request: httpx.Request,
        parse_event,
        request_id: str = ""
    ):
        super().__init__(provider, request, token, request_id=request_id)
        self._client = client
        self._http_request = http_request
        self._parse_event = parse_event
        self._response: Optional[httpx.Response] = None
        self._chunks: Optional[AsyncIterator[bytes]] = None
        self._decoder = SseDecoder()
        self._pending: list = []
        self._done = False

    async def _connect(self) -> None:
        logger.debug(
            "Opening upstream stream",
            provider=self.provider,
            model=self.request.model_name,
            url=str(self._http_request.url),
        )
        response = await self._client.send(self._http_request, stream=True)
        self._response = response

        if response.status_code >= 400:
            await response.aread()
            raise error_from_response(response, self.provider, request_id=self.request_id)

        self._chunks = response.aiter_bytes()

    async def _next_fragment(self) -> Optional[Fragment]:
        while True:
            while self._pending:
                payload = self._pending.pop(0)
                text = self._handle_payload(payload)
                if self._done:
                    return None
                if text:
                    return Fragment(text=text)

            if self._done or self._chunks is None:
                return None

            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                self._done = True
                return None
            self._pending.extend(self._decoder.feed(chunk))

    def _handle_payload(self, payload: str) -> Optional[str]:
        if payload == "[DONE]":
            self._done = True
            return None
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed upstream event", provider=self.provider)
            return None
        if not isinstance(event, dict):
            return None
        result = self._parse_event(event)
        if result is END_OF_STREAM:
            self._done = True
            return None
        return result

    async def _close(self) -> None:
        if self._response is not None:
            await self._response.aclose()


class BaseAdapter(ABC):
    """
    Abstract base class for completion providers.

    The adapter is responsible for:
    1. Converting a GenerationRequest into the provider's request format
    2. Issuing exactly one streaming request per open() call
    3. Mapping the provider's event shapes to plain text fragments
    4. Mapping provider failures to UpstreamError
    """

    provider: Provider

    def __init__(self, config: AdapterConfig):
        self.config = config

    @abstractmethod
    def open(
        self,
        request: GenerationRequest,
        token: CancellationToken,
        request_id: str = ""
    ) -> UpstreamStream:
        """Create (but do not yet connect) an upstream stream."""

    def resolve_model(self, request: GenerationRequest) -> str:
        return request.model_name or self.config.default_model

    async def complete(self, request: GenerationRequest, request_id: str = "") -> str:
        """Drain a stream into the full response text."""
        token = CancellationToken()
        stream = self.open(request, token, request_id=request_id)
        parts = []
        try:
            async for fragment in stream:
                parts.append(fragment.text)
        except asyncio.CancelledError:
            token.cancel("caller cancelled")
            raise
        finally:
            await stream.aclose()
        return "".join(parts)

    async def close(self) -> None:
        """Release shared resources."""


class HttpAdapter(BaseAdapter):
    """Base for adapters talking to an HTTP streaming API through httpx."""

    DEFAULT_BASE_URL = ""
    STREAM_PATH = ""

    def __init__(self, config: AdapterConfig, client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self.base_url = config.base_url or self.DEFAULT_BASE_URL
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=config.timeout,
        )

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    @abstractmethod
    def _build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        """Build the provider-specific streaming payload."""

    @abstractmethod
    def _parse_event(self, event: Dict[str, Any]) -> Optional[str]:
        """Map one provider event to fragment text."""

    def open(
        self,
        request: GenerationRequest,
        token: CancellationToken,
        request_id: str = ""
    ) -> UpstreamStream:
        http_request = self.client.build_request(
            "POST",
            self.STREAM_PATH,
            json=self._build_payload(request),
            headers={"Accept": "text/event-stream"},
        )
        return HttpSseStream(
            self.provider.value,
            request,
            token,
            self.client,
            http_request,
            self._parse_event,
            request_id=request_id,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
