"""
tokenrelay - Client Transports

How a client opens a stream: request direction (GET query string vs POST
JSON body) and the JSON key that carries fragment text. The read loop in
ClientStreamReader is identical for every transport.
"""

from abc import ABC, abstractmethod

import httpx

from ..core.models import GenerationRequest


SSE_ACCEPT = {"Accept": "text/event-stream"}


class StreamTransport(ABC):
    """Builds the HTTP request that opens one stream."""

    path: str = ""
    payload_key: str = "text"

    @abstractmethod
    def build_request(self, client: httpx.AsyncClient, request: GenerationRequest) -> httpx.Request:
        """Return the request to send with stream=True."""


class PostStreamTransport(StreamTransport):
    """POST {model, message, stream: true}; fragments arrive as {"value": ...}."""

    path = "/api/stream"
    payload_key = "value"

    def __init__(self, default_model: str = "demo-model"):
        self.default_model = default_model

    def build_request(self, client: httpx.AsyncClient, request: GenerationRequest) -> httpx.Request:
        return client.build_request(
            "POST",
            self.path,
            json={
                "model": request.model or self.default_model,
                "message": request.prompt,
                "stream": True,
            },
            headers=SSE_ACCEPT,
        )


class PostPromptTransport(StreamTransport):
    """POST {prompt}; fragments arrive as {"text": ...}."""

    path = "/api/chat"
    payload_key = "text"

    def build_request(self, client: httpx.AsyncClient, request: GenerationRequest) -> httpx.Request:
        return client.build_request(
            "POST",
            self.path,
            json={"prompt": request.prompt},
            headers=SSE_ACCEPT,
        )


class EventSourceTransport(StreamTransport):
    """GET ?prompt=..., the shape a browser EventSource can open."""

    path = "/api/events"
    payload_key = "text"

    def build_request(self, client: httpx.AsyncClient, request: GenerationRequest) -> httpx.Request:
        params = {"prompt": request.prompt}
        if request.model:
            params["model"] = request.model
        return client.build_request(
            "GET",
            self.path,
            params=params,
            headers=SSE_ACCEPT,
        )
