"""
tokenrelay - API Request/Response Models

Pydantic models for the HTTP surface.

Request fields are Optional on purpose: a missing prompt is answered with
the relay's own 400 message rather than a generic schema error.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


# ============================================================
# Requests
# ============================================================

class ChatRequest(BaseModel):
    """Body of POST /api/chat and POST /api/complete."""
    prompt: Optional[str] = Field(
        default=None,
        description="User prompt"
    )
    model: Optional[str] = Field(
        default=None,
        description="Model ID, optionally prefixed by provider (e.g. 'openai/gpt-4o-mini')"
    )
    max_tokens: Optional[int] = Field(
        default=None,
        ge=1,
        le=128000,
        description="Maximum tokens to generate"
    )


class StreamRequest(BaseModel):
    """Body of POST /api/stream."""
    model: Optional[str] = Field(
        default=None,
        description="Model ID, optionally prefixed by provider"
    )
    message: Optional[str] = Field(
        default=None,
        description="User message"
    )
    stream: Optional[bool] = Field(
        default=None,
        description="false is rejected; omitted means stream"
    )
    max_tokens: Optional[int] = Field(
        default=None,
        ge=1,
        le=128000,
    )


# ============================================================
# Responses
# ============================================================

class CompleteResponse(BaseModel):
    """Non-streaming answer."""
    response: str


class ErrorResponse(BaseModel):
    """Body of every pre-stream error."""
    error: str


class HealthResponse(BaseModel):
    status: str
    version: str
    default_provider: Optional[str] = None
    providers: List[str] = Field(default_factory=list)
