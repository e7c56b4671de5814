"""
tokenrelay - Core Data Models

Internal data structures shared by the adapters, the relay and the
client reader.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Provider(str, Enum):
    """Supported completion providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    STUB = "stub"


class StreamState(str, Enum):
    """
    Lifecycle of one stream.

    Only idle -> streaming -> {completed, aborted, failed} is allowed.
    The relay and the client reader each keep their own copy.
    """
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    StreamState.COMPLETED,
    StreamState.ABORTED,
    StreamState.FAILED,
})


DEFAULT_MAX_TOKENS = 1024


@dataclass(frozen=True)
class GenerationRequest:
    """
    One user submission.

    The model may be given as "provider/model" (e.g. "openai/gpt-4o-mini")
    or as a bare model name, in which case the default provider is used.
    """
    prompt: str
    model: str = ""
    max_tokens: int = DEFAULT_MAX_TOKENS

    @property
    def provider_name(self) -> Optional[str]:
        """Provider prefix of the model identifier, if it names a provider."""
        if "/" in self.model:
            prefix = self.model.split("/", 1)[0].lower()
            if prefix in {p.value for p in Provider}:
                return prefix
        return None

    @property
    def model_name(self) -> str:
        """Model name without the provider prefix."""
        if self.provider_name:
            return self.model.split("/", 1)[1]
        return self.model


@dataclass(frozen=True)
class Fragment:
    """One incremental unit of generated text."""
    text: str
