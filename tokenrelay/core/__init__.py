"""
tokenrelay - Core Module

Shared models, errors and configuration.
"""

from .models import (
    Provider,
    StreamState,
    GenerationRequest,
    Fragment,
    TERMINAL_STATES,
    DEFAULT_MAX_TOKENS,
)
from .errors import (
    ErrorType,
    ErrorDetails,
    RelayException,
    ValidationError,
    ProviderNotConfiguredError,
    UpstreamError,
    UpstreamErrorKind,
    TransportError,
    DecodeError,
    handle_provider_error,
    error_from_response,
)
from .config import RelaySettings, get_settings, reset_settings

__all__ = [
    # Models
    "Provider",
    "StreamState",
    "GenerationRequest",
    "Fragment",
    "TERMINAL_STATES",
    "DEFAULT_MAX_TOKENS",
    # Errors
    "ErrorType",
    "ErrorDetails",
    "RelayException",
    "ValidationError",
    "ProviderNotConfiguredError",
    "UpstreamError",
    "UpstreamErrorKind",
    "TransportError",
    "DecodeError",
    "handle_provider_error",
    "error_from_response",
    # Config
    "RelaySettings",
    "get_settings",
    "reset_settings",
]
