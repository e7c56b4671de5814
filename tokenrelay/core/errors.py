"""
tokenrelay - Error Definitions

Error taxonomy for the relay:

- ValidationError: bad submission, rejected before streaming (HTTP 400)
- ProviderNotConfiguredError: no adapter can serve the model (HTTP 503)
- UpstreamError: network / provider / aborted failures of the completion API
- TransportError: write to a closed downstream channel
- DecodeError: malformed JSON in a single decoded event
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorType(str, Enum):
    """Error classification."""
    CLIENT = "client_error"
    UPSTREAM = "upstream_error"
    TRANSPORT = "transport_error"


@dataclass
class ErrorDetails:
    """Full error information."""
    code: str
    message: str
    type: ErrorType

    provider: Optional[str] = None
    param: Optional[str] = None
    request_id: str = ""

    # Debug fields, logged but never sent to the client
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Client-facing body: {"error": message}."""
        return {"error": self.message}

    def to_log_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "code": self.code,
            "error_type": self.type.value,
            "error_message": self.message,
        }
        if self.provider:
            result["provider"] = self.provider
        if self.param:
            result["param"] = self.param
        result.update(self.details)
        return result


class RelayException(Exception):
    """Base exception for all tokenrelay errors."""

    def __init__(self, error: ErrorDetails, status_code: int = 500):
        self.error = error
        self.status_code = status_code
        super().__init__(error.message)


# ============================================================
# Pre-stream errors
# ============================================================

class ValidationError(RelayException):
    """Submission rejected before any streaming starts."""

    def __init__(self, message: str, param: Optional[str] = None, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="invalid_request",
                message=message,
                type=ErrorType.CLIENT,
                param=param,
                request_id=request_id,
            ),
            status_code=400
        )


class ProviderNotConfiguredError(RelayException):
    """No adapter is available for the requested model."""

    def __init__(self, provider: Optional[str] = None, request_id: str = ""):
        if provider:
            message = f"Provider '{provider}' is not configured"
        else:
            message = "No completion provider configured"
        super().__init__(
            ErrorDetails(
                code="provider_not_configured",
                message=message,
                type=ErrorType.UPSTREAM,
                provider=provider,
                request_id=request_id,
            ),
            status_code=503
        )


# ============================================================
# Upstream errors
# ============================================================

class UpstreamErrorKind(str, Enum):
    """Why the upstream stream ended abnormally."""
    NETWORK = "network"
    PROVIDER = "provider"
    ABORTED = "aborted"


class UpstreamError(RelayException):
    """
    Terminal error of an upstream token stream.

    The client only ever sees a generic message; the provider's own
    message is kept in `provider_message` for logs.
    """

    PUBLIC_MESSAGE = "Failed to generate response"

    def __init__(
        self,
        kind: UpstreamErrorKind,
        provider: str,
        provider_message: str = "",
        provider_status: Optional[int] = None,
        request_id: str = ""
    ):
        self.kind = kind
        self.provider = provider
        self.provider_message = provider_message
        self.provider_status = provider_status

        details: Dict[str, Any] = {"kind": kind.value}
        if provider_message:
            details["provider_message"] = provider_message
        if provider_status is not None:
            details["provider_status"] = provider_status

        super().__init__(
            ErrorDetails(
                code=f"upstream_{kind.value}",
                message=self.PUBLIC_MESSAGE,
                type=ErrorType.UPSTREAM,
                provider=provider,
                request_id=request_id,
                details=details,
            ),
            status_code=500
        )

    @property
    def is_abort(self) -> bool:
        return self.kind == UpstreamErrorKind.ABORTED

    @classmethod
    def aborted(cls, provider: str, reason: str = "", request_id: str = "") -> "UpstreamError":
        return cls(
            UpstreamErrorKind.ABORTED,
            provider,
            provider_message=reason or "cancelled by caller",
            request_id=request_id,
        )

    def __str__(self) -> str:
        return f"{self.provider} {self.kind.value} error: {self.provider_message or self.error.message}"


# ============================================================
# Downstream errors
# ============================================================

class TransportError(RelayException):
    """Write to a downstream channel that is already closed."""

    def __init__(self, message: str = "Downstream channel closed", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="transport_closed",
                message=message,
                type=ErrorType.TRANSPORT,
                request_id=request_id,
            ),
            status_code=499
        )


class DecodeError(RelayException):
    """A single decoded event payload is not valid JSON."""

    def __init__(self, payload: str, reason: str = ""):
        self.payload = payload
        super().__init__(
            ErrorDetails(
                code="malformed_event",
                message=f"Malformed event payload: {reason}" if reason else "Malformed event payload",
                type=ErrorType.CLIENT,
                details={"payload_preview": payload[:100]},
            ),
            status_code=400
        )


# ============================================================
# Provider error conversion
# ============================================================

def _provider_message(response: httpx.Response) -> str:
    """Extract the provider's error message from an error response body."""
    try:
        data = response.json()
    except Exception:
        return response.text[:500] if response.text else f"HTTP {response.status_code}"

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("type") or error)
        if error:
            return str(error)
    return str(data)[:500]


def handle_provider_error(
    error: Exception,
    provider: str,
    request_id: str = "",
    cancelled: bool = False
) -> UpstreamError:
    """
    Convert an exception raised while talking to a provider into an
    UpstreamError.

    Any failure observed after the caller cancelled is classified as
    aborted: closing the transport on purpose makes pending reads fail.
    """
    if isinstance(error, UpstreamError):
        return error

    if cancelled:
        return UpstreamError.aborted(provider, str(error), request_id=request_id)

    if isinstance(error, httpx.HTTPStatusError):
        return UpstreamError(
            UpstreamErrorKind.PROVIDER,
            provider,
            provider_message=_provider_message(error.response),
            provider_status=error.response.status_code,
            request_id=request_id,
        )

    if isinstance(error, httpx.TimeoutException):
        return UpstreamError(
            UpstreamErrorKind.NETWORK,
            provider,
            provider_message=f"timeout: {error}",
            request_id=request_id,
        )

    if isinstance(error, httpx.TransportError):
        return UpstreamError(
            UpstreamErrorKind.NETWORK,
            provider,
            provider_message=str(error) or type(error).__name__,
            request_id=request_id,
        )

    return UpstreamError(
        UpstreamErrorKind.PROVIDER,
        provider,
        provider_message=str(error) or type(error).__name__,
        request_id=request_id,
    )


def error_from_response(
    response: httpx.Response,
    provider: str,
    request_id: str = ""
) -> UpstreamError:
    """Build a provider error from an already-read HTTP error response."""
    return UpstreamError(
        UpstreamErrorKind.PROVIDER,
        provider,
        provider_message=_provider_message(response),
        provider_status=response.status_code,
        request_id=request_id,
    )
