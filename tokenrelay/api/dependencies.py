"""
tokenrelay - API Dependencies

Shared dependencies for FastAPI routes. The adapter registry and the
settings live on app.state; the server lifespan fills them in.
"""

from fastapi import Request

from ..adapters import AdapterRegistry
from ..core.config import RelaySettings, get_settings
from ..core.errors import ProviderNotConfiguredError
from ..observability import get_request_id


def get_registry(request: Request) -> AdapterRegistry:
    """
    Get the adapter registry.

    Raises ProviderNotConfiguredError (503) while the server is starting up.
    """
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise ProviderNotConfiguredError(request_id=get_request_id(request))
    return registry


def get_relay_settings(request: Request) -> RelaySettings:
    """Settings the app was created with, or the process-wide ones."""
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        settings = get_settings()
    return settings


def request_id_dependency(request: Request) -> str:
    return get_request_id(request)
