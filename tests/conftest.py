"""
tokenrelay - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Smoke test handling (skip with SKIP_SMOKE=1)
- Isolated metrics registry per test
- Stub adapters, app factory and an in-memory ASGI channel (helpers.py)
"""

import os
from typing import Optional

import pytest
from prometheus_client import CollectorRegistry

from tokenrelay.adapters import AdapterRegistry, StubAdapter
from tokenrelay.core.config import RelaySettings
from tokenrelay.core.models import Provider
from tokenrelay.observability.metrics import setup_metrics

from helpers import AsgiChannel


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))
SKIP_SMOKE = _is_truthy(os.getenv("SKIP_SMOKE"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )
    config.addinivalue_line(
        "markers",
        "smoke: mark test as smoke test (skip with SKIP_SMOKE=1)"
    )


def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to handle integration and smoke tests.

    - Integration tests: Skip unless RUN_INTEGRATION=1
    - Smoke tests: Skip if SKIP_SMOKE=1
    """
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )
    skip_smoke = pytest.mark.skip(
        reason="Smoke test skipped - SKIP_SMOKE=1"
    )

    for item in items:
        if "integration" in item.keywords:
            if not RUN_INTEGRATION:
                item.add_marker(skip_integration)

        if "smoke" in item.keywords:
            if SKIP_SMOKE:
                item.add_marker(skip_smoke)


# ============================================================
# Metrics isolation
# ============================================================

@pytest.fixture(autouse=True)
def metrics_registry():
    """Fresh Prometheus registry for every test."""
    registry = CollectorRegistry()
    setup_metrics(registry)
    return registry


# ============================================================
# Settings / adapters / app
# ============================================================

@pytest.fixture
def settings():
    """Settings for tests: stub adapters, no heartbeats."""
    return RelaySettings(
        use_stub_adapters=True,
        stub_delay=0.0,
        heartbeat_interval=0.0,
        log_format="text",
    )


@pytest.fixture
def stub_adapter():
    return StubAdapter(fragments=["He", "llo", " there"])


@pytest.fixture
def registry(stub_adapter):
    return AdapterRegistry({Provider.STUB: stub_adapter})


@pytest.fixture
def app(settings, registry):
    from tokenrelay.server import create_app
    return create_app(settings=settings, registry=registry)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def channel():
    return AsgiChannel()
