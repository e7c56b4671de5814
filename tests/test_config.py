"""
tokenrelay - Configuration Tests
"""

import pytest

from tokenrelay.adapters import AnthropicAdapter, OpenAIAdapter
from tokenrelay.core.config import RelaySettings, get_settings, reset_settings
from tokenrelay.server import build_registry
from tokenrelay.core.models import Provider


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "PORT", "HEARTBEAT_INTERVAL", "DEFAULT_PROVIDER", "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY", "USE_STUB_ADAPTERS", "CORS_ALLOW_ORIGINS", "LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


class TestRelaySettings:
    """Test environment parsing."""

    def test_defaults(self):
        settings = RelaySettings.from_env()

        assert settings.port == 5001
        assert settings.heartbeat_interval == 15.0
        assert settings.cors_allow_origins == ["*"]
        assert settings.use_stub_adapters is False
        assert settings.default_provider is None

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("HEARTBEAT_INTERVAL", "2.5")
        monkeypatch.setenv("DEFAULT_PROVIDER", "Anthropic")
        monkeypatch.setenv("USE_STUB_ADAPTERS", "yes")
        monkeypatch.setenv("CORS_ALLOW_ORIGINS", "http://a.test, http://b.test")

        settings = RelaySettings.from_env()

        assert settings.port == 8080
        assert settings.heartbeat_interval == 2.5
        assert settings.default_provider == "anthropic"
        assert settings.use_stub_adapters is True
        assert settings.cors_allow_origins == ["http://a.test", "http://b.test"]

    @pytest.mark.parametrize("name,value", [
        ("PORT", "eighty"),
        ("HEARTBEAT_INTERVAL", "-1"),
        ("HEARTBEAT_INTERVAL", "soon"),
        ("DEFAULT_PROVIDER", "gemini"),
    ])
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValueError):
            RelaySettings.from_env()

    def test_get_settings_is_cached(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("PORT", "9999")
        assert get_settings() is first

        reset_settings()
        assert get_settings().port == 9999


class TestBuildRegistry:
    """Test adapter selection from settings."""

    @pytest.mark.asyncio
    async def test_stub_when_no_keys(self):
        registry = build_registry(RelaySettings(log_format="text"))

        assert list(registry.adapters) == [Provider.STUB]
        await registry.close()

    @pytest.mark.asyncio
    async def test_configured_providers(self):
        settings = RelaySettings(
            openai_api_key="sk-test",
            anthropic_api_key="ant-test",
            default_provider="anthropic",
            log_format="text",
        )

        registry = build_registry(settings)

        assert set(registry.adapters) == {Provider.OPENAI, Provider.ANTHROPIC}
        assert isinstance(registry.adapters[Provider.OPENAI], OpenAIAdapter)
        assert isinstance(registry.adapters[Provider.ANTHROPIC], AnthropicAdapter)
        assert registry.adapters[Provider.OPENAI].config.timeout == settings.upstream_timeout
        assert registry.default_provider == Provider.ANTHROPIC
        await registry.close()

    @pytest.mark.asyncio
    async def test_stub_flag_wins_over_keys(self):
        registry = build_registry(RelaySettings(openai_api_key="sk-test", use_stub_adapters=True))

        assert list(registry.adapters) == [Provider.STUB]
        await registry.close()
