"""
tokenrelay - Configuration

Settings are read from the environment once at startup.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from .models import DEFAULT_MAX_TOKENS, Provider


def _is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.lower().strip() in ("1", "true", "yes", "on")


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def get_cors_allowed_origins() -> List[str]:
    """Parse CORS_ALLOW_ORIGINS from environment ("*" when unset)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "")
    if not raw.strip():
        return ["*"]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass
class RelaySettings:
    """Runtime configuration."""
    host: str = "0.0.0.0"
    port: int = 5001

    log_level: str = "INFO"
    log_format: str = "json"

    # Seconds between keep-alive comment frames on an idle stream
    heartbeat_interval: float = 15.0
    upstream_timeout: float = 60.0
    max_tokens: int = DEFAULT_MAX_TOKENS

    default_provider: Optional[str] = None

    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    anthropic_api_key: Optional[str] = None
    anthropic_base_url: Optional[str] = None
    anthropic_model: str = "claude-3-haiku-20240307"

    use_stub_adapters: bool = False
    stub_delay: float = 0.05

    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])

    otlp_endpoint: Optional[str] = None
    otel_console_export: bool = False

    @classmethod
    def from_env(cls) -> "RelaySettings":
        default_provider = os.getenv("DEFAULT_PROVIDER")
        if default_provider:
            default_provider = default_provider.lower().strip()
            valid = {p.value for p in Provider}
            if default_provider not in valid:
                raise ValueError(
                    f"Invalid DEFAULT_PROVIDER {default_provider!r}. Use one of: {', '.join(sorted(valid))}"
                )

        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=_get_int("PORT", 5001),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
            heartbeat_interval=_get_float("HEARTBEAT_INTERVAL", 15.0),
            upstream_timeout=_get_float("UPSTREAM_TIMEOUT", 60.0),
            max_tokens=_get_int("MAX_TOKENS", DEFAULT_MAX_TOKENS),
            default_provider=default_provider or None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            anthropic_base_url=os.getenv("ANTHROPIC_BASE_URL") or None,
            anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-3-haiku-20240307"),
            use_stub_adapters=_is_truthy(os.getenv("USE_STUB_ADAPTERS")),
            stub_delay=_get_float("STUB_DELAY", 0.05),
            cors_allow_origins=get_cors_allowed_origins(),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
            otel_console_export=_is_truthy(os.getenv("OTEL_CONSOLE_EXPORT")),
        )


_settings: Optional[RelaySettings] = None


def get_settings() -> RelaySettings:
    """Get the process-wide settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = RelaySettings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (for testing)."""
    global _settings
    _settings = None
