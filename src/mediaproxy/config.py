"""Configuration management with pydantic-settings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mediaproxy.channels import CHANNEL_RULES, DEFAULT_CHANNEL, ChannelRule, load_channel_rules


class MediaProxySettings(BaseSettings):
    """mediaproxy settings loaded from environment variables.

    All settings use the MEDIAPROXY_ prefix for environment variables. List
    settings take JSON arrays, e.g. ``MEDIAPROXY_ALLOWED_HOSTS='["cdn.example.com"]'``.
    """

    # Access control
    allowed_hosts: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Target domains that may be proxied ('*' allows any)",
    )
    allowed_referrers: list[str] = Field(
        default_factory=lambda: ["ucks.cn", "www.ucks.cn", "localhost", "127.0.0.1"],
        description="Referrer domains allowed to call the proxy (missing Referer always passes)",
    )

    # Channel rules
    channels_file: Path | None = Field(
        default=None,
        description="YAML channel rule file; replaces the built-in rules when set",
    )

    # Edge cache
    cache_enabled: bool = Field(default=True, description="Attach an in-process edge cache")
    cache_max_entries: int = Field(default=256, description="Maximum cached responses")
    cache_default_ttl: int = Field(
        default=3600,
        description="Lifetime in seconds for cached responses without Cache-Control",
    )
    cache_max_body_bytes: int = Field(
        default=32 * 1024 * 1024,
        description="Largest response body, in bytes, copied into the edge cache",
    )

    # Upstream
    upstream_timeout: float | None = Field(
        default=None,
        description="Upstream timeout in seconds (unset: no timeout beyond the transport's)",
    )

    # Server
    host: str = Field(default="127.0.0.1", description="Address the server binds to")
    port: int = Field(default=8787, description="Port the server listens on")

    # Logging configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="Log format: console or json")

    model_config = SettingsConfigDict(
        env_prefix="MEDIAPROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("allowed_hosts", "allowed_referrers")
    @classmethod
    def _normalize_domains(cls, value: list[str]) -> list[str]:
        return [d.strip().lower() for d in value if d.strip()]

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value not in ("console", "json"):
            raise ValueError(f"log_format must be 'console' or 'json', got {value!r}")
        return value

    def channel_rules(self) -> tuple[ChannelRule, ...]:
        """Return the active channel rule table.

        Raises:
            ConfigError: If ``channels_file`` is set but cannot be loaded.
        """
        if self.channels_file is None:
            return CHANNEL_RULES
        return load_channel_rules(self.channels_file)


@dataclass(frozen=True)
class ProxyConfig:
    """Read-only static data injected into the request pipeline."""

    allowed_hosts: tuple[str, ...] = ("*",)
    allowed_referrers: tuple[str, ...] = ()
    channels: tuple[ChannelRule, ...] = CHANNEL_RULES
    default_channel: ChannelRule = DEFAULT_CHANNEL
    upstream_timeout: float | None = None

    @classmethod
    def from_settings(cls, settings: MediaProxySettings | None = None) -> ProxyConfig:
        settings = settings or get_settings()
        return cls(
            allowed_hosts=tuple(settings.allowed_hosts),
            allowed_referrers=tuple(settings.allowed_referrers),
            channels=settings.channel_rules(),
            upstream_timeout=settings.upstream_timeout,
        )


# Global settings instance
_settings: MediaProxySettings | None = None


def get_settings() -> MediaProxySettings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = MediaProxySettings()
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None
