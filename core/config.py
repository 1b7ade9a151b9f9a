"""
Configuration management for the avatar video client.

Centralizes all configuration including:
- Backend API endpoints and credentials
- Realtime status stream endpoint
- Credit cost schedule per job kind
- Generation defaults and tracking timeout
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


@dataclass
class APIConfig:
    """Generation backend configuration."""

    base_url: str = field(default_factory=lambda: os.getenv("VIDEO_API_BASE", "http://localhost:3000"))
    token: str = field(default_factory=lambda: os.getenv("VIDEO_API_TOKEN", ""))

    # Submit endpoints, one per job kind
    template_endpoint: str = "/api/dashscope/emoji-video-generate"
    audio_endpoint: str = "/api/dashscope/liveportrait-generate"

    # Fetch-by-id, used for reconciliation and the initial image load
    record_endpoint: str = "/api/image-edits/{record_id}"
    balance_endpoint: str = "/api/credits"

    request_timeout: float = field(default_factory=lambda: _env_float("VIDEO_API_TIMEOUT", 60.0))


@dataclass
class RealtimeConfig:
    """Status subscription stream configuration."""

    base_url: str = field(default_factory=lambda: os.getenv("REALTIME_URL", "http://localhost:8765"))
    stream_path: str = "/stream/{task_id}"
    connect_timeout: float = 10.0


@dataclass
class CreditConfig:
    """Credit cost per job kind."""

    template_driven_cost: int = field(default_factory=lambda: _env_int("CREDIT_COST_TEMPLATE", 3))
    audio_driven_cost: int = field(default_factory=lambda: _env_int("CREDIT_COST_AUDIO", 3))


@dataclass
class GenerationConfig:
    """Defaults for generation requests and task tracking."""

    default_template_id: str = field(default_factory=lambda: os.getenv("DEFAULT_TEMPLATE_ID", "mengwa_kaixin"))
    tracking_timeout_seconds: float = field(
        default_factory=lambda: _env_float("TRACKING_TIMEOUT_SECONDS", 900.0)
    )
    # Status fetch cadence while the status stream is down
    reconcile_interval_seconds: float = field(
        default_factory=lambda: _env_float("RECONCILE_INTERVAL_SECONDS", 5.0)
    )


@dataclass
class Config:
    """Main configuration class."""

    api: APIConfig = field(default_factory=APIConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    credits: CreditConfig = field(default_factory=CreditConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.api.base_url:
            issues.append("VIDEO_API_BASE not configured")

        if not self.realtime.base_url:
            issues.append("REALTIME_URL not configured (status updates will rely on reconciliation only)")

        if self.credits.template_driven_cost < 0 or self.credits.audio_driven_cost < 0:
            issues.append("Credit costs must not be negative")

        if self.generation.tracking_timeout_seconds <= 0:
            issues.append("TRACKING_TIMEOUT_SECONDS must be positive")

        if self.generation.reconcile_interval_seconds <= 0:
            issues.append("RECONCILE_INTERVAL_SECONDS must be positive")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
