"""
Avatar Video Core Components

Provides foundational infrastructure for the generation client:
- Configuration loaded from the environment
- The shared error taxonomy
"""

from .config import Config, get_config, reload_config
from .errors import (
    ChannelError,
    GenerationError,
    InsufficientCredits,
    NotAuthenticated,
    ProtocolError,
    TrackingTimedOut,
    ValidationError,
    VideoGenerationError,
)

__all__ = [
    "Config",
    "get_config",
    "reload_config",
    "VideoGenerationError",
    "ValidationError",
    "InsufficientCredits",
    "NotAuthenticated",
    "ProtocolError",
    "GenerationError",
    "ChannelError",
    "TrackingTimedOut",
]
