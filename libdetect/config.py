"""
Settings for libdetect.

Handles:
- Discovery port and self-skipping
- Dial concurrency and timeouts
- Liveness probe tuning

Settings live in memory only; nothing is read from disk or the environment.
"""

from dataclasses import dataclass, fields
from typing import Optional
import logging

logger = logging.getLogger(__name__)

DEFAULT_PORT = 11460
DEFAULT_GREETING = b"HELLO"

# A /24 holds up to 253 candidates per interface; dial at most this many at once
DEFAULT_MAX_CONCURRENT_DIALS = 64


@dataclass
class DetectSettings:
    """Runtime settings for one discovery session."""
    port: int = DEFAULT_PORT
    skip_self: bool = True
    bind_host: str = "0.0.0.0"
    connect_timeout: float = 2.0
    max_concurrent_dials: int = DEFAULT_MAX_CONCURRENT_DIALS
    read_chunk_size: int = 4096
    heartbeat_interval: Optional[float] = None  # None disables heartbeat writes
    stop_grace_period: float = 5.0
    greeting: bytes = DEFAULT_GREETING

    def validate(self) -> None:
        """Raise ValueError if any setting is out of range."""
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.max_concurrent_dials < 1:
            raise ValueError("max_concurrent_dials must be at least 1")
        if self.read_chunk_size < 1:
            raise ValueError("read_chunk_size must be at least 1")
        if self.heartbeat_interval is not None and self.heartbeat_interval <= 0:
            raise ValueError("heartbeat_interval must be positive or None")
        if self.stop_grace_period < 0:
            raise ValueError("stop_grace_period cannot be negative")

    def to_dict(self) -> dict:
        return {
            "port": self.port,
            "skip_self": self.skip_self,
            "bind_host": self.bind_host,
            "connect_timeout": self.connect_timeout,
            "max_concurrent_dials": self.max_concurrent_dials,
            "read_chunk_size": self.read_chunk_size,
            "heartbeat_interval": self.heartbeat_interval,
            "stop_grace_period": self.stop_grace_period,
            "greeting": self.greeting.decode("ascii"),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DetectSettings":
        # Ignore keys we don't know about
        known_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known_fields}
        if isinstance(filtered.get("greeting"), str):
            filtered["greeting"] = filtered["greeting"].encode("ascii")
        settings = cls(**filtered)
        settings.validate()
        return settings


# Global settings instance
_settings: Optional[DetectSettings] = None


def get_settings() -> DetectSettings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = DetectSettings()
    return _settings


def set_settings(settings: DetectSettings) -> None:
    """Set the global settings instance."""
    global _settings
    settings.validate()
    _settings = settings
    logger.debug(f"Settings updated: {settings.to_dict()}")


def reset_settings() -> None:
    """Reset the global settings instance."""
    global _settings
    _settings = None
