"""
Frame Relay Configuration
=========================

This module handles configuration loading for the relay server and its
producer/consumer clients.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    FRAME_RELAY_MAX_FRAME_BYTES         -> relay.max_frame_bytes
    FRAME_RELAY_CHANNEL_PREFIX          -> relay.channel_prefix
    FRAME_RELAY_HEARTBEAT_TIMEOUT_MS    -> relay.heartbeat_timeout_ms
    FRAME_RELAY_AUTH_KEY                -> auth.key
    FRAME_RELAY_AUTH_SECRET             -> auth.secret
    FRAME_RELAY_AUTH_ENABLED            -> auth.enabled
    FRAME_RELAY_MIN_CAPTURE_INTERVAL_MS -> capture.min_capture_interval_ms
    FRAME_RELAY_RETRY_BASE_DELAY_MS     -> retry.base_delay_ms
    FRAME_RELAY_RETRY_MAX_DELAY_MS      -> retry.max_delay_ms
    FRAME_RELAY_RETRY_MAX_ATTEMPTS      -> retry.max_attempts
    FRAME_RELAY_URL                     -> client.url
    FRAME_RELAY_AUTH_URL                -> client.auth_url
    FRAME_RELAY_CHANNEL                 -> client.channel
    FRAME_RELAY_PORT                    -> server.port
    FRAME_RELAY_LOG_LEVEL               -> logging.level
    PORT                                -> server.port (PaaS)

Example:
    from frame_relay.config import settings

    print(settings.relay.max_frame_bytes)
    print(settings.retry.max_attempts)
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class RelayConfig(BaseModel):
    """Relay hub configuration."""

    max_frame_bytes: int = Field(
        default=1_000_000,
        ge=1,
        description="Largest accepted frame payload in bytes",
    )
    allowed_frame_types: List[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/png", "image/webp"],
        min_length=1,
        description="Allow-listed frame media types",
    )
    channel_prefix: str = Field(
        default="",
        description="Required channel name prefix (e.g. 'private-'), empty for none",
    )
    outbound_buffer_size: int = Field(
        default=4,
        ge=1,
        description="Per-recipient outbound buffer; overflow drops the oldest message",
    )
    heartbeat_timeout_ms: int = Field(
        default=60_000,
        ge=1000,
        description="Disconnect a connection after this long without activity",
    )
    heartbeat_interval_ms: int = Field(
        default=25_000,
        ge=100,
        description="Client ping interval",
    )


class AuthConfig(BaseModel):
    """Channel authorization gate configuration."""

    enabled: bool = Field(default=True, description="Require signed grants to join")
    key: str = Field(default="frame-relay", description="Public application key")
    secret: str = Field(default="change-me", min_length=1, description="HMAC signing secret")
    timeout_ms: int = Field(
        default=2000,
        ge=1,
        description="Grant verification timeout; slower answers are denials",
    )


class CaptureConfig(BaseModel):
    """Producer capture configuration."""

    min_capture_interval_ms: int = Field(
        default=100,
        ge=0,
        description="Minimum delay between the end of one capture cycle and the next",
    )
    device: str = Field(default="0", description="Camera index or stream URL")
    jpeg_quality: int = Field(default=80, ge=1, le=100, description="JPEG quality")


class RetryConfig(BaseModel):
    """Client reconnection backoff."""

    base_delay_ms: int = Field(default=500, ge=1, description="First retry delay")
    max_delay_ms: int = Field(default=10_000, ge=1, description="Retry delay ceiling")
    max_attempts: int = Field(default=5, ge=0, description="Retries before giving up")

    @model_validator(mode="after")
    def _check_delays(self) -> "RetryConfig":
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("retry.max_delay_ms must be >= retry.base_delay_ms")
        return self


class ClientConfig(BaseModel):
    """Producer / consumer connection configuration."""

    url: str = Field(
        default="ws://localhost:3001/ws",
        description="WebSocket URL of the relay",
    )
    auth_url: str = Field(
        default="http://localhost:3001/auth",
        description="Grant endpoint of the relay",
    )
    channel: str = Field(default="camera-feed", description="Channel to join")
    identity: str = Field(default="anonymous", description="Caller identity sent as x-user-id")


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3001, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the frame relay.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    relay: RelayConfig = Field(default_factory=RelayConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, uses FRAME_RELAY_CONFIG
            or searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        config_path = os.environ.get("FRAME_RELAY_CONFIG")

    # Find config file
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    # Load from YAML if exists
    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    # Apply environment variable overrides
    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Relay settings
    if env_max := os.environ.get("FRAME_RELAY_MAX_FRAME_BYTES"):
        config_data.setdefault("relay", {})["max_frame_bytes"] = int(env_max)
    if (env_prefix := os.environ.get("FRAME_RELAY_CHANNEL_PREFIX")) is not None:
        config_data.setdefault("relay", {})["channel_prefix"] = env_prefix
    if env_hb := os.environ.get("FRAME_RELAY_HEARTBEAT_TIMEOUT_MS"):
        config_data.setdefault("relay", {})["heartbeat_timeout_ms"] = int(env_hb)

    # Auth settings
    if env_key := os.environ.get("FRAME_RELAY_AUTH_KEY"):
        config_data.setdefault("auth", {})["key"] = env_key
    if env_secret := os.environ.get("FRAME_RELAY_AUTH_SECRET"):
        config_data.setdefault("auth", {})["secret"] = env_secret
    if env_enabled := os.environ.get("FRAME_RELAY_AUTH_ENABLED"):
        config_data.setdefault("auth", {})["enabled"] = env_enabled.lower() in ("1", "true", "yes")

    # Capture settings
    if env_interval := os.environ.get("FRAME_RELAY_MIN_CAPTURE_INTERVAL_MS"):
        config_data.setdefault("capture", {})["min_capture_interval_ms"] = int(env_interval)

    # Retry settings
    if env_base := os.environ.get("FRAME_RELAY_RETRY_BASE_DELAY_MS"):
        config_data.setdefault("retry", {})["base_delay_ms"] = int(env_base)
    if env_cap := os.environ.get("FRAME_RELAY_RETRY_MAX_DELAY_MS"):
        config_data.setdefault("retry", {})["max_delay_ms"] = int(env_cap)
    if env_attempts := os.environ.get("FRAME_RELAY_RETRY_MAX_ATTEMPTS"):
        config_data.setdefault("retry", {})["max_attempts"] = int(env_attempts)

    # Client settings
    if env_url := os.environ.get("FRAME_RELAY_URL"):
        config_data.setdefault("client", {})["url"] = env_url
    if env_auth_url := os.environ.get("FRAME_RELAY_AUTH_URL"):
        config_data.setdefault("client", {})["auth_url"] = env_auth_url
    if env_channel := os.environ.get("FRAME_RELAY_CHANNEL"):
        config_data.setdefault("client", {})["channel"] = env_channel

    # Server settings (PaaS platforms use PORT)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("FRAME_RELAY_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("FRAME_RELAY_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)
