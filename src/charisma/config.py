"""Configuration schema for the playthrough client.

Defines Pydantic models for loading and validating client configuration
from YAML files and environment variables. The base URL is an explicit
value threaded through every component rather than process-wide state.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class ReconnectConfig(BaseModel):
    """Reconnection protocol configuration."""

    max_attempts: int = Field(
        default=20, ge=1, description="Attempt budget before giving up"
    )
    base_delay_s: float = Field(
        default=5.0, ge=0.0, description="Fixed delay between attempts in seconds"
    )
    jitter_s: float = Field(
        default=1.0, ge=0.0, description="Upper bound of random jitter added to the delay"
    )


class ReplayConfig(BaseModel):
    """Catch-up replay configuration."""

    history_limit: int = Field(
        default=1000, ge=1, le=1000, description="Maximum events fetched per replay"
    )
    event_types: list[str] = Field(
        default_factory=lambda: ["message_character"],
        description="Event kinds requested from the event history",
    )


class TransportConfig(BaseModel):
    """Realtime transport configuration."""

    room_name: str = Field(default="chat", min_length=1, description="Room type to join")
    explicit_disconnect_code: int = Field(
        default=4000,
        ge=1000,
        le=4999,
        description="Close code reserved for a user-requested disconnect",
    )
    open_timeout_s: float = Field(
        default=10.0, gt=0.0, description="Timeout for opening or rejoining a room"
    )
    max_message_size: int = Field(
        default=2**20, ge=1024, description="Maximum inbound message size in bytes"
    )


class ClientConfig(BaseModel):
    """Root client configuration."""

    base_url: str = Field(
        default="https://play.charisma.ai",
        description="HTTP(S) base URL of the backend",
    )
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    replay: ReplayConfig = Field(default_factory=ReplayConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate the URL scheme and strip the trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must start with http:// or https://, got '{v}'")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @property
    def ws_url(self) -> str:
        """WebSocket URL derived from the HTTP base URL."""
        return "ws" + self.base_url[len("http"):]

    @classmethod
    def from_yaml(cls, path: Path) -> "ClientConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import os

        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        if base_url := os.getenv("CHARISMA_BASE_URL"):
            data["base_url"] = base_url

        if log_level := os.getenv("CHARISMA_LOG_LEVEL"):
            data["log_level"] = log_level

        if max_attempts := os.getenv("CHARISMA_RECONNECT_MAX_ATTEMPTS"):
            if "reconnect" not in data:
                data["reconnect"] = {}
            data["reconnect"]["max_attempts"] = int(max_attempts)

        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "ClientConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls()
