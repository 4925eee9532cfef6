"""Unit tests for client configuration loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from charisma.config import ClientConfig, ReconnectConfig, ReplayConfig, TransportConfig


class TestDefaults:
    """Default values follow the reconnection and replay protocol."""

    def test_reconnect_defaults(self) -> None:
        config = ReconnectConfig()
        assert config.max_attempts == 20
        assert config.base_delay_s == 5.0
        assert config.jitter_s == 1.0

    def test_replay_defaults(self) -> None:
        config = ReplayConfig()
        assert config.history_limit == 1000
        assert config.event_types == ["message_character"]

    def test_transport_defaults(self) -> None:
        config = TransportConfig()
        assert config.room_name == "chat"
        assert config.explicit_disconnect_code == 4000

    def test_client_defaults(self) -> None:
        config = ClientConfig()
        assert config.base_url == "https://play.charisma.ai"
        assert config.log_level == "INFO"


class TestValidation:
    """Test suite for configuration validation."""

    def test_base_url_trailing_slash_stripped(self) -> None:
        config = ClientConfig(base_url="http://localhost:8080/")
        assert config.base_url == "http://localhost:8080"

    def test_base_url_scheme_required(self) -> None:
        with pytest.raises(ValidationError, match="base_url must start with"):
            ClientConfig(base_url="localhost:8080")

    @pytest.mark.parametrize(
        ("base_url", "ws_url"),
        [
            ("https://play.charisma.ai", "wss://play.charisma.ai"),
            ("http://localhost:8080", "ws://localhost:8080"),
        ],
    )
    def test_ws_url(self, base_url: str, ws_url: str) -> None:
        """Test the WebSocket URL mirrors the HTTP scheme."""
        assert ClientConfig(base_url=base_url).ws_url == ws_url

    def test_log_level_normalized(self) -> None:
        assert ClientConfig(log_level="debug").log_level == "DEBUG"

    def test_log_level_invalid(self) -> None:
        with pytest.raises(ValidationError, match="log_level must be one of"):
            ClientConfig(log_level="LOUD")

    def test_history_limit_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ReplayConfig(history_limit=1001)
        with pytest.raises(ValidationError):
            ReplayConfig(history_limit=0)

    def test_max_attempts_positive(self) -> None:
        with pytest.raises(ValidationError):
            ReconnectConfig(max_attempts=0)


class TestYamlLoading:
    """Test suite for YAML loading with environment overrides."""

    def test_from_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test values are read from a YAML file."""
        for var in ("CHARISMA_BASE_URL", "CHARISMA_LOG_LEVEL", "CHARISMA_RECONNECT_MAX_ATTEMPTS"):
            monkeypatch.delenv(var, raising=False)

        path = tmp_path / "client.yaml"
        path.write_text(
            "base_url: http://localhost:3000\n"
            "reconnect:\n"
            "  max_attempts: 3\n"
            "  base_delay_s: 0.5\n"
            "transport:\n"
            "  room_name: chat\n"
        )

        config = ClientConfig.from_yaml(path)

        assert config.base_url == "http://localhost:3000"
        assert config.reconnect.max_attempts == 3
        assert config.reconnect.base_delay_s == 0.5
        assert config.reconnect.jitter_s == 1.0

    def test_environment_overrides(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test environment variables take precedence over the file."""
        path = tmp_path / "client.yaml"
        path.write_text("base_url: http://localhost:3000\nlog_level: INFO\n")

        monkeypatch.setenv("CHARISMA_BASE_URL", "https://staging.example.com")
        monkeypatch.setenv("CHARISMA_LOG_LEVEL", "warning")
        monkeypatch.setenv("CHARISMA_RECONNECT_MAX_ATTEMPTS", "7")

        config = ClientConfig.from_yaml(path)

        assert config.base_url == "https://staging.example.com"
        assert config.log_level == "WARNING"
        assert config.reconnect.max_attempts == 7

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            ClientConfig.from_yaml(tmp_path / "missing.yaml")

    def test_non_mapping_root(self, tmp_path: Path) -> None:
        path = tmp_path / "client.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="must be a mapping"):
            ClientConfig.from_yaml(path)

    def test_with_defaults_when_file_missing(self, tmp_path: Path) -> None:
        config = ClientConfig.from_yaml_with_defaults(tmp_path / "missing.yaml")
        assert config == ClientConfig()
        assert ClientConfig.from_yaml_with_defaults(None) == ClientConfig()
