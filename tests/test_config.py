"""
Tests for settings loading and logging setup.
"""
import logging

import pytest
import structlog

from traci_core.config import Settings, load_settings
from traci_core.exceptions import ConfigurationError
from traci_core.logging import setup_logging


class TestSettings:
    def test_defaults(self):
        config = Settings()
        assert config.port == 8813
        assert config.track_simulation_time is True
        assert config.read_timeout_sec is None

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("TRACI_PORT", "9999")
        monkeypatch.setenv("TRACI_READ_TIMEOUT_SEC", "2.5")

        config = load_settings()

        assert config.port == 9999
        assert config.read_timeout_sec == 2.5

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("TRACI_PORT", "9999")
        assert load_settings(port=1234).port == 1234

    @pytest.mark.parametrize(
        "overrides",
        [
            {"port": 0},
            {"port": 70000},
            {"connect_timeout_sec": 0},
            {"read_timeout_sec": -1.0},
            {"max_frame_bytes": 2},
            {"log_format": "xml"},
        ],
    )
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(**overrides)
        assert exc_info.value.details["errors"]


class TestLogging:
    def test_setup_accepts_level_names(self):
        setup_logging("test", "debug")

    def test_setup_rejects_unknown_level(self):
        with pytest.raises(ValueError):
            setup_logging("test", "loud")

    def test_console_renderer(self, capsys):
        setup_logging("test", logging.INFO, log_format="console")
        structlog.get_logger().info("sample_event", answer=42)

        assert "sample_event" in capsys.readouterr().err
