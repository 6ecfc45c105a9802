"""Unit tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from kubedump.config import load_config
from kubedump.errors import FilterParseError


class TestLoadConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for key in ("DESTINATION", "FILTER", "WORKERS", "LOG_LEVEL", "METRICS_PORT"):
            monkeypatch.delenv(f"KUBEDUMP_{key}", raising=False)

        config = load_config()

        assert config.controller.destination == "kubedump"
        assert config.controller.filter == ""
        assert config.controller.workers == 5
        assert config.queue.qps == 10.0
        assert config.queue.burst == 100
        assert config.metrics.port == 0
        assert config.log.level == "info"

    def test_values_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEDUMP_DESTINATION", "/tmp/dump")
        monkeypatch.setenv("KUBEDUMP_FILTER", "namespace default")
        monkeypatch.setenv("KUBEDUMP_WORKERS", "8")
        monkeypatch.setenv("KUBEDUMP_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("KUBEDUMP_QUEUE_MAX_RETRIES", "2")

        config = load_config()

        assert config.controller.destination == "/tmp/dump"
        assert config.controller.filter == "namespace default"
        assert config.controller.workers == 8
        assert config.log.level == "debug"
        assert config.queue.max_retries == 2

    def test_values_are_clamped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEDUMP_WORKERS", "0")
        monkeypatch.setenv("KUBEDUMP_LOG_SYNC_INTERVAL", "0")
        monkeypatch.setenv("KUBEDUMP_METRICS_PORT", "700000")

        config = load_config()

        assert config.controller.workers == 1
        assert config.controller.log_sync_interval == 0.1
        assert config.metrics.port == 65535

    def test_invalid_filter_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEDUMP_FILTER", "pod bad-name-")
        with pytest.raises(FilterParseError):
            load_config()

    def test_invalid_log_level_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEDUMP_LOG_LEVEL", "loud")
        with pytest.raises(ValueError):
            load_config()

    def test_empty_destination_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBEDUMP_DESTINATION", "  ")
        with pytest.raises(ValueError):
            load_config()
