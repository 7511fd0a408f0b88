"""Unit tests for queue configuration."""

import pytest

from evalqueue.session.config import QueueConfig


@pytest.mark.unit
class TestQueueConfig:
    """Test defaults and environment overrides."""

    def test_defaults(self):
        config = QueueConfig()
        assert config.watch_timeout is None
        assert config.max_line_length == 10000
        assert config.recognized_errors == ("Exception",)
        assert config.default_session == "python"
        assert config.sync_timeout > config.poll_interval > 0

    def test_from_env_without_overrides(self, monkeypatch):
        for name in ("WATCH_TIMEOUT", "SYNC_TIMEOUT", "MAX_LINE_LENGTH"):
            monkeypatch.delenv(f"EVALQUEUE_{name}", raising=False)
        assert QueueConfig.from_env() == QueueConfig()

    def test_from_env_overrides(self, monkeypatch):
        monkeypatch.setenv("EVALQUEUE_SYNC_TIMEOUT", "5")
        monkeypatch.setenv("EVALQUEUE_WATCH_TIMEOUT", "30.5")
        monkeypatch.setenv("EVALQUEUE_WATCH_DEBOUNCE_MS", "20")
        monkeypatch.setenv("EVALQUEUE_DEFAULT_SESSION", "main")
        monkeypatch.setenv("EVALQUEUE_RECOGNIZED_ERRORS", "NameError, ValueError")

        config = QueueConfig.from_env()

        assert config.sync_timeout == 5.0
        assert config.watch_timeout == 30.5
        assert config.watch_debounce_ms == 20
        assert config.default_session == "main"
        assert config.recognized_errors == ("NameError", "ValueError")

    def test_from_env_none(self, monkeypatch):
        monkeypatch.setenv("EVALQUEUE_MAX_LINE_LENGTH", "none")
        assert QueueConfig.from_env().max_line_length is None

    def test_from_env_invalid_number(self, monkeypatch):
        monkeypatch.setenv("EVALQUEUE_RETRY_DELAY", "soon")
        with pytest.raises(ValueError):
            QueueConfig.from_env()
