"""
Tests for orchestrator config (Settings).

Ensures env overrides load, defaults are sane and bad timeouts are rejected.
"""
from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from taskpilot.config import Settings, configure_logging, get_settings


def test_defaults() -> None:
    """Defaults point at a local agent service with the push channel off."""
    settings = Settings(_env_file=None)

    assert settings.api_base_url == "http://localhost:5000/api"
    assert settings.push_url is None
    assert settings.rollback_failed_messages is True
    assert settings.stream_total_timeout > settings.stream_read_timeout


def test_env_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    """TASKPILOT_* variables override the defaults."""
    monkeypatch.setenv("TASKPILOT_API_BASE_URL", "https://agents.example.com/api/")
    monkeypatch.setenv("TASKPILOT_REQUEST_TIMEOUT", "12.5")
    monkeypatch.setenv("TASKPILOT_ROLLBACK_FAILED_MESSAGES", "false")
    settings = Settings(_env_file=None)

    assert settings.api_base_url == "https://agents.example.com/api"
    assert settings.request_timeout == 12.5
    assert settings.rollback_failed_messages is False


@pytest.mark.parametrize("field", ["request_timeout", "stream_read_timeout", "stream_total_timeout", "connect_timeout"])
def test_timeouts_must_be_positive(field: str) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: 0})


def test_get_settings_is_cached() -> None:
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()


def test_configure_logging_quiets_httpx() -> None:
    configure_logging(Settings(_env_file=None, log_level="debug"))
    assert logging.getLogger("httpx").level == logging.WARNING

    configure_logging(Settings(_env_file=None, debug=True))
    assert logging.getLogger("httpx").level == logging.DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
