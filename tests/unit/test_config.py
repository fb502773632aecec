"""
Unit tests for settings.
"""

import pytest
from pydantic import ValidationError

from frontsync.config import Settings, get_settings

pytestmark = pytest.mark.unit


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("FRONT_PAGE_LIMIT", "25")
    monkeypatch.setenv("CIRCUIT_BREAKER_THRESHOLD", "3")

    settings = Settings()

    assert settings.front_page_limit == 25
    assert settings.circuit_breaker_threshold == 3
    assert settings.front_api_token == "test-token"


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.front_api_base_url == "https://api2.frontapp.com"
    assert settings.circuit_breaker_cooldown_seconds == 300
    assert settings.event_max_events == 1000
    assert settings.incremental_lookback_hours == 24


def test_invalid_log_level_rejected():
    with pytest.raises(ValidationError):
        Settings(log_level="LOUD")


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
