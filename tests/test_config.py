"""Tests for Settings validation and the DB URL property."""

import pytest
from pydantic import ValidationError

from switchboard.config import Settings
from switchboard.orchestration.signals import Thresholds


def test_db_url_defaults_to_postgres():
    settings = Settings(DB_HOST="db", DB_PORT=6543, DB_USER="u", DB_PASSWORD="p", DB_NAME="n")

    assert settings.db_url == "postgresql+asyncpg://u:p@db:6543/n"


def test_database_url_override(settings):
    assert settings.db_url == "sqlite+aiosqlite://"


@pytest.mark.parametrize("value", [-0.1, 1.5])
def test_threshold_out_of_range_rejected(value):
    with pytest.raises(ValidationError, match="safety_threshold"):
        Settings(safety_threshold=value)


def test_thresholds_follow_settings():
    thresholds = Thresholds.from_settings(Settings(safety_threshold=0.9, tool_intent_threshold=0.5))

    assert thresholds.safety == 0.9
    assert thresholds.tool_intent == 0.5
    assert thresholds.intent == 0.6


def test_ttl_overrides_from_env(monkeypatch):
    monkeypatch.setenv("SWITCHBOARD_SESSION_TTL_OVERRIDES", '{"topic_light": 5}')
    monkeypatch.setenv("SWITCHBOARD_DEBOUNCE_ENABLED", "false")

    settings = Settings()

    assert settings.session_ttl_overrides == {"topic_light": 5}
    assert settings.debounce_enabled is False


def test_safety_resolution_threshold_from_env(monkeypatch):
    monkeypatch.setenv("SWITCHBOARD_SAFETY_RESOLUTION_THRESHOLD", "0.8")

    assert Thresholds.from_settings(Settings()).safety_resolution == 0.8


def test_safety_resolution_threshold_out_of_range_rejected():
    with pytest.raises(ValidationError, match="safety_resolution_threshold"):
        Settings(safety_resolution_threshold=1.2)
