from pathlib import Path

import pytest
from pydantic import ValidationError

from src.config.settings import Settings, get_settings


def test_settings_defaults(settings):
    assert settings.anthropic_api_key.get_secret_value().startswith("sk-")
    assert settings.report_format == "markdown"
    assert settings.luxury_value_threshold == 500_000
    assert settings.max_image_bytes == 22 * 1024 * 1024
    assert isinstance(settings.output_dir, Path)


def test_secret_not_leaked_in_repr(settings):
    assert "sk-ant-api-mock-key" not in repr(settings)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("STAGE_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("LUXURY_VALUE_THRESHOLD", "100000")
    monkeypatch.setenv("REPORT_FORMAT", "html")
    settings = Settings(_env_file=None)
    assert settings.stage_timeout_seconds == 12.5
    assert settings.luxury_value_threshold == 100000
    assert settings.report_format == "html"


def test_invalid_api_key_rejected():
    with pytest.raises(ValidationError, match="Invalid Anthropic API key format"):
        Settings(_env_file=None, ANTHROPIC_API_KEY="not-a-key")


def test_pipeline_timeout_must_cover_stage_timeout(settings_factory):
    with pytest.raises(ValidationError, match="PIPELINE_TIMEOUT_SECONDS"):
        settings_factory(STAGE_TIMEOUT_SECONDS=30, PIPELINE_TIMEOUT_SECONDS=10)


def test_report_format_restricted(settings_factory):
    with pytest.raises(ValidationError):
        settings_factory(REPORT_FORMAT="pdf")


def test_negative_threshold_rejected(settings_factory):
    with pytest.raises(ValidationError):
        settings_factory(LUXURY_VALUE_THRESHOLD=-1)


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
