"""
Tests for environment-based settings.
"""

import pytest
from pydantic import ValidationError

from backdrop.config import get_settings


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setenv("UPLOAD_PASSWORD", "pw")
    monkeypatch.setenv("SESSION_SECRET", "secret")
    return monkeypatch


def test_defaults(env):
    settings = get_settings()

    assert settings.PORT == 8443
    assert settings.temp_storage_max_bytes == 50 * 1024 * 1024
    assert settings.TEMP_STORAGE_TTL_MS == 600_000
    assert settings.max_upload_bytes == 25 * 1024 * 1024
    assert settings.full_size == (3840, 2160)
    assert settings.preview_size == (960, 540)
    assert settings.defaults() == {"blur": 40, "scale": 85}


def test_environment_overrides(env):
    env.setenv("TEMP_STORAGE_MAX_MB", "8")
    env.setenv("DEV_MODE", "true")
    env.setenv("PREVIEW_WIDTH", "480")

    settings = get_settings()

    assert settings.temp_storage_max_bytes == 8 * 1024 * 1024
    assert settings.DEV_MODE is True
    assert settings.preview_size == (480, 540)


def test_password_and_secret_are_required(monkeypatch):
    monkeypatch.delenv("UPLOAD_PASSWORD", raising=False)
    monkeypatch.delenv("SESSION_SECRET", raising=False)

    with pytest.raises(ValidationError):
        get_settings()
