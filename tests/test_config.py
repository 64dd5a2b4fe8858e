"""
tests/test_config.py -- Settings validation (core/config.py).
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings


def test_debug_generates_secret_key(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    settings = Settings(debug=True)
    assert len(settings.secret_key) >= 32


def test_production_requires_secret_key(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, _env_file=None)


def test_short_secret_key_rejected():
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(debug=True, secret_key="too-short")


@pytest.mark.parametrize("seconds", [0, 7 * 24 * 3600 + 1])
def test_token_lifetime_bounds(seconds):
    with pytest.raises(ValidationError):
        Settings(debug=True, token_expire_seconds=seconds)


def test_bcrypt_rounds_bounds():
    with pytest.raises(ValidationError):
        Settings(debug=True, bcrypt_rounds=3)


def test_list_settings_parse_json_from_env(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", '["https://app.example.com"]')
    assert Settings(debug=True).cors_origins == ["https://app.example.com"]
