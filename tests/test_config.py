"""
tests/test_config.py -- Settings, duration parsing and the startup secret gate.

Covers:
  - parse_duration() units and rejections
  - Settings rejects unreadable TTL strings at load time
  - TokenService.validate_secrets() messages for missing, short and equal secrets
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from pydantic import ValidationError as SettingsValidationError

from api.main import wire_services
from auth.errors import ConfigurationError
from auth.tokens import TokenService
from core.config import parse_duration
from tests.conftest import ACCESS_SECRET, REFRESH_SECRET, make_settings


@pytest.mark.parametrize(
    "value, seconds",
    [("90s", 90), ("15m", 900), ("8h", 28800), ("7d", 604800), ("3600", 3600), (120, 120), ("2H", 7200)],
)
def test_parse_duration(value, seconds) -> None:
    assert parse_duration(value) == seconds


@pytest.mark.parametrize("value", ["", "abc", "8w", "-5m", "0", "1.5h"])
def test_parse_duration_rejects(value) -> None:
    with pytest.raises(ValueError):
        parse_duration(value)


def test_settings_rejects_bad_ttl() -> None:
    with pytest.raises(SettingsValidationError):
        make_settings(jwt_expiration="soon")


def test_settings_ttl_properties() -> None:
    settings = make_settings(jwt_expiration="15m", jwt_refresh_expiration="1d")
    assert settings.access_ttl_seconds == 900
    assert settings.refresh_ttl_seconds == 86400


def test_valid_secrets_pass() -> None:
    TokenService(make_settings()).validate_secrets()


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"jwt_secret": ""}, "JWT_SECRET is not defined."),
        ({"jwt_refresh_secret": ""}, "JWT_REFRESH_SECRET is not defined."),
        ({"jwt_secret": "short"}, "JWT_SECRET must be at least 32 characters."),
        ({"jwt_refresh_secret": "x" * 31}, "JWT_REFRESH_SECRET must be at least 32 characters."),
        ({"jwt_refresh_secret": ACCESS_SECRET}, "JWT_SECRET and JWT_REFRESH_SECRET must be different."),
    ],
)
def test_invalid_secrets_are_fatal(overrides, message) -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        TokenService(make_settings(**overrides)).validate_secrets()
    assert str(exc_info.value) == message


def test_configuration_error_names_setting() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        TokenService(make_settings(jwt_secret="", jwt_refresh_secret=REFRESH_SECRET)).validate_secrets()
    assert exc_info.value.setting == "JWT_SECRET"


def test_app_wiring_refuses_weak_secret(user_store, cache) -> None:
    app = FastAPI()
    with pytest.raises(ConfigurationError):
        wire_services(app, make_settings(jwt_secret="short"), cache, user_store)
    assert not hasattr(app.state, "auth_service")
