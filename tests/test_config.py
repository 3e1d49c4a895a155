"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from config import Settings


def test_defaults(monkeypatch):
    for name in ("DATABASE_URL", "SQL_ECHO", "LOG_LEVEL", "APP_NAME", "PASSWORD_SCHEMES"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings()
    assert settings.database_url.startswith("postgresql://")
    assert settings.sql_echo is False
    assert settings.log_level == "INFO"
    assert settings.app_name == "Clinic Booking API"
    assert settings.get_password_schemes_list() == ["pbkdf2_sha256"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///./clinic.db")
    monkeypatch.setenv("SQL_ECHO", "true")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("PASSWORD_SCHEMES", "pbkdf2_sha256, sha256_crypt")
    settings = Settings()
    assert settings.database_url == "sqlite:///./clinic.db"
    assert settings.sql_echo is True
    assert settings.log_level == "DEBUG"
    assert settings.get_password_schemes_list() == ["pbkdf2_sha256", "sha256_crypt"]


def test_invalid_log_level(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    with pytest.raises(ValidationError):
        Settings()


def test_invalid_database_url(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "clinic.db")
    with pytest.raises(ValidationError):
        Settings()
