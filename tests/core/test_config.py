from __future__ import annotations

import pytest

from tenancy.core.config import TenancyPolicy, load_settings

_ENV_VARS = (
    "APP_ENV",
    "LOG_LEVEL",
    "PORT",
    "DATABASE_URL",
    "REDIS_URL",
    "APP_URL",
    "INVITE_TTL_DAYS",
    "LOCKOUT_MAX_ATTEMPTS",
    "LOCKOUT_MINUTES",
    "ALLOW_PUBLIC_REGISTRATION",
    "ALLOW_ORG_CREATION",
    "MAX_MEMBERS_PER_ORG",
    "SMTP_HOST",
    "SMTP_TLS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    settings = load_settings()
    assert settings.app_env == "dev"
    assert settings.log_level == "info"
    assert settings.port == 8000
    assert settings.database_url is None
    assert settings.redis_url is None
    assert settings.invite_ttl_days == 7
    assert settings.lockout_max_attempts == 5
    assert settings.lockout_minutes == 15
    assert settings.tenancy == TenancyPolicy()
    assert settings.smtp.host is None
    assert settings.is_dev


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "  PROD ")
    monkeypatch.setenv("LOG_LEVEL", "Warning")
    monkeypatch.setenv("APP_URL", "https://app.example.com/")
    monkeypatch.setenv("LOCKOUT_MINUTES", "30")
    monkeypatch.setenv("ALLOW_PUBLIC_REGISTRATION", "off")
    monkeypatch.setenv("MAX_MEMBERS_PER_ORG", "25")
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_TLS", "no")

    settings = load_settings()

    assert settings.is_prod
    assert settings.log_level == "warning"
    assert settings.app_url == "https://app.example.com"
    assert settings.lockout_minutes == 30
    assert settings.tenancy.allow_public_registration is False
    assert settings.tenancy.allow_org_creation is True
    assert settings.tenancy.max_members_per_org == 25
    assert settings.smtp.host == "smtp.example.com"
    assert settings.smtp.use_tls is False


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("APP_ENV", "staging", "APP_ENV must be dev|test|prod"),
        ("LOG_LEVEL", "verbose", "LOG_LEVEL must be"),
        ("PORT", "eighty", "PORT must be an integer"),
        ("INVITE_TTL_DAYS", "0", "INVITE_TTL_DAYS must be >= 1"),
        ("LOCKOUT_MAX_ATTEMPTS", "many", "LOCKOUT_MAX_ATTEMPTS must be an integer"),
        ("ALLOW_ORG_CREATION", "maybe", "ALLOW_ORG_CREATION must be a boolean"),
    ],
    ids=["app-env", "log-level", "port", "ttl-zero", "attempts-nan", "bool"],
)
def test_invalid_values(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str
) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=message):
        load_settings()
